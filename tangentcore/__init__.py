"""tangentcore: tangent types, tangent arithmetic and rule definitions for automatic differentiation."""

from .tangent import AbstractTangent, SourceLocation
from .tangents import (
    AbstractZero,
    ZeroTangent,
    NoTangent,
    AbstractThunk,
    Thunk,
    InplaceableThunk,
    thunk,
    unthunk,
    NotImplementedTangent,
    not_implemented,
    BackingKind,
    Tangent,
    backing,
    canonicalize,
    construct,
    primal_fields,
    register_constructor,
)

# Arithmetic
from .arithmetic import (
    TangentKind,
    add,
    add_to_primal,
    adjoint,
    conj,
    divide,
    dot,
    find_ambiguities,
    find_missing,
    kind_of,
    muladd,
    multiply,
    negate,
    subtract,
    transpose,
)
from .accumulation import accumulate, is_inplaceable_destination
from .operations import extern, iszero, zero_tangent

# Structured matrices and projection
from .linalg import Diagonal, Hermitian, LowerTriangular, StructuredMatrix, Symmetric, UpperTriangular
from .projection import ProjectTo, project_to, register_projector

# Rules
from . import rules
from .rules import (
    NO_RULE,
    Capability,
    RuleConfig,
    frule,
    ignore_derivatives,
    non_differentiable,
    opt_out,
    register_frule,
    register_rrule,
    rrule,
    scalar_rule,
)

from .config import TangentConfig, debug_mode, debug_mode_enabled, get_config, set_config, set_debug_mode
from .errors import (
    TangentError,
    MissingDerivativeError,
    TangentUsageError,
    StructuralTypeMismatchError,
    FieldMismatchError,
    DimensionMismatchError,
    PrimalAdditionFailedError,
    MutationContractViolation,
    BadInplaceError,
    ExternalizationError,
    MutateThunkError,
    AmbiguousDispatchError,
    RuleSignatureError,
    AmbiguousRuleError,
)

__version__ = "0.1.0"

__all__ = [
    # Tangent types
    'AbstractTangent',
    'SourceLocation',
    'AbstractZero',
    'ZeroTangent',
    'NoTangent',
    'AbstractThunk',
    'Thunk',
    'InplaceableThunk',
    'thunk',
    'unthunk',
    'NotImplementedTangent',
    'not_implemented',
    'BackingKind',
    'Tangent',
    'backing',
    'canonicalize',
    'construct',
    'primal_fields',
    'register_constructor',
    # Arithmetic
    'TangentKind',
    'kind_of',
    'add',
    'subtract',
    'multiply',
    'divide',
    'negate',
    'dot',
    'muladd',
    'conj',
    'adjoint',
    'transpose',
    'add_to_primal',
    'find_ambiguities',
    'find_missing',
    'accumulate',
    'is_inplaceable_destination',
    'extern',
    'iszero',
    'zero_tangent',
    # Projection
    'StructuredMatrix',
    'Diagonal',
    'UpperTriangular',
    'LowerTriangular',
    'Symmetric',
    'Hermitian',
    'ProjectTo',
    'project_to',
    'register_projector',
    # Rules
    'rules',
    'NO_RULE',
    'Capability',
    'RuleConfig',
    'frule',
    'rrule',
    'register_frule',
    'register_rrule',
    'opt_out',
    'scalar_rule',
    'non_differentiable',
    'ignore_derivatives',
    # Configuration
    'TangentConfig',
    'get_config',
    'set_config',
    'set_debug_mode',
    'debug_mode',
    'debug_mode_enabled',
    # Errors
    'TangentError',
    'MissingDerivativeError',
    'TangentUsageError',
    'StructuralTypeMismatchError',
    'FieldMismatchError',
    'DimensionMismatchError',
    'PrimalAdditionFailedError',
    'MutationContractViolation',
    'BadInplaceError',
    'ExternalizationError',
    'MutateThunkError',
    'AmbiguousDispatchError',
    'RuleSignatureError',
    'AmbiguousRuleError',
]
