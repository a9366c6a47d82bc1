"""Tangent representations added on top of natural values."""

from .zero import AbstractZero, ZeroTangent, NoTangent
from .thunks import AbstractThunk, Thunk, InplaceableThunk, thunk, unthunk
from .notimplemented import NotImplementedTangent, not_implemented
from .structural import (
    BackingKind,
    Tangent,
    backing,
    canonicalize,
    construct,
    elementwise_add,
    primal_fields,
    register_constructor,
)

__all__ = [
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
    'elementwise_add',
    'primal_fields',
    'register_constructor',
]
