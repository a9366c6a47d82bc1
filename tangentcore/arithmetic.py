"""Central dispatch for tangent arithmetic.

Every binary operator (``+``, ``*``, ``dot``) is a table from a pair of
tangent kinds to exactly one handler. Handlers are declared over sets of
kinds, in the order: sentinel short-circuits (missing derivative, zero-likes),
thunk forcing, structural per-field rules, and finally native arithmetic on
natural values. Declaring two handlers for the same pair raises
``AmbiguousDispatchError`` at import, and ``find_ambiguities`` /
``find_missing`` report the coverage of each table.

Natural tangents are values of pre-existing types: Python numbers, NumPy
scalars and arrays, torch tensors, SciPy sparse matrices and the structured
matrices of ``tangentcore.linalg``. They are combined with their own
operators.
"""

from __future__ import annotations
from enum import IntEnum
from itertools import product
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import numpy as np
import scipy.sparse
import torch

from .config import TangentConfig, resolve_config, debug_mode
from .errors import AmbiguousDispatchError, StructuralTypeMismatchError, TangentUsageError
from .tangent import AbstractTangent
from .tangents.notimplemented import NotImplementedTangent
from .tangents.structural import BackingKind, Tangent, add_structural
from .tangents.structural import add_to_primal as _structural_add_to_primal
from .tangents.thunks import AbstractThunk, Thunk, unthunk
from .tangents.zero import AbstractZero, NoTangent, ZeroTangent


class TangentKind(IntEnum):
    """Tangent representations, in the order their rules take precedence."""
    NOT_IMPLEMENTED = 0
    NO_TANGENT = 1
    ZERO = 2
    THUNK = 3
    STRUCTURAL = 4
    NATURAL = 5


K = TangentKind
ALL_KINDS: FrozenSet[TangentKind] = frozenset(TangentKind)
ZEROS = frozenset({K.NO_TANGENT, K.ZERO})
VALUES = frozenset({K.THUNK, K.STRUCTURAL, K.NATURAL})


def kind_of(x: Any) -> TangentKind:
    if isinstance(x, NotImplementedTangent):
        return K.NOT_IMPLEMENTED
    if isinstance(x, NoTangent):
        return K.NO_TANGENT
    if isinstance(x, ZeroTangent):
        return K.ZERO
    if isinstance(x, AbstractThunk):
        return K.THUNK
    if isinstance(x, Tangent):
        return K.STRUCTURAL
    return K.NATURAL


Handler = Callable[[Any, Any], Any]


class KindDispatcher:
    """Binary operator dispatching on ``(kind_of(a), kind_of(b))``.

    Args:
        name: Operator name used in error messages.
        strict: Raise ``AmbiguousDispatchError`` as soon as two declarations
            overlap. With ``strict=False`` overlaps are only recorded, which
            lets ``ambiguities`` be inspected.
    """

    def __init__(self, name: str, strict: bool = True):
        self.name = name
        self.strict = strict
        self._table: Dict[Tuple[TangentKind, TangentKind], Handler] = {}
        self._declarations: List[Tuple[FrozenSet[TangentKind], FrozenSet[TangentKind], Handler]] = []

    def register(self, left: Iterable[TangentKind], right: Iterable[TangentKind]):
        """Declare a handler for every pair in ``left x right``."""
        left, right = frozenset(left), frozenset(right)

        def decorator(fn: Handler) -> Handler:
            clashes = [pair for pair in product(left, right) if pair in self._table]
            if clashes and self.strict:
                pairs = ", ".join(f"({a.name}, {b.name})" for a, b in sorted(clashes))
                raise AmbiguousDispatchError(
                    f"{self.name}: {fn.__name__} overlaps an existing handler for {pairs}"
                )
            self._declarations.append((left, right, fn))
            for pair in product(left, right):
                self._table.setdefault(pair, fn)
            return fn
        return decorator

    def ambiguities(self) -> List[Tuple[TangentKind, TangentKind, Tuple[Handler, ...]]]:
        found = []
        for pair in product(sorted(ALL_KINDS), repeat=2):
            handlers = tuple(fn for left, right, fn in self._declarations if pair[0] in left and pair[1] in right)
            if len(handlers) > 1:
                found.append((pair[0], pair[1], handlers))
        return found

    def missing(self) -> List[Tuple[TangentKind, TangentKind]]:
        return [pair for pair in product(sorted(ALL_KINDS), repeat=2) if pair not in self._table]

    def handler_for(self, a: Any, b: Any) -> Handler:
        return self._table[(kind_of(a), kind_of(b))]

    def __call__(self, a: Any, b: Any) -> Any:
        return self._table[(kind_of(a), kind_of(b))](a, b)


def _first(a, b):
    return a


def _second(a, b):
    return b


_add = KindDispatcher("+")
_mul = KindDispatcher("*")
_dot = KindDispatcher("dot")

# ---------------------------------------------------------------- addition

# A missing derivative absorbs everything; with two, the left one is kept.
_add.register({K.NOT_IMPLEMENTED}, ALL_KINDS)(_first)
_add.register(ALL_KINDS - {K.NOT_IMPLEMENTED}, {K.NOT_IMPLEMENTED})(_second)

# NoTangent wins over ZeroTangent.
_add.register({K.NO_TANGENT}, ZEROS)(_first)
_add.register({K.ZERO}, {K.NO_TANGENT})(_second)
_add.register({K.ZERO}, {K.ZERO})(_first)
_add.register(ZEROS, VALUES)(_second)
_add.register(VALUES, ZEROS)(_first)


@_add.register({K.THUNK}, VALUES)
def _add_force_left(a, b):
    return add(a.unthunk(), b)


@_add.register({K.STRUCTURAL, K.NATURAL}, {K.THUNK})
def _add_force_right(a, b):
    return add(a, b.unthunk())


_add.register({K.STRUCTURAL}, {K.STRUCTURAL})(add_structural)


@_add.register({K.STRUCTURAL}, {K.NATURAL})
def _add_tangent_to_primal(a, b):
    return _structural_add_to_primal(b, a, debug=debug_mode())


@_add.register({K.NATURAL}, {K.STRUCTURAL})
def _add_primal_to_tangent(a, b):
    return _structural_add_to_primal(a, b, debug=debug_mode())


@_add.register({K.NATURAL}, {K.NATURAL})
def _add_natural(a, b):
    return a + b


# ---------------------------------------------------------- multiplication

# Zero-likes annihilate a missing derivative; anything else propagates it.
_mul.register({K.NOT_IMPLEMENTED}, ZEROS)(_second)
_mul.register(ZEROS, {K.NOT_IMPLEMENTED})(_first)
_mul.register({K.NOT_IMPLEMENTED}, VALUES | {K.NOT_IMPLEMENTED})(_first)
_mul.register(VALUES, {K.NOT_IMPLEMENTED})(_second)

# ZeroTangent wins over NoTangent.
_mul.register({K.NO_TANGENT}, {K.NO_TANGENT})(_first)
_mul.register({K.NO_TANGENT}, {K.ZERO})(_second)
_mul.register({K.ZERO}, ZEROS)(_first)
_mul.register(ZEROS, VALUES)(_first)
_mul.register(VALUES, ZEROS)(_second)


@_mul.register({K.THUNK}, VALUES)
def _mul_force_left(a, b):
    return multiply(a.unthunk(), b)


@_mul.register({K.STRUCTURAL, K.NATURAL}, {K.THUNK})
def _mul_force_right(a, b):
    return multiply(a, b.unthunk())


@_mul.register({K.STRUCTURAL}, {K.STRUCTURAL})
def _mul_structural(a, b):
    raise TangentUsageError(
        "Cannot multiply two structural tangents; scale one by a natural value instead"
    )


@_mul.register({K.STRUCTURAL}, {K.NATURAL})
def _mul_scale_right(a, b):
    return a.map(lambda v: multiply(v, b))


@_mul.register({K.NATURAL}, {K.STRUCTURAL})
def _mul_scale_left(a, b):
    return b.map(lambda v: multiply(a, v))


@_mul.register({K.NATURAL}, {K.NATURAL})
def _mul_natural(a, b):
    return a * b


# ------------------------------------------------------------------- dot

_dot.register({K.NOT_IMPLEMENTED}, ZEROS)(_second)
_dot.register(ZEROS, {K.NOT_IMPLEMENTED})(_first)
_dot.register({K.NOT_IMPLEMENTED}, VALUES | {K.NOT_IMPLEMENTED})(_first)
_dot.register(VALUES, {K.NOT_IMPLEMENTED})(_second)
_dot.register({K.NO_TANGENT}, {K.NO_TANGENT})(_first)
_dot.register({K.NO_TANGENT}, {K.ZERO})(_second)
_dot.register({K.ZERO}, ZEROS)(_first)
_dot.register(ZEROS, VALUES)(_first)
_dot.register(VALUES, ZEROS)(_second)


@_dot.register({K.THUNK}, VALUES)
def _dot_force_left(a, b):
    return dot(a.unthunk(), b)


@_dot.register({K.STRUCTURAL, K.NATURAL}, {K.THUNK})
def _dot_force_right(a, b):
    return dot(a, b.unthunk())


@_dot.register({K.STRUCTURAL}, {K.STRUCTURAL})
def _dot_structural(a, b):
    if a.primal_type != b.primal_type:
        raise StructuralTypeMismatchError(a.primal_type, b.primal_type, operation="dot")
    if a.kind is BackingKind.TUPLE:
        pairs = zip(a.values(), b.values())
    else:
        other = b.backing
        pairs = ((v, other[k]) for k, v in a.items() if k in other)
    total = ZeroTangent()
    for x, y in pairs:
        total = add(total, dot(x, y))
    return total


@_dot.register({K.STRUCTURAL}, {K.NATURAL})
@_dot.register({K.NATURAL}, {K.STRUCTURAL})
def _dot_mixed(a, b):
    raise TangentUsageError(
        f"dot between a structural tangent and a {type(b if isinstance(a, Tangent) else a).__name__} "
        "is not defined"
    )


@_dot.register({K.NATURAL}, {K.NATURAL})
def _dot_natural(a, b):
    if isinstance(a, torch.Tensor) or isinstance(b, torch.Tensor):
        return torch.sum(torch.as_tensor(a).conj() * torch.as_tensor(b))
    if scipy.sparse.issparse(a):
        return a.conjugate().multiply(b).sum()
    if scipy.sparse.issparse(b):
        return b.multiply(np.conj(a)).sum()
    if np.ndim(a) == 0 and np.ndim(b) == 0 and not isinstance(a, np.ndarray) and not isinstance(b, np.ndarray):
        return conj(a) * b
    return np.vdot(np.asarray(a), np.asarray(b))


# ----------------------------------------------------------- public API

def add(a: Any, b: Any) -> Any:
    """``a + b`` for any two tangents (or a primal and a tangent).

    Example:
        >>> add(ZeroTangent(), 3.0)
        3.0
        >>> add(Tangent(Foo, y=1.5), Tangent(Foo, x=2.5))
        Tangent[Foo](y=1.5, x=2.5)
    """
    return _add(a, b)


def multiply(a: Any, b: Any) -> Any:
    """``a * b``, where at most one side is a structural tangent."""
    return _mul(a, b)


def dot(a: Any, b: Any) -> Any:
    """Inner product of two tangents, conjugating the left operand.

    Structural tangents sum the inner products of the fields present in
    both; a field stored on one side only contributes zero.
    """
    return _dot(a, b)


def negate(x: Any) -> Any:
    kind = kind_of(x)
    if kind in (K.NOT_IMPLEMENTED, K.NO_TANGENT, K.ZERO):
        return x
    if kind is K.THUNK:
        return Thunk(lambda: negate(x.unthunk()))
    if kind is K.STRUCTURAL:
        return x.map(negate)
    return -x


def subtract(a: Any, b: Any) -> Any:
    """``a - b``.

    Raises:
        MissingDerivativeError: either operand is a ``NotImplementedTangent``.
    """
    for x in (a, b):
        if isinstance(x, NotImplementedTangent):
            raise x.error()
    return add(a, negate(b))


def divide(a: Any, b: Any) -> Any:
    """``a / b`` for a tangent ``a`` and a natural divisor ``b``.

    A zero-like divided by anything is that zero-like, even when the
    divisor is a missing derivative.
    """
    if isinstance(a, AbstractZero):
        return a
    for x in (a, b):
        if isinstance(x, NotImplementedTangent):
            raise x.error()
    if isinstance(b, AbstractZero):
        raise TangentUsageError(f"Cannot divide by {b!r}")
    if isinstance(b, AbstractThunk):
        return divide(a, b.unthunk())
    if isinstance(b, Tangent):
        raise TangentUsageError("Cannot divide by a structural tangent")
    if isinstance(a, AbstractThunk):
        return Thunk(lambda: divide(a.unthunk(), b))
    if isinstance(a, Tangent):
        return a.map(lambda v: divide(v, b))
    return a / b


def muladd(a: Any, b: Any, c: Any) -> Any:
    """``a * b + c``, skipping the product when either factor is a zero-like."""
    if isinstance(a, AbstractZero) or isinstance(b, AbstractZero):
        return c
    return add(multiply(a, b), c)


def conj(x: Any) -> Any:
    """Complex conjugate of a tangent; real values are returned unchanged."""
    if isinstance(x, AbstractTangent):
        return x.conj()
    if isinstance(x, torch.Tensor):
        return x.conj() if x.is_complex() else x
    if scipy.sparse.issparse(x):
        return x.conjugate() if np.iscomplexobj(x.data) else x
    if isinstance(x, (np.ndarray, np.generic)):
        return np.conj(x) if np.iscomplexobj(x) else x
    if isinstance(x, complex):
        return x.conjugate()
    if hasattr(x, "conj"):
        return x.conj()
    return x


def transpose(x: Any) -> Any:
    """Swap the last two axes; scalars and vectors are returned unchanged."""
    if isinstance(x, AbstractTangent):
        return x.transpose()
    if isinstance(x, torch.Tensor):
        return x.mT if x.ndim >= 2 else x
    if scipy.sparse.issparse(x):
        return x.T
    if isinstance(x, np.ndarray):
        return np.swapaxes(x, -1, -2) if x.ndim >= 2 else x
    if hasattr(x, "transpose"):
        return x.transpose()
    return x


def adjoint(x: Any) -> Any:
    """Conjugate transpose."""
    if isinstance(x, AbstractTangent):
        return x.adjoint()
    return transpose(conj(x))


def add_to_primal(primal: Any, tangent: Any, config: Optional[TangentConfig] = None) -> Any:
    """Move ``primal`` along ``tangent``.

    A structural tangent rebuilds the primal from its updated fields (see
    ``register_constructor``); with debug mode on, a failed rebuild raises
    ``PrimalAdditionFailedError``. Any other tangent is added natively.
    """
    cfg = resolve_config(config)
    if isinstance(tangent, Tangent):
        return _structural_add_to_primal(primal, tangent, debug=cfg.debug_mode)
    return add(primal, tangent)


_DISPATCHERS: Dict[str, KindDispatcher] = {"+": _add, "*": _mul, "dot": _dot}
_BY_FUNCTION = {add: "+", multiply: "*", dot: "dot"}


def _dispatcher(op: Union[str, Callable[..., Any], KindDispatcher]) -> KindDispatcher:
    if isinstance(op, KindDispatcher):
        return op
    name = _BY_FUNCTION.get(op, op)
    try:
        return _DISPATCHERS[name]
    except (KeyError, TypeError):
        raise ValueError(f"Unknown operator {op!r}; expected one of {sorted(_DISPATCHERS)}") from None


def find_ambiguities(op) -> List[Tuple[TangentKind, TangentKind, Tuple[Handler, ...]]]:
    """Kind pairs of ``op`` ("+", "*", "dot" or the function) with more than one handler."""
    return _dispatcher(op).ambiguities()


def find_missing(op) -> List[Tuple[TangentKind, TangentKind]]:
    """Kind pairs of ``op`` with no handler."""
    return _dispatcher(op).missing()
