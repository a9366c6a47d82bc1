"""Structural tangents: tangents that mirror the fields of a primal type."""

from __future__ import annotations
import dataclasses
import inspect
import logging
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import scipy.sparse
import torch

from ..errors import FieldMismatchError, PrimalAdditionFailedError, StructuralTypeMismatchError, TangentUsageError
from ..tangent import AbstractTangent
from .thunks import unthunk
from .zero import ZeroTangent

logger = logging.getLogger(__name__)


class BackingKind(Enum):
    """How a structural tangent stores its fields."""
    TUPLE = "tuple"
    NAMED = "named"
    MAPPING = "mapping"


def _is_namedtuple_type(P: Any) -> bool:
    return isinstance(P, type) and issubclass(P, tuple) and hasattr(P, "_fields")


def expected_backing_kind(P: Any) -> Optional[BackingKind]:
    """Backing kind a tangent of ``P`` must use; ``None`` for ``typing.Any``."""
    if P is Any:
        return None
    if isinstance(P, type):
        if issubclass(P, tuple) and not _is_namedtuple_type(P):
            return BackingKind.TUPLE
        if issubclass(P, Mapping):
            return BackingKind.MAPPING
    return BackingKind.NAMED


@lru_cache(maxsize=None)
def primal_fields(P: type) -> Tuple[str, ...]:
    """Field names of a primal type, in declared order.

    Dataclasses and namedtuples declare their fields; classes with
    ``__slots__`` use their slots; any other class is assumed to store
    its constructor parameters under the same names.
    """
    if dataclasses.is_dataclass(P):
        return tuple(f.name for f in dataclasses.fields(P))
    if _is_namedtuple_type(P):
        return tuple(P._fields)
    slots = []
    for klass in reversed(P.__mro__):
        declared = klass.__dict__.get("__slots__", ())
        if isinstance(declared, str):
            declared = (declared,)
        slots.extend(s for s in declared if s not in ("__dict__", "__weakref__") and s not in slots)
    if slots:
        return tuple(slots)
    try:
        params = inspect.signature(P).parameters.values()
    except (TypeError, ValueError) as err:
        raise TangentUsageError(f"Cannot determine the fields of {P!r}") from err
    kinds = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    return tuple(p.name for p in params if p.kind in kinds)


def backing(x: Any) -> Union[tuple, Mapping[Any, Any]]:
    """Field data of a structural tangent, or a primal destructured into its fields.

    Tuples and mappings are returned as they are; namedtuples, dataclasses
    and other structs become a name -> value mapping in declared order.
    """
    if isinstance(x, Tangent):
        return x.backing
    if isinstance(x, tuple):
        if _is_namedtuple_type(type(x)):
            return dict(zip(x._fields, x))
        return x
    if isinstance(x, Mapping):
        return x
    if isinstance(x, (np.ndarray, torch.Tensor, np.generic, int, float, complex)) or scipy.sparse.issparse(x):
        raise TangentUsageError(f"backing can only be used on struct types, not {type(x).__name__}")
    names = primal_fields(type(x))
    try:
        return {name: getattr(x, name) for name in names}
    except AttributeError as err:
        raise TangentUsageError(
            f"{type(x).__name__} does not store its fields {names} as attributes"
        ) from err


_constructors: Dict[type, Callable[[Any], Any]] = {}


def register_constructor(P: type):
    """Register how to rebuild a ``P`` from its fields after ``primal + tangent``.

    The default calls ``P(*fields)`` in declared order. Types that keep an
    invariant between fields (a cached norm, a derived length) should
    register a constructor that restores it.

    Example:
        >>> @register_constructor(Circle)
        ... def _(fields):
        ...     return Circle(radius=fields["radius"])
    """
    def decorator(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
        _constructors[P] = fn
        return fn
    return decorator


def construct(P: type, fields: Union[tuple, Mapping[Any, Any]]) -> Any:
    """Build a ``P`` from field values (ordered for tuples, named otherwise)."""
    custom = _constructors.get(P)
    if custom is not None:
        return custom(fields)
    kind = expected_backing_kind(P)
    if kind is BackingKind.TUPLE:
        return fields if P is tuple else P(fields)
    if kind is BackingKind.MAPPING:
        return P(fields)
    names = primal_fields(P)
    if len(fields) != len(names) or any(name not in fields for name in names):
        raise TangentUsageError(
            f"Unmatched fields. Type: {names}, fields: {tuple(fields)}"
        )
    return P(*(fields[name] for name in names))


def elementwise_add(a: Union[tuple, Mapping[Any, Any]], b: Union[tuple, Mapping[Any, Any]]):
    """Add two backings field by field; a field missing on one side is a hard zero."""
    from ..arithmetic import add
    if isinstance(a, tuple) and isinstance(b, tuple):
        if len(a) != len(b):
            raise TangentUsageError(f"Cannot add tuple backings of length {len(a)} and {len(b)}")
        return tuple(add(x, y) for x, y in zip(a, b))
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        merged = dict(a)
        for key, value in b.items():
            merged[key] = add(merged[key], value) if key in merged else value
        return merged
    raise TangentUsageError(
        f"Cannot add a {type(a).__name__} backing to a {type(b).__name__} backing"
    )


class Tangent(AbstractTangent):
    """Tangent of a struct, namedtuple, tuple or mapping, mirroring its fields.

    ``primal_type`` is the type this is a tangent for. The fields present
    are a subset of the primal's; any field not present is treated as
    ``ZeroTangent()``. Use ``canonicalize`` to get every field explicitly.

    How the fields are stored follows the primal: plain tuples use an
    ordered backing (positional arguments), mappings use a key-value
    backing (a single mapping argument), and everything else, including
    namedtuples and dataclasses, uses a named backing (keyword arguments).
    Passing ``typing.Any`` as the primal type allows any backing.

    Example:
        >>> @dataclass
        ... class Foo:
        ...     x: float
        ...     y: float
        >>> Tangent(Foo, y=1.5) + Tangent(Foo, x=2.5)
        Tangent[Foo](y=1.5, x=2.5)
        >>> Foo(3.5, 1.5) + Tangent(Foo, x=2.5)
        Foo(x=6.0, y=1.5)

    Named fields can be read as attributes (``t.x``); reading a field of
    the primal that is not stored gives ``ZeroTangent()``. Fields whose
    names clash with methods of this class are reachable with ``t["name"]``.
    """

    __slots__ = ("_primal_type", "_backing", "_kind")

    def __init__(self, primal_type: Any, *args: Any, **kwargs: Any):
        if args and kwargs:
            raise TypeError("Tangent takes either positional or keyword fields, not both")
        expected = expected_backing_kind(primal_type)
        if kwargs:
            kind, data = BackingKind.NAMED, dict(kwargs)
        elif len(args) == 1 and isinstance(args[0], Mapping) and expected in (BackingKind.MAPPING, None):
            kind, data = BackingKind.MAPPING, dict(args[0])
        elif not args:
            kind = expected or BackingKind.NAMED
            data = () if kind is BackingKind.TUPLE else {}
        else:
            kind, data = BackingKind.TUPLE, tuple(args)
        self._init(primal_type, kind, data)

    def _init(self, primal_type: Any, kind: BackingKind, data: Union[tuple, Dict[Any, Any]]) -> None:
        expected = expected_backing_kind(primal_type)
        if expected is not None and expected is not kind:
            raise TangentUsageError(
                f"Tangent for the primal {getattr(primal_type, '__name__', primal_type)} should be "
                f"backed by a {expected.value} type, not by a {kind.value} type."
            )
        object.__setattr__(self, "_primal_type", primal_type)
        object.__setattr__(self, "_kind", kind)
        object.__setattr__(self, "_backing", data)

    @classmethod
    def from_backing(cls, primal_type: Any, data: Union[tuple, Mapping[Any, Any]]) -> 'Tangent':
        """Wrap existing field data without re-parsing arguments."""
        if isinstance(data, tuple):
            kind = BackingKind.TUPLE
            data = tuple(data)
        else:
            kind = expected_backing_kind(primal_type)
            if kind is None:
                kind = BackingKind.NAMED if all(isinstance(k, str) for k in data) else BackingKind.MAPPING
            data = dict(data)
        self = cls.__new__(cls)
        self._init(primal_type, kind, data)
        return self

    @property
    def primal_type(self) -> Any:
        return self._primal_type

    @property
    def kind(self) -> BackingKind:
        return self._kind

    @property
    def backing(self) -> Union[tuple, Mapping[Any, Any]]:
        if self._kind is BackingKind.TUPLE:
            return self._backing
        return MappingProxyType(self._backing)

    def __reduce__(self):
        return (_restore, (self._primal_type, self._kind, self._backing))

    def __setattr__(self, name, value):
        raise AttributeError("Tangent is immutable")

    def _field_names(self) -> Optional[Tuple[str, ...]]:
        if self._primal_type is Any or self._kind is not BackingKind.NAMED:
            return None
        try:
            return primal_fields(self._primal_type)
        except TangentUsageError:
            return None

    def __getattr__(self, name: str):
        if name.startswith("_") or self._kind is not BackingKind.NAMED:
            raise AttributeError(name)
        if name in self._backing:
            return unthunk(self._backing[name])
        fields = self._field_names()
        if fields is None or name in fields:
            return ZeroTangent()
        raise AttributeError(
            f"{getattr(self._primal_type, '__name__', self._primal_type)} has no field {name!r}"
        )

    def __getitem__(self, key):
        if self._kind is BackingKind.TUPLE:
            return unthunk(self._backing[key])
        if self._kind is BackingKind.MAPPING:
            return unthunk(self._backing.get(key, ZeroTangent()))
        if isinstance(key, int):
            return unthunk(list(canonicalize(self)._backing.values())[key])
        if key in self._backing:
            return unthunk(self._backing[key])
        fields = self._field_names()
        if fields is None or key in fields:
            return ZeroTangent()
        raise KeyError(key)

    def __iter__(self):
        if self._kind is BackingKind.MAPPING:
            return iter(self._backing)
        if self._kind is BackingKind.TUPLE:
            return iter(self._backing)
        return iter(self._backing.values())

    def __len__(self) -> int:
        return len(self._backing)

    def __contains__(self, key) -> bool:
        return key in self._backing

    def keys(self):
        if self._kind is BackingKind.TUPLE:
            return range(len(self._backing))
        return self._backing.keys()

    def values(self):
        if self._kind is BackingKind.TUPLE:
            return self._backing
        return self._backing.values()

    def items(self):
        if self._kind is BackingKind.TUPLE:
            return enumerate(self._backing)
        return self._backing.items()

    def map(self, f: Callable[[Any], Any]) -> 'Tangent':
        """Apply ``f`` to every stored field.

        ``f`` is assumed linear, so fields that are not stored (implicit
        zeros) are left out.
        """
        if self._kind is BackingKind.TUPLE:
            data = tuple(f(v) for v in self._backing)
        else:
            data = {k: f(v) for k, v in self._backing.items()}
        out = Tangent.__new__(Tangent)
        out._init(self._primal_type, self._kind, data)
        return out

    def conj(self) -> 'Tangent':
        from ..arithmetic import conj
        return self.map(conj)

    def iszero(self) -> bool:
        from ..operations import iszero
        return all(iszero(v) for v in self.values())

    def __eq__(self, other):
        if not isinstance(other, Tangent):
            return NotImplemented
        if self._primal_type != other._primal_type or self._kind is not other._kind:
            return False
        if self._kind is BackingKind.TUPLE:
            return len(self._backing) == len(other._backing) and all(
                values_equal(a, b) for a, b in zip(self._backing, other._backing)
            )
        keys = list(self._backing) + [k for k in other._backing if k not in self._backing]
        zero = ZeroTangent()
        return all(
            values_equal(self._backing.get(k, zero), other._backing.get(k, zero)) for k in keys
        )

    def __hash__(self) -> int:
        if self._kind is BackingKind.TUPLE:
            return hash((self._primal_type, self._kind, self._backing))
        # absent fields are zero, so stored zeros must not change the hash
        stored = frozenset(
            (k, v) for k, v in self._backing.items() if not isinstance(v, ZeroTangent)
        )
        return hash((self._primal_type, self._kind, stored))

    def __repr__(self) -> str:
        name = getattr(self._primal_type, "__qualname__", None) or repr(self._primal_type)
        if self._kind is BackingKind.TUPLE:
            body = ", ".join(repr(v) for v in self._backing)
        elif self._kind is BackingKind.MAPPING:
            body = repr(self._backing) if self._backing else ""
        else:
            body = ", ".join(f"{k}={v!r}" for k, v in self._backing.items())
        return f"Tangent[{name}]({body})"


def _restore(primal_type: Any, kind: BackingKind, data: Union[tuple, Dict[Any, Any]]) -> Tangent:
    self = Tangent.__new__(Tangent)
    self._init(primal_type, kind, data)
    return self


def canonicalize(tangent: Tangent) -> Tangent:
    """Return the equivalent tangent with every field of the primal present.

    Missing fields are filled with ``ZeroTangent()`` and fields are put in
    declared order. Tuple- and mapping-backed tangents, and tangents of
    ``typing.Any``, are already canonical.

    Raises:
        FieldMismatchError: the tangent has fields the primal type does not.
    """
    if tangent.kind is not BackingKind.NAMED or tangent.primal_type is Any:
        return tangent
    names = primal_fields(tangent.primal_type)
    stored = tangent._backing
    if any(k not in names for k in stored):
        raise FieldMismatchError(tangent.primal_type, tuple(stored), names)
    if tuple(stored) == names:
        return tangent
    zero = ZeroTangent()
    return Tangent.from_backing(tangent.primal_type, {n: stored.get(n, zero) for n in names})


def add_structural(a: Tangent, b: Tangent) -> Tangent:
    """Sum two structural tangents of the same primal type, field by field."""
    if a.primal_type != b.primal_type:
        raise StructuralTypeMismatchError(a.primal_type, b.primal_type)
    if a.kind is not b.kind:
        raise TangentUsageError(
            f"Cannot add a {a.kind.value}-backed tangent to a {b.kind.value}-backed tangent"
        )
    return Tangent.from_backing(a.primal_type, elementwise_add(a._backing, b._backing))


def add_to_primal(primal: Any, tangent: Tangent, debug: bool = False) -> Any:
    """Move ``primal`` along ``tangent``, rebuilding it with its constructor.

    With ``debug`` set, a failing reconstruction is re-raised as
    ``PrimalAdditionFailedError`` explaining how to fix it.
    """
    P = tangent.primal_type
    if P is not Any and not isinstance(primal, P):
        raise StructuralTypeMismatchError(type(primal), P)
    target = type(primal)
    if tangent.kind is BackingKind.TUPLE:
        fields = tuple(primal)
    elif tangent.kind is BackingKind.MAPPING:
        fields = dict(primal)
    else:
        fields = backing(primal)
    net = elementwise_add(fields, tangent._backing)
    if not debug:
        return construct(target, net)
    try:
        return construct(target, net)
    except Exception as err:
        logger.debug("reconstructing %s after addition failed: %r", target.__name__, err)
        raise PrimalAdditionFailedError(primal, tangent, err) from err


def values_equal(a: Any, b: Any) -> bool:
    """Equality of two field values that tolerates arrays and tensors."""
    if a is b:
        return True
    a, b = unthunk(a), unthunk(b)
    if isinstance(a, torch.Tensor) or isinstance(b, torch.Tensor):
        return isinstance(a, torch.Tensor) and isinstance(b, torch.Tensor) and torch.equal(a, b)
    if scipy.sparse.issparse(a) or scipy.sparse.issparse(b):
        if not (scipy.sparse.issparse(a) and scipy.sparse.issparse(b)) or a.shape != b.shape:
            return False
        return (a != b).nnz == 0
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        if isinstance(a, AbstractTangent) or isinstance(b, AbstractTangent):
            return False
        return np.array_equal(np.asarray(a), np.asarray(b))
    result = a == b
    if isinstance(result, (bool, np.bool_)):
        return bool(result)
    return bool(np.all(result))
