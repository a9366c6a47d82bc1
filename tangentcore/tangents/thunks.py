"""Deferred tangents: ``Thunk`` and ``InplaceableThunk``."""

from __future__ import annotations
from abc import abstractmethod
from typing import Any, Callable

import numpy as np

from ..errors import MutateThunkError
from ..tangent import AbstractTangent, caller_location


class AbstractThunk(AbstractTangent):
    """Supertype for tangents whose computation is deferred.

    Linear operators that can stay lazy (``conj``, ``adjoint``,
    ``transpose``) return new thunks. Everything that needs a value
    (indexing, iteration, reductions, NumPy conversion) forces one layer.
    """

    __slots__ = ()

    @abstractmethod
    def unthunk(self) -> Any:
        """Force one layer of deferral."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __iter__(self):
        return iter(self.unthunk())

    def __bool__(self) -> bool:
        return bool(self.unthunk())

    def __len__(self) -> int:
        return len(self.unthunk())

    def __getitem__(self, key):
        return self.unthunk()[key]

    def __setitem__(self, key, value):
        raise MutateThunkError()

    def __eq__(self, other):
        return self.unthunk() == unthunk(other)

    __hash__ = None

    def __array__(self, dtype=None, copy=None):
        return np.asarray(self.unthunk(), dtype=dtype)

    def conj(self) -> 'Thunk':
        from ..arithmetic import conj
        return Thunk(lambda: conj(self.unthunk()))

    def adjoint(self) -> 'Thunk':
        from ..arithmetic import adjoint
        return Thunk(lambda: adjoint(self.unthunk()))

    def transpose(self) -> 'Thunk':
        from ..arithmetic import transpose
        return Thunk(lambda: transpose(self.unthunk()))

    @property
    def T(self) -> 'Thunk':
        return self.transpose()

    @property
    def real(self):
        return self.unthunk().real

    @property
    def imag(self):
        return self.unthunk().imag

    def sum(self, *args, **kwargs):
        value = self.unthunk()
        if hasattr(value, "sum"):
            return value.sum(*args, **kwargs)
        return value

    def reshape(self, *shape):
        return self.unthunk().reshape(*shape)


class Thunk(AbstractThunk):
    """A deferred computation of a tangent.

    Wraps a zero-argument callable that returns a tangent. ``unthunk``
    calls it; nothing else is evaluated until a value is needed. A rule
    returning several partial derivatives should wrap each expensive one
    so that only the ones actually consumed get computed::

        pullback = lambda dy: (NoTangent(), Thunk(lambda: dy @ B.T), Thunk(lambda: A.T @ dy))

    If only the first is added into an accumulator, the second product is
    never formed; ``ZeroTangent() * thunk`` does not force it either.

    Do not wrap work that is as cheap as building the closure itself,
    e.g. scalar products.

    The creation site is recorded, and an exception raised while forcing
    gets a note pointing back at it, since thunks are usually forced far
    from the rule that built them.

    Args:
        f: Zero-argument callable producing the tangent.
        stacklevel: Which caller frame to record as the creation site.
    """

    __slots__ = ("f", "origin")

    def __init__(self, f: Callable[[], Any], *, stacklevel: int = 1):
        if not callable(f):
            raise TypeError(f"Thunk requires a zero-argument callable, got {type(f).__name__}")
        self.f = f
        self.origin = caller_location(stacklevel)

    def unthunk(self) -> Any:
        try:
            return self.f()
        except Exception as err:
            err.add_note(f"Raised while forcing a thunk created at {self.origin}")
            raise

    def __repr__(self) -> str:
        name = getattr(self.f, "__qualname__", None) or repr(self.f)
        if len(name) > 80:
            name = name[:77] + "..."
        return f"Thunk({name})"


class InplaceableThunk(AbstractThunk):
    """A ``Thunk`` that also knows how to add itself into an accumulator in place.

    ``add_inplace(dx)`` must behave like ``dx += val`` and return ``dx``,
    but should do it more efficiently than materialising ``val`` first
    (otherwise a plain ``Thunk`` is enough). ``accumulate`` uses it when
    the accumulator can be mutated; every other operation treats this
    exactly like its ``val`` thunk and loses the in-place ability.

    Args:
        add_inplace: Callable mutating and returning its argument.
        val: The value form, a ``Thunk`` (a bare callable is wrapped).
    """

    __slots__ = ("add_inplace", "val")

    def __init__(self, add_inplace: Callable[[Any], Any], val: Any):
        if not callable(add_inplace):
            raise TypeError("InplaceableThunk requires a callable add_inplace")
        if not isinstance(val, Thunk):
            if not callable(val):
                raise TypeError(f"InplaceableThunk val must be a Thunk, got {type(val).__name__}")
            val = Thunk(val, stacklevel=2)
        self.add_inplace = add_inplace
        self.val = val

    def unthunk(self) -> Any:
        return self.val.unthunk()

    def __repr__(self) -> str:
        name = getattr(self.add_inplace, "__qualname__", None) or repr(self.add_inplace)
        return f"InplaceableThunk({name}, {self.val!r})"


def unthunk(x: Any) -> Any:
    """Remove one layer of deferral from ``x``; identity on everything else."""
    if isinstance(x, AbstractThunk):
        return x.unthunk()
    return x


def thunk(f: Callable[[], Any]) -> Thunk:
    """Decorator form of ``Thunk``.

    Example:
        >>> @thunk
        ... def dA():
        ...     return dy @ B.T
        >>> isinstance(dA, Thunk)
        True
    """
    return Thunk(f, stacklevel=2)
