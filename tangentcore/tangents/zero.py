"""Zero-like tangents: ``ZeroTangent`` and ``NoTangent``."""

from __future__ import annotations
from ..tangent import AbstractTangent


class AbstractZero(AbstractTangent):
    """Supertype for zero-like tangents.

    Zero-likes act like zero when added to or multiplied with other values.
    If an AD engine sees that a propagator received only zero-likes it can
    stop: propagators are linear, so the result is zero too.

    Both subclasses are stateless singletons.
    """

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls is AbstractZero:
            raise TypeError("AbstractZero cannot be instantiated; use ZeroTangent() or NoTangent()")
        # each subclass gets its own singleton
        if cls.__dict__.get("_instance") is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __reduce__(self):
        return (type(self), ())

    def __eq__(self, other) -> bool:
        return type(other) is type(self)

    def __hash__(self) -> int:
        return hash(type(self).__name__)

    def __bool__(self) -> bool:
        return False

    def __float__(self) -> float:
        return 0.0

    def __int__(self) -> int:
        return 0

    def __complex__(self) -> complex:
        return 0j

    def __iter__(self):
        yield self

    def __getitem__(self, key):
        return self

    # linear operators leave a zero unchanged
    def conj(self):
        return self

    def adjoint(self):
        return self

    def transpose(self):
        return self

    @property
    def T(self):
        return self

    @property
    def real(self):
        return self

    @property
    def imag(self):
        return self

    def reshape(self, *shape):
        return self

    def sum(self, *args, **kwargs):
        return self

    def iszero(self) -> bool:
        return True


class ZeroTangent(AbstractZero):
    """The additive identity for tangents.

    This is basically the same as ``0``. A derivative of ``ZeroTangent()``
    does not propagate through the primal function.
    """

    __slots__ = ()


class NoTangent(AbstractZero):
    """The derivative does not exist.

    This is the tangent of values that are not differentiable, such as
    integers used as indices or sizes. The only valid way to perturb such
    a value is not to change it at all, so ``NoTangent`` behaves exactly
    like ``ZeroTangent()`` in arithmetic; it only carries the extra
    semantic information. It is not a marker for a derivative that has
    not been written (see ``NotImplementedTangent``).

    Example:
        >>> def fill_rrule(config, f, x, n):
        ...     pullback = lambda dy: (NoTangent(), Thunk(lambda: dy.sum()), NoTangent())
        ...     return f(x, n), pullback
    """

    __slots__ = ()
