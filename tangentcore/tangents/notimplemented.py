"""Marker tangent for derivatives that have not been written."""

from __future__ import annotations
from typing import Any, Optional

from ..errors import MissingDerivativeError
from ..tangent import AbstractTangent, SourceLocation, caller_location, caller_module


class NotImplementedTangent(AbstractTangent):
    """The derivative is not implemented.

    Unlike ``NoTangent`` (the derivative does not exist), this marks a
    known gap in a rule. It flows through addition and scaling so that a
    rule which implements some partials but not others stays usable, and
    it raises ``MissingDerivativeError`` as soon as anything needs its
    value: subtraction, division, iteration, ``zero``, ``adjoint``,
    numeric conversion or ``extern``.

    Multiplying by a zero-like gives that zero-like, which lets unused
    missing partials be dropped.

    Prefer ``not_implemented(info)``, which records module and source
    line automatically.
    """

    __slots__ = ("module", "source", "info")

    def __init__(self, module: Optional[str], source: Optional[SourceLocation], info: Optional[str] = None):
        self.module = module
        self.source = source
        self.info = info

    def __repr__(self) -> str:
        return f"NotImplementedTangent({self.module}, {self.source}, {self.info!r})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, NotImplementedTangent):
            return False
        return (self.module, self.source, self.info) == (other.module, other.source, other.info)

    def __hash__(self) -> int:
        return hash((self.module, self.source, self.info))

    def error(self) -> MissingDerivativeError:
        return MissingDerivativeError.from_tangent(self)

    def conj(self) -> 'NotImplementedTangent':
        return self

    def zero(self):
        raise self.error()

    def adjoint(self):
        raise self.error()

    def transpose(self):
        raise self.error()

    @property
    def T(self):
        raise self.error()

    def __iter__(self):
        raise self.error()

    def __float__(self):
        raise self.error()

    def __int__(self):
        raise self.error()

    def __complex__(self):
        raise self.error()


def not_implemented(info: Any = None) -> NotImplementedTangent:
    """Build a ``NotImplementedTangent`` stamped with the caller's module and line.

    Use it only where AD would otherwise fail, typically for one input of a
    multi-input rule whose other partials are worked out. Including a link to
    an issue about the missing tangent in ``info`` is good practice.

    Example:
        >>> def pullback(dy):
        ...     return NoTangent(), dy * cos(x), not_implemented("derivative w.r.t. order")
    """
    return NotImplementedTangent(caller_module(1), caller_location(1), None if info is None else str(info))
