"""Base class for tangent types defined by tangentcore."""

from __future__ import annotations
import sys
from abc import ABC
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SourceLocation:
    """File and line where a thunk or missing derivative was created."""
    filename: str
    lineno: int
    function: Optional[str] = None

    def __str__(self) -> str:
        where = f'File "{self.filename}", line {self.lineno}'
        if self.function:
            where += f", in {self.function}"
        return where


def caller_location(stacklevel: int = 1) -> SourceLocation:
    """Location of the frame ``stacklevel`` levels above the caller."""
    frame = sys._getframe(stacklevel + 1)
    code = frame.f_code
    return SourceLocation(code.co_filename, frame.f_lineno, code.co_name)


def caller_module(stacklevel: int = 1) -> Optional[str]:
    frame = sys._getframe(stacklevel + 1)
    return frame.f_globals.get("__name__")


class AbstractTangent(ABC):
    """Base class for the tangent types of this package.

    Tangents form a vector space: they can be added to each other and
    scaled. Values of pre-existing types (floats, arrays, tensors) are
    also tangents ("natural" tangents) and need no wrapper; subclasses of
    this class are the extra representations the algebra adds on top:
    zero-likes, thunks, missing derivatives and structural tangents.

    Every subclass supports:

    - ``a + b``: linearly combine two tangents
    - ``a * b``: scale a tangent by a factor
    - ``zero()``: the additive identity, ``ZeroTangent()``

    All operators route through the central dispatcher in
    ``tangentcore.arithmetic`` so that every pairing of representations
    is handled in exactly one place.
    """

    # Makes NumPy defer to the reflected operators below instead of
    # broadcasting the tangent as an object scalar.
    __array_ufunc__ = None
    __slots__ = ()

    def zero(self):
        from .tangents.zero import ZeroTangent
        return ZeroTangent()

    def conj(self):
        return self

    def __pos__(self):
        return self

    def __add__(self, other):
        from .arithmetic import add
        return add(self, other)

    def __radd__(self, other):
        from .arithmetic import add
        return add(other, self)

    def __sub__(self, other):
        from .arithmetic import subtract
        return subtract(self, other)

    def __rsub__(self, other):
        from .arithmetic import subtract
        return subtract(other, self)

    def __mul__(self, other):
        from .arithmetic import multiply
        return multiply(self, other)

    def __rmul__(self, other):
        from .arithmetic import multiply
        return multiply(other, self)

    def __truediv__(self, other):
        from .arithmetic import divide
        return divide(self, other)

    def __rtruediv__(self, other):
        from .arithmetic import divide
        return divide(other, self)

    def __neg__(self):
        from .arithmetic import negate
        return negate(self)
