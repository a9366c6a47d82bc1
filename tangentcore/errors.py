"""Exception types raised by tangentcore."""

from __future__ import annotations
from typing import Any, Optional, Sequence, Tuple


class TangentError(Exception):
    """Base class for every error raised by tangentcore."""


class MissingDerivativeError(TangentError):
    """A ``NotImplementedTangent`` was consumed in a way that needs its value.

    Carries the module, source location and note recorded when the
    missing derivative was created, so the offending rule can be found
    without a debugger.
    """

    def __init__(self, module: Optional[str], source: Any, info: Optional[str]):
        self.module = module
        self.source = source
        self.info = info
        super().__init__(self._message())

    def _message(self) -> str:
        msg = f"tangent not implemented @ {self.module} {self.source}"
        if self.info is not None:
            msg += f"\nInfo: {self.info}"
        return msg

    @classmethod
    def from_tangent(cls, tangent) -> 'MissingDerivativeError':
        return cls(tangent.module, tangent.source, tangent.info)


class TangentUsageError(TangentError, ValueError):
    """A tangent was used in a way that is never valid."""


class StructuralTypeMismatchError(TangentUsageError):
    """Two structural tangents (or a primal and a tangent) disagree on the primal type."""

    def __init__(self, left_type: Any, right_type: Any, operation: str = "+"):
        self.left_type = left_type
        self.right_type = right_type
        self.operation = operation
        super().__init__(
            f"Cannot apply {operation!r} to a tangent of {_type_name(left_type)} "
            f"and a tangent of {_type_name(right_type)}"
        )


class FieldMismatchError(TangentUsageError):
    """A structural tangent names fields its primal type does not have."""

    def __init__(self, primal_type: Any, tangent_fields: Sequence[str], primal_fields: Sequence[str]):
        self.primal_type = primal_type
        self.tangent_fields = tuple(tangent_fields)
        self.primal_fields = tuple(primal_fields)
        super().__init__(
            "Tangent fields do not match primal fields.\n"
            f"Tangent fields: {self.tangent_fields}. "
            f"Primal ({_type_name(primal_type)}) fields: {self.primal_fields}"
        )


class DimensionMismatchError(TangentUsageError):
    """A cotangent cannot be reshaped onto the primal's axes."""

    def __init__(self, expected: Tuple[int, ...], actual: Tuple[int, ...]):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"variable with shape(x) == {self.expected} cannot have a gradient "
            f"with shape(dx) == {self.actual}"
        )


class PrimalAdditionFailedError(TangentUsageError):
    """Rebuilding a primal from ``primal + structural tangent`` failed."""

    def __init__(self, primal: Any, tangent: Any, original: BaseException):
        self.primal = primal
        self.tangent = tangent
        self.original = original
        P = type(primal)
        fields = ", ".join(str(k) for k in tangent.keys())
        super().__init__(
            f"Could not construct {P.__name__} after addition.\n"
            "This probably means the constructor does not accept the fields in declared "
            "order, or the type enforces an invariant between its fields.\n"
            f"Either accept {P.__name__}({fields}) in the constructor, or register a "
            f"reconstruction with tangentcore.register_constructor({P.__name__}).\n"
            f"Original exception: {original!r}"
        )


class MutationContractViolation(TangentError):
    """An ``InplaceableThunk``'s in-place path disagrees with its value form."""

    def __init__(self, ithunk: Any, expected: Any, actual: Any, message: Optional[str] = None):
        self.ithunk = ithunk
        self.expected = expected
        self.actual = actual
        if message is None:
            message = "in-place accumulation does not match the value-form accumulation."
        super().__init__(
            f"{message}\nithunk = {ithunk!r}\nexpected (value form) = {expected!r}\n"
            f"actual (in place) = {actual!r}"
        )


class BadInplaceError(MutationContractViolation):
    """The in-place function returned something other than the accumulator."""

    def __init__(self, ithunk: Any, accumuland: Any, returned_value: Any):
        self.accumuland = accumuland
        self.returned_value = returned_value
        super().__init__(
            ithunk,
            accumuland,
            returned_value,
            message="`accumulate(accumuland, ithunk)` did not return the updated accumuland.",
        )


class ExternalizationError(TangentError):
    """A tangent has no concrete primal-compatible representation."""


class MutateThunkError(TangentError, TypeError):
    """Item assignment on a thunk."""

    def __init__(self):
        super().__init__("Tried to mutate a thunk, this is not supported. `unthunk` it first.")


class AmbiguousDispatchError(TangentError):
    """Two arithmetic handlers were declared for the same pair of tangent kinds."""


class RuleSignatureError(TangentError, TypeError):
    """``frule``/``rrule`` was called with arguments no rule lookup can accept."""


class AmbiguousRuleError(TangentError):
    """More than one registered rule is most specific for a call."""

    def __init__(self, f: Any, arg_types: Tuple[type, ...], candidates: Sequence[Any]):
        self.f = f
        self.arg_types = tuple(arg_types)
        self.candidates = list(candidates)
        names = ", ".join(repr(c) for c in self.candidates)
        super().__init__(
            f"Ambiguous rules for {getattr(f, '__name__', f)!s} with argument types "
            f"{tuple(t.__name__ for t in self.arg_types)}: {names}"
        )


def _type_name(t: Any) -> str:
    return getattr(t, "__qualname__", None) or getattr(t, "__name__", None) or repr(t)
