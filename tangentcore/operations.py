"""Conversions out of the tangent algebra: ``extern``, ``iszero``, ``zero_tangent``."""

from __future__ import annotations
from numbers import Number
from typing import Any

import numpy as np
import scipy.sparse
import torch

from .errors import ExternalizationError
from .linalg import StructuredMatrix
from .tangent import AbstractTangent
from .tangents.notimplemented import NotImplementedTangent
from .tangents.structural import BackingKind, Tangent, backing
from .tangents.thunks import AbstractThunk
from .tangents.zero import AbstractZero, NoTangent


def extern(x: Any) -> Any:
    """Convert a tangent to plain values, recursively.

    Thunks are forced until a value remains, structural tangents become
    tuples or dicts of their (externed) fields, and ``ZeroTangent()``
    becomes ``False``, which acts as zero in arithmetic. Natural values
    are returned unchanged. Intended for tests and for handing results to
    code that does not know about tangents.

    Raises:
        ExternalizationError: ``x`` is a ``NoTangent`` (the derivative does
            not exist) or has no plain representation.
        MissingDerivativeError: ``x`` is, or contains, a ``NotImplementedTangent``.
    """
    if isinstance(x, NoTangent):
        raise ExternalizationError("Derivative does not exist. Cannot be converted to an external type.")
    if isinstance(x, AbstractZero):
        return False
    if isinstance(x, NotImplementedTangent):
        raise x.error()
    if isinstance(x, AbstractThunk):
        return extern(x.unthunk())
    if isinstance(x, Tangent):
        if x.kind is BackingKind.TUPLE:
            return tuple(extern(v) for v in x.values())
        return {k: extern(v) for k, v in x.items()}
    if isinstance(x, AbstractTangent):
        raise ExternalizationError(f"{type(x).__name__} has no external representation")
    if isinstance(x, (Number, np.ndarray, np.generic, torch.Tensor, StructuredMatrix)) or scipy.sparse.issparse(x):
        return x
    if isinstance(x, tuple):
        return tuple(extern(v) for v in x)
    if isinstance(x, list):
        return [extern(v) for v in x]
    if isinstance(x, dict):
        return {k: extern(v) for k, v in x.items()}
    raise ExternalizationError(
        f"Cannot externalize a {type(x).__name__}: it has no well-defined zero"
    )


def iszero(x: Any) -> bool:
    """Whether ``x`` is known to be zero without doing any arithmetic.

    Zero-likes are always zero; structural tangents are zero when every
    stored field is; thunks are never forced and count as non-zero.
    """
    if isinstance(x, AbstractZero):
        return True
    if isinstance(x, Tangent):
        return x.iszero()
    if isinstance(x, AbstractTangent):
        return False
    if isinstance(x, torch.Tensor):
        return not bool(torch.any(x != 0))
    if scipy.sparse.issparse(x):
        return x.count_nonzero() == 0
    if isinstance(x, (Number, np.ndarray, np.generic, StructuredMatrix)):
        return not np.any(np.asarray(x) != 0)
    return False


def zero_tangent(x: Any) -> Any:
    """A zero with the same layout as the primal ``x``.

    Unlike ``ZeroTangent()`` the result spells out every field (and every
    array entry), so it can seed a sum whose shape must match ``x``.
    Structural results are immutable; accumulating into them returns a
    new tangent. Array and tensor results are fresh buffers that
    ``accumulate`` may update in place.
    """
    if isinstance(x, bool) or isinstance(x, np.bool_):
        return NoTangent()
    if isinstance(x, torch.Tensor):
        return torch.zeros_like(x) if x.is_floating_point() or x.is_complex() else NoTangent()
    if isinstance(x, np.ndarray):
        if x.dtype == object:
            out = np.empty(x.shape, dtype=object)
            for index, value in np.ndenumerate(x):
                out[index] = zero_tangent(value)
            return out
        if np.issubdtype(x.dtype, np.inexact):
            return np.zeros_like(x)
        return NoTangent() if x.dtype == np.bool_ else np.zeros(x.shape)
    if isinstance(x, (Number, np.generic)):
        return type(x)(0) if isinstance(x, (float, complex, np.inexact)) else 0.0
    if scipy.sparse.issparse(x):
        return x * 0
    if isinstance(x, StructuredMatrix):
        return x * 0
    if isinstance(x, (str, type(None))):
        return NoTangent()
    if isinstance(x, tuple) and not hasattr(x, "_fields"):
        return Tangent(type(x), *(zero_tangent(v) for v in x))
    if isinstance(x, dict):
        return Tangent(type(x), {k: zero_tangent(v) for k, v in x.items()})
    fields = backing(x)
    return Tangent.from_backing(type(x), {k: zero_tangent(v) for k, v in fields.items()})
