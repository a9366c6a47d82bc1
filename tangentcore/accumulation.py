"""Maybe-mutating accumulation of gradients (``x + y``, in place when allowed)."""

from __future__ import annotations
import logging
from typing import Any, Optional

import numpy as np
import torch

from .arithmetic import add
from .config import TangentConfig, resolve_config
from .errors import BadInplaceError, MutationContractViolation
from .tangents.thunks import AbstractThunk, InplaceableThunk, unthunk

logger = logging.getLogger(__name__)


def is_inplaceable_destination(x: Any) -> bool:
    """Whether ``x`` can safely be overwritten with a gradient sum.

    True for writeable floating-point or complex NumPy arrays (views
    included) and for floating-point or complex torch tensors that do not
    require grad. Integer and boolean arrays are excluded because gradients
    are real-valued; read-only views and everything else are excluded too.
    """
    if isinstance(x, np.ndarray):
        return bool(x.flags.writeable) and np.issubdtype(x.dtype, np.inexact)
    if isinstance(x, torch.Tensor):
        return (x.is_floating_point() or x.is_complex()) and not x.requires_grad
    return False


def _copy(x: Any) -> Any:
    if isinstance(x, torch.Tensor):
        return x.clone()
    return np.array(x, copy=True)


def _allclose(a: Any, b: Any, cfg: TangentConfig) -> bool:
    if isinstance(a, torch.Tensor) or isinstance(b, torch.Tensor):
        a, b = torch.as_tensor(a), torch.as_tensor(b)
        return a.shape == b.shape and torch.allclose(a, b.to(a.dtype), rtol=cfg.rtol, atol=cfg.atol)
    a, b = np.asarray(a), np.asarray(b)
    return a.shape == b.shape and np.allclose(a, b, rtol=cfg.rtol, atol=cfg.atol)


def _inplace_sum(x: Any, y: Any) -> Any:
    if isinstance(x, torch.Tensor):
        return x.add_(torch.as_tensor(y, dtype=x.dtype, device=x.device))
    x += y
    return x


def _can_take(x: Any, y: Any) -> bool:
    if isinstance(x, torch.Tensor):
        if isinstance(y, torch.Tensor):
            return torch.can_cast(y.dtype, x.dtype) and torch.broadcast_shapes(x.shape, y.shape) == x.shape
        return isinstance(y, (int, float, complex, np.ndarray, np.generic)) and np.shape(y) in ((), tuple(x.shape))
    if isinstance(y, (np.ndarray, np.generic, int, float, complex)):
        try:
            return np.broadcast_shapes(x.shape, np.shape(y)) == x.shape and np.can_cast(
                np.result_type(y), x.dtype, casting="same_kind"
            )
        except ValueError:
            return False
    return False


def _poison(x: Any) -> None:
    if isinstance(x, torch.Tensor):
        x.fill_(float("nan"))
    else:
        x.fill(np.nan)


def accumulate(x: Any, y: Any, *, config: Optional[TangentConfig] = None) -> Any:
    """Return ``x + y``, mutating ``x`` when it is an inplaceable destination.

    Always use the return value: the caller must own ``x`` and must not
    rely on it being mutated. An ``InplaceableThunk`` ``y`` is added through
    its in-place function when possible; any other thunk is forced.

    In debug mode (``config.debug_mode``, or the process-wide setting):

    - the in-place path of an ``InplaceableThunk`` is checked against the
      value form ``x + y.val``: returning anything other than ``x`` raises
      ``BadInplaceError`` and a different result raises
      ``MutationContractViolation``;
    - for plain array accumulation a fresh sum is returned and ``x`` is
      filled with NaN, so callers that ignore the return value fail loudly.

    Args:
        x: The accumulator.
        y: The tangent to add.
        config: Settings to use instead of the process-wide default.
    """
    cfg = resolve_config(config)
    if isinstance(y, InplaceableThunk):
        if not is_inplaceable_destination(x):
            logger.debug("accumulate: %s is not inplaceable, using the value form", type(x).__name__)
            return add(x, y.val.unthunk())
        if not cfg.debug_mode:
            return y.add_inplace(x)
        return _checked_inplace(x, y, cfg)
    if isinstance(y, AbstractThunk):
        return accumulate(x, unthunk(y), config=cfg)
    if is_inplaceable_destination(x) and _can_take(x, y):
        if cfg.debug_mode:
            result = add(_copy(x), y)
            _poison(x)
            return result
        return _inplace_sum(x, y)
    return add(x, y)


def _checked_inplace(x: Any, ithunk: InplaceableThunk, cfg: TangentConfig) -> Any:
    expected = add(_copy(x), ithunk.val.unthunk())
    returned = ithunk.add_inplace(x)
    if returned is not x:
        raise BadInplaceError(ithunk, x, returned)
    if not _allclose(expected, returned, cfg):
        raise MutationContractViolation(ithunk, expected, returned)
    logger.debug("accumulate: in-place path of %r agrees with its value form", ithunk)
    return returned
