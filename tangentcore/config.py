"""Process-wide settings for tangent arithmetic.

The only setting with behavioural effect is ``debug_mode``: when enabled,
in-place accumulation is checked against its value form and failures to
rebuild a primal after ``primal + tangent`` are reported with context.

Functions whose behaviour depends on the setting take an explicit
``config`` argument; passing ``None`` uses the process default below.
"""

from __future__ import annotations
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

DEBUG_ENV_VAR = "TANGENTCORE_DEBUG"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class TangentConfig:
    """Settings read at the start of debug-mode checks.

    Attributes:
        debug_mode: Enable extra invariant checking.
        rtol: Relative tolerance when comparing in-place and value-form results.
        atol: Absolute tolerance for the same comparison.
    """
    debug_mode: bool = False
    rtol: float = 1e-7
    atol: float = 0.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'TangentConfig':
        environ = os.environ if environ is None else environ
        flag = environ.get(DEBUG_ENV_VAR, "").strip().lower() in _TRUTHY
        return cls(debug_mode=flag)


_active = TangentConfig.from_env()


def get_config() -> TangentConfig:
    """Current process-wide configuration."""
    return _active


def set_config(config: TangentConfig) -> TangentConfig:
    """Replace the process-wide configuration, returning the previous one."""
    global _active
    if not isinstance(config, TangentConfig):
        raise TypeError(f"Expected TangentConfig, got {type(config).__name__}")
    previous = _active
    _active = config
    if previous.debug_mode != config.debug_mode:
        logger.info("tangentcore debug mode %s", "enabled" if config.debug_mode else "disabled")
    return previous


def set_debug_mode(enabled: bool = True) -> TangentConfig:
    return set_config(replace(_active, debug_mode=bool(enabled)))


def debug_mode() -> bool:
    """Whether the process-wide configuration has debug mode on."""
    return _active.debug_mode


def resolve_config(config: Optional[TangentConfig]) -> TangentConfig:
    return _active if config is None else config


@contextmanager
def debug_mode_enabled(enabled: bool = True) -> Iterator[TangentConfig]:
    """Temporarily toggle debug mode for the process.

    Example:
        >>> with debug_mode_enabled():
        ...     accumulate(grad, ithunk)
    """
    previous = set_debug_mode(enabled)
    try:
        yield _active
    finally:
        set_config(previous)
