"""Capabilities an AD engine declares when asking for rules."""

from __future__ import annotations
from enum import Enum
from typing import Any, Iterable


class Capability(Enum):
    """Named features a ``RuleConfig`` may support.

    Each mode comes as a ``HAS_`` / ``NO_`` pair so that a rule can
    require either the presence or the explicit absence of the feature.
    """
    HAS_REVERSE_MODE = "has_reverse_mode"
    NO_REVERSE_MODE = "no_reverse_mode"
    HAS_FORWARDS_MODE = "has_forwards_mode"
    NO_FORWARDS_MODE = "no_forwards_mode"


_COMPLEMENTS = {
    Capability.HAS_REVERSE_MODE: Capability.NO_REVERSE_MODE,
    Capability.HAS_FORWARDS_MODE: Capability.NO_FORWARDS_MODE,
}


class RuleConfig:
    """The configuration an AD engine passes to ``frule`` and ``rrule``.

    Engines either instantiate this class with the capabilities they have,
    or subclass it and set ``capabilities`` (and override ``frule_via_ad``
    / ``rrule_via_ad`` for the modes they support). Rules registered with
    ``requires=`` are only used for configs that support all of them.

    Example:
        >>> class MyEngine(RuleConfig):
        ...     capabilities = frozenset({Capability.HAS_REVERSE_MODE, Capability.NO_FORWARDS_MODE})
        ...     def rrule_via_ad(self, f, *args, **kwargs):
        ...         return my_reverse_mode(f, *args, **kwargs)
    """

    capabilities: frozenset = frozenset()

    def __init__(self, capabilities: Iterable[Capability] = None):
        if capabilities is not None:
            self.capabilities = frozenset(capabilities)
        for has, no in _COMPLEMENTS.items():
            if has in self.capabilities and no in self.capabilities:
                raise ValueError(f"A RuleConfig cannot declare both {has.name} and {no.name}")

    def supports(self, *capabilities: Capability) -> bool:
        return all(c in self.capabilities for c in capabilities)

    def frule_via_ad(self, seeds: tuple, f: Any, *args: Any, **kwargs: Any):
        """Push ``seeds`` forward through ``f`` using the engine's forward mode."""
        raise NotImplementedError(
            f"{type(self).__name__} does not implement frule_via_ad; "
            "configs declaring HAS_FORWARDS_MODE must"
        )

    def rrule_via_ad(self, f: Any, *args: Any, **kwargs: Any):
        """Build a primal result and pullback for ``f`` using the engine's reverse mode."""
        raise NotImplementedError(
            f"{type(self).__name__} does not implement rrule_via_ad; "
            "configs declaring HAS_REVERSE_MODE must"
        )

    def __repr__(self) -> str:
        caps = ", ".join(sorted(c.name for c in self.capabilities))
        return f"{type(self).__name__}({{{caps}}})"
