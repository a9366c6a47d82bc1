"""Forward and reverse rules and the configs AD engines pass when looking them up."""

from .config import Capability, RuleConfig
from .definitions import ignore_derivatives, non_differentiable, scalar_rule
from .registry import (
    NO_RULE,
    clear_rules,
    find_rule,
    frule,
    opt_out,
    register_frule,
    register_rrule,
    rrule,
)

__all__ = [
    "Capability",
    "RuleConfig",
    "NO_RULE",
    "frule",
    "rrule",
    "register_frule",
    "register_rrule",
    "opt_out",
    "find_rule",
    "clear_rules",
    "scalar_rule",
    "non_differentiable",
    "ignore_derivatives",
]
