"""Registration and lookup of forward (``frule``) and reverse (``rrule``) rules.

Rules are registered per function together with the argument types they
accept. A lookup picks, among the rules whose types match the call:

1. rules that require capabilities of the config over rules that do not;
2. then the most specific signature (every argument type a subclass of the
   other rule's); a tie between incomparable signatures raises
   ``AmbiguousRuleError``.

When no rule matches, or the winning rule is covered by an ``opt_out``
entry, the lookup returns ``NO_RULE`` so the engine can differentiate
``f`` by decomposing it. Calls that no lookup could ever accept (a config
that is not a ``RuleConfig``, a non-callable ``f``, seeds of the wrong
length) raise ``RuleSignatureError`` instead.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..errors import AmbiguousRuleError, RuleSignatureError
from .config import Capability, RuleConfig

logger = logging.getLogger(__name__)

NO_RULE = None

FRULE = "frule"
RRULE = "rrule"


@dataclass(frozen=True)
class Signature:
    """Argument types of a rule; ``varargs`` types any trailing arguments."""
    arg_types: Tuple[type, ...]
    varargs: Optional[type] = None

    def matches(self, args: Tuple[Any, ...]) -> bool:
        n = len(self.arg_types)
        if len(args) < n or (self.varargs is None and len(args) != n):
            return False
        if not all(isinstance(a, t) for a, t in zip(args, self.arg_types)):
            return False
        return self.varargs is None or all(isinstance(a, self.varargs) for a in args[n:])

    def _type_at(self, i: int) -> Optional[type]:
        if i < len(self.arg_types):
            return self.arg_types[i]
        return self.varargs

    def at_least_as_specific(self, other: 'Signature', nargs: int) -> bool:
        """Whether ``self`` is a subtype of ``other`` for calls with ``nargs`` arguments."""
        for i in range(nargs):
            mine, theirs = self._type_at(i), other._type_at(i)
            if not issubclass(mine, theirs):
                return False
        # a fixed arity is narrower than a variadic tail
        return other.varargs is not None or self.varargs is None

    def __str__(self) -> str:
        names = [t.__name__ for t in self.arg_types]
        if self.varargs is not None:
            names.append(f"*{self.varargs.__name__}")
        return f"({', '.join(names)})"


@dataclass(frozen=True)
class RuleEntry:
    signature: Signature
    requires: FrozenSet[Capability]
    impl: Callable[..., Any] = field(compare=False)

    def applies(self, config: RuleConfig, args: Tuple[Any, ...]) -> bool:
        return config.supports(*self.requires) and self.signature.matches(args)

    def __repr__(self) -> str:
        caps = "".join(f" requires {c.name}" for c in sorted(self.requires, key=lambda c: c.name))
        return f"<{getattr(self.impl, '__qualname__', self.impl)} {self.signature}{caps}>"


_rules: Dict[str, Dict[Any, List[RuleEntry]]] = {FRULE: {}, RRULE: {}}
_opt_outs: Dict[str, Dict[Any, List[Signature]]] = {FRULE: {}, RRULE: {}}


def _key(f: Any) -> Any:
    try:
        hash(f)
    except TypeError:
        return None
    return f


def _register(mode: str, f: Any, arg_types: Iterable[type], varargs: Optional[type],
              requires: Iterable[Capability]):
    signature = Signature(tuple(arg_types), varargs)
    requires = frozenset(requires)

    def decorator(impl: Callable[..., Any]) -> Callable[..., Any]:
        key = _key(f)
        if key is None:
            raise RuleSignatureError(f"Cannot register a {mode} for unhashable {f!r}")
        entries = _rules[mode].setdefault(key, [])
        # re-registering the same signature replaces the previous rule
        entries[:] = [e for e in entries if (e.signature, e.requires) != (signature, requires)]
        entries.append(RuleEntry(signature, requires, impl))
        logger.debug("registered %s for %s%s", mode, getattr(f, "__name__", f), signature)
        return impl
    return decorator


def register_rrule(f: Any, *arg_types: type, varargs: Optional[type] = None,
                   requires: Iterable[Capability] = ()):
    """Register a reverse rule for ``f`` called with arguments of ``arg_types``.

    The decorated function is called as ``impl(config, f, *args, **kwargs)``
    and must return ``(result, pullback)``, where ``pullback(dy)`` returns
    one cotangent for ``f`` itself followed by one per positional argument.

    ``f`` may also be a type: the rule then applies to every callable
    instance of it (and of its subclasses).

    Example:
        >>> @register_rrule(math.sin, float)
        ... def _(config, f, x):
        ...     return math.sin(x), lambda dy: (NoTangent(), dy * math.cos(x))
    """
    return _register(RRULE, f, arg_types, varargs, requires)


def register_frule(f: Any, *arg_types: type, varargs: Optional[type] = None,
                   requires: Iterable[Capability] = ()):
    """Register a forward rule for ``f`` called with arguments of ``arg_types``.

    The decorated function is called as
    ``impl(config, seeds, f, *args, **kwargs)``, where ``seeds`` holds the
    tangent of ``f`` followed by one per positional argument, and must
    return ``(result, result_tangent)``.
    """
    return _register(FRULE, f, arg_types, varargs, requires)


def opt_out(f: Any, *arg_types: type, varargs: Optional[type] = None, mode: str = "both") -> None:
    """Suppress the rules of ``f`` for calls matching ``arg_types``.

    Use it when a generic rule (say one for any ``numbers.Number``) would
    apply to a type for which the engine does better differentiating
    ``f`` itself. An opt-out only wins over rules that are at most as
    specific as it is.

    Args:
        mode: ``"rrule"``, ``"frule"`` or ``"both"``.
    """
    modes = (FRULE, RRULE) if mode == "both" else (mode,)
    for m in modes:
        if m not in _opt_outs:
            raise ValueError(f"mode must be 'frule', 'rrule' or 'both', got {mode!r}")
        key = _key(f)
        if key is None:
            raise RuleSignatureError(f"Cannot opt out rules of unhashable {f!r}")
        _opt_outs[m].setdefault(key, []).append(Signature(tuple(arg_types), varargs))


def _candidates(table: Dict[Any, List[Any]], f: Any) -> List[Any]:
    found = []
    key = _key(f)
    if key is not None:
        found.extend(table.get(key, ()))
    for klass in type(f).__mro__:
        if klass is not f:
            found.extend(table.get(klass, ()))
    return found


def _most_specific(f: Any, entries: List[RuleEntry], args: Tuple[Any, ...]) -> RuleEntry:
    nargs = len(args)

    def dominates(a: RuleEntry, b: RuleEntry) -> bool:
        if a.signature.at_least_as_specific(b.signature, nargs):
            if not b.signature.at_least_as_specific(a.signature, nargs):
                return True
            return a.requires > b.requires
        return False

    best = [e for e in entries if not any(dominates(o, e) for o in entries if o is not e)]
    if len(best) > 1:
        raise AmbiguousRuleError(f, tuple(type(a) for a in args), best)
    return best[0]


def find_rule(mode: str, config: RuleConfig, f: Any, args: Tuple[Any, ...]) -> Optional[RuleEntry]:
    """The rule ``frule``/``rrule`` would use, or ``None``."""
    applicable = [e for e in _candidates(_rules[mode], f) if e.applies(config, args)]
    if not applicable:
        logger.debug("no %s for %s with %d arguments", mode, getattr(f, "__name__", f), len(args))
        return None
    with_caps = [e for e in applicable if e.requires]
    chosen = _most_specific(f, with_caps or applicable, args)
    for sig in _candidates(_opt_outs[mode], f):
        if sig.matches(args) and sig.at_least_as_specific(chosen.signature, len(args)):
            logger.debug("%s for %s opted out by %s", mode, getattr(f, "__name__", f), sig)
            return None
    return chosen


def _check_call(config: Any, f: Any) -> None:
    if not isinstance(config, RuleConfig):
        raise RuleSignatureError(f"Expected a RuleConfig as first argument, got {type(config).__name__}")
    if not callable(f):
        raise RuleSignatureError(f"{f!r} is not callable")


def rrule(config: RuleConfig, f: Any, *args: Any, **kwargs: Any):
    """``(f(*args, **kwargs), pullback)`` from the registered rule, or ``NO_RULE``.

    Raises:
        RuleSignatureError: ``config`` is not a ``RuleConfig`` or ``f`` is not callable.
        AmbiguousRuleError: several rules are equally specific for the call.
    """
    _check_call(config, f)
    entry = find_rule(RRULE, config, f, args)
    if entry is None:
        return NO_RULE
    return entry.impl(config, f, *args, **kwargs)


def frule(config: RuleConfig, seeds: tuple, f: Any, *args: Any, **kwargs: Any):
    """``(f(*args, **kwargs), result_tangent)`` from the registered rule, or ``NO_RULE``.

    ``seeds`` holds the tangent of ``f`` (usually ``NoTangent()``) followed
    by one tangent per positional argument.
    """
    _check_call(config, f)
    if not isinstance(seeds, tuple) or len(seeds) != len(args) + 1:
        raise RuleSignatureError(
            f"frule expects a tuple of {len(args) + 1} seeds (one for f, one per argument), "
            f"got {seeds!r}"
        )
    entry = find_rule(FRULE, config, f, args)
    if entry is None:
        return NO_RULE
    return entry.impl(config, seeds, f, *args, **kwargs)


def clear_rules(f: Any) -> None:
    """Remove every rule and opt-out registered for ``f``."""
    key = _key(f)
    for table in (*_rules.values(), *_opt_outs.values()):
        table.pop(key, None)
