"""Helpers that generate rules from a short description."""

from __future__ import annotations
from numbers import Number
from typing import Any, Callable, Optional, Sequence

from ..arithmetic import conj, multiply, muladd
from ..tangents.zero import NoTangent, ZeroTangent
from .registry import register_frule, register_rrule


def _evaluate(partial: Any, args: Sequence[Any]) -> Any:
    return partial(*args) if callable(partial) else partial


def scalar_rule(f: Callable[..., Any], *partials: Any, arg_types: Optional[Sequence[type]] = None):
    """Register ``frule`` and ``rrule`` for a scalar function from its partial derivatives.

    Each partial is either a value or a callable taking the same arguments
    as ``f`` and returning the partial derivative with respect to one
    argument. Partials may be ``ZeroTangent()`` or a ``NotImplementedTangent``;
    the forward rule combines them with ``muladd`` so a zero seed drops a
    missing partial.

    Example:
        >>> scalar_rule(math.hypot, lambda x, y: x / math.hypot(x, y), lambda x, y: y / math.hypot(x, y))
        >>> y, pullback = rrule(RuleConfig(), math.hypot, 3.0, 4.0)
        >>> pullback(1.0)
        (NoTangent(), 0.6, 0.8)

    Args:
        f: Function to define rules for.
        partials: One partial derivative per positional argument.
        arg_types: Argument types the rules apply to; ``numbers.Number`` by default.
    """
    types = tuple(arg_types) if arg_types is not None else (Number,) * len(partials)
    if len(types) != len(partials):
        raise ValueError(f"{len(partials)} partials given for {len(types)} argument types")

    @register_frule(f, *types)
    def _frule(config, seeds, f_, *args, **kwargs):
        y = f_(*args, **kwargs)
        dy = ZeroTangent()
        for partial, seed in zip(partials, seeds[1:]):
            dy = muladd(seed, _evaluate(partial, args), dy)
        return y, dy

    @register_rrule(f, *types)
    def _rrule(config, f_, *args, **kwargs):
        y = f_(*args, **kwargs)
        derivatives = [_evaluate(partial, args) for partial in partials]

        def pullback(dy):
            return (NoTangent(), *(multiply(dy, conj(d)) for d in derivatives))
        return y, pullback

    return f


def non_differentiable(f: Callable[..., Any], *arg_types: type, varargs: Optional[type] = object):
    """Register rules declaring ``f`` non-differentiable for the given argument types.

    The forward rule returns ``NoTangent()`` as the result tangent and the
    pullback returns ``NoTangent()`` for ``f`` and every argument. With no
    types given, any call matches.
    """
    @register_frule(f, *arg_types, varargs=varargs)
    def _frule(config, seeds, f_, *args, **kwargs):
        return f_(*args, **kwargs), NoTangent()

    @register_rrule(f, *arg_types, varargs=varargs)
    def _rrule(config, f_, *args, **kwargs):
        nargs = len(args)

        def pullback(dy):
            return (NoTangent(),) * (nargs + 1)
        return f_(*args, **kwargs), pullback

    return f


def ignore_derivatives(x: Any) -> Any:
    """Mark ``x`` as not to be differentiated through.

    A zero-argument callable is called and its result returned; any other
    value is returned as is. Both rules of this function return
    ``NoTangent()``, so AD never looks inside.
    """
    if callable(x):
        return x()
    return x


non_differentiable(ignore_derivatives)
