"""Reward multiplier rules.

A rule is a named pure function ``(base_amount, context) -> multiplier``.
Rules are applied left to right and multiplied together, so the final reward
for a user is ``base * r1 * r2 * ...`` and every factor can be audited.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from coremine.config import Settings


@dataclass(frozen=True)
class RewardContext:
    """What the rules may look at for one user in one epoch."""

    user_id: str
    nft_count: int = 0
    streak_days: int = 0


@dataclass(frozen=True)
class MultiplierRule:
    name: str
    fn: Callable[[float, RewardContext], float]

    def __call__(self, base_amount: float, ctx: RewardContext) -> float:
        return self.fn(base_amount, ctx)


def nft_boost_rule(multiplier: float = 1.5) -> MultiplierRule:
    """Owning at least one NFT multiplies the epoch reward."""

    def _rule(_base: float, ctx: RewardContext) -> float:
        return multiplier if ctx.nft_count > 0 else 1.0

    return MultiplierRule("nft_boost", _rule)


def streak_bonus_rule(threshold_days: int = 7, multiplier: float = 1.10) -> MultiplierRule:
    """A daily streak of ``threshold_days`` or more adds a flat bonus."""

    def _rule(_base: float, ctx: RewardContext) -> float:
        return multiplier if ctx.streak_days >= threshold_days else 1.0

    return MultiplierRule("streak_bonus", _rule)


def default_rules(settings: Settings) -> list[MultiplierRule]:
    return [
        nft_boost_rule(settings.nft_boost_multiplier),
        streak_bonus_rule(settings.streak_threshold_days, settings.streak_reward_multiplier),
    ]


def apply_rules(
    base_amount: float,
    ctx: RewardContext,
    rules: Sequence[MultiplierRule],
) -> tuple[float, dict[str, float]]:
    """Apply rules in order. Returns (final amount, {rule name: multiplier used})."""
    amount = base_amount
    applied: dict[str, float] = {}
    for rule in rules:
        factor = rule(base_amount, ctx)
        applied[rule.name] = factor
        amount *= factor
    return amount, applied
