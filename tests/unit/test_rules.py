"""Tests for reward multiplier rules."""

import pytest

from coremine.config import get_settings
from coremine.epochs.rules import (
    MultiplierRule,
    RewardContext,
    apply_rules,
    default_rules,
    nft_boost_rule,
    streak_bonus_rule,
)


def test_nft_owner_with_long_streak():
    ctx = RewardContext(user_id="u1", nft_count=1, streak_days=8)
    amount, factors = apply_rules(100.0, ctx, default_rules(get_settings()))
    assert amount == pytest.approx(165.0)
    assert factors == {"nft_boost": 1.5, "streak_bonus": 1.10}


def test_no_bonuses():
    ctx = RewardContext(user_id="u1")
    amount, factors = apply_rules(42.0, ctx, default_rules(get_settings()))
    assert amount == pytest.approx(42.0)
    assert set(factors.values()) == {1.0}


def test_streak_threshold_is_inclusive():
    rule = streak_bonus_rule(threshold_days=7, multiplier=1.10)
    assert rule(10.0, RewardContext(user_id="u", streak_days=7)) == 1.10
    assert rule(10.0, RewardContext(user_id="u", streak_days=6)) == 1.0


def test_nft_count_not_stacking():
    rule = nft_boost_rule(1.5)
    assert rule(10.0, RewardContext(user_id="u", nft_count=3)) == 1.5


def test_rules_apply_in_order():
    seen: list[str] = []

    def _track(name: str) -> MultiplierRule:
        def _fn(_base: float, _ctx: RewardContext) -> float:
            seen.append(name)
            return 2.0

        return MultiplierRule(name, _fn)

    amount, factors = apply_rules(1.0, RewardContext(user_id="u"), [_track("first"), _track("second")])
    assert seen == ["first", "second"]
    assert list(factors) == ["first", "second"]
    assert amount == 4.0


def test_zero_base_stays_zero():
    ctx = RewardContext(user_id="u1", nft_count=1, streak_days=30)
    amount, _ = apply_rules(0.0, ctx, default_rules(get_settings()))
    assert amount == 0.0
