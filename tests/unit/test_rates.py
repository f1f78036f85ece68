"""Tests for mining rate math."""

import pytest

from coremine.mining.rates import (
    crossed_milestone,
    effective_rate,
    mined_amount,
    project_earnings,
    streak_bonus,
)


class TestStreakBonus:
    def test_one_percent_per_day(self):
        assert streak_bonus(3) == pytest.approx(0.03)

    def test_capped_at_ten_percent(self):
        assert streak_bonus(10) == pytest.approx(0.10)
        assert streak_bonus(45) == pytest.approx(0.10)

    def test_no_streak(self):
        assert streak_bonus(0) == 0.0
        assert streak_bonus(-2) == 0.0


class TestEffectiveRate:
    def test_boost_and_streak(self):
        # base 1.0, 50% NFT boost, 10-day streak
        assert effective_rate(1.0, 50, 10) == pytest.approx(1.60)

    def test_base_only(self):
        assert effective_rate(2.0, 0, 0) == pytest.approx(2.0)

    def test_custom_bonus_parameters(self):
        assert effective_rate(1.0, 0, 5, per_day=0.02, cap=0.05) == pytest.approx(1.05)


class TestMinedAmount:
    def test_one_minute(self):
        assert mined_amount(60, 1.6) == pytest.approx(1.6)

    def test_ten_second_tick(self):
        assert mined_amount(10, 1.2) == pytest.approx(0.2)

    def test_clock_skew_mines_nothing(self):
        assert mined_amount(-30, 1.0) == 0.0

    def test_zero_rate(self):
        assert mined_amount(60, 0.0) == 0.0


def test_project_earnings():
    projected = project_earnings(1.0)
    assert projected.hourly == 60
    assert projected.daily == 1440
    assert projected.weekly == 1440 * 7
    assert projected.monthly == 1440 * 30


class TestMilestones:
    def test_crossing_whole_token(self):
        assert crossed_milestone(0.9, 1.1) == 1

    def test_jump_over_several(self):
        assert crossed_milestone(2.5, 5.2) == 5

    def test_no_crossing(self):
        assert crossed_milestone(1.1, 1.9) is None
