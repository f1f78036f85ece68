"""Mining rate computation.

Pure functions; no I/O. The same formula drives the client-side accumulator
and the ``GET /mining-rewards`` summary so both agree on what a minute of
mining is worth.
"""

from __future__ import annotations

from dataclasses import dataclass

STREAK_BONUS_PER_DAY = 0.01
STREAK_BONUS_CAP = 0.10

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 60 * 24


def streak_bonus(
    streak_days: int,
    per_day: float = STREAK_BONUS_PER_DAY,
    cap: float = STREAK_BONUS_CAP,
) -> float:
    """Rate bonus from the daily streak, as a fraction (0.05 == +5%).

    1% per streak day, capped at 10%.
    """
    if streak_days <= 0:
        return 0.0
    return min(streak_days * per_day, cap)


def effective_rate(
    base_rate: float,
    boost_percent: float,
    streak_days: int,
    per_day: float = STREAK_BONUS_PER_DAY,
    cap: float = STREAK_BONUS_CAP,
) -> float:
    """Tokens per minute after NFT boost and streak bonus.

    >>> round(effective_rate(1.0, 50, 10), 6)
    1.6
    """
    return base_rate * (1 + boost_percent / 100 + streak_bonus(streak_days, per_day, cap))


def mined_amount(elapsed_seconds: float, rate_per_minute: float) -> float:
    """Tokens accrued over ``elapsed_seconds``. Negative elapsed (clock skew) accrues nothing."""
    if elapsed_seconds <= 0 or rate_per_minute <= 0:
        return 0.0
    return elapsed_seconds / 60 * rate_per_minute


@dataclass(frozen=True)
class ProjectedEarnings:
    hourly: float
    daily: float
    weekly: float
    monthly: float


def project_earnings(rate_per_minute: float) -> ProjectedEarnings:
    """Projected earnings at a constant rate (30-day month)."""
    return ProjectedEarnings(
        hourly=rate_per_minute * MINUTES_PER_HOUR,
        daily=rate_per_minute * MINUTES_PER_DAY,
        weekly=rate_per_minute * MINUTES_PER_DAY * 7,
        monthly=rate_per_minute * MINUTES_PER_DAY * 30,
    )


def crossed_milestone(before: float, after: float) -> int | None:
    """Return the new whole-token count if accrual crossed an integer boundary."""
    if int(after // 1) > int(before // 1):
        return int(after // 1)
    return None
