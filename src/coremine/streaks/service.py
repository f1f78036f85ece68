"""Daily streak claims.

Claim days are calendar days in a fixed UTC offset (UTC+1 by default), so the
day boundary is 23:00 UTC. One claim per user per claim day; claiming on the
day after the previous claim extends the streak, any longer gap restarts it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coremine import balances
from coremine.config import get_settings
from coremine.db.models import Profile, StreakClaim
from coremine.errors import AlreadyClaimedError, StreakClaimError
from coremine.mining.rates import streak_bonus
from coremine.notifications.service import STREAK_CHANNEL, notify
from coremine.profiles import ensure_profile
from coremine.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def claim_day(dt: datetime, offset_hours: int | None = None) -> date:
    """Calendar day of ``dt`` in the claim timezone."""
    if offset_hours is None:
        offset_hours = get_settings().streak_utc_offset_hours
    return (ensure_utc(dt) + timedelta(hours=offset_hours)).date()


def next_streak(current: int, last_claimed: datetime | None, now: datetime, offset_hours: int | None = None) -> int:
    """Streak length after a claim at ``now``.

    Raises AlreadyClaimedError if ``last_claimed`` falls on the same claim day.
    """
    today = claim_day(now, offset_hours)
    if last_claimed is None:
        return 1
    last = claim_day(last_claimed, offset_hours)
    if last == today:
        raise AlreadyClaimedError
    if last == today - timedelta(days=1):
        return current + 1
    return 1


@dataclass
class ClaimResult:
    streak_days: int
    waves_awarded: float
    claimed_at: datetime


@dataclass
class StreakStatus:
    streak_days: int
    last_claimed: datetime | None
    can_claim: bool
    streak_bonus: float  # percent
    claim_reward: float


async def claim(
    db: AsyncSession,
    redis: object,
    user_id: str,
    now: datetime | None = None,
) -> ClaimResult:
    """Claim today's bonus: record the claim, update the streak, credit the reward.

    All three writes share one transaction. A concurrent claim for the same
    day loses on ``uq_streak_claims_user_day`` and surfaces as
    AlreadyClaimedError.
    """
    settings = get_settings()
    now = now or utcnow()
    reward = settings.streak_claim_reward

    await ensure_profile(db, user_id)
    profile = (
        await db.execute(
            select(Profile)
            .where(Profile.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    try:
        streak = next_streak(profile.streak_days, profile.last_claimed, now, settings.streak_utc_offset_hours)
    except AlreadyClaimedError:
        await db.rollback()
        raise

    try:
        db.add(StreakClaim(
            user_id=user_id,
            claimed_at=now,
            claim_date=claim_day(now, settings.streak_utc_offset_hours),
            streak_days=streak,
            waves_awarded=reward,
        ))
        profile.streak_days = streak
        profile.last_claimed = now
        profile.updated_at = now
        await db.flush()
        await balances.credit(db, user_id, reward, now)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyClaimedError from None
    except Exception as exc:
        await db.rollback()
        logger.exception("Streak claim failed for user %s", user_id)
        raise StreakClaimError from exc

    logger.info("User %s claimed daily bonus (streak %d)", user_id, streak)
    await notify(
        db, redis, "streak_claimed",
        f"Daily bonus claimed! {streak} day streak, +{reward:g} tokens.",
        [user_id],
        channel=STREAK_CHANNEL,
        payload={"user_id": user_id, "streak_days": streak, "waves_awarded": reward},
    )
    return ClaimResult(streak_days=streak, waves_awarded=reward, claimed_at=now)


async def get_streak_status(db: AsyncSession, user_id: str, now: datetime | None = None) -> StreakStatus:
    settings = get_settings()
    now = now or utcnow()
    profile = await ensure_profile(db, user_id)
    await db.commit()

    last = ensure_utc(profile.last_claimed) if profile.last_claimed else None
    can_claim = last is None or claim_day(last, settings.streak_utc_offset_hours) != claim_day(
        now, settings.streak_utc_offset_hours
    )
    bonus = streak_bonus(profile.streak_days, settings.streak_rate_bonus_per_day, settings.streak_rate_bonus_cap)
    return StreakStatus(
        streak_days=profile.streak_days,
        last_claimed=last,
        can_claim=can_claim,
        streak_bonus=bonus * 100,
        claim_reward=settings.streak_claim_reward,
    )
