"""Epoch consistency checks. Never mutates state."""

from __future__ import annotations

import logging
import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.config import get_settings
from coremine.db.models import Epoch, EpochReward
from coremine.epochs.analytics import get_epoch_analytics
from coremine.errors import MultipleActiveEpochsError, RewardMismatchError

logger = logging.getLogger(__name__)


async def validate(db: AsyncSession, tolerance: float | None = None) -> bool:
    """Check the single-active-epoch invariant and the active epoch's reward record.

    Raises MultipleActiveEpochsError or RewardMismatchError; returns True otherwise.
    """
    if tolerance is None:
        tolerance = get_settings().reward_tolerance

    result = await db.execute(select(Epoch).where(Epoch.is_active.is_(True)))
    active = list(result.scalars().all())

    if len(active) > 1:
        ids = ", ".join(str(e.id) for e in active)
        logger.error("Multiple active epochs detected: %s", ids)
        raise MultipleActiveEpochsError(f"Multiple active epochs detected: {ids}")

    if len(active) == 1:
        epoch = active[0]
        rewards = await db.execute(select(EpochReward).where(EpochReward.epoch_id == epoch.id))
        records = list(rewards.scalars().all())
        if records:
            # An active epoch should not have been settled yet.
            analytics = await get_epoch_analytics(db, epoch.id)
            distributed = math.fsum(r.total_distributed for r in records)
            if abs(distributed - analytics.total_mining_activity) > tolerance:
                logger.error(
                    "Reward mismatch for epoch %d: distributed=%.4f activity=%.4f",
                    epoch.id, distributed, analytics.total_mining_activity,
                )
                raise RewardMismatchError(
                    f"Reward distribution mismatch for epoch {epoch.id}: "
                    f"{distributed:.4f} distributed vs {analytics.total_mining_activity:.4f} mined"
                )

    return True


async def audit_reward(db: AsyncSession, epoch_id: int, tolerance: float | None = None) -> EpochReward:
    """Check a settlement record against its own breakdown."""
    if tolerance is None:
        tolerance = get_settings().reward_tolerance

    result = await db.execute(select(EpochReward).where(EpochReward.epoch_id == epoch_id))
    reward = result.scalar_one_or_none()
    if reward is None:
        msg = f"Epoch {epoch_id} has no reward record"
        raise RewardMismatchError(msg)

    breakdown = reward.distribution_data or {}
    summed = math.fsum(float(v) for v in breakdown.values())
    if abs(summed - reward.total_distributed) > tolerance:
        msg = (
            f"Epoch {epoch_id} breakdown sums to {summed:.4f} "
            f"but total_distributed is {reward.total_distributed:.4f}"
        )
        raise RewardMismatchError(msg)
    if reward.participant_count != len(breakdown):
        msg = (
            f"Epoch {epoch_id} lists {len(breakdown)} recipients "
            f"but participant_count is {reward.participant_count}"
        )
        raise RewardMismatchError(msg)
    return reward
