"""Per-epoch mining analytics (read-only)."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.db.models import MiningSession
from coremine.timeutil import ensure_utc


@dataclass
class RewardDistribution:
    total: float = 0.0
    average: float = 0.0
    top_earner: float = 0.0


@dataclass
class PerformanceMetrics:
    average_mining_time: float = 0.0  # seconds
    completion_rate: float = 0.0
    active_users: int = 0


@dataclass
class EpochAnalytics:
    total_mining_activity: float = 0.0
    user_participation: int = 0
    reward_distribution: RewardDistribution = field(default_factory=RewardDistribution)
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)


async def get_epoch_analytics(db: AsyncSession, epoch_id: int) -> EpochAnalytics:
    """Aggregate raw mining activity for an epoch.

    Sessions that are still open contribute zero mining time; completion rate
    is the share of sessions that have been closed.
    """
    result = await db.execute(select(MiningSession).where(MiningSession.epoch_id == epoch_id))
    sessions = list(result.scalars().all())
    if not sessions:
        return EpochAnalytics()

    total = sum(s.tokens_mined or 0.0 for s in sessions)
    users = {s.user_id for s in sessions}
    mining_seconds = sum(
        (ensure_utc(s.end_time) - ensure_utc(s.start_time)).total_seconds()
        for s in sessions
        if s.end_time is not None
    )
    completed = sum(1 for s in sessions if not s.active)

    return EpochAnalytics(
        total_mining_activity=total,
        user_participation=len(users),
        reward_distribution=RewardDistribution(
            total=total,
            average=total / len(users),
            top_earner=max(s.tokens_mined or 0.0 for s in sessions),
        ),
        performance_metrics=PerformanceMetrics(
            average_mining_time=mining_seconds / len(sessions),
            completion_rate=completed / len(sessions),
            active_users=len(users),
        ),
    )
