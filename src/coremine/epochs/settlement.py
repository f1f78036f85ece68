"""Reward settlement for a closed epoch.

``settle`` runs inside the caller's transaction (the epoch transition), so
crediting balances, closing sessions and writing the EpochReward commit or
roll back together with the epoch flip. ``settle_epoch`` is the standalone,
self-committing entry point used by admin tooling and tests.

Idempotent: if an EpochReward already exists for the epoch it is returned
unchanged and nothing is credited.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coremine import balances
from coremine.config import get_settings
from coremine.db.models import EpochReward, MiningSession, Profile, UserNft
from coremine.epochs.rules import MultiplierRule, RewardContext, apply_rules, default_rules
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)


async def get_epoch_reward(db: AsyncSession, epoch_id: int) -> EpochReward | None:
    result = await db.execute(select(EpochReward).where(EpochReward.epoch_id == epoch_id))
    return result.scalar_one_or_none()


async def _base_rewards(db: AsyncSession, epoch_id: int) -> dict[str, float]:
    """Sum of tokens_mined per user across their sessions in the epoch."""
    result = await db.execute(
        select(MiningSession.user_id, func.sum(MiningSession.tokens_mined))
        .where(MiningSession.epoch_id == epoch_id)
        .group_by(MiningSession.user_id)
        .order_by(MiningSession.user_id)
    )
    return {user_id: float(total or 0.0) for user_id, total in result.all()}


async def _reward_contexts(db: AsyncSession, user_ids: list[str]) -> dict[str, RewardContext]:
    """Ownership and streak lookups for every participant, two queries total."""
    nft_rows = await db.execute(
        select(UserNft.user_id, func.count(UserNft.id))
        .where(UserNft.user_id.in_(user_ids))
        .group_by(UserNft.user_id)
    )
    nft_counts = dict(nft_rows.all())

    streak_rows = await db.execute(
        select(Profile.id, Profile.streak_days).where(Profile.id.in_(user_ids))
    )
    streaks = dict(streak_rows.all())

    return {
        uid: RewardContext(
            user_id=uid,
            nft_count=int(nft_counts.get(uid, 0)),
            streak_days=int(streaks.get(uid) or 0),
        )
        for uid in user_ids
    }


async def compute_distribution(
    db: AsyncSession,
    epoch_id: int,
    rules: Sequence[MultiplierRule] | None = None,
) -> dict[str, float]:
    """Final reward per user for the epoch. Read-only."""
    if rules is None:
        rules = default_rules(get_settings())

    base = await _base_rewards(db, epoch_id)
    if not base:
        return {}

    contexts = await _reward_contexts(db, list(base))
    distribution: dict[str, float] = {}
    for user_id, base_reward in base.items():
        amount, _ = apply_rules(base_reward, contexts[user_id], rules)
        distribution[user_id] = amount
    return distribution


async def settle(
    db: AsyncSession,
    epoch_id: int,
    *,
    now: datetime | None = None,
    rules: Sequence[MultiplierRule] | None = None,
) -> tuple[EpochReward, bool]:
    """Settle an epoch inside the current transaction. Does not commit.

    Returns (reward record, created). ``created`` is False when the epoch had
    already been settled and nothing was credited.
    """
    existing = await get_epoch_reward(db, epoch_id)
    if existing is not None:
        logger.info("Epoch %d already settled (reward id=%d), skipping", epoch_id, existing.id)
        return existing, False

    now = now or utcnow()
    # Concurrent session syncs wait here and then see the epoch as settled.
    await db.execute(
        select(MiningSession.id).where(MiningSession.epoch_id == epoch_id).with_for_update()
    )
    distribution = await compute_distribution(db, epoch_id, rules)

    for user_id, amount in distribution.items():
        if amount > 0:
            await balances.credit(db, user_id, amount, now)

    # Sessions still open at epoch end are closed as part of settlement.
    await db.execute(
        update(MiningSession)
        .where(MiningSession.epoch_id == epoch_id, MiningSession.active.is_(True))
        .values(active=False, end_time=now, updated_at=now)
    )

    reward = EpochReward(
        epoch_id=epoch_id,
        total_distributed=math.fsum(distribution.values()),
        participant_count=len(distribution),
        distribution_data=distribution,
        created_at=now,
    )
    db.add(reward)
    await db.flush()

    logger.info(
        "Settled epoch %d: %d participants, %.4f tokens distributed",
        epoch_id, reward.participant_count, reward.total_distributed,
    )
    return reward, True


async def settle_epoch(
    db: AsyncSession,
    epoch_id: int,
    *,
    now: datetime | None = None,
    rules: Sequence[MultiplierRule] | None = None,
) -> EpochReward:
    """Settle and commit. A concurrent settle that wins the race is returned instead."""
    try:
        reward, _ = await settle(db, epoch_id, now=now, rules=rules)
        await db.commit()
        return reward
    except IntegrityError:
        await db.rollback()
        existing = await get_epoch_reward(db, epoch_id)
        if existing is None:
            raise
        return existing
    except Exception:
        await db.rollback()
        raise
