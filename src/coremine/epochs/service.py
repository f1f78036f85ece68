"""Epoch lifecycle: NoActiveEpoch -> Active -> Ending -> Active -> ...

The current epoch is the single row with ``is_active = true``. It is never
cached: every caller re-reads it. Three guards keep the invariant under
concurrent callers (API requests and the arq cron job all call
``ensure_current_epoch``):

1. the active row is read ``FOR UPDATE``, serialising transitions;
2. the old epoch is closed with a compare-and-set UPDATE;
3. the ``uq_epochs_single_active`` partial unique index rejects a second
   active row.

A caller that loses any of these rolls back, re-reads, and returns the epoch
the winner created, so a burst of callers at an expiry boundary produces
exactly one successor and one settlement.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.config import get_settings
from coremine.db.models import Epoch, EpochReward
from coremine.epochs.rules import MultiplierRule
from coremine.epochs.settlement import settle
from coremine.errors import EpochTransitionError, StorageError
from coremine.notifications.service import EPOCH_CHANNEL, EPOCH_MESSAGES, notify
from coremine.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class EpochState(str, enum.Enum):
    NO_ACTIVE_EPOCH = "no_active_epoch"
    ACTIVE = "active"
    ENDING = "ending"


class _TransitionLost(Exception):
    """Another caller closed the epoch first."""


def describe_state(epoch: Epoch | None, now: datetime) -> EpochState:
    """Where the state machine is for the given active epoch (or None)."""
    if epoch is None or not epoch.is_active:
        return EpochState.NO_ACTIVE_EPOCH
    if now >= ensure_utc(epoch.end_time):
        return EpochState.ENDING
    return EpochState.ACTIVE


def epoch_progress(epoch: Epoch, now: datetime) -> float:
    """Elapsed share of the epoch as a percentage clamped to [0, 100]."""
    start = ensure_utc(epoch.start_time)
    end = ensure_utc(epoch.end_time)
    total = (end - start).total_seconds()
    elapsed = (now - start).total_seconds()
    if total <= 0 or elapsed <= 0:
        return 0.0
    return min(100.0, max(0.0, elapsed / total * 100))


def format_time_left(epoch: Epoch, now: datetime) -> str:
    """Remaining time as 'Nd Nh Nm'."""
    remaining = int((ensure_utc(epoch.end_time) - now).total_seconds())
    if remaining <= 0:
        return "0d 0h 0m"
    days, rem = divmod(remaining, 86400)
    hours, rem = divmod(rem, 3600)
    return f"{days}d {hours}h {rem // 60}m"


async def get_active_epoch(db: AsyncSession) -> Epoch | None:
    """Read the active epoch without locking."""
    result = await db.execute(select(Epoch).where(Epoch.is_active.is_(True)))
    return result.scalars().first()


async def get_epoch(db: AsyncSession, epoch_id: int) -> Epoch | None:
    result = await db.execute(select(Epoch).where(Epoch.id == epoch_id))
    return result.scalar_one_or_none()


async def _lock_active_epoch(db: AsyncSession) -> Epoch | None:
    result = await db.execute(
        select(Epoch)
        .where(Epoch.is_active.is_(True))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _winner_after_conflict(db: AsyncSession, closed_epoch_id: int | None) -> Epoch | None:
    """After a rollback, return the active epoch someone else created (if any)."""
    winner = await get_active_epoch(db)
    await db.commit()
    if winner is None or winner.id == closed_epoch_id:
        return None
    return winner


async def ensure_current_epoch(
    db: AsyncSession,
    redis: object,
    now: datetime | None = None,
    *,
    rules: Sequence[MultiplierRule] | None = None,
) -> Epoch:
    """Return the active epoch, settling and rolling over an expired one.

    Raises EpochTransitionError (retryable) if the transition fails; the old
    epoch then stays active and a later call retries from scratch.
    """
    now = now or utcnow()
    duration = timedelta(days=get_settings().epoch_duration_days)

    try:
        current = await _lock_active_epoch(db)
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError("Could not read the current epoch") from exc

    state = describe_state(current, now)
    if state is EpochState.ACTIVE:
        await db.commit()  # release the row lock
        return current  # type: ignore[return-value]

    if state is EpochState.NO_ACTIVE_EPOCH:
        return await _start_epoch(db, redis, now, duration)

    return await _transition(db, redis, current, now, duration, rules)  # type: ignore[arg-type]


async def _start_epoch(
    db: AsyncSession,
    redis: object,
    now: datetime,
    duration: timedelta,
) -> Epoch:
    """NoActiveEpoch -> Active. Nothing to settle."""
    epoch = Epoch(start_time=now, end_time=now + duration, is_active=True)
    db.add(epoch)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        winner = await _winner_after_conflict(db, None)
        if winner is None:
            raise EpochTransitionError("Could not create the first epoch") from None
        return winner
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to create epoch")
        raise EpochTransitionError("Could not create a new epoch") from exc

    logger.info("Started epoch %d (%s -> %s)", epoch.id, epoch.start_time, epoch.end_time)
    await notify(
        db, redis, "epoch_start", EPOCH_MESSAGES["start"],
        channel=EPOCH_CHANNEL,
        payload={"epoch_id": epoch.id, "end_time": epoch.end_time.isoformat()},
    )
    return epoch


async def _transition(
    db: AsyncSession,
    redis: object,
    current: Epoch,
    now: datetime,
    duration: timedelta,
    rules: Sequence[MultiplierRule] | None,
) -> Epoch:
    """Ending -> Active: settle, close, create successor, in one transaction."""
    old_id = current.id
    try:
        reward, _ = await settle(db, old_id, now=now, rules=rules)
        participants = list(reward.distribution_data or {})

        closed = await db.execute(
            update(Epoch)
            .where(Epoch.id == old_id, Epoch.is_active.is_(True))
            .values(is_active=False, closed_at=now)
        )
        if closed.rowcount != 1:
            raise _TransitionLost

        successor = Epoch(start_time=now, end_time=now + duration, is_active=True)
        db.add(successor)
        await db.flush()
        await db.commit()
    except (IntegrityError, _TransitionLost):
        await db.rollback()
        winner = await _winner_after_conflict(db, old_id)
        if winner is None:
            logger.warning("Epoch %d transition conflicted but no successor exists", old_id)
            raise EpochTransitionError(f"Epoch {old_id} transition conflicted, retry") from None
        logger.info("Epoch %d already rolled over to %d by another caller", old_id, winner.id)
        return winner
    except Exception as exc:
        await db.rollback()
        logger.exception("Epoch %d transition failed; epoch remains active", old_id)
        raise EpochTransitionError(f"Epoch {old_id} transition failed, retry") from exc

    logger.info(
        "Epoch %d closed (%d participants); epoch %d started",
        old_id, len(participants), successor.id,
    )
    await notify(
        db, redis, "epoch_transition", EPOCH_MESSAGES["transition"], participants,
        channel=EPOCH_CHANNEL,
        payload={"from_epoch_id": old_id, "to_epoch_id": successor.id},
    )
    await notify(
        db, redis, "epoch_end", EPOCH_MESSAGES["end"], participants,
        channel=EPOCH_CHANNEL,
        payload={"epoch_id": old_id},
    )
    await notify(
        db, redis, "epoch_start", EPOCH_MESSAGES["start"], participants,
        channel=EPOCH_CHANNEL,
        payload={"epoch_id": successor.id, "end_time": successor.end_time.isoformat()},
    )
    return successor


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@dataclass
class EpochHistoryEntry:
    epoch_id: int
    start_time: datetime
    end_time: datetime
    total_rewards: float
    participants: int
    top_performers: list[tuple[str, float]]


async def get_epoch_history(db: AsyncSession, limit: int = 10, top: int = 3) -> list[EpochHistoryEntry]:
    """Closed epochs, newest first, with their settlement summary."""
    result = await db.execute(
        select(Epoch, EpochReward)
        .join(EpochReward, EpochReward.epoch_id == Epoch.id)
        .where(Epoch.is_active.is_(False))
        .order_by(Epoch.end_time.desc())
        .limit(limit)
    )
    history = []
    for epoch, reward in result.all():
        breakdown = reward.distribution_data or {}
        ranked = sorted(breakdown.items(), key=lambda kv: (-kv[1], kv[0]))[:top]
        history.append(EpochHistoryEntry(
            epoch_id=epoch.id,
            start_time=ensure_utc(epoch.start_time),
            end_time=ensure_utc(epoch.end_time),
            total_rewards=reward.total_distributed,
            participants=reward.participant_count,
            top_performers=[(uid, float(amount)) for uid, amount in ranked],
        ))
    return history
