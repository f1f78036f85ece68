"""Server-side mining session store.

Accumulator clients push the full state of a session (id, tokens_mined,
active, end_time) rather than increments, and the server merges it with
"max tokens_mined wins". Replaying the same state, or delivering a stale
one after a newer one, therefore changes nothing, which is what makes the
offline ledger's at-least-once delivery safe. The balance is credited by the
positive difference only.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coremine import balances
from coremine.config import get_settings
from coremine.db.models import EpochReward, MiningSession
from coremine.db.upsert import upsert_for
from coremine.epochs.service import ensure_current_epoch, get_active_epoch
from coremine.errors import AlreadyMiningError, EpochTransitionError, SessionNotFoundError
from coremine.mining.rates import ProjectedEarnings, effective_rate, project_earnings, streak_bonus
from coremine.nfts.service import total_boost_percent
from coremine.notifications.service import BALANCE_CHANNEL, publish_event
from coremine.profiles import ensure_profile
from coremine.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionState:
    """Client-reported state of a session."""

    id: str
    start_time: datetime
    tokens_mined: float
    active: bool
    end_time: datetime | None = None


async def get_session_by_id(db: AsyncSession, session_id: str) -> MiningSession | None:
    result = await db.execute(select(MiningSession).where(MiningSession.id == session_id))
    return result.scalar_one_or_none()


async def get_active_session(db: AsyncSession, user_id: str) -> MiningSession | None:
    result = await db.execute(
        select(MiningSession).where(MiningSession.user_id == user_id, MiningSession.active.is_(True))
    )
    return result.scalars().first()


async def start_session(
    db: AsyncSession,
    redis: object,
    user_id: str,
    now: datetime | None = None,
) -> MiningSession:
    """Open a new session in the current epoch. AlreadyMiningError if one is open."""
    now = now or utcnow()
    await ensure_profile(db, user_id)
    if await get_active_session(db, user_id) is not None:
        await db.rollback()
        raise AlreadyMiningError
    await db.commit()

    epoch = await ensure_current_epoch(db, redis, now)

    session = MiningSession(
        id=str(uuid.uuid4()),
        user_id=user_id,
        epoch_id=epoch.id,
        start_time=now,
        active=True,
        tokens_mined=0.0,
        updated_at=now,
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        # uq_mining_sessions_user_active: a concurrent start won
        await db.rollback()
        raise AlreadyMiningError from None

    logger.info("User %s started mining session %s in epoch %d", user_id, session.id, epoch.id)
    return session


async def _lock_session(db: AsyncSession, *criteria: Any) -> MiningSession | None:
    result = await db.execute(
        select(MiningSession)
        .where(*criteria)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _epoch_settled(db: AsyncSession, epoch_id: int | None) -> bool:
    if epoch_id is None:
        return False
    result = await db.execute(select(EpochReward.id).where(EpochReward.epoch_id == epoch_id))
    return result.first() is not None


def continuation_id(parent_id: str, epoch_id: int) -> str:
    """Deterministic id of the session that continues ``parent_id`` in ``epoch_id``."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"coremine:{parent_id}:{epoch_id}"))


async def _open_continuation(
    db: AsyncSession, parent: MiningSession, now: datetime
) -> tuple[MiningSession, bool]:
    """Create (or find) the child of a settled session in the active epoch, locked.

    Returns (child, created).
    """
    epoch = await get_active_epoch(db)
    if epoch is None or epoch.id == parent.epoch_id:
        raise EpochTransitionError("No open epoch to carry the session into, retry")
    child_id = continuation_id(parent.id, epoch.id)
    inserted = await db.execute(
        upsert_for(db, MiningSession)
        .values(
            id=child_id,
            user_id=parent.user_id,
            epoch_id=epoch.id,
            start_time=max(ensure_utc(epoch.start_time), ensure_utc(parent.start_time)),
            active=False,
            tokens_mined=0.0,
            updated_at=now,
            continued_from=parent.id,
        )
        .on_conflict_do_nothing(index_elements=[MiningSession.id])
    )
    child = await _lock_session(db, MiningSession.id == child_id)
    assert child is not None
    logger.info("Session %s continues settled session %s in epoch %d", child_id, parent.id, epoch.id)
    return child, inserted.rowcount == 1


async def sync_session(
    db: AsyncSession,
    redis: object,
    user_id: str,
    state: SessionState,
    now: datetime | None = None,
) -> tuple[MiningSession, float]:
    """Idempotently upsert a client-reported session. Returns (session, credited delta).

    Unknown ids are inserted and tagged with the epoch that is active at sync
    time. Known ids keep their epoch and merge with "max tokens_mined wins";
    a closed session never reopens.

    A session whose epoch has been settled is frozen. Whatever the client
    reports beyond the frozen amount goes to a continuation session in the
    active epoch (``continued_from`` points back at the frozen one), and that
    session is returned so the client can carry on under its id.
    """
    now = now or utcnow()
    await ensure_profile(db, user_id)

    known = await get_session_by_id(db, state.id)
    if known is not None and known.user_id != user_id:
        await db.rollback()
        raise SessionNotFoundError
    await db.commit()

    epoch_id = known.epoch_id if known is not None else (await ensure_current_epoch(db, redis, now)).id

    try:
        # Make sure the row exists, then lock it; concurrent deliveries of
        # the same session serialise on the row lock.
        inserted = await db.execute(
            upsert_for(db, MiningSession)
            .values(
                id=state.id,
                user_id=user_id,
                epoch_id=epoch_id,
                start_time=state.start_time,
                active=False,
                tokens_mined=0.0,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[MiningSession.id])
        )
        created = inserted.rowcount == 1

        row = await _lock_session(db, MiningSession.id == state.id)
        if row is None or row.user_id != user_id:
            raise SessionNotFoundError

        reported = state.tokens_mined
        while await _epoch_settled(db, row.epoch_id):
            reported -= row.tokens_mined or 0.0
            child = await _lock_session(db, MiningSession.continued_from == row.id)
            if child is None:
                if reported <= 0:
                    # Nothing mined after settlement.
                    await db.commit()
                    return row, 0.0
                child, created = await _open_continuation(db, row, now)
            else:
                created = False
            row = child

        previous = row.tokens_mined or 0.0
        merged = max(previous, reported)
        delta = merged - previous

        active = state.active if created else (row.active and state.active)
        if active:
            other = await db.execute(
                select(MiningSession.id).where(
                    MiningSession.user_id == user_id,
                    MiningSession.active.is_(True),
                    MiningSession.id != row.id,
                )
            )
            if other.first() is not None:
                # A newer session is already open; this one is stale.
                active = False

        end_time = row.end_time
        if not active and end_time is None:
            end_time = state.end_time or now

        row.tokens_mined = merged
        row.active = active
        row.end_time = end_time
        row.updated_at = now
        await db.flush()

        if delta > 0:
            await balances.credit(db, user_id, delta, now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if delta > 0:
        await publish_event(redis, BALANCE_CHANNEL, {"user_id": user_id, "event": "mined", "amount": delta})
    return row, delta


async def finalize_session(
    db: AsyncSession,
    redis: object,
    user_id: str,
    session_id: str,
    amount: float,
    now: datetime | None = None,
) -> MiningSession:
    """Add a final amount to a session and close it.

    Finalizing an already-closed session is a no-op, so a retried request
    cannot pay twice.
    """
    if amount < 0:
        msg = "amount must not be negative"
        raise ValueError(msg)
    now = now or utcnow()

    try:
        row = (
            await db.execute(
                select(MiningSession)
                .where(MiningSession.id == session_id, MiningSession.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None:
            raise SessionNotFoundError
        if not row.active:
            await db.commit()
            return row

        await db.execute(
            update(MiningSession)
            .where(MiningSession.id == session_id)
            .values(
                tokens_mined=MiningSession.tokens_mined + amount,
                active=False,
                end_time=func.coalesce(MiningSession.end_time, now),
                updated_at=now,
            )
        )
        if amount > 0:
            await balances.credit(db, user_id, amount, now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(row)
    logger.info("User %s finalized session %s (+%.4f)", user_id, session_id, amount)
    if amount > 0:
        await publish_event(redis, BALANCE_CHANNEL, {"user_id": user_id, "event": "finalized", "amount": amount})
    return row


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass
class MiningSummary:
    mining_rate: float
    boost_percentage: float
    streak_days: int
    streak_bonus: float  # percent
    effective_rate: float
    total_mined: float
    current_balance: float
    projected_earnings: ProjectedEarnings


async def get_mining_summary(db: AsyncSession, user_id: str) -> MiningSummary:
    """Current rate, boosts and projections for a user."""
    settings = get_settings()
    profile = await ensure_profile(db, user_id)
    await db.commit()

    boost = (profile.mining_boost or 0.0) + await total_boost_percent(db, user_id)
    bonus = streak_bonus(profile.streak_days, settings.streak_rate_bonus_per_day, settings.streak_rate_bonus_cap)
    rate = effective_rate(
        profile.mining_rate,
        boost,
        profile.streak_days,
        settings.streak_rate_bonus_per_day,
        settings.streak_rate_bonus_cap,
    )

    total = await db.execute(
        select(func.coalesce(func.sum(MiningSession.tokens_mined), 0.0)).where(MiningSession.user_id == user_id)
    )

    return MiningSummary(
        mining_rate=profile.mining_rate,
        boost_percentage=boost,
        streak_days=profile.streak_days,
        streak_bonus=bonus * 100,
        effective_rate=rate,
        total_mined=float(total.scalar_one() or 0.0),
        current_balance=await balances.get_balance(db, user_id),
        projected_earnings=project_earnings(rate),
    )


def session_payload(session: MiningSession) -> dict[str, object]:
    """Serialise a session row for API responses."""
    return {
        "id": session.id,
        "user_id": session.user_id,
        "epoch_id": session.epoch_id,
        "start_time": ensure_utc(session.start_time),
        "end_time": ensure_utc(session.end_time) if session.end_time else None,
        "active": session.active,
        "tokens_mined": session.tokens_mined,
        "continued_from": session.continued_from,
    }
