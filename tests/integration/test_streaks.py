"""Daily streak claims against a real database."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from coremine.db.models import StreakClaim
from coremine.errors import AlreadyClaimedError
from coremine.notifications.service import STREAK_CHANNEL
from coremine.streaks.service import claim, get_streak_status
from tests.conftest import T0, add_profile, balance_of


@pytest.mark.asyncio
async def test_first_claim(session_factory, db, redis) -> None:
    result = await claim(db, redis, "alice", T0)

    assert result.streak_days == 1
    assert result.waves_awarded == 10.0
    assert await balance_of(session_factory, "alice") == pytest.approx(10.0)

    channel, raw = redis.publish.await_args.args
    assert channel == STREAK_CHANNEL
    assert json.loads(raw)["streak_days"] == 1


@pytest.mark.asyncio
async def test_same_day_is_rejected(session_factory, db, redis) -> None:
    await claim(db, redis, "alice", T0)

    with pytest.raises(AlreadyClaimedError):
        await claim(db, redis, "alice", T0 + timedelta(hours=5))

    assert await balance_of(session_factory, "alice") == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_consecutive_days_extend_then_gap_resets(session_factory, db, redis) -> None:
    assert (await claim(db, redis, "alice", T0)).streak_days == 1
    assert (await claim(db, redis, "alice", T0 + timedelta(days=1))).streak_days == 2
    assert (await claim(db, redis, "alice", T0 + timedelta(days=2))).streak_days == 3
    assert (await claim(db, redis, "alice", T0 + timedelta(days=5))).streak_days == 1

    assert await balance_of(session_factory, "alice") == pytest.approx(40.0)


@pytest.mark.asyncio
async def test_claim_day_rolls_over_at_2300_utc(session_factory, db, redis) -> None:
    before = datetime(2026, 3, 1, 22, 30, tzinfo=timezone.utc)
    after = datetime(2026, 3, 1, 23, 10, tzinfo=timezone.utc)

    await claim(db, redis, "alice", before)
    result = await claim(db, redis, "alice", after)

    assert result.streak_days == 2


@pytest.mark.asyncio
async def test_streak_without_recorded_claim_restarts(session_factory, db, redis) -> None:
    await add_profile(session_factory, "bob", streak_days=6)
    await claim(db, redis, "bob", T0)
    # no previous claim recorded, so the streak starts over
    status = await get_streak_status(db, "bob", T0)
    assert status.streak_days == 1


@pytest.mark.asyncio
async def test_concurrent_claims_pay_once(session_factory, redis) -> None:
    async def attempt() -> bool:
        async with session_factory() as s:
            try:
                await claim(s, redis, "alice", T0)
            except AlreadyClaimedError:
                return False
            return True

    outcomes = await asyncio.gather(*(attempt() for _ in range(5)))

    assert outcomes.count(True) == 1
    assert await balance_of(session_factory, "alice") == pytest.approx(10.0)
    async with session_factory() as s:
        count = (await s.execute(select(func.count(StreakClaim.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_status(session_factory, db, redis) -> None:
    status = await get_streak_status(db, "carol", T0)
    assert status.can_claim is True
    assert status.streak_days == 0
    assert status.last_claimed is None

    await claim(db, redis, "carol", T0)
    status = await get_streak_status(db, "carol", T0 + timedelta(hours=1))
    assert status.can_claim is False
    assert status.streak_days == 1
    assert status.streak_bonus == pytest.approx(1.0)
    assert status.claim_reward == 10.0

    status = await get_streak_status(db, "carol", T0 + timedelta(days=1))
    assert status.can_claim is True
