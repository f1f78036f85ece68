"""Offline buffering and background sync, end to end through the API."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport
from sqlalchemy import select

from coremine.auth.jwt import create_access_token
from coremine.db.models import MiningSession
from coremine.errors import SessionNotFoundError, StorageError
from coremine.mining.accumulator import Connectivity, MiningAccumulator
from coremine.mining.client import MiningApiClient
from coremine.mining.ledger import OfflineLedger
from coremine.mining.state import LocalSession
from coremine.mining.sync import BackgroundSync
from tests.conftest import balance_of

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def api(session_factory):
    from coremine.main import create_app

    client = MiningApiClient(
        create_access_token("user-1"),
        base_url="http://test",
        transport=ASGITransport(app=create_app()),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def ledger(tmp_path):
    async with OfflineLedger(str(tmp_path / "offline.db")) as opened:
        yield opened


async def _server_session(session_factory, session_id: str) -> MiningSession | None:
    async with session_factory() as s:
        return (await s.execute(select(MiningSession).where(MiningSession.id == session_id))).scalar_one_or_none()


@pytest.mark.asyncio
async def test_offline_session_round_trip(session_factory, api, ledger) -> None:
    """Mined offline, synced on reconnect: same total as online, buffer empty."""
    connectivity = Connectivity(online=False)
    acc = MiningAccumulator("user-1", api, ledger, connectivity, base_rate=1.0)
    sync = BackgroundSync(ledger, api, connectivity)

    session = await acc.start(T0, run=False)
    for minute in range(1, 6):
        await acc.tick(T0 + timedelta(minutes=minute))
    await acc.stop(T0 + timedelta(minutes=6))
    assert await ledger.count() == 1

    connectivity.set_online(True)
    report = await sync.sync_once()

    assert report.synced == 1
    assert await ledger.count() == 0
    stored = await _server_session(session_factory, session.id)
    assert stored is not None
    assert stored.tokens_mined == pytest.approx(6.0)
    assert stored.active is False
    assert stored.epoch_id is not None
    assert await balance_of(session_factory, "user-1") == pytest.approx(6.0)


@pytest.mark.asyncio
async def test_online_session_matches_offline_total(session_factory, api, ledger) -> None:
    acc = MiningAccumulator("user-1", api, ledger, Connectivity(online=True), base_rate=1.0)
    session = await acc.start(T0, run=False)
    for minute in range(1, 6):
        await acc.tick(T0 + timedelta(minutes=minute))
    await acc.stop(T0 + timedelta(minutes=6))

    stored = await _server_session(session_factory, session.id)
    assert stored is not None
    assert stored.tokens_mined == pytest.approx(6.0)
    assert await ledger.count() == 0
    assert await balance_of(session_factory, "user-1") == pytest.approx(6.0)


@pytest.mark.asyncio
async def test_replayed_delivery_is_not_double_counted(session_factory, api, ledger) -> None:
    session = LocalSession(
        id="offline-1", user_id="user-1", start_time=T0, last_update=T0 + timedelta(minutes=4),
        tokens_mined=4.0, active=False, end_time=T0 + timedelta(minutes=4),
    )
    sync = BackgroundSync(ledger, api, Connectivity(online=True))
    for _ in range(3):
        await ledger.store(session)
        await sync.sync_once()

    stored = await _server_session(session_factory, "offline-1")
    assert stored.tokens_mined == pytest.approx(4.0)
    assert await balance_of(session_factory, "user-1") == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_failed_sync_keeps_entry(ledger) -> None:
    remote = AsyncMock()
    remote.push_session.side_effect = StorageError
    await ledger.store(LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0))

    report = await BackgroundSync(ledger, remote, Connectivity(online=True)).sync_once()

    assert report.failed == 1
    assert await ledger.count() == 1


@pytest.mark.asyncio
async def test_rejected_session_is_discarded(ledger) -> None:
    remote = AsyncMock()
    remote.push_session.side_effect = SessionNotFoundError
    await ledger.store(LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0))

    report = await BackgroundSync(ledger, remote, Connectivity(online=True)).sync_once()

    assert report.discarded == 1
    assert await ledger.count() == 0


@pytest.mark.asyncio
async def test_sync_skipped_while_offline(ledger) -> None:
    remote = AsyncMock()
    await ledger.store(LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0))
    report = await BackgroundSync(ledger, remote, Connectivity(online=False)).sync_once()
    remote.push_session.assert_not_awaited()
    assert report.synced == 0
    assert await ledger.count() == 1


@pytest.mark.asyncio
async def test_newer_tick_during_upload_survives(ledger) -> None:
    first = LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0, tokens_mined=1.0)
    newer = LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0, tokens_mined=2.0)
    await ledger.store(first)

    async def _push(session: LocalSession) -> None:
        if session.tokens_mined == 1.0:
            await ledger.store(newer)  # accumulator writes while the upload is in flight

    remote = AsyncMock()
    remote.push_session.side_effect = _push
    sync = BackgroundSync(ledger, remote, Connectivity(online=True))

    await sync.sync_once()
    kept = await ledger.get("s1")
    assert kept is not None and kept.tokens_mined == 2.0

    await sync.sync_once()
    assert await ledger.count() == 0


@pytest.mark.asyncio
async def test_reconnect_triggers_sync(ledger) -> None:
    remote = AsyncMock()
    connectivity = Connectivity(online=False)
    sync = BackgroundSync(ledger, remote, connectivity, interval_seconds=3600)
    await ledger.store(LocalSession(id="s1", user_id="u", start_time=T0, last_update=T0))

    sync.start()
    try:
        connectivity.set_online(True)
        for _ in range(100):
            if await ledger.count() == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await sync.stop()

    remote.push_session.assert_awaited_once()
    assert await ledger.count() == 0


@pytest.mark.asyncio
async def test_accumulator_follows_epoch_rollover(session_factory, api, ledger) -> None:
    from coremine.epochs.service import ensure_current_epoch
    from coremine.epochs.settlement import get_epoch_reward
    from coremine.timeutil import utcnow

    acc = MiningAccumulator("user-1", api, ledger, Connectivity(online=True), base_rate=1.0)
    first = await acc.start(T0, run=False)
    await acc.tick(T0 + timedelta(minutes=10))

    async with session_factory() as s:
        new_epoch = await ensure_current_epoch(s, None, utcnow() + timedelta(days=31))
        new_epoch_id = new_epoch.id

    await acc.tick(T0 + timedelta(minutes=25))

    assert acc.is_mining
    assert acc.session.id != first.id
    assert acc.session.epoch_id == new_epoch_id
    assert acc.session.tokens_mined == pytest.approx(15.0)

    async with session_factory() as s:
        reward = await get_epoch_reward(s, first.epoch_id)
    old = await _server_session(session_factory, first.id)
    assert reward.distribution_data == {"user-1": pytest.approx(10.0)}
    assert old.tokens_mined == pytest.approx(10.0)
    assert old.active is False

    await acc.stop(T0 + timedelta(minutes=30))
    tail = await _server_session(session_factory, acc.session.id)
    assert tail.epoch_id == new_epoch_id
    assert tail.continued_from == first.id
    assert tail.tokens_mined == pytest.approx(20.0)
    assert tail.active is False
    assert await balance_of(session_factory, "user-1") == pytest.approx(10.0 + 10.0 + 20.0)
