"""arq epoch worker jobs."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from coremine.timeutil import utcnow
from coremine.workers.epoch_worker import WorkerSettings, check_epoch, validate_epochs
from tests.conftest import add_epoch


@pytest.mark.asyncio
async def test_check_epoch_creates_then_keeps(session_factory) -> None:
    first = await check_epoch({"redis": None})
    second = await check_epoch({"redis": None})

    assert first is not None
    assert second == first


@pytest.mark.asyncio
async def test_check_epoch_rolls_over(session_factory) -> None:
    old = await add_epoch(session_factory, utcnow() - timedelta(days=40))

    current = await check_epoch({"redis": None})

    assert current is not None
    assert current != old


@pytest.mark.asyncio
async def test_validate_epochs(session_factory) -> None:
    await add_epoch(session_factory, utcnow())
    assert await validate_epochs({}) is True


@pytest.mark.asyncio
async def test_validate_epochs_reports_failure(session_factory) -> None:
    async with session_factory() as s:
        await s.execute(text("DROP INDEX uq_epochs_single_active"))
        await s.commit()
    await add_epoch(session_factory, utcnow())
    await add_epoch(session_factory, utcnow())

    assert await validate_epochs({}) is False


def test_worker_schedule() -> None:
    assert len(WorkerSettings.cron_jobs) == 2
    assert {job.coroutine for job in WorkerSettings.cron_jobs} == {check_epoch, validate_epochs}
