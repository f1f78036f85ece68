"""Epoch arq worker: rolls epochs over on schedule and runs consistency checks.

API requests also call ``ensure_current_epoch``, so this job is what makes
an epoch close on time even when nobody is using the app. Both paths are
safe to run concurrently.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from coremine.config import get_settings
from coremine.database import close_db, get_session_factory, init_db
from coremine.epochs.service import ensure_current_epoch
from coremine.epochs.validator import validate
from coremine.errors import CoreMineError, MultipleActiveEpochsError, RewardMismatchError

logger = logging.getLogger(__name__)


async def epoch_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Epoch worker started")


async def epoch_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Epoch worker shut down")


async def check_epoch(ctx: dict) -> int | None:  # type: ignore[type-arg]
    """Every minute: make sure an epoch is active, settling an expired one.

    Returns the active epoch id, or None if the transition failed (it is
    retried on the next run).
    """
    async with get_session_factory()() as db:
        try:
            epoch = await ensure_current_epoch(db, ctx.get("redis"))
        except CoreMineError as exc:
            logger.warning("Epoch check failed (retryable=%s): %s", exc.retryable, exc)
            return None
    return epoch.id


async def validate_epochs(ctx: dict) -> bool:  # type: ignore[type-arg]
    """Every 15 minutes: report broken epoch invariants. Never repairs."""
    async with get_session_factory()() as db:
        try:
            return await validate(db)
        except (MultipleActiveEpochsError, RewardMismatchError):
            logger.exception("Epoch consistency check failed")
            return False


class WorkerSettings:
    """arq worker settings for the epoch scheduler.

    Run with: arq coremine.workers.settings.WorkerSettings
    """

    functions = [check_epoch, validate_epochs]
    cron_jobs = [
        cron(check_epoch, second=0, run_at_startup=True),
        cron(validate_epochs, minute={0, 15, 30, 45}, second=30),
    ]
    on_startup = epoch_startup
    on_shutdown = epoch_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = get_settings().epoch_check_job_timeout_seconds
    allow_abort_jobs = True
