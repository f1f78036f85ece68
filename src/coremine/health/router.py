"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.config import get_settings
from coremine.database import get_session
from coremine.dependencies import get_redis_dep
from coremine.epochs.service import get_active_epoch

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
) -> JSONResponse:
    """Readiness probe: database, Redis, and whether an epoch is active.

    503 if the database is down; Redis and the epoch only degrade.
    """
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
        epoch = await get_active_epoch(db)
        checks["active_epoch"] = epoch.id if epoch else None
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    if redis is None:
        checks["redis"] = "not configured"
    else:
        try:
            await redis.ping()  # type: ignore[attr-defined]
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    database_ok = checks["database"] == "ok"
    all_ok = database_ok and checks["redis"] == "ok" and checks.get("active_epoch") is not None
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={"status": "ready" if all_ok else "degraded", "checks": checks},
    )


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "service": "coremine",
        "version": settings.app_version,
        "environment": settings.environment,
    }
