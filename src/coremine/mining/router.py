"""Mining API: session lifecycle/sync and the /mining-rewards surface."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.auth.dependencies import get_current_user_id, get_optional_user_id
from coremine.database import get_session
from coremine.dependencies import get_redis_dep
from coremine.errors import (
    AlreadyClaimedError,
    AlreadyMiningError,
    CoreMineError,
    SessionNotFoundError,
)
from coremine.mining import schemas, service
from coremine.streaks import service as streaks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/mining", tags=["Mining"])
rewards_router = APIRouter(tags=["Mining Rewards"])


def _session_response(session: object) -> schemas.SessionResponse:
    return schemas.SessionResponse(**service.session_payload(session))  # type: ignore[arg-type]


def _unavailable(exc: CoreMineError) -> HTTPException:
    return HTTPException(status_code=503 if exc.retryable else 500, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /mining/sessions (start mining)
# ---------------------------------------------------------------------------
@router.post("/sessions", response_model=schemas.SessionResponse, status_code=201)
async def start_session(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
) -> schemas.SessionResponse:
    """Open a session in the current epoch (409 if one is already active)."""
    try:
        session = await service.start_session(db, redis, user_id)
    except AlreadyMiningError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except CoreMineError as e:
        raise _unavailable(e) from e
    return _session_response(session)


# ---------------------------------------------------------------------------
# GET /mining/sessions/active
# ---------------------------------------------------------------------------
@router.get("/sessions/active", response_model=schemas.ActiveSessionResponse)
async def active_session(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.ActiveSessionResponse:
    session = await service.get_active_session(db, user_id)
    return schemas.ActiveSessionResponse(session=_session_response(session) if session else None)


# ---------------------------------------------------------------------------
# PUT /mining/sessions/{id} (idempotent upsert)
# ---------------------------------------------------------------------------
@router.put("/sessions/{session_id}", response_model=schemas.SessionSyncResponse)
async def sync_session(
    session_id: str,
    body: schemas.SessionSyncRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
) -> schemas.SessionSyncResponse:
    """Insert or merge a client-reported session; replays are no-ops."""
    state = service.SessionState(
        id=session_id,
        start_time=body.start_time,
        tokens_mined=body.tokens_mined,
        active=body.active,
        end_time=body.end_time,
    )
    try:
        session, credited = await service.sync_session(db, redis, user_id, state)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CoreMineError as e:
        raise _unavailable(e) from e
    return schemas.SessionSyncResponse(session=_session_response(session), credited=credited)


# ---------------------------------------------------------------------------
# /mining-rewards
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@rewards_router.get("/mining-rewards", response_model=schemas.MiningSummaryResponse)
async def mining_rewards_summary(
    user_id: str | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.MiningSummaryResponse | JSONResponse:
    """Mining rate, boosts, totals and projected earnings for the caller."""
    if user_id is None:
        return _error(401, "Unauthorized")
    try:
        summary = await service.get_mining_summary(db, user_id)
    except Exception:
        logger.exception("Failed to build mining summary for %s", user_id)
        return _error(500, "Internal server error")
    return schemas.MiningSummaryResponse(**asdict(summary))


@rewards_router.post("/mining-rewards", response_model=None)
async def mining_rewards_action(
    request: Request,
    user_id: str | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
) -> dict[str, object] | JSONResponse:
    """Dispatch ``claim_streak`` / ``finalize_session``."""
    if user_id is None:
        return _error(401, "Unauthorized")

    try:
        action = schemas.MiningRewardsAction.model_validate(await request.json())
    except (ValueError, ValidationError):
        return _error(400, "Invalid action")

    try:
        if action.action == "claim_streak":
            result = await streaks.claim(db, redis, user_id)
            return schemas.ClaimStreakResponse(
                streak_days=result.streak_days, waves_awarded=result.waves_awarded
            ).model_dump()

        if not action.session_id or action.amount is None or action.amount < 0:
            return _error(400, "Invalid session data")
        await service.finalize_session(db, redis, user_id, action.session_id, action.amount)
        return schemas.SuccessResponse().model_dump()
    except (AlreadyClaimedError, SessionNotFoundError) as e:
        return _error(400, str(e))
    except CoreMineError as e:
        logger.warning("mining-rewards %s failed for %s: %s", action.action, user_id, e)
        return _error(500, str(e))
    except Exception:
        logger.exception("mining-rewards %s failed for %s", action.action, user_id)
        return _error(500, "Internal server error")
