"""Epochs API: current epoch, history, analytics, rewards, consistency check."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.auth.dependencies import get_current_user_id
from coremine.database import get_session
from coremine.dependencies import get_redis_dep
from coremine.epochs import schemas
from coremine.epochs.analytics import get_epoch_analytics
from coremine.epochs.service import (
    describe_state,
    ensure_current_epoch,
    epoch_progress,
    format_time_left,
    get_epoch,
    get_epoch_history,
)
from coremine.epochs.settlement import get_epoch_reward
from coremine.epochs.validator import validate
from coremine.errors import CoreMineError, MultipleActiveEpochsError, RewardMismatchError
from coremine.timeutil import ensure_utc, utcnow

router = APIRouter(prefix="/api/v1/epochs", tags=["Epochs"])


@router.get("/current", response_model=schemas.CurrentEpochResponse)
async def current_epoch(
    _user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
) -> schemas.CurrentEpochResponse:
    """The active epoch; rolls an expired one over first."""
    now = utcnow()
    try:
        epoch = await ensure_current_epoch(db, redis, now)
    except CoreMineError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return schemas.CurrentEpochResponse(
        epoch=schemas.EpochResponse(
            id=epoch.id,
            start_time=ensure_utc(epoch.start_time),
            end_time=ensure_utc(epoch.end_time),
            is_active=epoch.is_active,
        ),
        state=describe_state(epoch, now).value,
        progress=round(epoch_progress(epoch, now), 2),
        time_left=format_time_left(epoch, now),
    )


@router.get("/history", response_model=schemas.EpochHistoryResponse)
async def epoch_history(
    limit: int = Query(10, ge=1, le=100),
    _user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.EpochHistoryResponse:
    entries = await get_epoch_history(db, limit=limit)
    return schemas.EpochHistoryResponse(
        epochs=[
            schemas.EpochHistoryItem(
                epoch_id=e.epoch_id,
                start_time=e.start_time,
                end_time=e.end_time,
                total_rewards=e.total_rewards,
                participants=e.participants,
                top_performers=[schemas.TopPerformer(user_id=uid, reward=r) for uid, r in e.top_performers],
            )
            for e in entries
        ]
    )


@router.get("/validate", response_model=schemas.ValidationResponse)
async def validate_epochs(
    _user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.ValidationResponse | JSONResponse:
    """Run the consistency checks; 409 with the error if an invariant is broken."""
    try:
        await validate(db)
    except (MultipleActiveEpochsError, RewardMismatchError) as e:
        return JSONResponse(status_code=409, content={"valid": False, "error": str(e)})
    return schemas.ValidationResponse(valid=True)


@router.get("/{epoch_id}/analytics", response_model=schemas.EpochAnalyticsResponse)
async def epoch_analytics(
    epoch_id: int,
    _user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.EpochAnalyticsResponse:
    if await get_epoch(db, epoch_id) is None:
        raise HTTPException(status_code=404, detail="Epoch not found")
    analytics = await get_epoch_analytics(db, epoch_id)
    return schemas.EpochAnalyticsResponse(epoch_id=epoch_id, **asdict(analytics))


@router.get("/{epoch_id}/reward", response_model=schemas.EpochRewardResponse)
async def epoch_reward(
    epoch_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.EpochRewardResponse:
    reward = await get_epoch_reward(db, epoch_id)
    if reward is None:
        raise HTTPException(status_code=404, detail="Epoch has not been settled")
    breakdown = reward.distribution_data or {}
    return schemas.EpochRewardResponse(
        epoch_id=epoch_id,
        total_distributed=reward.total_distributed,
        participant_count=reward.participant_count,
        created_at=ensure_utc(reward.created_at),
        your_reward=float(breakdown.get(user_id, 0.0)),
    )
