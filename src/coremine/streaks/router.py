"""Daily streak status endpoint. Claims go through POST /mining-rewards."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.auth.dependencies import get_current_user_id
from coremine.database import get_session
from coremine.streaks.service import get_streak_status

router = APIRouter(prefix="/api/v1/streak", tags=["Streak"])


class StreakStatusResponse(BaseModel):
    streak_days: int
    last_claimed: datetime | None = None
    can_claim: bool
    streak_bonus: float
    claim_reward: float


@router.get("", response_model=StreakStatusResponse)
async def streak_status(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> StreakStatusResponse:
    status = await get_streak_status(db, user_id)
    return StreakStatusResponse(
        streak_days=status.streak_days,
        last_claimed=status.last_claimed,
        can_claim=status.can_claim,
        streak_bonus=status.streak_bonus,
        claim_reward=status.claim_reward,
    )
