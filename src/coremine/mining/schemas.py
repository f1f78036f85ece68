"""Pydantic schemas for the mining API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """A mining session as stored on the server."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    epoch_id: int | None = None
    start_time: datetime
    end_time: datetime | None = None
    active: bool
    tokens_mined: float
    continued_from: str | None = None


class SessionSyncRequest(BaseModel):
    """Full client-side state of a session, pushed by the accumulator or the sync job."""

    start_time: datetime
    tokens_mined: float = Field(ge=0)
    active: bool
    end_time: datetime | None = None


class SessionSyncResponse(BaseModel):
    session: SessionResponse
    credited: float


class ActiveSessionResponse(BaseModel):
    session: SessionResponse | None = None


# ---------------------------------------------------------------------------
# /mining-rewards
# ---------------------------------------------------------------------------


class ProjectedEarningsResponse(BaseModel):
    hourly: float
    daily: float
    weekly: float
    monthly: float


class MiningSummaryResponse(BaseModel):
    """Response for GET /mining-rewards."""

    mining_rate: float
    boost_percentage: float
    streak_days: int
    streak_bonus: float
    effective_rate: float
    total_mined: float
    current_balance: float
    projected_earnings: ProjectedEarningsResponse


class MiningRewardsAction(BaseModel):
    """Body of POST /mining-rewards."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["claim_streak", "finalize_session"]
    session_id: str | None = Field(default=None, alias="sessionId")
    amount: float | None = None


class ClaimStreakResponse(BaseModel):
    success: bool = True
    streak_days: int
    waves_awarded: float


class SuccessResponse(BaseModel):
    success: bool = True
