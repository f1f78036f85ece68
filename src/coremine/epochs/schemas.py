"""Pydantic schemas for the epochs API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EpochResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    start_time: datetime
    end_time: datetime
    is_active: bool


class CurrentEpochResponse(BaseModel):
    """Response for GET /epochs/current."""

    epoch: EpochResponse
    state: str
    progress: float
    time_left: str


class TopPerformer(BaseModel):
    user_id: str
    reward: float


class EpochHistoryItem(BaseModel):
    epoch_id: int
    start_time: datetime
    end_time: datetime
    total_rewards: float
    participants: int
    top_performers: list[TopPerformer]


class EpochHistoryResponse(BaseModel):
    epochs: list[EpochHistoryItem]


class RewardDistributionResponse(BaseModel):
    total: float
    average: float
    top_earner: float


class PerformanceMetricsResponse(BaseModel):
    average_mining_time: float
    completion_rate: float
    active_users: int


class EpochAnalyticsResponse(BaseModel):
    epoch_id: int
    total_mining_activity: float
    user_participation: int
    reward_distribution: RewardDistributionResponse
    performance_metrics: PerformanceMetricsResponse


class EpochRewardResponse(BaseModel):
    """Settlement record of a closed epoch, with the caller's own share."""

    epoch_id: int
    total_distributed: float
    participant_count: int
    created_at: datetime
    your_reward: float


class ValidationResponse(BaseModel):
    valid: bool
    error: str | None = None
