"""Profile lookup/creation for authenticated users."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.config import get_settings
from coremine.db.models import Profile
from coremine.db.upsert import upsert_for
from coremine.timeutil import utcnow


async def get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def ensure_profile(db: AsyncSession, user_id: str) -> Profile:
    """Get or create the profile row for an auth user id. Does not commit.

    Uses INSERT ... ON CONFLICT DO NOTHING so two first requests from the same
    user cannot race each other into a duplicate-key error.
    """
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile

    stmt = upsert_for(db, Profile).values(
        id=user_id,
        mining_rate=get_settings().base_mining_rate,
        mining_boost=0.0,
        streak_days=0,
        notification_preferences={"email": True, "push": True},
        created_at=utcnow(),
    )
    await db.execute(stmt.on_conflict_do_nothing(index_elements=[Profile.id]))
    profile = await get_profile(db, user_id)
    assert profile is not None
    return profile
