"""ORM models for the mining / epoch / reward tables.

Schema is created by the Alembic migrations in ``alembic/versions``; the
indexes declared here mirror them so ``Base.metadata.create_all`` builds an
equivalent schema for SQLite.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coremine.db.base import Base, JSONType

# SQLite needs an explicit autoincrement INTEGER primary key; BIGSERIAL on PostgreSQL.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """One row per authenticated user; id is the auth provider's user id."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mining_rate: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, server_default="1.0")
    mining_boost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_claimed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_preferences: Mapped[dict[str, Any]] = mapped_column(
        JSONType, default=lambda: {"email": True, "push": True}
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    balance: Mapped[UserBalance | None] = relationship("UserBalance", back_populates="profile", uselist=False)


# ---------------------------------------------------------------------------
# Epochs
# ---------------------------------------------------------------------------


class Epoch(Base):
    """A time-boxed mining period. Append-only; only closure flips is_active."""

    __tablename__ = "epochs"
    __table_args__ = (
        # At most one active epoch, enforced by the database.
        Index(
            "uq_epochs_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reward: Mapped[EpochReward | None] = relationship("EpochReward", back_populates="epoch", uselist=False)


class EpochReward(Base):
    """Settlement record for a closed epoch. Written once, never updated."""

    __tablename__ = "epoch_rewards"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    epoch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("epochs.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    total_distributed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distribution_data: Mapped[dict[str, float]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    epoch: Mapped[Epoch] = relationship("Epoch", back_populates="reward")


# ---------------------------------------------------------------------------
# Mining
# ---------------------------------------------------------------------------


class MiningSession(Base):
    """A user's mining session. tokens_mined only ever grows."""

    __tablename__ = "mining_sessions"
    __table_args__ = (
        Index("idx_mining_sessions_epoch", "epoch_id"),
        Index(
            "uq_mining_sessions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    epoch_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("epochs.id"), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tokens_mined: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set on the session that carries on mining after its parent's epoch was settled.
    continued_from: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("mining_sessions.id"), unique=True, nullable=True
    )


class UserBalance(Base):
    """Token balance. Only ever changed by atomic increment / guarded decrement."""

    __tablename__ = "user_balances"
    __table_args__ = (
        CheckConstraint("tokens >= 0", name="ck_user_balances_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    tokens: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    profile: Mapped[Profile] = relationship("Profile", back_populates="balance")


# ---------------------------------------------------------------------------
# Daily streak
# ---------------------------------------------------------------------------


class StreakClaim(Base):
    """Audit row for a daily bonus claim. One per user per UTC+1 day."""

    __tablename__ = "streak_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "claim_date", name="uq_streak_claims_user_day"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False)
    waves_awarded: Mapped[float] = mapped_column(Float, nullable=False)


# ---------------------------------------------------------------------------
# NFTs
# ---------------------------------------------------------------------------


class Nft(Base):
    """Catalog entry for a purchasable boost NFT."""

    __tablename__ = "nfts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    boost_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserNft(Base):
    """Ownership of an NFT by a user."""

    __tablename__ = "user_nfts"
    __table_args__ = (
        UniqueConstraint("user_id", "nft_id", name="uq_user_nfts_user_nft"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    nft_id: Mapped[str] = mapped_column(String(64), ForeignKey("nfts.id", ondelete="CASCADE"), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    nft: Mapped[Nft] = relationship("Nft")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """In-app notification row."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
