"""Initial schema: profiles, epochs, rewards, sessions, balances, streaks, NFTs, notifications.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite.
_pk = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_json = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """Create all tables."""
    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(64), nullable=True),
        sa.Column("mining_rate", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("mining_boost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("streak_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_claimed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_preferences", _json, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # --- epochs ---
    op.create_table(
        "epochs",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    # At most one active epoch.
    op.create_index(
        "uq_epochs_single_active",
        "epochs",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    # --- epoch_rewards ---
    op.create_table(
        "epoch_rewards",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column(
            "epoch_id", sa.BigInteger(), sa.ForeignKey("epochs.id", ondelete="RESTRICT"), nullable=False, unique=True
        ),
        sa.Column("total_distributed", sa.Float(), nullable=False, server_default="0"),
        sa.Column("participant_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("distribution_data", _json, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- mining_sessions ---
    op.create_table(
        "mining_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("epoch_id", sa.BigInteger(), sa.ForeignKey("epochs.id"), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("tokens_mined", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("continued_from", sa.String(64), sa.ForeignKey("mining_sessions.id"), nullable=True, unique=True),
    )
    op.create_index("idx_mining_sessions_epoch", "mining_sessions", ["epoch_id"])
    op.create_index(
        "uq_mining_sessions_user_active",
        "mining_sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("active"),
        sqlite_where=sa.text("active = 1"),
    )

    # --- user_balances ---
    op.create_table(
        "user_balances",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True
        ),
        sa.Column("tokens", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("tokens >= 0", name="ck_user_balances_non_negative"),
    )

    # --- streak_claims ---
    op.create_table(
        "streak_claims",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column("streak_days", sa.Integer(), nullable=False),
        sa.Column("waves_awarded", sa.Float(), nullable=False),
        sa.UniqueConstraint("user_id", "claim_date", name="uq_streak_claims_user_day"),
    )

    # --- nfts / user_nfts ---
    op.create_table(
        "nfts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("boost_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "user_nfts",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("nft_id", sa.String(64), sa.ForeignKey("nfts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "nft_id", name="uq_user_nfts_user_nft"),
    )

    # --- notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", _pk, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("notifications")
    op.drop_table("user_nfts")
    op.drop_table("nfts")
    op.drop_table("streak_claims")
    op.drop_table("user_balances")
    op.drop_index("uq_mining_sessions_user_active", table_name="mining_sessions")
    op.drop_index("idx_mining_sessions_epoch", table_name="mining_sessions")
    op.drop_table("mining_sessions")
    op.drop_table("epoch_rewards")
    op.drop_index("uq_epochs_single_active", table_name="epochs")
    op.drop_table("epochs")
    op.drop_table("profiles")
