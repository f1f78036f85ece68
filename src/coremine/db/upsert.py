"""Dialect-aware INSERT ... ON CONFLICT builder."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_for(db: AsyncSession, model: Any) -> Any:
    """Return an ``insert(model)`` that supports ``on_conflict_do_*`` for the session's backend."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
