"""Balance ledger primitives.

Balances are never written with read-modify-write. Credits are an atomic
``tokens = tokens + :amount`` upsert; debits are a guarded decrement that
only matches when the row holds enough tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coremine.db.models import UserBalance
from coremine.db.upsert import upsert_for
from coremine.errors import InsufficientBalanceError
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)


async def credit(
    db: AsyncSession,
    user_id: str,
    amount: float,
    now: datetime | None = None,
) -> None:
    """Atomically add ``amount`` to a user's balance, creating the row if needed.

    Does not commit; runs inside the caller's transaction.
    """
    if amount == 0:
        return
    if amount < 0:
        msg = f"credit amount must be positive, got {amount}"
        raise ValueError(msg)
    now = now or utcnow()
    stmt = upsert_for(db, UserBalance).values(user_id=user_id, tokens=amount, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserBalance.user_id],
        set_={
            "tokens": UserBalance.tokens + stmt.excluded.tokens,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)


async def debit(
    db: AsyncSession,
    user_id: str,
    amount: float,
    now: datetime | None = None,
) -> None:
    """Atomically subtract ``amount``; raises InsufficientBalanceError instead of going negative.

    Does not commit; runs inside the caller's transaction.
    """
    if amount < 0:
        msg = f"debit amount must be positive, got {amount}"
        raise ValueError(msg)
    now = now or utcnow()
    result = await db.execute(
        update(UserBalance)
        .where(UserBalance.user_id == user_id, UserBalance.tokens >= amount)
        .values(tokens=UserBalance.tokens - amount, updated_at=now)
    )
    if result.rowcount != 1:
        raise InsufficientBalanceError(f"You need {amount:g} tokens for this purchase")


async def get_balance(db: AsyncSession, user_id: str) -> float:
    """Current token balance (0 if the user has no balance row yet)."""
    result = await db.execute(select(UserBalance.tokens).where(UserBalance.user_id == user_id))
    tokens = result.scalar_one_or_none()
    return float(tokens or 0.0)
