"""NFT catalog, ownership and purchase."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from coremine import balances
from coremine.db.models import Nft, UserNft
from coremine.errors import NftAlreadyOwnedError, NftNotFoundError
from coremine.notifications.service import BALANCE_CHANNEL, publish_event
from coremine.profiles import ensure_profile
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)


async def list_nfts(db: AsyncSession) -> list[Nft]:
    result = await db.execute(select(Nft).where(Nft.is_active.is_(True)).order_by(Nft.price, Nft.name))
    return list(result.scalars().all())


async def list_user_nfts(db: AsyncSession, user_id: str) -> list[UserNft]:
    result = await db.execute(
        select(UserNft)
        .options(selectinload(UserNft.nft))
        .where(UserNft.user_id == user_id)
        .order_by(UserNft.purchased_at)
    )
    return list(result.scalars().all())


async def total_boost_percent(db: AsyncSession, user_id: str) -> float:
    """Sum of boost percentages of every NFT the user owns."""
    result = await db.execute(
        select(func.coalesce(func.sum(Nft.boost_percentage), 0.0))
        .join(UserNft, UserNft.nft_id == Nft.id)
        .where(UserNft.user_id == user_id)
    )
    return float(result.scalar_one() or 0.0)


async def purchase_nft(
    db: AsyncSession,
    redis: object,
    user_id: str,
    nft_id: str,
    now: datetime | None = None,
) -> UserNft:
    """Buy an NFT with tokens.

    The debit is a guarded decrement in the same transaction as the ownership
    row: either both happen or neither does, and the balance cannot go negative.
    """
    now = now or utcnow()
    nft = (await db.execute(select(Nft).where(Nft.id == nft_id))).scalar_one_or_none()
    if nft is None or not nft.is_active:
        raise NftNotFoundError

    price = nft.price
    await ensure_profile(db, user_id)
    owned = await db.execute(
        select(UserNft.id).where(UserNft.user_id == user_id, UserNft.nft_id == nft_id)
    )
    if owned.scalar_one_or_none() is not None:
        await db.rollback()
        raise NftAlreadyOwnedError

    try:
        await balances.debit(db, user_id, price, now)
        ownership = UserNft(user_id=user_id, nft_id=nft_id, purchased_at=now)
        db.add(ownership)
        await db.flush()
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise NftAlreadyOwnedError from None
    except Exception:
        await db.rollback()
        raise

    logger.info("User %s purchased NFT %s for %.2f tokens", user_id, nft_id, price)
    await publish_event(redis, BALANCE_CHANNEL, {"user_id": user_id, "event": "nft_purchased", "amount": -price})
    return ownership
