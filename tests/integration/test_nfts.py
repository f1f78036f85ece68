"""NFT purchases and the balance guard."""

import asyncio

import pytest
from sqlalchemy import func, select

from coremine.db.models import UserNft
from coremine.errors import InsufficientBalanceError, NftAlreadyOwnedError, NftNotFoundError
from coremine.nfts.service import list_nfts, list_user_nfts, purchase_nft, total_boost_percent
from tests.conftest import T0, add_nft, add_profile, balance_of


@pytest.mark.asyncio
async def test_purchase_debits_balance(session_factory, db, redis) -> None:
    await add_profile(session_factory, "alice", tokens=120.0)
    await add_nft(session_factory, "drill", price=50.0, boost=25.0)

    ownership = await purchase_nft(db, redis, "alice", "drill", T0)

    assert ownership.nft_id == "drill"
    assert await balance_of(session_factory, "alice") == pytest.approx(70.0)
    async with session_factory() as s:
        assert await total_boost_percent(s, "alice") == pytest.approx(25.0)
        owned = await list_user_nfts(s, "alice")
    assert [o.nft.name for o in owned] == ["Drill"]
    redis.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_insufficient_balance_changes_nothing(session_factory, db, redis) -> None:
    await add_profile(session_factory, "alice", tokens=20.0)
    await add_nft(session_factory, "drill", price=50.0)

    with pytest.raises(InsufficientBalanceError):
        await purchase_nft(db, redis, "alice", "drill", T0)

    assert await balance_of(session_factory, "alice") == pytest.approx(20.0)
    async with session_factory() as s:
        assert (await s.execute(select(func.count(UserNft.id)))).scalar_one() == 0
    redis.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_balance_row_is_insufficient(session_factory, db, redis) -> None:
    await add_nft(session_factory, "drill", price=1.0)
    with pytest.raises(InsufficientBalanceError):
        await purchase_nft(db, redis, "nobody", "drill", T0)


@pytest.mark.asyncio
async def test_already_owned(session_factory, db, redis) -> None:
    await add_profile(session_factory, "alice", tokens=500.0)
    await add_nft(session_factory, "drill", owner="alice")

    with pytest.raises(NftAlreadyOwnedError):
        await purchase_nft(db, redis, "alice", "drill", T0)

    assert await balance_of(session_factory, "alice") == pytest.approx(500.0)


@pytest.mark.asyncio
async def test_unknown_nft(session_factory, db, redis) -> None:
    with pytest.raises(NftNotFoundError):
        await purchase_nft(db, redis, "alice", "missing", T0)


@pytest.mark.asyncio
async def test_concurrent_purchases_never_overdraw(session_factory, redis) -> None:
    await add_profile(session_factory, "alice", tokens=100.0)
    for name in ("a", "b", "c", "d"):
        await add_nft(session_factory, name, price=40.0)

    async def buy(nft_id: str) -> bool:
        async with session_factory() as s:
            try:
                await purchase_nft(s, redis, "alice", nft_id, T0)
            except InsufficientBalanceError:
                return False
            return True

    outcomes = await asyncio.gather(*(buy(n) for n in ("a", "b", "c", "d")))

    assert outcomes.count(True) == 2
    assert await balance_of(session_factory, "alice") == pytest.approx(20.0)


@pytest.mark.asyncio
async def test_catalog_is_sorted_by_price(session_factory, db) -> None:
    await add_nft(session_factory, "gold", price=200.0)
    await add_nft(session_factory, "iron", price=10.0)
    names = [n.id for n in await list_nfts(db)]
    assert names == ["iron", "gold"]
