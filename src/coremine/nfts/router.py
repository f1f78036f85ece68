"""NFT catalog and purchase endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from coremine import balances
from coremine.auth.dependencies import get_current_user_id
from coremine.database import get_session
from coremine.dependencies import get_redis_dep
from coremine.errors import InsufficientBalanceError, NftAlreadyOwnedError, NftNotFoundError
from coremine.nfts import schemas, service
from coremine.timeutil import ensure_utc

router = APIRouter(prefix="/api/v1/nfts", tags=["NFTs"])


@router.get("", response_model=schemas.NftListResponse)
async def list_nfts(
    _user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.NftListResponse:
    nfts = await service.list_nfts(db)
    return schemas.NftListResponse(nfts=[schemas.NftItem.model_validate(n) for n in nfts])


@router.get("/mine", response_model=schemas.OwnedNftListResponse)
async def my_nfts(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> schemas.OwnedNftListResponse:
    owned = await service.list_user_nfts(db, user_id)
    items = []
    for row in owned:
        items.append(schemas.OwnedNftItem(
            nft=schemas.NftItem.model_validate(row.nft),
            purchased_at=ensure_utc(row.purchased_at),
        ))
    return schemas.OwnedNftListResponse(
        nfts=items,
        total_boost=await service.total_boost_percent(db, user_id),
    )


@router.post("/{nft_id}/purchase", response_model=schemas.PurchaseResponse, status_code=201)
async def purchase(
    nft_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
) -> schemas.PurchaseResponse:
    """Buy an NFT; 400 if the balance does not cover the price."""
    try:
        ownership = await service.purchase_nft(db, redis, user_id, nft_id)
    except NftNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except NftAlreadyOwnedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return schemas.PurchaseResponse(
        nft_id=nft_id,
        purchased_at=ensure_utc(ownership.purchased_at),
        balance=await balances.get_balance(db, user_id),
    )
