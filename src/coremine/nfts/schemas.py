"""Pydantic schemas for the NFT API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class NftItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    price: float
    boost_percentage: float
    image_url: str | None = None


class NftListResponse(BaseModel):
    nfts: list[NftItem]


class OwnedNftItem(BaseModel):
    nft: NftItem
    purchased_at: datetime


class OwnedNftListResponse(BaseModel):
    nfts: list[OwnedNftItem]
    total_boost: float


class PurchaseResponse(BaseModel):
    nft_id: str
    purchased_at: datetime
    balance: float
