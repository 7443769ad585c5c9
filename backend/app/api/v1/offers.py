"""
Offers API endpoints.

GET    /offers
POST   /offers
GET    /offers/{offer_id}
PUT    /offers/{offer_id}
DELETE /offers/{offer_id}
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status

from app.schemas.offer import Offer, OfferCreate, OfferUpdate
from app.services.catalog_context import CatalogContext, get_catalog_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offers", tags=["Offers"])


@router.get("", response_model=List[Offer])
async def list_offers(ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.offers.list_offers()


@router.post("", response_model=Offer, status_code=status.HTTP_201_CREATED)
async def create_offer(body: OfferCreate, ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.offers.create_offer(body)


@router.get("/{offer_id}", response_model=Offer)
async def get_offer(offer_id: str, ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.offers.get_offer(offer_id)


@router.put("/{offer_id}", response_model=Offer)
async def update_offer(offer_id: str, body: OfferUpdate, ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.offers.update_offer(offer_id, body)


@router.delete("/{offer_id}")
async def delete_offer(offer_id: str, ctx: CatalogContext = Depends(get_catalog_context)):
    await ctx.offers.delete_offer(offer_id)
    return {"message": "Offer deleted", "id": offer_id}
