"""API v1 router."""

from fastapi import APIRouter

from app.api.v1.offers import router as offers_router
from app.api.v1.products import router as products_router

api_router = APIRouter()

# Catalog & quotes
api_router.include_router(products_router)
api_router.include_router(offers_router)


@api_router.get("/")
async def root():
    """Root endpoint."""
    return {"message": "OMS API v1", "status": "operational"}
