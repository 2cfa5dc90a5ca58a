"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints with prefixes
"""

from fastapi import APIRouter

from .endpoints import status, negotiation, streaming, offers

API_V1_PREFIX = "/api/v1"

api_router = APIRouter()

api_router.include_router(status.router, prefix=API_V1_PREFIX, tags=["status"])
api_router.include_router(negotiation.router, prefix=API_V1_PREFIX, tags=["negotiation"])
api_router.include_router(streaming.router, prefix=API_V1_PREFIX, tags=["streaming"])
api_router.include_router(offers.router, prefix=API_V1_PREFIX, tags=["offers"])
