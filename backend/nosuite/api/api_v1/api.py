"""
Main API router that includes all endpoint routers
"""

from fastapi import APIRouter

from nosuite.api.api_v1.endpoints import auth, realtime, service, storage

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(service.router, tags=["service"])
api_router.include_router(auth.router, tags=["authentication"])
api_router.include_router(storage.router, tags=["storage"])
api_router.include_router(realtime.router, tags=["realtime"])
