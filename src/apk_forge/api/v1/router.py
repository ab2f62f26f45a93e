"""Main API router for v1."""

from fastapi import APIRouter

from apk_forge.api.v1.endpoints import builds, capabilities, websockets

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(builds.router, prefix="/builds", tags=["Builds"])
api_router.include_router(capabilities.router, tags=["System"])
api_router.include_router(websockets.router, tags=["Real-time"])
