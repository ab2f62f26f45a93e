"""Build endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from apk_forge.core.auth import require_signature
from apk_forge.core.errors import CapacityExceeded
from apk_forge.core.jobs import BuildScheduler
from apk_forge.models.build import BuildRequest

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_signature)])


@router.post("")
async def create_build(request: BuildRequest) -> dict:
    """Queue an APK build for a deployed web app."""
    logger.info(f"Build requested for {request.app_name} ({request.package_name})")
    scheduler = BuildScheduler.get_instance()

    try:
        build_id = scheduler.enqueue(request)
    except CapacityExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))

    return {"buildId": build_id}


@router.get("")
async def list_builds(limit: int = Query(50, ge=1, le=500)) -> dict:
    """List recent builds."""
    scheduler = BuildScheduler.get_instance()
    return {"success": True, "data": [j.to_dict() for j in scheduler.list_jobs(limit)]}


@router.get("/{build_id}/status")
async def get_build_status(build_id: str) -> dict:
    """Poll a build's status."""
    job = BuildScheduler.get_instance().status(build_id)
    if not job:
        raise HTTPException(status_code=404, detail="Build not found")
    return job.to_dict()
