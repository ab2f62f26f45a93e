"""System capabilities endpoint."""

import shutil

from fastapi import APIRouter

from apk_forge.core.config import settings
from apk_forge.core.jobs import BuildScheduler
from apk_forge.services.gradle import GradleRunner
from apk_forge.services.materializer import ProjectMaterializer

router = APIRouter()


@router.get("/capabilities")
async def get_capabilities() -> dict:
    """Get toolchain, template and build capacity information."""
    materializer = ProjectMaterializer(settings.TEMPLATE_PATH)
    runner = GradleRunner()

    template_info = materializer.check_template()
    toolchain_info = await runner.check_availability(
        settings.TEMPLATE_PATH if settings.TEMPLATE_PATH.is_dir() else None
    )

    # Storage info
    try:
        usage = shutil.disk_usage(settings.WORK_PATH)
        storage_info = {
            "workPath": str(settings.WORK_PATH),
            "freeSpace": usage.free,
        }
    except OSError:
        storage_info = {
            "workPath": str(settings.WORK_PATH),
            "freeSpace": 0,
        }

    return {
        "template": template_info,
        "toolchain": {
            **toolchain_info,
            "buildCommand": " ".join(runner.build_command),
            "timeoutSeconds": runner.timeout,
        },
        "builds": BuildScheduler.get_instance().stats(),
        "publisher": settings.PUBLISHER,
        "storage": storage_info,
    }
