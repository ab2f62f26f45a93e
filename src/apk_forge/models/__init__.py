"""Schemas for APK Forge."""

from apk_forge.models.build import BuildRequest, BuildStatus

__all__ = [
    "BuildRequest",
    "BuildStatus",
]
