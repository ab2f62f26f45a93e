"""Core components for APK Forge."""

from apk_forge.core.config import settings

__all__ = ["settings"]
