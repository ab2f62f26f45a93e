"""APK Forge services."""

from apk_forge.services.builder import ApkBuildService
from apk_forge.services.gradle import GradleRunner
from apk_forge.services.icon_fetcher import IconFetcher
from apk_forge.services.materializer import ProjectMaterializer
from apk_forge.services.publisher import HttpArtifactPublisher, LocalArtifactPublisher

__all__ = [
    "ApkBuildService",
    "GradleRunner",
    "IconFetcher",
    "ProjectMaterializer",
    "HttpArtifactPublisher",
    "LocalArtifactPublisher",
]
