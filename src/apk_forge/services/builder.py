"""APK build pipeline: one job from template to published artifact."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from apk_forge.core.config import settings
from apk_forge.models.build import BuildRequest
from apk_forge.services.gradle import GradleRunner
from apk_forge.services.icon_fetcher import IconFetcher
from apk_forge.services.icons import render_launcher_icons
from apk_forge.services.materializer import ICON_PATH, RES_DIR, ProjectMaterializer
from apk_forge.services.publisher import ArtifactPublisher, get_publisher

logger = logging.getLogger(__name__)

StageCallback = Callable[[str], None]


class ApkBuildService:
    """Runs the build steps for one job inside its workspace."""

    def __init__(
        self,
        materializer: Optional[ProjectMaterializer] = None,
        fetcher: Optional[IconFetcher] = None,
        runner: Optional[GradleRunner] = None,
        publisher: Optional[ArtifactPublisher] = None,
        render_icons: Optional[bool] = None,
    ):
        self.materializer = materializer or ProjectMaterializer(settings.TEMPLATE_PATH)
        self.fetcher = fetcher or IconFetcher()
        self.runner = runner or GradleRunner()
        self.publisher = publisher or get_publisher()
        self.render_icons = settings.ICON_RENDER_DENSITIES if render_icons is None else render_icons

    async def run_build(
        self,
        params: BuildRequest,
        workdir: Path,
        on_stage: Optional[StageCallback] = None,
    ) -> str:
        """Build and publish the APK for ``params``; return the artifact URL.

        Any step failing raises and skips everything after it.
        """
        def stage(name: str) -> None:
            if on_stage:
                on_stage(name)

        loop = asyncio.get_running_loop()

        stage("materialize")
        await self.materializer.materialize(workdir, params)

        if params.icon_url:
            stage("icon")
            icon_path = workdir / ICON_PATH
            await self.fetcher.fetch(params.icon_url, icon_path)
            if self.render_icons:
                await loop.run_in_executor(
                    None, lambda: render_launcher_icons(icon_path, workdir / RES_DIR)
                )

        stage("build")
        apk_path = await self.runner.build(workdir)

        stage("publish")
        data = await loop.run_in_executor(None, apk_path.read_bytes)
        url = await self.publisher.publish(data, params.artifact_filename)
        logger.info(f"Published {params.artifact_filename} ({len(data)} bytes) to {url}")
        return url
