"""Pytest configuration and fixtures."""

import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from apk_forge.models.build import BuildRequest  # noqa: E402

SUCCESS_GRADLEW = """#!/bin/sh
mkdir -p app/build/outputs/apk/release
printf 'APK-BYTES' > app/build/outputs/apk/release/app-release-unsigned.apk
"""

BUILD_GRADLE = """android {
    namespace "__BSF_APPLICATION_ID__"
    defaultConfig {
        applicationId "__BSF_APPLICATION_ID__"
        versionCode __BSF_VERSION_CODE__
        versionName "__BSF_VERSION_NAME__"
        resValue "string", "launch_url", "__BSF_APP_URL__"
    }
}
"""

STRINGS_XML = """<?xml version="1.0" encoding="utf-8"?>
<resources>
    <string name="app_name">__BSF_APP_NAME__</string>
    <string name="title_activity_main">__BSF_APP_NAME__</string>
</resources>
"""

CAPACITOR_CONFIG = """{
  "appId": "__BSF_APPLICATION_ID__",
  "appName": "__BSF_APP_NAME__",
  "server": {"url": "__BSF_APP_URL__"}
}
"""


def make_template(
    root: Path,
    gradlew: str = SUCCESS_GRADLEW,
    descriptor: Optional[str] = "build.gradle",
    strings: bool = True,
    runtime_config: bool = True,
) -> Path:
    """Write a minimal WebView template whose gradlew is a shell script."""
    root.mkdir(parents=True, exist_ok=True)
    app_dir = root / "app"
    app_dir.mkdir(exist_ok=True)

    if descriptor:
        (app_dir / descriptor).write_text(BUILD_GRADLE)
    if strings:
        values = app_dir / "src" / "main" / "res" / "values"
        values.mkdir(parents=True)
        (values / "strings.xml").write_text(STRINGS_XML)
    if runtime_config:
        (root / "capacitor.config.json").write_text(CAPACITOR_CONFIG)

    wrapper = root / "gradlew"
    wrapper.write_text(gradlew)
    os.chmod(wrapper, 0o755)
    return root


class FakePublisher:
    """Artifact publisher that records uploads instead of storing them."""

    def __init__(self, url: str = "https://cdn.example/demo.apk", error: Optional[Exception] = None):
        self.url = url
        self.error = error
        self.uploads: List[Tuple[bytes, str]] = []

    async def publish(self, data: bytes, filename: str) -> str:
        self.uploads.append((data, filename))
        if self.error:
            raise self.error
        return self.url


async def wait_for_terminal(scheduler, job_id: str, timeout: float = 15.0):
    """Poll a job until it reaches done or failed."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        job = scheduler.status(job_id)
        if job and job.status.is_terminal:
            return job
        await asyncio.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish within {timeout}s")


@pytest.fixture
def demo_params():
    """The canonical demo build request."""
    return BuildRequest(
        deployedUrl="https://example.workers.dev",
        appName="Demo",
        packageName="fun.demo.app",
        version="1.0.0",
        versionCode=1,
    )


@pytest.fixture
def template_dir(tmp_path):
    """A template whose build succeeds and produces the primary APK."""
    return make_template(tmp_path / "template")


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def fake_publisher():
    return FakePublisher()
