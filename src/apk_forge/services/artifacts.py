"""Locating the APK produced by a Gradle build."""

from pathlib import Path
from typing import Sequence

from apk_forge.core.errors import ArtifactNotFound

RELEASE_OUTPUT_DIR = Path("app") / "build" / "outputs" / "apk" / "release"

# Output naming depends on whether the template configures release signing
APK_CANDIDATES: Sequence[Path] = (
    RELEASE_OUTPUT_DIR / "app-release-unsigned.apk",
    RELEASE_OUTPUT_DIR / "app-release.apk",
)


def locate_artifact(project_dir: Path, candidates: Sequence[Path] = APK_CANDIDATES) -> Path:
    """Return the first candidate output that exists under ``project_dir``."""
    for candidate in candidates:
        path = project_dir / candidate
        if path.is_file():
            return path
    raise ArtifactNotFound("APK not found after build")
