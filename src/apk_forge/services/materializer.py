"""Template materialization: turns the WebView template into a build-ready project."""

import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

from apk_forge.core.errors import TemplateError
from apk_forge.models.build import BuildRequest
from apk_forge.services.substitution import escape_markup, substitute_tokens

logger = logging.getLogger(__name__)

# Template tokens
TOKEN_APPLICATION_ID = "__BSF_APPLICATION_ID__"
TOKEN_APP_NAME = "__BSF_APP_NAME__"
TOKEN_APP_URL = "__BSF_APP_URL__"
TOKEN_VERSION_NAME = "__BSF_VERSION_NAME__"
TOKEN_VERSION_CODE = "__BSF_VERSION_CODE__"

# Template layout, relative to the project root
BUILD_DESCRIPTORS = (
    Path("app") / "build.gradle",
    Path("app") / "build.gradle.kts",
)
STRINGS_XML = Path("app") / "src" / "main" / "res" / "values" / "strings.xml"
RUNTIME_CONFIG = Path("capacitor.config.json")
ASSETS_DIR = Path("app") / "src" / "main" / "assets"
RES_DIR = Path("app") / "src" / "main" / "res"
ICON_PATH = RES_DIR / "mipmap-xxxhdpi" / "ic_launcher.png"

WORKSPACE_PREFIX = "apk-build-"


@asynccontextmanager
async def job_workspace(parent: Path, job_id: str) -> AsyncIterator[Path]:
    """Create a private working directory for one job and always remove it."""
    parent.mkdir(parents=True, exist_ok=True)
    workdir = Path(tempfile.mkdtemp(prefix=f"{WORKSPACE_PREFIX}{job_id[:8]}-", dir=parent))
    logger.debug(f"Job {job_id} workspace: {workdir}")
    try:
        yield workdir
    finally:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: shutil.rmtree(workdir, ignore_errors=True))
        logger.debug(f"Job {job_id} workspace removed")


def markup_replacements(params: BuildRequest) -> Dict[str, str]:
    """Tokens for Gradle descriptors and Android XML resources."""
    return {
        TOKEN_APPLICATION_ID: params.package_name,
        TOKEN_APP_NAME: escape_markup(params.app_name),
        TOKEN_APP_URL: params.deployed_url,
        TOKEN_VERSION_NAME: params.version,
        TOKEN_VERSION_CODE: str(params.version_code),
    }


def json_replacements(params: BuildRequest) -> Dict[str, str]:
    """Tokens for the Capacitor runtime config.

    The name goes in raw: the template places it inside a JSON string and the
    WebView shell reads it back verbatim.
    """
    return {
        TOKEN_APP_URL: params.deployed_url,
        TOKEN_APP_NAME: params.app_name,
        TOKEN_APPLICATION_ID: params.package_name,
    }


def find_build_descriptor(project_dir: Path) -> Path:
    """Return the first build descriptor present, Groovy before Kotlin DSL."""
    for candidate in BUILD_DESCRIPTORS:
        path = project_dir / candidate
        if path.is_file():
            return path
    tried = ", ".join(str(c) for c in BUILD_DESCRIPTORS)
    raise TemplateError(f"Template has no build descriptor (tried {tried})")


class ProjectMaterializer:
    """Copies the template into a workspace and fills in the app's tokens."""

    def __init__(self, template_path: Path):
        self.template_path = Path(template_path)

    def check_template(self) -> Dict[str, Optional[str]]:
        """Describe the template layout for the capabilities report."""
        if not self.template_path.is_dir():
            return {"path": str(self.template_path), "descriptor": None, "wrapper": None}
        try:
            descriptor = str(find_build_descriptor(self.template_path).relative_to(self.template_path))
        except TemplateError:
            descriptor = None
        wrapper = self.template_path / "gradlew"
        return {
            "path": str(self.template_path),
            "descriptor": descriptor,
            "wrapper": wrapper.name if wrapper.is_file() else None,
        }

    async def materialize(self, workdir: Path, params: BuildRequest) -> Path:
        """Populate ``workdir`` with a build-ready project for ``params``."""
        if not self.template_path.is_dir():
            raise TemplateError(f"Template directory not found: {self.template_path}")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: shutil.copytree(self.template_path, workdir, symlinks=True, dirs_exist_ok=True),
        )
        await loop.run_in_executor(None, lambda: self._rewrite(workdir, params))
        return workdir

    def _rewrite(self, workdir: Path, params: BuildRequest) -> None:
        replacements = markup_replacements(params)

        descriptor = find_build_descriptor(workdir)
        substitute_tokens(descriptor, replacements)
        logger.info(f"Substituted tokens in {descriptor.relative_to(workdir)}")

        strings_xml = workdir / STRINGS_XML
        if strings_xml.is_file():
            substitute_tokens(strings_xml, replacements)

        runtime_config = workdir / RUNTIME_CONFIG
        if runtime_config.is_file():
            substitute_tokens(runtime_config, json_replacements(params))
            assets_dir = workdir / ASSETS_DIR
            assets_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(runtime_config, assets_dir / RUNTIME_CONFIG.name)
