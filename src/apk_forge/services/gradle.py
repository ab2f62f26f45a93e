"""Gradle toolchain runner."""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Dict, Optional, Sequence

import psutil

from apk_forge.core.config import settings
from apk_forge.core.errors import BuildPrepError, BuildProcessError, BuildTimeout
from apk_forge.services.artifacts import locate_artifact

logger = logging.getLogger(__name__)

# Present when the template ships its Capacitor node modules
CAPACITOR_MARKER = Path("node_modules") / "@capacitor"


def read_tail(log: IO[bytes], limit: int) -> str:
    """Decode the last ``limit`` bytes written to ``log``."""
    size = log.seek(0, os.SEEK_END)
    log.seek(max(0, size - limit))
    return log.read().decode("utf-8", errors="replace")


@dataclass
class CommandResult:
    """Outcome of one toolchain subprocess."""
    returncode: Optional[int]
    output: str
    timed_out: bool = False

    def tail(self, chars: int) -> str:
        return self.output[-chars:]


class GradleRunner:
    """Runs the template's build toolchain inside a materialized project."""

    def __init__(
        self,
        build_command: Optional[Sequence[str]] = None,
        prep_command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        prep_timeout: Optional[float] = None,
        output_limit: Optional[int] = None,
        error_tail_chars: Optional[int] = None,
        kill_process_tree: Optional[bool] = None,
    ):
        self.build_command = list(build_command or settings.BUILD_COMMAND)
        self.prep_command = list(prep_command or settings.PREP_COMMAND)
        self.timeout = timeout if timeout is not None else settings.BUILD_TIMEOUT
        self.prep_timeout = prep_timeout if prep_timeout is not None else settings.PREP_TIMEOUT
        self.output_limit = output_limit or settings.BUILD_OUTPUT_LIMIT
        self.error_tail_chars = error_tail_chars or settings.ERROR_TAIL_CHARS
        self.kill_process_tree = (
            kill_process_tree if kill_process_tree is not None else settings.KILL_PROCESS_TREE
        )

    async def build(self, project_dir: Path) -> Path:
        """Run the optional prep step and the release build; return the APK path."""
        if (project_dir / CAPACITOR_MARKER).is_dir():
            await self.prepare(project_dir)

        logger.info(f"Starting Gradle build in {project_dir}")
        try:
            result = await self.run_command(self.build_command, project_dir, self.timeout)
        except OSError as e:
            raise BuildProcessError(f"Gradle build failed to start: {e}", -1) from e

        if result.timed_out:
            raise BuildTimeout(f"Build timed out after {_format_duration(self.timeout)}")
        if result.returncode != 0:
            tail = result.tail(self.error_tail_chars)
            raise BuildProcessError(f"Gradle build failed: {tail}", result.returncode, tail)

        apk_path = locate_artifact(project_dir)
        logger.info(f"APK built at {apk_path}")
        return apk_path

    async def prepare(self, project_dir: Path) -> None:
        """Sync web assets and native plugins into the Android project."""
        logger.info(f"Running {' '.join(self.prep_command)}")
        try:
            result = await self.run_command(self.prep_command, project_dir, self.prep_timeout)
        except OSError as e:
            raise BuildPrepError(f"Capacitor sync failed to start: {e}") from e

        if result.timed_out:
            raise BuildPrepError(f"Capacitor sync timed out after {_format_duration(self.prep_timeout)}")
        if result.returncode != 0:
            raise BuildPrepError(f"Capacitor sync failed: {result.tail(self.error_tail_chars)}")

    async def run_command(self, cmd: Sequence[str], cwd: Path, timeout: float) -> CommandResult:
        """Run ``cmd`` with merged output, killing it if it outlives ``timeout``.

        Output goes to an unlinked temp file rather than a pipe, so exit is
        detected even while orphaned grandchildren still hold the output open.
        Exactly one of natural exit or timeout decides the result: the kill
        only happens once ``wait_for`` has given up on the process.
        """
        with tempfile.TemporaryFile(dir=str(cwd)) as log:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log,
                stderr=asyncio.subprocess.STDOUT,
            )
            timed_out = False

            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"Process {proc.pid} exceeded {timeout:.0f}s, killing")
                self._kill(proc)
                await proc.wait()
            except asyncio.CancelledError:
                self._kill(proc)
                await proc.wait()
                raise

            loop = asyncio.get_running_loop()
            output = await loop.run_in_executor(None, lambda: read_tail(log, self.output_limit))

        return CommandResult(returncode=proc.returncode, output=output, timed_out=timed_out)

    def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        if self.kill_process_tree:
            try:
                children = psutil.Process(proc.pid).children(recursive=True)
            except psutil.NoSuchProcess:
                children = []
            for child in children:
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    pass
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    async def check_availability(self, project_dir: Optional[Path] = None) -> Dict[str, Any]:
        """Report whether a JDK and the Gradle wrapper are usable."""
        info: Dict[str, Any] = {"java": None, "wrapper": False, "npx": shutil.which("npx") is not None}

        java = shutil.which("java")
        if java:
            try:
                proc = await asyncio.create_subprocess_exec(
                    java, "-version",
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                try:
                    _, stderr = await asyncio.wait_for(proc.communicate(), timeout=10)
                except asyncio.TimeoutError:
                    proc.kill()
                    await proc.wait()
                    raise
                # java -version prints to stderr
                match = re.search(r'version "([^"]+)"', stderr.decode(errors="replace"))
                info["java"] = match.group(1) if match else "unknown"
            except (OSError, asyncio.TimeoutError) as e:
                logger.error(f"Java check failed: {e}")

        if project_dir is not None:
            info["wrapper"] = (project_dir / self.build_command[0]).is_file()
        return info


def _format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"

