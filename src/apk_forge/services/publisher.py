"""Artifact publishing: hands a built APK to storage and returns its public URL."""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional, Protocol

import aiohttp

from apk_forge.core.config import settings
from apk_forge.core.errors import UploadError

logger = logging.getLogger(__name__)

APK_CONTENT_TYPE = "application/vnd.android.package-archive"


class ArtifactPublisher(Protocol):
    async def publish(self, data: bytes, filename: str) -> str:
        ...


class LocalArtifactPublisher:
    """Content-addressed storage on local disk, served under ``/artifacts``."""

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.ARTIFACTS_PATH)
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    async def publish(self, data: bytes, filename: str) -> str:
        digest = hashlib.sha256(data).hexdigest()
        target = self.root / digest / Path(filename).name
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._write(target, data))
        except OSError as e:
            raise UploadError(f"Failed to store artifact: {e}") from e

        url = f"{self.base_url}/artifacts/{digest}/{target.name}"
        logger.info(f"Stored {len(data)} bytes at {url}")
        return url

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        if target.exists():
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(target)


class HttpArtifactPublisher:
    """Uploads to a remote storage endpoint that answers with an item id or URL."""

    def __init__(
        self,
        upload_url: Optional[str] = None,
        gateway_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 300,
    ):
        self.upload_url = upload_url or settings.UPLOAD_URL
        self.gateway_url = (gateway_url or settings.GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else settings.UPLOAD_TOKEN
        self.timeout = timeout

    async def publish(self, data: bytes, filename: str) -> str:
        if not self.upload_url:
            raise UploadError("No upload URL configured")

        headers = {
            "Content-Type": APK_CONTENT_TYPE,
            "X-Filename": filename,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        logger.info(f"Uploading {len(data)} bytes to {self.upload_url}")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.upload_url,
                    data=data,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise UploadError(f"Upload failed: {resp.status} {text[:500]}")
                    payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UploadError(f"Upload failed: {e}") from e

        if isinstance(payload, dict):
            if payload.get("url"):
                return str(payload["url"])
            if payload.get("id"):
                url = f"{self.gateway_url}/{payload['id']}"
                logger.info(f"Uploaded to {url}")
                return url
        raise UploadError("Upload response had no id or url")


def get_publisher() -> ArtifactPublisher:
    """Publisher selected by ``settings.PUBLISHER``."""
    if settings.PUBLISHER == "http":
        return HttpArtifactPublisher()
    if settings.PUBLISHER == "local":
        return LocalArtifactPublisher()
    raise ValueError(f"Unknown publisher: {settings.PUBLISHER}")
