"""Guarded download of user-supplied app icons.

The icon URL comes straight from the build request, so every fetch is
treated as untrusted: HTTPS only, no private or loopback destinations, image
content types only, and a hard size ceiling.
"""

import asyncio
import ipaddress
import logging
import socket
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import aiohttp
from aiohttp.abc import AbstractResolver

from apk_forge.core.config import settings
from apk_forge.core.errors import (
    DownloadError,
    InvalidContentType,
    InvalidScheme,
    PayloadTooLarge,
    SSRFRejected,
)

logger = logging.getLogger(__name__)

BLOCKED_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/32"),
]

CHUNK_SIZE = 64 * 1024

Resolver = Callable[[str], Awaitable[List[str]]]
SessionFactory = Callable[[str, Sequence[str]], Any]


def is_blocked_address(address: str) -> bool:
    ip = ipaddress.ip_address(address)
    return any(ip in network for network in BLOCKED_NETWORKS)


async def resolve_ipv4(host: str) -> List[str]:
    """Resolve ``host`` to its IPv4 addresses without blocking the loop."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    addresses: List[str] = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


class PinnedResolver(AbstractResolver):
    """Resolver that only ever answers with addresses validated up front."""

    def __init__(self, host: str, addresses: Sequence[str]):
        self._host = host
        self._addresses = list(addresses)

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> List[Dict[str, Any]]:
        if host != self._host:
            raise OSError(f"Unexpected host lookup: {host}")
        return [
            {
                "hostname": host,
                "host": address,
                "port": port,
                "family": socket.AF_INET,
                "proto": 0,
                "flags": socket.AI_NUMERICHOST,
            }
            for address in self._addresses
        ]

    async def close(self) -> None:
        pass


def pinned_session(host: str, addresses: Sequence[str]) -> aiohttp.ClientSession:
    connector = aiohttp.TCPConnector(resolver=PinnedResolver(host, addresses), use_dns_cache=False)
    return aiohttp.ClientSession(connector=connector)


class IconFetcher:
    """Downloads an icon image over HTTPS with SSRF and size protection."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        resolver: Optional[Resolver] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.ICON_FETCH_TIMEOUT
        self.max_bytes = max_bytes if max_bytes is not None else settings.ICON_MAX_BYTES
        self._resolve = resolver or resolve_ipv4
        self._session_factory = session_factory or pinned_session

    async def check_destination(self, url: str) -> List[str]:
        """Validate scheme and resolved addresses; return the safe addresses."""
        parsed = urlparse(url)
        if parsed.scheme != "https":
            raise InvalidScheme("Icon URL must be HTTPS")
        host = parsed.hostname
        if not host:
            raise InvalidScheme("Icon URL has no host")

        try:
            addresses = await self._resolve(host)
        except (OSError, UnicodeError) as e:
            raise DownloadError(f"Could not resolve icon host {host}: {e}") from e
        if not addresses:
            raise DownloadError(f"Icon host {host} has no IPv4 address")

        for address in addresses:
            if is_blocked_address(address):
                logger.warning(f"Rejected icon URL {url}: {host} resolves to {address}")
                raise SSRFRejected("Icon URL resolves to private IP")
        return addresses

    async def fetch(self, url: str, destination: Path) -> int:
        """Download ``url`` to ``destination``. Returns the number of bytes written."""
        addresses = await self.check_destination(url)
        host = urlparse(url).hostname

        try:
            async with self._session_factory(host, addresses) as session:
                async with session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    allow_redirects=False,
                ) as resp:
                    if not 200 <= resp.status < 300:
                        raise DownloadError(f"Failed to download icon: {resp.status}")

                    content_type = resp.headers.get("Content-Type", "")
                    if not content_type.startswith("image/"):
                        raise InvalidContentType(f"Icon URL content-type is not an image: {content_type}")

                    declared = resp.headers.get("Content-Length")
                    if declared and declared.isdigit() and int(declared) > self.max_bytes:
                        raise PayloadTooLarge(f"Icon file too large (>{self._limit_label})")

                    body = bytearray()
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        body.extend(chunk)
                        if len(body) > self.max_bytes:
                            raise PayloadTooLarge(f"Icon file too large (>{self._limit_label})")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadError(f"Failed to download icon: {e}") from e

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.get_running_loop().run_in_executor(None, destination.write_bytes, bytes(body))
        logger.info(f"Downloaded icon: {len(body)} bytes")
        return len(body)

    @property
    def _limit_label(self) -> str:
        return f"{self.max_bytes // (1024 * 1024)}MB" if self.max_bytes >= 1024 * 1024 else f"{self.max_bytes}B"
