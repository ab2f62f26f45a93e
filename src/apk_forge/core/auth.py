"""HMAC request signing for the build endpoints.

Clients sign ``{timestamp}.{METHOD}.{path}.{raw body}`` with HMAC-SHA256 using
the shared build secret and send the hex digest in ``X-Build-Signature``
alongside the Unix timestamp in ``X-Build-Timestamp``.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request, status

from apk_forge.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Build-Signature"
TIMESTAMP_HEADER = "X-Build-Timestamp"


def sign_request(secret: str, timestamp: str, method: str, path: str, body: bytes) -> str:
    message = f"{timestamp}.{method}.{path}.".encode() + body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _request_path(request: Request) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return path


async def require_signature(request: Request) -> None:
    """Reject requests without a fresh, valid signature.

    Signing is disabled when no build secret is configured.
    """
    secret = settings.BUILD_SECRET
    if not secret:
        logger.debug("BUILD_SECRET not configured, skipping HMAC auth")
        return

    signature: Optional[str] = request.headers.get(SIGNATURE_HEADER)
    timestamp: Optional[str] = request.headers.get(TIMESTAMP_HEADER)
    if not signature or not timestamp:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing HMAC signature or timestamp")

    try:
        ts = int(timestamp)
    except ValueError:
        ts = None
    if ts is None or abs(int(time.time()) - ts) > settings.SIGNATURE_MAX_AGE:
        logger.debug(f"Stale or invalid timestamp: {timestamp}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Request timestamp expired or invalid")

    body = await request.body()
    expected = sign_request(secret, timestamp, request.method, _request_path(request), body)
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        logger.debug(f"HMAC mismatch for {request.method} {request.url.path}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid HMAC signature")
