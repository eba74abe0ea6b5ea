"""
FastAPI dependency utilities: webhook MAC verification, sync-token guard,
provider clients and the parcel terminal caches.
"""
from __future__ import annotations

import hashlib
import hmac
import logging

from fastapi import Header, HTTPException, Request, status

from storefront.config import get_settings
from storefront.services.maksekeskus import MaksekeskusClient
from storefront.services.stripe_catalog import StripeCatalog
from storefront.services.terminals import TerminalRegistry

logger = logging.getLogger(__name__)
settings = get_settings()


def compute_mac(payload: str, secret: str) -> str:
    """Uppercase hex HMAC-SHA512 of *payload* keyed with *secret*."""
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=payload.encode("utf-8"),
        digestmod=hashlib.sha512,
    ).hexdigest().upper()


def verify_mac(payload: str, mac: str, secret: str) -> bool:
    """
    Check a Maksekeskus notification signature.
    Never raises: anything malformed simply fails verification.
    """
    if not isinstance(payload, str) or not isinstance(mac, str) or not secret:
        return False
    try:
        expected = compute_mac(payload, secret)
        valid = hmac.compare_digest(expected.encode("utf-8"), mac.upper().encode("utf-8"))
    except (TypeError, ValueError, UnicodeError) as exc:
        logger.warning("MAC verification error: %s", exc)
        return False
    if not valid:
        logger.warning(
            "MAC validation failed: calculated=%s… received=%s…",
            expected[:10], mac[:10].upper(),
        )
    return valid


async def require_sync_token(
    authorization: str | None = Header(default=None),
) -> None:
    """Guard for the catalog sync endpoint when CATALOG_SYNC_TOKEN is configured."""
    token = settings.catalog_sync_token
    if not token:
        return
    if authorization and authorization.startswith("Bearer "):
        provided = authorization.removeprefix("Bearer ").strip()
        if hmac.compare_digest(provided.encode("utf-8"), token.encode("utf-8")):
            return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing Bearer token",
    )


def get_maksekeskus_client() -> MaksekeskusClient:
    return MaksekeskusClient(settings)


def get_stripe_catalog() -> StripeCatalog:
    return StripeCatalog()


def get_terminal_registry(request: Request) -> TerminalRegistry:
    return request.app.state.terminals
