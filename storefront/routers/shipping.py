"""
Parcel locker lookup.

GET /api/parcel-terminals?provider=smartpost|omniva&country=ee
"""
from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends

from storefront.deps import get_terminal_registry
from storefront.errors import UpstreamError, ValidationFailed
from storefront.schemas import TerminalsResponse
from storefront.services.terminals import SUPPORTED_COUNTRIES, TerminalRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["shipping"])

PROVIDERS = ("smartpost", "omniva")


@router.get("/parcel-terminals", response_model=TerminalsResponse)
async def parcel_terminals(
    provider: str = "smartpost",
    country: str = "ee",
    registry: TerminalRegistry = Depends(get_terminal_registry),
) -> TerminalsResponse:
    provider = provider.lower()
    if provider not in PROVIDERS:
        raise ValidationFailed(f"Unknown provider {provider!r}")
    if country.lower() not in SUPPORTED_COUNTRIES:
        raise ValidationFailed(f"Unsupported country {country!r}")

    cache = registry.get(provider, country)
    now = time.time()
    cached = not cache.is_stale(now)
    try:
        terminals = await cache.refresh_if_stale(now)
    except Exception as exc:
        logger.error("Fetching %s terminals failed: %s", provider, exc)
        raise UpstreamError(f"Failed to fetch {provider} terminals")

    return TerminalsResponse(
        provider=provider,
        terminals=terminals,
        count=len(terminals),
        cached=cached,
    )
