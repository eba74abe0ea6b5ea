"""
Parcel locker terminals (Smartpost, Omniva) with a time-based cache.

A TerminalCache is an explicit object held by the application (see main.py),
not module state.  Refreshing is driven by the caller's clock: a stale cache
refetches, and a failed refetch keeps serving the last good data.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from storefront.config import Settings
from storefront.schemas import Terminal

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(30.0)
_USER_AGENT = "Leen.ee Website/1.0"

Fetcher = Callable[[], Awaitable[List[Terminal]]]


@dataclass
class TerminalCache:
    fetch: Fetcher
    ttl_seconds: float = 3600.0
    data: Optional[List[Terminal]] = None
    fetched_at: Optional[float] = None
    name: str = field(default="terminals")

    def is_stale(self, now: float) -> bool:
        if self.data is None or self.fetched_at is None:
            return True
        return now - self.fetched_at >= self.ttl_seconds

    async def refresh_if_stale(self, now: float) -> List[Terminal]:
        """
        Return terminal data, refetching when stale.

        On fetch failure the previous data is returned even if expired; the
        error only propagates when nothing was ever cached.
        """
        if not self.is_stale(now):
            logger.debug("Returning cached %s", self.name)
            return self.data  # type: ignore[return-value]

        try:
            terminals = await self.fetch()
        except Exception as exc:
            if self.data is not None:
                logger.warning(
                    "Refreshing %s failed, serving stale data from %s: %s",
                    self.name, self.fetched_at, exc,
                )
                return self.data
            raise

        self.data = terminals
        self.fetched_at = now
        logger.info("Fetched %d %s", len(terminals), self.name)
        return terminals


# ── Feeds ────────────────────────────────────────────────────────────────────

async def _get_json(url: str, params: Dict[str, str] | None = None) -> Any:
    async with httpx.AsyncClient(
        timeout=_TIMEOUT, headers={"User-Agent": _USER_AGENT}
    ) as client:
        resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()


def smartpost_terminals(raw: List[Dict[str, Any]]) -> List[Terminal]:
    terminals = [
        Terminal(
            id=str(t["place_id"]),
            name=t.get("name", ""),
            city=t.get("city", ""),
            address=t.get("address", ""),
            country=t.get("country", ""),
            description=t.get("description"),
        )
        for t in raw
        if t.get("active")
    ]
    return sorted(terminals, key=lambda t: (t.city.casefold(), t.name.casefold()))


def omniva_terminals(raw: List[Dict[str, Any]], country: str) -> List[Terminal]:
    # TYPE "0" marks parcel machines; "1" are post offices
    terminals = [
        Terminal(
            id=str(loc["ZIP"]),
            name=f"{loc.get('NAME', '')} - {loc.get('A2_NAME', '')}, {loc.get('A0_NAME', '')}",
            city=loc.get("A2_NAME", ""),
            address=f"{loc.get('A2_NAME', '')}, {loc.get('A1_NAME', '')}",
            country=loc.get("A0_NAME", ""),
        )
        for loc in raw
        if str(loc.get("A0_NAME", "")).lower() == country.lower()
        and str(loc.get("TYPE")) == "0"
    ]
    return sorted(terminals, key=lambda t: t.name)


def build_terminal_caches(settings: Settings, country: str = "ee") -> Dict[str, TerminalCache]:
    async def fetch_smartpost() -> List[Terminal]:
        raw = await _get_json(
            settings.smartpost_places_url, params={"country": country, "filter": "apt"}
        )
        return smartpost_terminals(raw)

    async def fetch_omniva() -> List[Terminal]:
        raw = await _get_json(settings.omniva_locations_url)
        return omniva_terminals(raw, country)

    ttl = settings.terminal_cache_ttl_seconds
    return {
        "smartpost": TerminalCache(fetch=fetch_smartpost, ttl_seconds=ttl, name="Smartpost terminals"),
        "omniva": TerminalCache(fetch=fetch_omniva, ttl_seconds=ttl, name="Omniva parcel machines"),
    }


SUPPORTED_COUNTRIES = ("ee", "lv", "lt")


class TerminalRegistry:
    """Per-country terminal caches, built on first use."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._caches: Dict[str, Dict[str, TerminalCache]] = {}

    def get(self, provider: str, country: str = "ee") -> TerminalCache:
        country = country.lower()
        if country not in self._caches:
            self._caches[country] = build_terminal_caches(self._settings, country)
        return self._caches[country][provider]
