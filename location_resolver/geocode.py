"""
Remote fallback geocoding through OpenStreetMap Nominatim.

Nominatim usage policy: at most one request per second and an identifying
User-Agent. Every request goes through a RequestThrottle; `geocode()` is
the throttled entry point and `query()` the single raw request it runs.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from location_resolver.config import GeocodingConfig, get_settings
from location_resolver.errors import RemoteLookupFailed
from location_resolver.models import NominatimHit, ResolutionSource, ResolvedLocation, utcnow
from location_resolver.throttle import RequestThrottle

logger = logging.getLogger(__name__)

_HITS = TypeAdapter(list[NominatimHit])


class NominatimClient:
    """Geocode using OpenStreetMap Nominatim (free, 1 req/sec limit)."""

    def __init__(
        self,
        settings: Optional[GeocodingConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        throttle: Optional[RequestThrottle] = None,
    ):
        self.settings = settings or get_settings().geocoding
        self._client = client
        self._owns_client = client is None
        self.throttle = throttle or RequestThrottle(self.settings.min_interval_seconds)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    @property
    def queue_length(self) -> int:
        return self.throttle.queue_length

    def clear_queue(self) -> None:
        self.throttle.clear()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def geocode(self, raw: str) -> Optional[ResolvedLocation]:
        """Throttled lookup. None = provider has no match."""
        if not raw or not raw.strip():
            return None
        return await self.throttle.execute(lambda: self.query(raw))

    async def query(self, raw: str) -> Optional[ResolvedLocation]:
        """
        One request to /search, at most one result.
        Raises RemoteLookupFailed on non-success status, transport errors
        and payloads that do not match the expected schema.
        """
        try:
            resp = await self.client.get(
                f"{self.settings.nominatim_url}/search",
                params={"q": raw, "format": "json", "limit": 1},
                headers={"User-Agent": self.settings.nominatim_user_agent},
            )
        except httpx.RequestError as e:
            raise RemoteLookupFailed(raw, f"request error: {e}") from e

        if not resp.is_success:
            raise RemoteLookupFailed(raw, f"HTTP {resp.status_code}", resp.status_code)

        try:
            hits = _HITS.validate_python(resp.json())
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError both land here
            raise RemoteLookupFailed(raw, f"malformed response: {e}") from e

        if not hits:
            logger.debug("Nominatim: no results for '%s'", raw)
            return None

        top = hits[0]
        try:
            return ResolvedLocation(
                lat=top.lat,
                lng=top.lon,
                display_name=top.display_name,
                resolved_at=utcnow(),
                source=ResolutionSource.NOMINATIM,
            )
        except ValidationError as e:
            raise RemoteLookupFailed(raw, f"coordinates out of range: {e}") from e
