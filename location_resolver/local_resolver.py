"""
Offline resolution against the gazetteer index.

Strategies, tried in order until one yields candidates:
  1. Exact key ("berlin", "paris, tx", "austin, usa")
  2. Comma inputs: reversed part order ("France, La Rochelle"), then the
     first segment as a bare city filtered by the second segment
     (country, ISO2, admin region, or a country alias)
  3. Rewrites, pooled: strip "area/region/metro/..." words, "nyc"/"sf"
     shorthands, bare first comma segment

When several places match, the most populous wins (first one on ties).
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from location_resolver.gazetteer import GazetteerIndex, Place, country_aliases
from location_resolver.models import ResolutionSource, ResolvedLocation, utcnow

logger = logging.getLogger(__name__)

_REGION_WORDS_RE = re.compile(
    r"\b(?:bay\s*area|metropolitan|metro|area|region)\b", re.IGNORECASE
)

SHORTHANDS = {
    "nyc": "new york",
    "sf": "san francisco",
}


def best_place(candidates: list[Place]) -> Optional[Place]:
    """Most populous candidate; first encountered wins ties."""
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.population)


def _matches_qualifier(place: Place, qualifier: str) -> bool:
    qualifier = qualifier.lower()
    if qualifier in (place.country.lower(), place.iso2.lower(), place.admin_name.lower()):
        return True
    return qualifier in country_aliases(place.country)


class LocalResolver:
    """Resolves raw location strings using only the in-memory gazetteer."""

    def __init__(self, index: GazetteerIndex):
        self.index = index

    async def resolve(self, raw: str) -> Optional[ResolvedLocation]:
        """Resolve `raw`, loading the index first if needed. None = no match."""
        if not raw or not raw.strip():
            return None
        await self.index.initialize()
        return self.resolve_loaded(raw)

    def resolve_loaded(self, raw: str) -> Optional[ResolvedLocation]:
        place = self.match(raw)
        if place is None:
            logger.debug("Local miss: '%s'", raw)
            return None
        return ResolvedLocation(
            lat=place.lat,
            lng=place.lng,
            display_name=f"{place.city}, {place.country}",
            resolved_at=utcnow(),
            source=ResolutionSource.LOCAL,
        )

    def match(self, raw: str) -> Optional[Place]:
        """Best gazetteer place for `raw` against the already-loaded index."""
        key = re.sub(r"\s+", " ", raw.strip().lower())
        if not key:
            return None

        candidates = self.index.lookup(key)

        if not candidates and "," in key:
            parts = [p.strip() for p in key.split(",") if p.strip()]
            candidates = self._comma_matches(parts)

        if not candidates:
            candidates = self._rewrite_matches(key)

        return best_place(candidates)

    def _comma_matches(self, parts: list[str]) -> list[Place]:
        if not parts:
            return []
        candidates = self.index.lookup(", ".join(reversed(parts)))
        if candidates:
            return candidates

        candidates = self.index.lookup(parts[0])
        if len(candidates) > 1 and len(parts) > 1:
            candidates = [p for p in candidates if _matches_qualifier(p, parts[1])]
        return candidates

    def _rewrite_matches(self, key: str) -> list[Place]:
        patterns = [
            re.sub(r"\s+", " ", _REGION_WORDS_RE.sub(" ", key)).strip(" ,"),
            SHORTHANDS.get(key),
            key.split(",")[0].strip() if "," in key else None,
        ]

        matches: list[Place] = []
        tried: set[str] = set()
        for pattern in patterns:
            if not pattern or pattern in tried:
                continue
            tried.add(pattern)
            matches.extend(self.index.lookup(pattern))
        return matches
