"""
Expiring result cache: raw location string -> ResolvedLocation.

Keys are `prefix + normalized string` (lowercase, trimmed, whitespace runs
collapsed to "_"), so "New   York" and "new york" share an entry. Entries
older than the TTL (measured from `resolved_at`) read as missing and are
deleted on that read. Undecodable entries are treated the same way.

The cache is best-effort: a write the store rejects for quota triggers one
cleanup pass and one retry, after which it is dropped. Store failures on
read are logged and read as a miss.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from location_resolver.errors import MalformedCacheEntry, StorageError, StorageQuotaExceeded
from location_resolver.models import CacheEntry, ResolvedLocation, utcnow
from location_resolver.stores import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "location_resolver_cache_"
DEFAULT_TTL_DAYS = 30


def normalize_key(raw: str) -> str:
    return re.sub(r"\s+", "_", raw.strip().lower())


def decode_entry(value: str) -> ResolvedLocation:
    try:
        return CacheEntry.model_validate_json(value).to_location()
    except ValidationError as e:
        raise MalformedCacheEntry(str(e)) from e


class ResultCache:
    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = DEFAULT_PREFIX,
        ttl_days: int = DEFAULT_TTL_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.prefix = prefix
        self.ttl = timedelta(days=ttl_days)
        self._clock = clock

    def key_for(self, raw: str) -> str:
        return f"{self.prefix}{normalize_key(raw)}"

    def is_expired(self, location: ResolvedLocation) -> bool:
        return self._clock() - location.resolved_at > self.ttl

    async def get(self, raw: str) -> Optional[ResolvedLocation]:
        """Valid cached location for `raw`, or None."""
        key = self.key_for(raw)
        try:
            value = await self.store.get_item(key)
            if value is None:
                return None

            try:
                location = decode_entry(value)
            except MalformedCacheEntry as e:
                logger.warning("Dropping malformed cache entry '%s': %s", key, e)
                await self.store.remove_item(key)
                return None

            if self.is_expired(location):
                logger.debug("Cache entry expired: '%s'", key)
                await self.store.remove_item(key)
                return None
            return location
        except StorageError as e:
            logger.warning("Cache read failed for '%s': %s", key, e)
            return None

    async def set(self, raw: str, location: ResolvedLocation) -> None:
        key = self.key_for(raw)
        value = CacheEntry.from_location(location).model_dump_json()
        try:
            await self.store.set_item(key, value)
            return
        except StorageQuotaExceeded:
            logger.info("Cache store full, cleaning up expired entries")
        except StorageError as e:
            logger.warning("Cache write failed for '%s': %s", key, e)
            return

        try:
            await self.cleanup()
            await self.store.set_item(key, value)
        except StorageError as e:
            logger.warning("Cache write dropped for '%s' after cleanup: %s", key, e)

    async def cleanup(self) -> int:
        """Remove expired and malformed entries. Returns how many were removed."""
        removed = 0
        for key in await self.store.keys(self.prefix):
            value = await self.store.get_item(key)
            if value is None:
                continue
            try:
                stale = self.is_expired(decode_entry(value))
            except MalformedCacheEntry:
                stale = True
            if stale:
                await self.store.remove_item(key)
                removed += 1
        if removed:
            logger.info("Cache cleanup removed %d entries", removed)
        return removed

    async def clear(self) -> int:
        """Remove every entry this cache owns. Returns how many were removed."""
        keys = await self.store.keys(self.prefix)
        for key in keys:
            await self.store.remove_item(key)
        return len(keys)

    async def size(self) -> int:
        return len(await self.store.keys(self.prefix))
