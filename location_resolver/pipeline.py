"""
Resolution orchestrator.
Ties together cache -> local gazetteer -> remote geocoder for a batch of
raw location strings.

For each unique string, in first-occurrence order:
  1. Check cancellation
  2. Result cache
  3. Local gazetteer resolver
  4. Nominatim, through the request throttle
  5. Cache successful results (misses are NOT cached, so every run retries
     them)
  6. Record the outcome (None = looked up, no match) and report progress

Processing is strictly sequential. Cancellation aborts the in-flight
remote request, drops the throttle backlog and fails the whole call with
`Cancelled`; partial results are only observable through `on_progress`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from location_resolver.cache import ResultCache
from location_resolver.config import Settings, get_settings
from location_resolver.errors import Cancelled, NothingToResolve, RemoteLookupFailed
from location_resolver.gazetteer import GazetteerIndex
from location_resolver.geocode import NominatimClient
from location_resolver.local_resolver import LocalResolver
from location_resolver.models import ProgressPhase, ProgressState, ResolvedLocation
from location_resolver.stores import KeyValueStore, create_store
from location_resolver.throttle import RequestThrottle

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]
ResolutionResult = dict[str, Optional[ResolvedLocation]]


class CancelToken:
    """Cooperative cancellation signal that can be triggered from anywhere."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        for callback in self._callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run `callback` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it and raising Cancelled if the token fires first."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if not work.done():
            work.cancel()
            raise Cancelled()
        return work.result()


class ResolutionPipeline:
    def __init__(
        self,
        cache: ResultCache,
        local: LocalResolver,
        remote: Optional[NominatimClient] = None,
    ):
        self.cache = cache
        self.local = local
        self.remote = remote
        self.progress = ProgressState(phase=ProgressPhase.RESOLVING)
        self.last_stats: dict = {}

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.aclose()
        await self.cache.store.aclose()

    def _set_progress(self, phase: ProgressPhase, completed: int, total: int, message: str) -> None:
        self.progress = ProgressState(phase=phase, completed=completed, total=total, message=message)

    async def resolve_all(
        self,
        raw_strings: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ResolutionResult:
        """
        Resolve every unique non-empty string. Returns raw string -> location
        (None when nothing matched), in first-occurrence order.
        Raises Cancelled or NothingToResolve; never fails for a single item.
        """
        unique = list(dict.fromkeys(s for s in raw_strings if s))
        total = len(unique)
        if not unique:
            self._set_progress(ProgressPhase.ERROR, 0, 0, "No location data to resolve.")
            raise NothingToResolve("no non-empty location strings given")

        token = cancel_token or CancelToken()
        if self.remote is not None:
            token.add_callback(self.remote.clear_queue)

        stats = {"total": total, "cache_hits": 0, "local_hits": 0,
                 "remote_hits": 0, "absent": 0, "remote_errors": 0}
        results: ResolutionResult = {}
        start_time = time.monotonic()
        self._set_progress(ProgressPhase.RESOLVING, 0, total, "Geocoding locations...")

        try:
            for i, raw in enumerate(unique, 1):
                token.raise_if_cancelled()
                location = await self._resolve_one(raw, token, stats)
                results[raw] = location
                if location is None:
                    stats["absent"] += 1

                self._set_progress(ProgressPhase.RESOLVING, i, total,
                                   f"Geocoding locations... ({i}/{total})")
                if on_progress is not None:
                    on_progress(i, total)
        except Cancelled:
            if self.remote is not None:
                self.remote.clear_queue()
            self._set_progress(ProgressPhase.ERROR, len(results), total, "Operation cancelled")
            logger.info("Resolution cancelled after %d/%d locations", len(results), total)
            raise

        self._set_progress(ProgressPhase.COMPLETE, total, total, "Analysis complete!")
        stats["duration_seconds"] = round(time.monotonic() - start_time, 2)
        self.last_stats = stats
        logger.info("Resolution complete: %s", stats)
        return results

    async def _resolve_one(self, raw: str, token: CancelToken, stats: dict) -> Optional[ResolvedLocation]:
        cached = await self.cache.get(raw)
        if cached is not None:
            logger.debug("Cache HIT: '%s'", raw)
            stats["cache_hits"] += 1
            return cached

        location = await token.guard(self.local.resolve(raw))
        if location is not None:
            stats["local_hits"] += 1
        elif self.remote is not None:
            token.raise_if_cancelled()
            try:
                location = await token.guard(self.remote.geocode(raw))
            except RemoteLookupFailed as e:
                logger.warning("Remote lookup failed, treating as no match: %s", e)
                stats["remote_errors"] += 1
                location = None
            if location is not None:
                stats["remote_hits"] += 1

        if location is not None:
            await self.cache.set(raw, location)
        return location


def build_pipeline(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
) -> ResolutionPipeline:
    """Wire index, resolvers, throttle, cache and store from configuration."""
    settings = settings or get_settings()
    index = GazetteerIndex(
        source=settings.gazetteer.dataset,
        delimiter=settings.gazetteer.delimiter,
        timeout=settings.gazetteer.request_timeout,
    )
    cache = ResultCache(
        store or create_store(settings),
        prefix=settings.cache.key_prefix,
        ttl_days=settings.cache.ttl_days,
    )
    remote = None
    if settings.geocoding.enabled:
        remote = NominatimClient(
            settings.geocoding,
            throttle=RequestThrottle(settings.geocoding.min_interval_seconds),
        )
    return ResolutionPipeline(cache, LocalResolver(index), remote)
