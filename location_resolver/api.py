"""
FastAPI service exposing the resolution pipeline.

Endpoints:
  POST   /resolve        - Resolve a batch of raw location strings
  GET    /resolve?q=     - Resolve a single location string
  GET    /cache/stats    - Cache backend and entry count
  POST   /cache/cleanup  - Remove expired cache entries
  DELETE /cache          - Remove every cache entry
  GET    /health         - Gazetteer, throttle and cache health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from location_resolver.config import get_settings
from location_resolver.errors import NothingToResolve
from location_resolver.models import (
    CacheStatsResponse,
    CleanupResponse,
    HealthResponse,
    ResolvedLocation,
    ResolveRequest,
    ResolveResponse,
)
from location_resolver.pipeline import ResolutionPipeline, build_pipeline
from location_resolver.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: build the pipeline + scheduler. Shutdown: release them."""
    logger.info("Starting up API server...")
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline()
        app.state.pipeline = pipeline
    start_scheduler(pipeline.cache)
    yield
    stop_scheduler()
    await pipeline.aclose()
    logger.info("API server shut down.")


# ── App ───────────────────────────────────────────────────────────────

app = FastAPI(
    title="Location Resolver API",
    description="Resolve free-text profile locations to coordinates",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _pipeline(request: Request) -> ResolutionPipeline:
    return request.app.state.pipeline


# ══════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ══════════════════════════════════════════════════════════════════════

@app.post("/resolve", response_model=ResolveResponse)
async def resolve_batch(body: ResolveRequest, request: Request):
    """
    Resolve a batch of raw location strings.
    Duplicates and empty strings are dropped; unresolvable strings map to null.
    """
    max_batch = get_settings().api.max_batch
    if len(body.locations) > max_batch:
        raise HTTPException(400, f"at most {max_batch} locations per request")

    try:
        results = await _pipeline(request).resolve_all(body.locations)
    except NothingToResolve as e:
        raise HTTPException(422, str(e))

    resolved = sum(1 for loc in results.values() if loc is not None)
    return ResolveResponse(
        results=results,
        total=len(results),
        resolved=resolved,
        unresolved=len(results) - resolved,
    )


@app.get("/resolve", response_model=ResolvedLocation)
async def resolve_single(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200, description="Raw location string"),
):
    """Resolve one location string; 404 when nothing matches."""
    try:
        results = await _pipeline(request).resolve_all([q])
    except NothingToResolve as e:
        raise HTTPException(422, str(e))

    location = results.get(q)
    if location is None:
        raise HTTPException(404, f"No match for '{q}'")
    return location


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(request: Request):
    settings = get_settings().cache
    entries = await _pipeline(request).cache.size()
    return CacheStatsResponse(backend=settings.backend, entries=entries, ttl_days=settings.ttl_days)


@app.post("/cache/cleanup", response_model=CleanupResponse)
async def cache_cleanup(request: Request):
    removed = await _pipeline(request).cache.cleanup()
    return CleanupResponse(removed=removed)


@app.delete("/cache", response_model=CleanupResponse)
async def cache_clear(request: Request):
    removed = await _pipeline(request).cache.clear()
    logger.info("Cache cleared via API (%d entries)", removed)
    return CleanupResponse(removed=removed)


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Gazetteer, throttle and cache health."""
    pipeline = _pipeline(request)
    index = pipeline.local.index
    backlog = pipeline.remote.queue_length if pipeline.remote is not None else 0
    try:
        entries = await pipeline.cache.size()
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return HealthResponse(
            status="error",
            gazetteer_state=index.state.value,
            gazetteer_keys=index.key_count,
            throttle_backlog=backlog,
        )

    return HealthResponse(
        status="ok",
        gazetteer_state=index.state.value,
        gazetteer_keys=index.key_count,
        throttle_backlog=backlog,
        cache_entries=entries,
    )
