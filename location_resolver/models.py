"""
Pydantic models used across the pipeline for validation and serialization.
Plain data objects with no storage or network coupling.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────

class ResolutionSource(str, Enum):
    LOCAL = "local"
    NOMINATIM = "nominatim"


class ProgressPhase(str, Enum):
    FETCHING = "fetching"
    RESOLVING = "resolving"
    COMPLETE = "complete"
    ERROR = "error"


# ── Resolution models ─────────────────────────────────────────────────

class ResolvedLocation(BaseModel):
    """A raw location string resolved to a point."""
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    display_name: str
    resolved_at: datetime = Field(default_factory=utcnow)
    source: ResolutionSource = ResolutionSource.LOCAL

    model_config = {"frozen": True}

    @field_validator("resolved_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class CacheEntry(BaseModel):
    """Persisted form of a ResolvedLocation."""
    lat: float
    lng: float
    display_name: str
    resolved_at: datetime
    source: ResolutionSource = ResolutionSource.NOMINATIM

    @classmethod
    def from_location(cls, location: ResolvedLocation) -> "CacheEntry":
        return cls(**location.model_dump())

    def to_location(self) -> ResolvedLocation:
        return ResolvedLocation(**self.model_dump())


class ProgressState(BaseModel):
    phase: ProgressPhase = ProgressPhase.RESOLVING
    completed: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    message: str = ""


# ── Provider payloads ─────────────────────────────────────────────────

class NominatimHit(BaseModel):
    """One candidate from Nominatim /search?format=json."""
    lat: float
    lon: float
    display_name: str

    model_config = {"extra": "ignore"}


# ── API models ────────────────────────────────────────────────────────

class ResolveRequest(BaseModel):
    locations: list[str] = Field(..., description="Raw location strings, duplicates allowed")


class ResolveResponse(BaseModel):
    results: dict[str, Optional[ResolvedLocation]]
    total: int
    resolved: int
    unresolved: int


class CacheStatsResponse(BaseModel):
    backend: str
    entries: int
    ttl_days: int


class CleanupResponse(BaseModel):
    removed: int


class HealthResponse(BaseModel):
    status: str = "ok"
    gazetteer_state: str = "uninitialized"
    gazetteer_keys: int = 0
    throttle_backlog: int = 0
    cache_entries: Optional[int] = None
