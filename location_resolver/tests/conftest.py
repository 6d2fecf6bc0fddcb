"""
Shared fixtures. No network or database required: the gazetteer is built
from in-memory places, the cache uses MemoryStore, and Nominatim is
replaced with httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from location_resolver.config import GeocodingConfig
from location_resolver.gazetteer import GazetteerIndex, Place
from location_resolver.geocode import NominatimClient
from location_resolver.throttle import RequestThrottle


def make_place(city: str, country: str, population: int, *, lat: float = 0.0, lng: float = 0.0,
               iso2: str = "", admin_name: str = "", city_ascii: str | None = None,
               place_id: str = "") -> Place:
    return Place(
        city=city,
        city_ascii=city_ascii if city_ascii is not None else city,
        lat=lat,
        lng=lng,
        country=country,
        iso2=iso2,
        iso3="",
        admin_name=admin_name,
        capital="",
        population=population,
        id=place_id or f"{city}-{iso2}-{population}",
    )


SAMPLE_PLACES = [
    make_place("New York", "United States", 18832416, lat=40.6943, lng=-73.9249,
               iso2="US", admin_name="New York"),
    make_place("New York", "United States", 1200, lat=34.9, lng=-94.3,
               iso2="US", admin_name="Arkansas"),
    make_place("La Rochelle", "France", 77205, lat=46.1591, lng=-1.1517,
               iso2="FR", admin_name="Nouvelle-Aquitaine"),
    make_place("Paris", "France", 11060000, lat=48.8567, lng=2.3522,
               iso2="FR", admin_name="Île-de-France"),
    make_place("Paris", "United States", 24847, lat=33.6688, lng=-95.5460,
               iso2="US", admin_name="Texas"),
    make_place("San Francisco", "United States", 3364862, lat=37.7558, lng=-122.4449,
               iso2="US", admin_name="California"),
    make_place("Portland", "United States", 2052796, lat=45.5371, lng=-122.65,
               iso2="US", admin_name="Oregon"),
    make_place("Portland", "United States", 207775, lat=43.6773, lng=-70.2715,
               iso2="US", admin_name="Maine"),
    make_place("Austin", "United States", 2227083, lat=30.3005, lng=-97.7522,
               iso2="US", admin_name="Texas"),
    make_place("Amsterdam", "Netherlands", 1459402, lat=52.3728, lng=4.8936,
               iso2="NL", admin_name="Noord-Holland"),
    make_place("London", "United Kingdom", 11262000, lat=51.5072, lng=-0.1275,
               iso2="GB", admin_name="London, City of"),
    make_place("London", "Canada", 422324, lat=42.9836, lng=-81.2497,
               iso2="CA", admin_name="Ontario"),
    make_place("Zürich", "Switzerland", 436332, lat=47.3786, lng=8.54,
               iso2="CH", admin_name="Zürich", city_ascii="Zurich"),
]


@pytest.fixture
def index() -> GazetteerIndex:
    return GazetteerIndex.from_places(SAMPLE_PLACES)


class FakeClock:
    """Monotonic seconds that only move when someone sleeps."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FakeWallClock:
    """Timezone-aware wall clock for cache expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


def nominatim_hit(lat: str, lon: str, display_name: str) -> dict:
    return {"place_id": 1, "lat": lat, "lon": lon, "display_name": display_name,
            "class": "place", "type": "city"}


def make_remote(handler, min_interval: float = 0.0) -> NominatimClient:
    """NominatimClient whose HTTP traffic goes to `handler`."""
    settings = GeocodingConfig(
        nominatim_url="https://nominatim.test",
        nominatim_user_agent="location-resolver-tests/1.0",
        min_interval_seconds=min_interval,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NominatimClient(settings, client=client, throttle=RequestThrottle(min_interval))
