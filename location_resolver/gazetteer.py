"""
Reference gazetteer of populated places.

Loads a world-cities table (city, city_ascii, lat, lng, country, iso2,
iso3, admin_name, capital, population, id) and indexes every place under
several lowercase surface forms:

  - bare city name, native and ASCII spellings
  - "city, country", "city, iso2", "city, admin_name"
  - "city, ST" for US places (state abbreviation)
  - "city, alias" for common country aliases ("usa", "uk", "holland", ...)

Places sharing a key keep dataset order; ranking by population happens at
lookup time, not here.

Loading is lazy and single-flight: concurrent first callers of
`initialize()` all await the same in-flight load. A failed load leaves the
index empty (local resolution then always misses) and never raises.
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

import httpx

from location_resolver.errors import DatasetLoadFailed

logger = logging.getLogger(__name__)

COLUMNS = (
    "city", "city_ascii", "lat", "lng", "country", "iso2",
    "iso3", "admin_name", "capital", "population", "id",
)


@dataclass(frozen=True)
class Place:
    city: str
    city_ascii: str
    lat: float
    lng: float
    country: str
    iso2: str
    iso3: str
    admin_name: str
    capital: str
    population: int
    id: str


# ══════════════════════════════════════════════════════════════════════
# ALIAS TABLES
# ══════════════════════════════════════════════════════════════════════

US_STATE_ABBREVS = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE",
    "Florida": "FL", "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID",
    "Illinois": "IL", "Indiana": "IN", "Iowa": "IA", "Kansas": "KS",
    "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN", "Mississippi": "MS",
    "Missouri": "MO", "Montana": "MT", "Nebraska": "NE", "Nevada": "NV",
    "New Hampshire": "NH", "New Jersey": "NJ", "New Mexico": "NM", "New York": "NY",
    "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH", "Oklahoma": "OK",
    "Oregon": "OR", "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT",
    "Vermont": "VT", "Virginia": "VA", "Washington": "WA", "West Virginia": "WV",
    "Wisconsin": "WI", "Wyoming": "WY", "District of Columbia": "DC",
}

# Dataset country name -> lowercase aliases people write in profiles
COUNTRY_ALIASES: dict[str, tuple[str, ...]] = {
    "United States": ("usa", "us", "u.s.", "u.s.a.", "united states of america", "america"),
    "United Kingdom": ("uk", "u.k.", "great britain", "britain", "england", "scotland", "wales"),
    "Netherlands": ("holland", "the netherlands", "nederland"),
    "Germany": ("deutschland",),
    "Spain": ("españa", "espana"),
    "Brazil": ("brasil",),
    "Czechia": ("czech republic",),
    "Korea, South": ("south korea", "korea", "republic of korea"),
    "Russia": ("russian federation",),
    "China": ("prc", "people's republic of china"),
    "United Arab Emirates": ("uae",),
    "Switzerland": ("schweiz", "suisse"),
    "Türkiye": ("turkey",),
    "Côte D’Ivoire": ("ivory coast", "cote d'ivoire"),
}


def country_aliases(country: str) -> tuple[str, ...]:
    return COUNTRY_ALIASES.get(country, ())


def index_keys(place: Place) -> list[str]:
    """All lowercase lookup keys for a place, without duplicates."""
    keys: list[str] = []
    names = [place.city]
    if place.city_ascii and place.city_ascii != place.city:
        names.append(place.city_ascii)

    for name in names:
        keys.append(name)
    for name in names:
        keys.append(f"{name}, {place.country}")
        keys.append(f"{name}, {place.iso2}")
        keys.append(f"{name}, {place.admin_name}")
        if place.iso2 == "US":
            abbr = US_STATE_ABBREVS.get(place.admin_name)
            if abbr:
                keys.append(f"{name}, {abbr}")
        for alias in country_aliases(place.country):
            keys.append(f"{name}, {alias}")

    seen: set[str] = set()
    out: list[str] = []
    for key in keys:
        key = key.strip().lower()
        if key and not key.endswith(",") and key not in seen:
            seen.add(key)
            out.append(key)
    return out


# ══════════════════════════════════════════════════════════════════════
# DATASET PARSING
# ══════════════════════════════════════════════════════════════════════

def _parse_population(value: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_dataset(text: str, delimiter: str = ",") -> tuple[list[Place], int]:
    """
    Parse a delimited world-cities table.
    Quoted fields may contain the delimiter. Rows whose field count differs
    from the header's, or whose coordinates are not numeric, are skipped.
    Returns (places, skipped_row_count).
    """
    try:
        rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))
    except csv.Error as e:
        raise DatasetLoadFailed(f"unreadable dataset: {e}") from e
    if not rows or not rows[0]:
        return [], 0

    width = len(rows[0])
    if width < len(COLUMNS):
        raise DatasetLoadFailed(f"expected {len(COLUMNS)} columns, header has {width}")
    places: list[Place] = []
    skipped = 0
    for row in rows[1:]:
        if not row or not any(field.strip() for field in row):
            continue
        if len(row) != width:
            skipped += 1
            continue
        values = [field.strip() for field in row[: len(COLUMNS)]]
        try:
            lat = float(values[2])
            lng = float(values[3])
        except ValueError:
            skipped += 1
            continue
        places.append(Place(
            city=values[0],
            city_ascii=values[1],
            lat=lat,
            lng=lng,
            country=values[4],
            iso2=values[5],
            iso3=values[6],
            admin_name=values[7],
            capital=values[8],
            population=_parse_population(values[9]),
            id=values[10],
        ))

    return places, skipped


async def read_dataset(source: str, timeout: float = 30.0) -> str:
    """Read the dataset text from a local path or an http(s) URL."""
    if source.startswith(("http://", "https://")):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.get(source)
                resp.raise_for_status()
                return resp.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DatasetLoadFailed(f"failed to download {source}: {e}") from e

    try:
        return Path(source).read_text(encoding="utf-8")
    except (OSError, ValueError) as e:  # ValueError: bad encoding, NUL in path
        raise DatasetLoadFailed(f"failed to read {source}: {e}") from e


# ══════════════════════════════════════════════════════════════════════
# INDEX
# ══════════════════════════════════════════════════════════════════════

class IndexState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class GazetteerIndex:
    """
    Lowercase key -> places sharing that key, in dataset order.
    Read-only once READY; never invalidated.
    """

    def __init__(self, source: Optional[str] = None, delimiter: str = ",",
                 timeout: float = 30.0):
        self.source = source
        self.delimiter = delimiter
        self.timeout = timeout
        self.state = IndexState.UNINITIALIZED
        self._keys: dict[str, list[Place]] = {}
        self._place_count = 0
        self._load_task: Optional[asyncio.Task] = None

    @classmethod
    def from_places(cls, places: Iterable[Place]) -> "GazetteerIndex":
        """Build a ready index from already-parsed places."""
        index = cls()
        index._build(places)
        index.state = IndexState.READY
        return index

    @property
    def ready(self) -> bool:
        return self.state is IndexState.READY

    @property
    def key_count(self) -> int:
        return len(self._keys)

    @property
    def place_count(self) -> int:
        return self._place_count

    def lookup(self, key: str) -> list[Place]:
        """Places indexed under `key` (empty if absent)."""
        return list(self._keys.get(key.strip().lower(), ()))

    async def initialize(self) -> None:
        """Load the dataset once; concurrent callers share the same load."""
        if self.state is IndexState.READY:
            return
        if self._load_task is None:
            self.state = IndexState.LOADING
            self._load_task = asyncio.ensure_future(self._load())
        # Shielded so one cancelled caller does not abort the shared load
        await asyncio.shield(self._load_task)

    async def _load(self) -> None:
        try:
            if not self.source:
                raise DatasetLoadFailed("no gazetteer dataset configured")
            text = await read_dataset(self.source, timeout=self.timeout)
            places, skipped = parse_dataset(text, self.delimiter)
            if not places:
                raise DatasetLoadFailed(f"no usable rows in {self.source}")
            self._build(places)
            logger.info("Gazetteer loaded: %d places, %d unique keys (%d rows skipped)",
                        self._place_count, len(self._keys), skipped)
        except DatasetLoadFailed as e:
            logger.warning("Gazetteer unavailable, local resolution disabled: %s", e)
        finally:
            self.state = IndexState.READY

    def _build(self, places: Iterable[Place]) -> None:
        for place in places:
            for key in index_keys(place):
                self._keys.setdefault(key, []).append(place)
            self._place_count += 1
