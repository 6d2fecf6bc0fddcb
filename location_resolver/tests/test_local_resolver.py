"""
Tests for offline resolution against the gazetteer (no network required).
"""

from __future__ import annotations

import asyncio

import pytest

from location_resolver import gazetteer
from location_resolver.gazetteer import GazetteerIndex
from location_resolver.local_resolver import LocalResolver, best_place
from location_resolver.models import ResolutionSource

from conftest import SAMPLE_PLACES, make_place


@pytest.fixture
def resolver(index) -> LocalResolver:
    return LocalResolver(index)


def resolve(resolver: LocalResolver, raw: str):
    return asyncio.run(resolver.resolve(raw))


class TestExactMatch:
    def test_bare_city(self, resolver):
        loc = resolve(resolver, "Amsterdam")
        assert loc.display_name == "Amsterdam, Netherlands"
        assert loc.lat == pytest.approx(52.3728)
        assert loc.source is ResolutionSource.LOCAL

    def test_case_and_whitespace(self, resolver):
        assert resolve(resolver, "  aMsTeRdAm ").display_name == "Amsterdam, Netherlands"

    def test_city_state_abbreviation(self, resolver):
        loc = resolve(resolver, "Portland, ME")
        assert loc.lat == pytest.approx(43.6773)

    def test_ascii_spelling(self, resolver):
        assert resolve(resolver, "Zurich").display_name == "Zürich, Switzerland"

    def test_display_name_is_reconstructed(self, resolver):
        # Never the raw input or the alias that matched
        assert resolve(resolver, "austin, usa").display_name == "Austin, United States"


class TestTieBreak:
    def test_highest_population_wins(self):
        tiny = make_place("Springfield", "United States", 100, lat=1.0)
        big = make_place("Springfield", "United States", 200_000, lat=2.0)
        resolver = LocalResolver(GazetteerIndex.from_places([tiny, big]))
        assert resolve(resolver, "Springfield").lat == 2.0

    def test_first_encountered_wins_ties(self):
        first = make_place("Twin", "A", 500, lat=1.0)
        second = make_place("Twin", "B", 500, lat=2.0)
        assert best_place([first, second]) is first

    def test_empty_candidates(self):
        assert best_place([]) is None

    def test_new_york_prefers_the_big_one(self, resolver):
        assert resolve(resolver, "New York").lat == pytest.approx(40.6943)


class TestCommaInputs:
    def test_reversed_parts(self, resolver):
        forward = resolve(resolver, "La Rochelle, France")
        reversed_ = resolve(resolver, "France, La Rochelle")
        assert reversed_ is not None
        assert (reversed_.lat, reversed_.lng) == (forward.lat, forward.lng)
        assert reversed_.display_name == forward.display_name

    def test_qualifier_filters_by_country(self, resolver):
        loc = resolve(resolver, "London, Canada ")
        assert loc.display_name == "London, Canada"

    def test_qualifier_filters_by_admin_region(self):
        texas = make_place("Paris", "United States", 24847, iso2="US", admin_name="Texas")
        france = make_place("Paris", "France", 11060000, iso2="FR", admin_name="Île-de-France")
        index = GazetteerIndex.from_places([france, texas])
        index._keys = {"paris": index.lookup("paris")}
        resolver = LocalResolver(index)
        assert resolve(resolver, "Paris,   Texas").display_name == "Paris, United States"

    def test_qualifier_matches_country_alias(self):
        # Only the bare city key exists, so the alias filter must do the work
        index = GazetteerIndex.from_places([
            make_place("Paris", "France", 11060000, iso2="FR"),
            make_place("Paris", "United States", 24847, iso2="US"),
        ])
        index._keys = {"paris": index.lookup("paris")}
        resolver = LocalResolver(index)
        assert resolve(resolver, "Paris, USA").display_name == "Paris, United States"

    def test_usa_qualifier(self, resolver):
        assert resolve(resolver, "Paris, USA").display_name == "Paris, United States"
        assert resolve(resolver, "Portland, USA").lat == pytest.approx(45.5371)

    def test_unknown_qualifier_falls_back_to_largest_city(self, resolver):
        loc = resolve(resolver, "Paris, Narnia")
        assert loc.display_name == "Paris, France"

    def test_trailing_comma(self, resolver):
        assert resolve(resolver, "Amsterdam,").display_name == "Amsterdam, Netherlands"


class TestRewrites:
    def test_nyc_equals_new_york(self, resolver):
        nyc = resolve(resolver, "NYC")
        new_york = resolve(resolver, "New York")
        assert (nyc.lat, nyc.lng, nyc.display_name) == (new_york.lat, new_york.lng, new_york.display_name)

    def test_sf(self, resolver):
        assert resolve(resolver, "sf").display_name == "San Francisco, United States"

    @pytest.mark.parametrize("raw", [
        "San Francisco Bay Area",
        "London Area",
        "Amsterdam Metropolitan Area",
        "Portland Metro",
        "Zurich Region",
    ])
    def test_region_words_are_stripped(self, resolver, raw):
        assert resolve(resolver, raw) is not None

    def test_metropolitan_is_not_truncated(self, resolver):
        loc = resolve(resolver, "amsterdam metropolitan")
        assert loc.display_name == "Amsterdam, Netherlands"

    def test_city_with_unknown_suffix(self, resolver):
        loc = resolve(resolver, "Austin, Earth")
        assert loc.display_name == "Austin, United States"


class TestMisses:
    @pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
    def test_blank_is_absent(self, raw):
        index = GazetteerIndex(source="never-read.csv")
        resolver = LocalResolver(index)
        assert resolve(resolver, raw) is None
        # The index was not touched
        assert not index.ready

    def test_unknown_place(self, resolver):
        assert resolve(resolver, "Somewhere over the rainbow") is None

    def test_remote_only_phrases(self, resolver):
        assert resolve(resolver, "Planet Earth") is None

    def test_empty_index_always_misses(self):
        resolver = LocalResolver(GazetteerIndex.from_places([]))
        assert resolve(resolver, "Paris") is None


class TestDeterminismAndLoading:
    def test_repeated_calls_are_identical(self, resolver):
        first = resolve(resolver, "London")
        second = resolve(resolver, "London")
        assert (first.lat, first.lng, first.display_name) == (second.lat, second.lng, second.display_name)

    def test_resolve_awaits_lazy_load(self, monkeypatch):
        reads = []

        async def fake_read(source, timeout=30.0):
            reads.append(source)
            await asyncio.sleep(0)
            header = ",".join(gazetteer.COLUMNS)
            return header + "\nOslo,Oslo,59.9133,10.7389,Norway,NO,NOR,Oslo,primary,1064235,1578324706\n"

        monkeypatch.setattr(gazetteer, "read_dataset", fake_read)
        resolver = LocalResolver(GazetteerIndex(source="cities.csv"))

        async def run():
            return await asyncio.gather(*(resolver.resolve("Oslo") for _ in range(3)))

        results = asyncio.run(run())
        assert reads == ["cities.csv"]
        assert all(r.display_name == "Oslo, Norway" for r in results)

    def test_sample_places_all_resolve_by_name(self, resolver):
        for place in SAMPLE_PLACES:
            assert resolve(resolver, f"{place.city}, {place.country}") is not None
