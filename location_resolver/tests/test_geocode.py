"""
Tests for the Nominatim client.
HTTP traffic goes to httpx.MockTransport; no network required.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from location_resolver.errors import RemoteLookupFailed
from location_resolver.models import ResolutionSource

from conftest import make_remote, nominatim_hit


def query(handler, raw: str):
    remote = make_remote(handler)
    return asyncio.run(remote.geocode(raw))


class TestRequest:
    def test_query_parameters_and_user_agent(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[nominatim_hit("52.5", "13.4", "Berlin, Deutschland")])

        query(handler, "Berlin")

        (request,) = seen
        assert request.url.path == "/search"
        assert request.url.params["q"] == "Berlin"
        assert request.url.params["format"] == "json"
        assert request.url.params["limit"] == "1"
        assert request.headers["User-Agent"] == "location-resolver-tests/1.0"

    def test_blank_query_sends_nothing(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        assert query(handler, "   ") is None
        assert seen == []


class TestResponses:
    def test_first_hit_is_parsed(self):
        def handler(request):
            return httpx.Response(200, json=[
                nominatim_hit("48.8566969", "2.3514616", "Paris, Île-de-France, France"),
            ])

        loc = query(handler, "Paris")
        assert loc.lat == pytest.approx(48.8566969)
        assert loc.lng == pytest.approx(2.3514616)
        assert loc.display_name == "Paris, Île-de-France, France"
        assert loc.source is ResolutionSource.NOMINATIM
        assert loc.resolved_at.tzinfo is not None

    def test_empty_result_is_absent(self):
        assert query(lambda r: httpx.Response(200, json=[]), "Atlantis") is None

    @pytest.mark.parametrize("status", [403, 429, 500, 503])
    def test_error_status(self, status):
        with pytest.raises(RemoteLookupFailed) as exc_info:
            query(lambda r: httpx.Response(status), "Berlin")
        assert exc_info.value.status_code == status

    @pytest.mark.parametrize("payload", [
        [{"lat": "north", "lon": "13.4", "display_name": "Berlin"}],
        [{"lat": "52.5", "display_name": "Berlin"}],
        [{"lat": "52.5", "lon": "13.4"}],
        {"error": "Unable to geocode"},
        [{"lat": "952.5", "lon": "13.4", "display_name": "Berlin"}],
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(RemoteLookupFailed):
            query(lambda r: httpx.Response(200, json=payload), "Berlin")

    def test_non_json_body(self):
        with pytest.raises(RemoteLookupFailed):
            query(lambda r: httpx.Response(200, text="<html>maintenance</html>"), "Berlin")

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteLookupFailed):
            query(handler, "Berlin")


class TestThrottling:
    def test_requests_go_through_the_throttle(self):
        def handler(request):
            return httpx.Response(200, json=[])

        remote = make_remote(handler, min_interval=0.0)
        assert remote.throttle.min_interval == 0.0

        async def run():
            return await asyncio.gather(*(remote.geocode(f"place {i}") for i in range(3)))

        assert asyncio.run(run()) == [None, None, None]
        assert remote.queue_length == 0

    def test_clear_queue_delegates_to_throttle(self):
        remote = make_remote(lambda r: httpx.Response(200, json=[]))
        remote.clear_queue()
        assert remote.queue_length == 0
