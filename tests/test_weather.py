"""Tests for the weather aggregator, cache and provider client."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from weather_push.models.enums import ErrorCode
from weather_push.schemas.weather import WeatherLocation, WeatherSnapshot
from weather_push.services.errors import (
    InvalidLocation,
    ProviderError,
    RateLimited,
    UpstreamTransient,
)
from weather_push.services.weather_cache import SqlCacheStore, WeatherCache
from weather_push.services.weather_provider import WeatherProvider, map_current_conditions

LONDON = WeatherLocation("loc-1", "London", "GB", 51.5, -0.12)
PARIS = WeatherLocation("loc-2", "Paris", "FR")
BERLIN = WeatherLocation("loc-7", "Berlin", "DE", 52.52, 13.4)

CURRENT_RESPONSE = {
    "location": {"name": "London"},
    "current": {
        "last_updated": "2025-01-15 12:00",
        "temp_c": 8.0,
        "condition": {"text": "Partly cloudy", "icon": "//cdn/116.png", "code": 1003},
        "wind_kph": 14.4,
        "wind_dir": "SW",
        "pressure_mb": 1012.0,
        "precip_mm": 0.1,
        "humidity": 81,
        "cloud": 50,
        "feelslike_c": 5.6,
        "uv": 1.0,
    },
}


class TestWeatherLocation:
    """Tests for provider query construction."""

    def test_query_prefers_coordinates(self):
        assert LONDON.query == "51.5,-0.12"

    def test_query_falls_back_to_name_and_country(self):
        assert PARIS.query == "Paris, FR"

    def test_query_with_name_only(self):
        assert WeatherLocation("loc-9", "Springfield").query == "Springfield"


class TestAggregator:
    """Tests for WeatherAggregator.resolve."""

    @pytest.mark.asyncio
    async def test_empty_input(self, aggregator, provider):
        """No locations means no results and no provider calls."""
        assert await aggregator.resolve([]) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, aggregator):
        """One result per location, in input order."""
        results = await aggregator.resolve([BERLIN, LONDON, PARIS])

        assert [result.location_id for result in results] == ["loc-7", "loc-1", "loc-2"]
        assert all(result.ok for result in results)
        assert results[0].name == "Berlin"
        assert results[0].weather["temperature"] == 21.5

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self, aggregator, provider):
        """A failing location does not affect its neighbours."""
        provider.failures["loc-2"] = ProviderError("Weather provider returned 404")

        results = await aggregator.resolve([LONDON, PARIS, BERLIN])

        assert [result.ok for result in results] == [True, False, True]
        assert results[1].error == "Weather provider returned 404"
        assert results[1].code == ErrorCode.PROVIDER_ERROR
        assert results[1].weather is None

    @pytest.mark.asyncio
    async def test_error_codes(self, aggregator, provider):
        """Provider failures are reported with a matching code."""
        provider.failures["loc-1"] = RateLimited("slow down")
        provider.failures["loc-2"] = InvalidLocation("no such place")
        provider.failures["loc-7"] = UpstreamTransient("503")

        results = await aggregator.resolve([LONDON, PARIS, BERLIN])

        assert [result.code for result in results] == [
            ErrorCode.RATE_LIMITED,
            ErrorCode.INVALID_LOCATION,
            ErrorCode.PROVIDER_ERROR,
        ]

    @pytest.mark.asyncio
    async def test_transient_provider_errors_are_retried(self, aggregator, provider):
        """Transient failures are retried up to three attempts."""
        provider.failures["loc-1"] = UpstreamTransient("503")

        await aggregator.resolve([LONDON])

        assert provider.calls == ["loc-1", "loc-1", "loc-1"]

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self, aggregator, provider):
        """A throttled lookup fails at once instead of adding load."""
        provider.failures["loc-1"] = RateLimited("slow down")

        results = await aggregator.resolve([LONDON])

        assert results[0].code == ErrorCode.RATE_LIMITED
        assert provider.calls == ["loc-1"]

    @pytest.mark.asyncio
    async def test_invalid_location_is_not_retried(self, aggregator, provider):
        provider.failures["loc-1"] = InvalidLocation("no such place")

        await aggregator.resolve([LONDON])

        assert provider.calls == ["loc-1"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, aggregator, provider):
        """Even unexpected exceptions become per-location failures."""
        provider.failures["loc-1"] = KeyError("temp_c")

        results = await aggregator.resolve([LONDON, BERLIN])

        assert results[0].code == ErrorCode.PROVIDER_ERROR
        assert results[1].ok

    @pytest.mark.asyncio
    async def test_duplicate_locations_fetched_once(self, aggregator, provider):
        """Duplicates share a single lookup."""
        results = await aggregator.resolve([LONDON, LONDON])

        assert len(results) == 2
        assert provider.calls == ["loc-1"]

    @pytest.mark.asyncio
    async def test_deadline_reports_timeouts(self, aggregator, provider):
        """Lookups still running at the deadline are reported as timeouts."""
        provider.delay = 5
        aggregator.deadline = 0.05

        results = await aggregator.resolve([LONDON, PARIS])

        assert [result.code for result in results] == [ErrorCode.TIMEOUT, ErrorCode.TIMEOUT]
        assert results[0].name == "London"

    @pytest.mark.asyncio
    async def test_resolve_ids_reports_unknown_ids(self, aggregator):
        """Ids with no known location are reported in place."""
        results = await aggregator.resolve_ids(["loc-x", "loc-1"], {"loc-1": LONDON})

        assert results[0].location_id == "loc-x"
        assert results[0].code == ErrorCode.UNKNOWN_LOCATION
        assert results[1].ok


class TestCaching:
    """Tests for cache behaviour through the aggregator."""

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_provider(self, aggregator, provider, clock):
        """A second lookup within five minutes is served from cache."""
        first = await aggregator.resolve([LONDON])
        clock.advance(minutes=4)
        second = await aggregator.resolve([LONDON])

        assert provider.calls == ["loc-1"]
        assert first[0].cached is False
        assert second[0].cached is True
        assert second[0].weather == first[0].weather

    @pytest.mark.asyncio
    async def test_stale_cache_refetches(self, aggregator, provider, clock):
        """After six minutes the provider is called again."""
        await aggregator.resolve([LONDON])
        clock.advance(minutes=6)

        results = await aggregator.resolve([LONDON])

        assert provider.calls == ["loc-1", "loc-1"]
        assert results[0].cached is False

    @pytest.mark.asyncio
    async def test_failed_lookups_are_not_cached(self, aggregator, provider):
        provider.failures["loc-1"] = ProviderError("bad response")
        await aggregator.resolve([LONDON])
        del provider.failures["loc-1"]

        results = await aggregator.resolve([LONDON])

        assert results[0].ok
        assert results[0].cached is False

    @pytest.mark.asyncio
    async def test_cache_read_failure_falls_back_to_provider(
        self, aggregator, provider, weather_cache, monkeypatch
    ):
        """A broken cache does not block weather lookups."""

        async def broken_load(location_id):
            raise RuntimeError("cache unavailable")

        monkeypatch.setattr(weather_cache.store, "load", broken_load)

        results = await aggregator.resolve([LONDON])

        assert results[0].ok
        assert provider.calls == ["loc-1"]

    @pytest.mark.asyncio
    async def test_freshness_boundary(self, weather_cache, clock):
        """A snapshot exactly at the freshness limit is stale."""
        await weather_cache.put("loc-1", {"temperature": 1})
        clock.advance(minutes=5)

        assert await weather_cache.get("loc-1") is None

    @pytest.mark.asyncio
    async def test_purge_stale(self, weather_cache, clock):
        await weather_cache.put("loc-1", {"temperature": 1})
        clock.advance(minutes=10)
        await weather_cache.put("loc-7", {"temperature": 2})

        assert await weather_cache.purge_stale() == 1
        assert await weather_cache.get("loc-7") is not None


class TestSqlCacheStore:
    """Tests for the database-backed cache store."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, session_factory):
        store = SqlCacheStore(session_factory)
        snapshot = WeatherSnapshot(
            "loc-1", {"temperature": 8.0}, datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        )

        await store.save(snapshot)
        loaded = await store.load("loc-1")

        assert loaded == snapshot

    @pytest.mark.asyncio
    async def test_save_overwrites(self, session_factory, clock):
        cache = WeatherCache(SqlCacheStore(session_factory), clock=clock)
        await cache.put("loc-1", {"temperature": 8.0})
        clock.advance(minutes=1)
        await cache.put("loc-1", {"temperature": 9.0})

        snapshot = await cache.get("loc-1")

        assert snapshot.weather == {"temperature": 9.0}
        assert snapshot.last_updated == clock()

    @pytest.mark.asyncio
    async def test_load_missing(self, session_factory):
        assert await SqlCacheStore(session_factory).load("loc-1") is None

    @pytest.mark.asyncio
    async def test_purge_older_than(self, session_factory, clock):
        store = SqlCacheStore(session_factory)
        await store.save(WeatherSnapshot("loc-1", {}, clock() - timedelta(hours=1)))
        await store.save(WeatherSnapshot("loc-7", {}, clock()))

        assert await store.purge_older_than(clock() - timedelta(minutes=5)) == 1
        assert await store.load("loc-1") is None
        assert await store.load("loc-7") is not None


def provider_with(handler) -> WeatherProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WeatherProvider(api_key="test-key", base_url="https://weather.test/v1", client=client)


class TestWeatherProvider:
    """Tests for the weatherapi.com client."""

    def test_map_current_conditions(self):
        weather = map_current_conditions(CURRENT_RESPONSE)

        assert weather["temperature"] == 8.0
        assert weather["condition"] == "Partly cloudy"
        assert weather["conditionCode"] == 1003
        assert weather["humidity"] == 81
        assert weather["windSpeed"] == 14.4
        assert weather["windDirection"] == "SW"
        assert weather["feelsLike"] == 5.6
        assert weather["lastUpdated"] == "2025-01-15 12:00"

    def test_map_rejects_missing_current_block(self):
        with pytest.raises(ProviderError):
            map_current_conditions({"error": {"message": "nope"}})

    @pytest.mark.asyncio
    async def test_fetch_current(self):
        """The request carries the key and the location query."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=CURRENT_RESPONSE)

        weather = await provider_with(handler).fetch_current(LONDON)

        assert weather["temperature"] == 8.0
        assert seen["path"] == "/v1/current.json"
        assert seen["params"]["key"] == "test-key"
        assert seen["params"]["q"] == "51.5,-0.12"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (429, RateLimited),
            (503, UpstreamTransient),
            (400, InvalidLocation),
            (403, ProviderError),
        ],
    )
    async def test_status_mapping(self, status, error):
        provider = provider_with(lambda request: httpx.Response(status, json={}))

        with pytest.raises(error):
            await provider.fetch_current(PARIS)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamTransient):
            await provider_with(handler).fetch_current(PARIS)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        provider = provider_with(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ProviderError):
            await provider.fetch_current(PARIS)

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = WeatherProvider(api_key="")

        assert provider.is_configured is False
        with pytest.raises(ProviderError):
            await provider.fetch_current(PARIS)
