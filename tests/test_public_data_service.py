"""
test_public_data_service.py — Cache-first acquisition, retry and stale fallback.

Run with:
    pytest tests/test_public_data_service.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from welfare_notify.core.cache import MemoryCacheStore
from welfare_notify.core.errors import DataUnavailableError, ExternalServiceError
from welfare_notify.core.retry import RetryConfig, RetryingFetcher
from welfare_notify.ingestion.models import (
    AirQualityRecord,
    DisasterMessage,
    StationReading,
    WeatherRecord,
)
from welfare_notify.ingestion.public_data_service import PublicDataService


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class FakeWeatherClient:
    is_configured = True

    def __init__(self, clock):
        self.clock = clock
        self.calls = 0
        self.error = None
        self.temperature = 28.0

    async def fetch_weather(self, region=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return WeatherRecord(
            temperature=self.temperature, condition="맑음",
            region=region or "유성구", fetched_at=self.clock(),
        )

    async def check_connection(self):
        return self.error is None

    async def close(self):
        pass


class FakeAirQualityClient:
    is_configured = True

    def __init__(self, clock):
        self.clock = clock
        self.calls = 0
        self.error = None

    async def fetch_air_quality(self, region=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return AirQualityRecord(
            stations={"노은동": StationReading("노은동", pm10=42, pm10_grade=2)},
            region=region or "유성구",
            fetched_at=self.clock(),
        )

    async def check_connection(self):
        return self.error is None

    async def close(self):
        pass


class FakeDisasterClient:
    is_configured = True

    def __init__(self, clock):
        self.clock = clock
        self.calls = []
        self.error = None

    async def fetch_disasters(self, lookback_hours=None):
        self.calls.append(lookback_hours)
        if self.error is not None:
            raise self.error
        return [DisasterMessage(
            serial_number="1001", location_name="대전광역시 유성구",
            message="유성구 폭염경보", created_at=self.clock(), fetched_at=self.clock(),
        )]

    async def check_connection(self):
        return self.error is None

    async def close(self):
        pass


@pytest.fixture()
def service(clock, fake_sleep):
    fetcher = RetryingFetcher(RetryConfig(3, 600, 1.5), sleep=fake_sleep)
    return PublicDataService(
        MemoryCacheStore(clock=clock),
        weather_client=FakeWeatherClient(clock),
        air_quality_client=FakeAirQualityClient(clock),
        disaster_client=FakeDisasterClient(clock),
        fetcher=fetcher,
        emergency_fetcher=RetryingFetcher(RetryConfig(3, 5, 1.5), sleep=fake_sleep),
        region="유성구",
    )


def _outage():
    return ExternalServiceError("kma-weather", "HTTP 503", status_code=503)


# ═══════════════════════════════════════════════════════════════════════════
# Cache-first reads
# ═══════════════════════════════════════════════════════════════════════════

class TestCacheFirst:

    def test_weather_fetched_once_within_ttl(self, service, clock):
        async def scenario():
            first = await service.get_weather()
            clock.advance(minutes=59)
            second = await service.get_weather()
            return first, second

        first, second = asyncio.run(scenario())
        assert service.weather_client.calls == 1
        assert first.temperature == second.temperature == 28.0

    def test_weather_refetched_after_ttl(self, service, clock):
        async def scenario():
            await service.get_weather()
            clock.advance(minutes=61)
            await service.get_weather()

        asyncio.run(scenario())
        assert service.weather_client.calls == 2

    def test_force_refresh_bypasses_cache(self, service):
        async def scenario():
            await service.get_weather()
            service.weather_client.temperature = 31.0
            return await service.get_weather(force_refresh=True)

        weather = asyncio.run(scenario())
        assert service.weather_client.calls == 2
        assert weather.temperature == 31.0

    def test_air_quality_round_trips_through_cache(self, service):
        async def scenario():
            await service.get_air_quality()
            return await service.get_air_quality()

        air = asyncio.run(scenario())
        assert service.air_quality_client.calls == 1
        assert air.stations["노은동"].pm10_grade == 2

    def test_emergency_alerts_are_always_fresh(self, service):
        async def scenario():
            await service.get_emergency_alerts()
            return await service.get_emergency_alerts()

        messages = asyncio.run(scenario())
        assert service.disaster_client.calls == [1, 1]
        assert messages[0].serial_number == "1001"

    def test_disasters_use_lookback_window(self, service):
        asyncio.run(service.get_disasters())
        assert service.disaster_client.calls == [24]


# ═══════════════════════════════════════════════════════════════════════════
# Failure handling
# ═══════════════════════════════════════════════════════════════════════════

class TestFailures:

    def test_stale_data_returned_after_retries_fail(self, service, clock, fake_sleep):
        async def scenario():
            await service.get_weather()
            clock.advance(hours=2)
            service.weather_client.error = _outage()
            return await service.get_weather()

        weather = asyncio.run(scenario())
        assert weather.temperature == 28.0
        assert service.weather_client.calls == 1 + 3
        assert fake_sleep.calls == [600, 900]

    def test_unavailable_when_nothing_cached(self, service):
        service.weather_client.error = _outage()

        with pytest.raises(DataUnavailableError) as exc_info:
            asyncio.run(service.get_weather())

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["data_type"] == "weather"
        assert isinstance(exc_info.value.__cause__, ExternalServiceError)

    def test_empty_result_is_not_an_error(self, service):
        async def empty(lookback_hours=None):
            return []

        service.disaster_client.fetch_disasters = empty
        assert asyncio.run(service.get_disasters(force_refresh=True)) == []

    def test_update_all_reports_each_type(self, service):
        service.air_quality_client.error = ExternalServiceError("airkorea", "timeout")

        summary = asyncio.run(service.update_all())

        assert summary.results["weather"]["success"] is True
        assert summary.results["air_quality"]["success"] is False
        assert summary.results["disaster"]["success"] is True
        assert not summary.all_succeeded

    def test_check_connections(self, service):
        service.disaster_client.error = _outage()
        results = asyncio.run(service.check_connections())
        assert results == {"weather": True, "air_quality": True, "disaster": False}


class TestMaintenance:

    def test_cleanup_and_stats(self, service, clock):
        async def scenario():
            await service.get_weather()
            await service.get_air_quality()
            clock.advance(minutes=90)
            removed = await service.cleanup_expired_cache()
            return removed, await service.cache_statistics()

        removed, stats = asyncio.run(scenario())
        assert removed == 1
        assert stats["valid"] == 1
