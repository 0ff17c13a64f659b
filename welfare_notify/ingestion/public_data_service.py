"""
public_data_service.py — Cache-first acquisition of weather, air quality and
disaster data.

═══════════════════════════════════════════════════════════════════════════
ACQUISITION FLOW (per data type)
═══════════════════════════════════════════════════════════════════════════

    get_X(force_refresh)
        │
        ├── not forced → CacheStore.get ── hit ──────────────▶ return
        │
        ├── RetryingFetcher.fetch(provider call)
        │       └── ok → normalize + validate → CacheStore.put ▶ return
        │
        └── total failure → CacheStore.get_stale ── found ───▶ return (stale)
                                 └── missing → raise DataUnavailableError

    Data type     Cache key        TTL
    ───────────   ──────────────   ───────
    weather       weather          60 min
    air quality   air_quality      120 min
    disaster      disaster         10 min
    emergency     disaster_recent  10 min  (1h lookback, short retry delay)

DataUnavailableError means "the source could not be read". It is never
returned as an empty list; callers decide how to degrade.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from welfare_notify.core.cache import CacheStore
from welfare_notify.core.config import settings
from welfare_notify.core.errors import DataUnavailableError
from welfare_notify.core.retry import RetryConfig, RetryingFetcher
from welfare_notify.ingestion.models import (
    AirQualityRecord,
    DisasterMessage,
    WeatherRecord,
)
from welfare_notify.ingestion.normalizers import (
    validate_air_quality,
    validate_disasters,
    validate_weather,
)
from welfare_notify.ingestion.providers import (
    AirKoreaClient,
    DisasterMessageClient,
    KmaWeatherClient,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

WEATHER = "weather"
AIR_QUALITY = "air_quality"
DISASTER = "disaster"
DISASTER_RECENT = "disaster_recent"

EMERGENCY_LOOKBACK_HOURS = 1


@dataclass
class RefreshSummary:
    """Outcome of update_all(): per data type success flag and error text."""
    results: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return all(r["success"] for r in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {"all_succeeded": self.all_succeeded, "results": self.results}


class PublicDataService:
    """
    Composes CacheStore, RetryingFetcher and the provider clients.

    Usage:
        service = PublicDataService(cache=build_cache_store())
        weather = await service.get_weather()
        alerts = await service.get_emergency_alerts()
    """

    def __init__(
        self,
        cache: CacheStore,
        *,
        weather_client: Optional[KmaWeatherClient] = None,
        air_quality_client: Optional[AirKoreaClient] = None,
        disaster_client: Optional[DisasterMessageClient] = None,
        fetcher: Optional[RetryingFetcher] = None,
        emergency_fetcher: Optional[RetryingFetcher] = None,
        region: Optional[str] = None,
    ):
        self.cache = cache
        self.weather_client = weather_client or KmaWeatherClient()
        self.air_quality_client = air_quality_client or AirKoreaClient()
        self.disaster_client = disaster_client or DisasterMessageClient()
        self.fetcher = fetcher or RetryingFetcher()
        self.emergency_fetcher = emergency_fetcher or RetryingFetcher(RetryConfig(
            max_attempts=settings.FETCH_MAX_ATTEMPTS,
            base_delay_seconds=settings.EMERGENCY_FETCH_RETRY_DELAY,
            multiplier=settings.FETCH_BACKOFF_MULTIPLIER,
        ))
        self.region = region or settings.DEFAULT_REGION

    # ── Generic cache-or-fetch ──

    async def _acquire(
        self,
        data_type: str,
        ttl: int,
        fetch: Callable[[], Awaitable[T]],
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        *,
        force_refresh: bool,
        fetcher: Optional[RetryingFetcher] = None,
    ) -> T:
        if not force_refresh:
            lookup = await self.cache.get(data_type, self.region)
            if lookup.found:
                try:
                    return decode(lookup.payload)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("Cached %s payload unreadable, refetching: %s", data_type, e)

        start = time.monotonic()
        try:
            value = await (fetcher or self.fetcher).fetch(fetch, label=data_type)
        except Exception as fetch_error:
            logger.error("Failed to get %s data: %s", data_type, fetch_error)
            payload, found = await self.cache.get_stale(data_type, self.region)
            if found:
                try:
                    stale = decode(payload)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("Stale %s payload unreadable: %s", data_type, e)
                else:
                    logger.warning("Returning stale %s data after fetch failure", data_type)
                    return stale
            raise DataUnavailableError(
                data_type, str(fetch_error), region=self.region,
            ) from fetch_error

        await self.cache.put(data_type, self.region, encode(value), ttl)
        logger.info(
            "%s data fetched and cached", data_type,
            extra={
                "data_type": data_type,
                "region": self.region,
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
            },
        )
        return value

    # ── Weather ──

    async def _fetch_weather(self) -> WeatherRecord:
        record = await self.weather_client.fetch_weather(self.region)
        return validate_weather(record)

    async def get_weather(self, force_refresh: bool = False) -> WeatherRecord:
        return await self._acquire(
            WEATHER,
            settings.WEATHER_CACHE_TTL,
            self._fetch_weather,
            lambda r: r.to_dict(),
            WeatherRecord.from_dict,
            force_refresh=force_refresh,
        )

    # ── Air quality ──

    async def _fetch_air_quality(self) -> AirQualityRecord:
        record = await self.air_quality_client.fetch_air_quality(self.region)
        return validate_air_quality(record)

    async def get_air_quality(self, force_refresh: bool = False) -> AirQualityRecord:
        return await self._acquire(
            AIR_QUALITY,
            settings.AIR_QUALITY_CACHE_TTL,
            self._fetch_air_quality,
            lambda r: r.to_dict(),
            AirQualityRecord.from_dict,
            force_refresh=force_refresh,
        )

    # ── Disasters ──

    async def _fetch_disasters(self, lookback_hours: int) -> List[DisasterMessage]:
        messages = await self.disaster_client.fetch_disasters(lookback_hours)
        validate_disasters(messages)
        return messages

    async def get_disasters(self, force_refresh: bool = False) -> List[DisasterMessage]:
        return await self._acquire(
            DISASTER,
            settings.DISASTER_CACHE_TTL,
            lambda: self._fetch_disasters(settings.DISASTER_LOOKBACK_HOURS),
            _encode_messages,
            _decode_messages,
            force_refresh=force_refresh,
        )

    async def get_emergency_alerts(self) -> List[DisasterMessage]:
        """Always-fresh 1h disaster window for the emergency monitor."""
        return await self._acquire(
            DISASTER_RECENT,
            settings.DISASTER_CACHE_TTL,
            lambda: self._fetch_disasters(EMERGENCY_LOOKBACK_HOURS),
            _encode_messages,
            _decode_messages,
            force_refresh=True,
            fetcher=self.emergency_fetcher,
        )

    # ── Maintenance ──

    async def update_all(self) -> RefreshSummary:
        """Force-refresh every data type; failures are reported, not raised."""
        summary = RefreshSummary()
        for data_type, getter in (
            (WEATHER, self.get_weather),
            (AIR_QUALITY, self.get_air_quality),
            (DISASTER, self.get_disasters),
        ):
            try:
                await getter(force_refresh=True)
                summary.results[data_type] = {"success": True, "error": None}
            except DataUnavailableError as e:
                summary.results[data_type] = {"success": False, "error": e.message}

        logger.info("Public data refresh complete: %s", {
            k: v["success"] for k, v in summary.results.items()
        })
        return summary

    async def check_connections(self) -> Dict[str, bool]:
        return {
            WEATHER: await self.weather_client.check_connection(),
            AIR_QUALITY: await self.air_quality_client.check_connection(),
            DISASTER: await self.disaster_client.check_connection(),
        }

    async def cleanup_expired_cache(self) -> int:
        return await self.cache.cleanup_expired()

    async def cache_statistics(self) -> Dict[str, int]:
        return await self.cache.stats()

    async def close(self) -> None:
        await self.weather_client.close()
        await self.air_quality_client.close()
        await self.disaster_client.close()


def _encode_messages(messages: List[DisasterMessage]) -> List[Dict[str, Any]]:
    return [m.to_dict() for m in messages]


def _decode_messages(payload: Any) -> List[DisasterMessage]:
    if not isinstance(payload, list):
        raise TypeError("disaster payload is not a list")
    return [DisasterMessage.from_dict(item) for item in payload]
