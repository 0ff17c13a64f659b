"""
providers.py — httpx clients for the three Korean public-data APIs.

    Client                 Endpoint                                   Returns
    ─────────────────────  ─────────────────────────────────────────  ─────────────────────
    KmaWeatherClient       VilageFcstInfoService_2.0/getVilageFcst    WeatherRecord
    AirKoreaClient         ArpltnInforInqireSvc/getCtprvnRltmMesure…  AirQualityRecord
    DisasterMessageClient  DisasterMsg3/getDisasterMsg3List           List[DisasterMessage]

Each client owns one lazily created `httpx.AsyncClient` with the configured
timeout. Any transport error, non-2xx status, non-"00" result code or
malformed body is raised as ExternalServiceError; retry and fallback are
the caller's concern (see public_data_service).

═══════════════════════════════════════════════════════════════════════════
KMA BASE TIME
═══════════════════════════════════════════════════════════════════════════

The short-term forecast is published eight times a day:

    0200 0500 0800 1100 1400 1700 2000 2300  (KST)

A request uses the most recent base time at or before the current local
hour. Before 02:00 the previous day's 2300 run is used.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from welfare_notify.core.config import settings
from welfare_notify.core.errors import ExternalServiceError
from welfare_notify.ingestion.models import (
    AirQualityRecord,
    DisasterMessage,
    WeatherRecord,
)
from welfare_notify.ingestion.normalizers import (
    KST,
    format_provider_datetime,
    parse_air_quality_items,
    parse_disaster_items,
    parse_weather_items,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

KMA_BASE_TIMES = ("0200", "0500", "0800", "1100", "1400", "1700", "2000", "2300")


def kma_base_datetime(now: datetime) -> Tuple[str, str]:
    """Return (base_date YYYYMMDD, base_time HHMM) for a KMA forecast request."""
    local = now.astimezone(KST)
    for base in reversed(KMA_BASE_TIMES):
        if local.hour >= int(base[:2]):
            return local.strftime("%Y%m%d"), base
    previous_day = local - timedelta(days=1)
    return previous_day.strftime("%Y%m%d"), "2300"


class _ProviderClient(ABC):
    """Shared httpx plumbing for the public-data clients."""

    service_name = "public-data"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._http_client: Optional[httpx.AsyncClient] = None

        if not api_key:
            logger.warning("%s API key not configured", self.service_name)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _get_json(self, operation: str, params: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}/{operation}"
        try:
            response = await client.get(url, params={"serviceKey": self.api_key, **params})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                self.service_name,
                f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                endpoint=operation,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                self.service_name, f"{type(e).__name__}: {e}", endpoint=operation,
            ) from e
        except ValueError as e:
            raise ExternalServiceError(
                self.service_name, "response is not valid JSON", endpoint=operation,
            ) from e

    def _check_result(self, header: Any, operation: str) -> None:
        if not isinstance(header, dict):
            raise ExternalServiceError(
                self.service_name, "response header missing", endpoint=operation,
            )
        code = str(header.get("resultCode", ""))
        if code != "00":
            raise ExternalServiceError(
                self.service_name,
                f"API error {code}: {header.get('resultMsg', '')}",
                result_code=code,
                endpoint=operation,
            )

    @abstractmethod
    async def check_connection(self) -> bool:
        """True when the provider answers a minimal request."""


# ═══════════════════════════════════════════════════════════════════════════
# KMA short-term forecast
# ═══════════════════════════════════════════════════════════════════════════

class KmaWeatherClient(_ProviderClient):
    service_name = "kma-weather"

    def __init__(self, **kwargs: Any):
        super().__init__(settings.WEATHER_API_URL, settings.WEATHER_API_KEY, **kwargs)
        self.nx = settings.WEATHER_GRID_NX
        self.ny = settings.WEATHER_GRID_NY

    async def fetch_weather(self, region: Optional[str] = None) -> WeatherRecord:
        now = self._clock()
        base_date, base_time = kma_base_datetime(now)
        params = {
            "pageNo": 1,
            "numOfRows": 1000,
            "dataType": "JSON",
            "base_date": base_date,
            "base_time": base_time,
            "nx": self.nx,
            "ny": self.ny,
        }
        logger.info("Fetching weather from KMA (base %s %s)", base_date, base_time)
        data = await self._get_json("getVilageFcst", params)

        try:
            response = data["response"]
            self._check_result(response.get("header"), "getVilageFcst")
            items = response["body"]["items"]["item"]
        except (KeyError, TypeError) as e:
            raise ExternalServiceError(
                self.service_name, f"unexpected response structure: {e}",
            ) from e

        record = parse_weather_items(items, now=now, region=region or settings.DEFAULT_REGION)
        logger.info(
            "Weather fetched: %s°C, %s", record.temperature, record.condition,
        )
        return record

    async def check_connection(self) -> bool:
        try:
            await self.fetch_weather()
            return True
        except ExternalServiceError as e:
            logger.error("Weather API connection check failed: %s", e.message)
            return False


# ═══════════════════════════════════════════════════════════════════════════
# AirKorea real-time air quality
# ═══════════════════════════════════════════════════════════════════════════

class AirKoreaClient(_ProviderClient):
    service_name = "airkorea"

    def __init__(self, **kwargs: Any):
        super().__init__(settings.AIR_QUALITY_API_URL, settings.AIR_QUALITY_API_KEY, **kwargs)
        self.sido_name = settings.AIR_QUALITY_SIDO

    async def fetch_air_quality(self, region: Optional[str] = None) -> AirQualityRecord:
        params = {
            "returnType": "json",
            "numOfRows": 200,
            "pageNo": 1,
            "sidoName": self.sido_name,
            "ver": "1.0",
        }
        logger.info("Fetching air quality for %s from AirKorea", self.sido_name)
        data = await self._get_json("getCtprvnRltmMesureDnsty", params)

        try:
            response = data["response"]
            if "header" in response:
                self._check_result(response["header"], "getCtprvnRltmMesureDnsty")
            items = response["body"]["items"]
        except (KeyError, TypeError) as e:
            raise ExternalServiceError(
                self.service_name, f"unexpected response structure: {e}",
            ) from e

        if not isinstance(items, list) or not items:
            raise ExternalServiceError(self.service_name, "no air quality data found")

        record = parse_air_quality_items(
            items, now=self._clock(), region=region or settings.DEFAULT_REGION,
        )
        logger.info("Air quality fetched: %d stations", len(record.stations))
        return record

    async def check_connection(self) -> bool:
        try:
            await self.fetch_air_quality()
            return True
        except ExternalServiceError as e:
            logger.error("Air quality API connection check failed: %s", e.message)
            return False


# ═══════════════════════════════════════════════════════════════════════════
# MOIS disaster text messages
# ═══════════════════════════════════════════════════════════════════════════

class DisasterMessageClient(_ProviderClient):
    service_name = "mois-disaster"

    def __init__(self, **kwargs: Any):
        super().__init__(settings.DISASTER_API_URL, settings.DISASTER_API_KEY, **kwargs)

    async def fetch_disasters(self, lookback_hours: Optional[int] = None) -> List[DisasterMessage]:
        """
        Fetch every message created within the lookback window.

        Unlike a "best effort" client, a failed call raises; an empty list
        always means the provider answered and reported no messages.
        """
        hours = lookback_hours if lookback_hours is not None else settings.DISASTER_LOOKBACK_HOURS
        end = self._clock()
        start = end - timedelta(hours=hours)
        params = {
            "pageNo": 1,
            "numOfRows": 100,
            "type": "json",
            "crtDt": format_provider_datetime(start),
            "endDt": format_provider_datetime(end),
        }
        logger.info("Fetching disaster messages from MOIS (last %dh)", hours)
        data = await self._get_json("getDisasterMsg3List", params)

        try:
            self._check_result(data.get("header"), "getDisasterMsg3List")
            items = data.get("body") or []
        except AttributeError as e:
            raise ExternalServiceError(
                self.service_name, f"unexpected response structure: {e}",
            ) from e

        if not isinstance(items, list):
            raise ExternalServiceError(self.service_name, "body is not a list")

        messages = parse_disaster_items(items, now=end)
        logger.info("Disaster messages fetched: %d", len(messages))
        return messages

    async def check_connection(self) -> bool:
        try:
            await self.fetch_disasters(1)
            return True
        except ExternalServiceError as e:
            logger.error("Disaster API connection check failed: %s", e.message)
            return False
