"""
normalizers.py — Provider payload → canonical record mapping, plus range checks.

Normalization is explicit: each provider's field names are mapped once, here,
onto WeatherRecord / AirQualityRecord / DisasterMessage. Nothing downstream
looks at raw provider keys.

Validation never raises. Out-of-range values are logged and appended to the
record's `anomalies` list, and the record is passed through unchanged.

    Check                       Range
    ─────────────────────────   ─────────────
    temperature                 −50 … 60 °C
    precipitation probability   0 … 100 %
    humidity                    0 … 100 %
    PM10                        0 … 1000 µg/m³
    PM2.5                       0 … 500 µg/m³
    disaster message text       non-empty
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from welfare_notify.core.config import settings
from welfare_notify.ingestion.models import (
    AirQualityRecord,
    DisasterMessage,
    StationReading,
    WeatherRecord,
)

logger = logging.getLogger(__name__)

KST = ZoneInfo(settings.SCHEDULER_TIMEZONE)

# KMA SKY category codes
SKY_CONDITIONS = {
    "1": "맑음",
    "3": "구름많음",
    "4": "흐림",
}
UNKNOWN_CONDITION = "알 수 없음"

# Stations inside the province that are outside the service area
EXCLUDED_STATIONS = frozenset({
    "읍내동", "문평동", "문창동", "대흥동1", "성남동1",
    "대성동", "정림동", "둔산동", "월평동",
})

_PROVIDER_DT_FORMATS = ("%Y%m%d%H%M%S", "%Y/%m/%d %H:%M:%S", "%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def safe_number(value: Any) -> Optional[float]:
    """AirKorea uses "-" and "" for missing measurements."""
    if value is None or value in ("-", ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    n = safe_number(value)
    return int(n) if n is not None else None


def parse_provider_datetime(value: Any) -> Optional[datetime]:
    """Parse a MOIS timestamp (local KST time) into an aware datetime."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in _PROVIDER_DT_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=KST)
        except ValueError:
            continue
    logger.warning("Unparseable provider timestamp: %r", value)
    return None


def format_provider_datetime(dt: datetime) -> str:
    return dt.astimezone(KST).strftime("%Y%m%d%H%M%S")


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

def parse_weather_items(
    items: Iterable[Dict[str, Any]],
    *,
    now: datetime,
    region: str,
) -> WeatherRecord:
    """
    Map KMA forecast items to a WeatherRecord.

    Only items whose `fcstTime` matches the current local hour are used.
    """
    local_now = now.astimezone(KST)
    current_hour = f"{local_now.hour:02d}00"
    record = WeatherRecord(region=region, fetched_at=now)

    for item in items:
        if item.get("fcstTime") != current_hour:
            continue
        category = item.get("category")
        value = item.get("fcstValue")
        if category == "TMP":
            record.temperature = safe_number(value)
        elif category == "TMN":
            record.min_temperature = safe_number(value)
        elif category == "TMX":
            record.max_temperature = safe_number(value)
        elif category == "SKY":
            record.condition = SKY_CONDITIONS.get(str(value), UNKNOWN_CONDITION)
        elif category == "POP":
            record.precipitation_probability = _to_int(value) or 0
        elif category == "REH":
            record.humidity = _to_int(value)
        elif category == "WSD":
            record.wind_speed = safe_number(value)

    return record


def validate_weather(record: WeatherRecord) -> WeatherRecord:
    t = record.temperature
    if t is not None and not (-50 <= t <= 60):
        _flag(record.anomalies, f"temperature out of range: {t}")
    pop = record.precipitation_probability
    if pop is not None and not (0 <= pop <= 100):
        _flag(record.anomalies, f"precipitation probability out of range: {pop}")
    hum = record.humidity
    if hum is not None and not (0 <= hum <= 100):
        _flag(record.anomalies, f"humidity out of range: {hum}")
    return record


# ---------------------------------------------------------------------------
# Air quality
# ---------------------------------------------------------------------------

def parse_air_quality_items(
    items: Iterable[Dict[str, Any]],
    *,
    now: datetime,
    region: str,
) -> AirQualityRecord:
    """
    Group AirKorea items by station, keeping the first (latest) reading per
    station and dropping stations outside the service area.
    """
    record = AirQualityRecord(region=region, fetched_at=now)
    for item in items:
        name = (item.get("stationName") or "").strip()
        if not name or name in EXCLUDED_STATIONS or name in record.stations:
            continue
        record.stations[name] = StationReading(
            station_name=name,
            pm10=safe_number(item.get("pm10Value")),
            pm25=safe_number(item.get("pm25Value")),
            o3=safe_number(item.get("o3Value")),
            no2=safe_number(item.get("no2Value")),
            so2=safe_number(item.get("so2Value")),
            co=safe_number(item.get("coValue")),
            pm10_grade=safe_number(item.get("pm10Grade")),
            pm25_grade=safe_number(item.get("pm25Grade")),
            khai_value=safe_number(item.get("khaiValue")),
            khai_grade=safe_number(item.get("khaiGrade")),
            measured_at=item.get("dataTime"),
        )
    return record


def validate_air_quality(record: AirQualityRecord) -> AirQualityRecord:
    for name, reading in record.stations.items():
        if reading.pm10 is not None and not (0 <= reading.pm10 <= 1000):
            _flag(record.anomalies, f"{name}: PM10 out of range: {reading.pm10}")
        if reading.pm25 is not None and not (0 <= reading.pm25 <= 500):
            _flag(record.anomalies, f"{name}: PM2.5 out of range: {reading.pm25}")
    return record


# ---------------------------------------------------------------------------
# Disaster messages
# ---------------------------------------------------------------------------

def parse_disaster_items(
    items: Iterable[Dict[str, Any]],
    *,
    now: datetime,
) -> List[DisasterMessage]:
    """
    Map MOIS items (sn, locationName, locationId, msg, crtDt, mdfcnDt) to
    DisasterMessage. Items without a serial number have no identity and are
    skipped.
    """
    messages: List[DisasterMessage] = []
    for item in items:
        sn = item.get("sn")
        if sn in (None, ""):
            logger.warning("Disaster item without serial number skipped: %s", item)
            continue
        created = parse_provider_datetime(item.get("crtDt")) or now
        messages.append(DisasterMessage(
            serial_number=str(sn),
            location_name=item.get("locationName") or "",
            location_id=item.get("locationId"),
            message=item.get("msg") or "",
            created_at=created,
            modified_at=parse_provider_datetime(item.get("mdfcnDt")),
            disaster_type=item.get("disasterType") or "",
            fetched_at=now,
        ))
    return messages


def validate_disasters(messages: List[DisasterMessage]) -> List[str]:
    anomalies: List[str] = []
    for msg in messages:
        if not msg.message.strip():
            _flag(anomalies, f"disaster {msg.serial_number}: empty message text")
    return anomalies


def _flag(anomalies: List[str], text: str) -> None:
    logger.warning("Data validation: %s", text)
    anomalies.append(text)
