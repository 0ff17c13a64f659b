"""
models.py — Canonical public-data records produced by the provider clients.

Defines:
    • WeatherRecord       — KMA short-term forecast snapshot for one grid cell
    • StationReading      — one AirKorea station's latest measurements
    • AirQualityRecord    — all relevant stations in the configured province
    • DisasterMessage     — one MOIS disaster text message (unclassified)

Every record round-trips through `to_dict()` / `from_dict()` so it can be
stored in the cache as plain JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value))
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Weather
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class WeatherRecord:
    """Forecast values for the hour closest to the fetch time."""
    temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    condition: str = "알 수 없음"
    precipitation_probability: int = 0
    humidity: Optional[int] = None
    wind_speed: Optional[float] = None
    region: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    anomalies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "min_temperature": self.min_temperature,
            "max_temperature": self.max_temperature,
            "condition": self.condition,
            "precipitation_probability": self.precipitation_probability,
            "humidity": self.humidity,
            "wind_speed": self.wind_speed,
            "region": self.region,
            "fetched_at": self.fetched_at.isoformat(),
            "anomalies": list(self.anomalies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherRecord":
        return cls(
            temperature=data.get("temperature"),
            min_temperature=data.get("min_temperature"),
            max_temperature=data.get("max_temperature"),
            condition=data.get("condition") or "알 수 없음",
            precipitation_probability=data.get("precipitation_probability") or 0,
            humidity=data.get("humidity"),
            wind_speed=data.get("wind_speed"),
            region=data.get("region", ""),
            fetched_at=_parse_dt(data.get("fetched_at")),
            anomalies=list(data.get("anomalies", [])),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Air quality
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class StationReading:
    station_name: str
    pm10: Optional[float] = None
    pm25: Optional[float] = None
    o3: Optional[float] = None
    no2: Optional[float] = None
    so2: Optional[float] = None
    co: Optional[float] = None
    pm10_grade: Optional[float] = None
    pm25_grade: Optional[float] = None
    khai_value: Optional[float] = None
    khai_grade: Optional[float] = None
    measured_at: Optional[str] = None  # provider "dataTime", e.g. "2024-07-01 14:00"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station_name": self.station_name,
            "pm10": self.pm10,
            "pm25": self.pm25,
            "o3": self.o3,
            "no2": self.no2,
            "so2": self.so2,
            "co": self.co,
            "pm10_grade": self.pm10_grade,
            "pm25_grade": self.pm25_grade,
            "khai_value": self.khai_value,
            "khai_grade": self.khai_grade,
            "measured_at": self.measured_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StationReading":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass
class AirQualityRecord:
    """Latest reading per station, keyed by station name."""
    stations: Dict[str, StationReading] = field(default_factory=dict)
    region: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    anomalies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stations": {name: s.to_dict() for name, s in self.stations.items()},
            "region": self.region,
            "fetched_at": self.fetched_at.isoformat(),
            "anomalies": list(self.anomalies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AirQualityRecord":
        return cls(
            stations={
                name: StationReading.from_dict(s)
                for name, s in (data.get("stations") or {}).items()
            },
            region=data.get("region", ""),
            fetched_at=_parse_dt(data.get("fetched_at")),
            anomalies=list(data.get("anomalies", [])),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Disaster messages
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DisasterMessage:
    """
    One disaster text message as published by MOIS.

    `serial_number` is the provider-assigned identity; re-fetching the same
    message yields the same serial number.
    """
    serial_number: str
    location_name: str
    message: str
    created_at: datetime
    location_id: Optional[str] = None
    modified_at: Optional[datetime] = None
    disaster_type: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serial_number": self.serial_number,
            "location_name": self.location_name,
            "location_id": self.location_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "disaster_type": self.disaster_type,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DisasterMessage":
        modified = data.get("modified_at")
        return cls(
            serial_number=str(data["serial_number"]),
            location_name=data.get("location_name") or "",
            location_id=data.get("location_id"),
            message=data.get("message") or "",
            created_at=_parse_dt(data.get("created_at")),
            modified_at=_parse_dt(modified) if modified else None,
            disaster_type=data.get("disaster_type") or "",
            fetched_at=_parse_dt(data.get("fetched_at")),
        )
