"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from welfare_notify.core.config import settings
    print(settings.REDIS_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Welfare SMS Notifier"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    ENABLE_SCHEDULER: bool = True  # start standard jobs on app startup

    # ── Region ──
    DEFAULT_REGION: str = "유성구"
    LOCAL_REGION_NAMES: List[str] = ["대전", "유성구", "유성"]
    SCHEDULER_TIMEZONE: str = "Asia/Seoul"

    # ── Cache ──
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "public_data"
    CACHE_STALE_RETENTION: int = 86400  # keep expired entries this long for fallback (s)
    WEATHER_CACHE_TTL: int = 3600       # 60 min
    AIR_QUALITY_CACHE_TTL: int = 7200   # 120 min
    DISASTER_CACHE_TTL: int = 600       # 10 min

    # ── Fetch retry ──
    FETCH_MAX_ATTEMPTS: int = 3
    FETCH_RETRY_DELAY: float = 600.0    # seconds; grows by multiplier per attempt
    FETCH_BACKOFF_MULTIPLIER: float = 1.5
    EMERGENCY_FETCH_RETRY_DELAY: float = 5.0

    # ── External APIs ──
    WEATHER_API_URL: str = "http://apis.data.go.kr/1360000/VilageFcstInfoService_2.0"
    WEATHER_API_KEY: Optional[str] = None
    WEATHER_GRID_NX: int = 67
    WEATHER_GRID_NY: int = 100
    AIR_QUALITY_API_URL: str = "http://apis.data.go.kr/B552584/ArpltnInforInqireSvc"
    AIR_QUALITY_API_KEY: Optional[str] = None
    AIR_QUALITY_SIDO: str = "대전"
    DISASTER_API_URL: str = "http://apis.data.go.kr/1741000/DisasterMsg3"
    DISASTER_API_KEY: Optional[str] = None
    DISASTER_LOOKBACK_HOURS: int = 24
    EXTERNAL_API_TIMEOUT: float = 30.0  # seconds

    # ── SMS ──
    SMS_PROVIDER: str = "simulation"  # simulation | naver
    NAVER_SMS_ACCESS_KEY: Optional[str] = None
    NAVER_SMS_SECRET_KEY: Optional[str] = None
    NAVER_SMS_SERVICE_ID: Optional[str] = None
    NAVER_SMS_FROM_NUMBER: Optional[str] = None
    SMS_MAX_RETRIES: int = 3
    SMS_RETRY_DELAY: float = 5.0
    SMS_MAX_LENGTH: int = 90  # feature-phone safe length

    # ── Dispatch ──
    BROADCAST_BATCH_SIZE: int = 100
    BROADCAST_BATCH_PAUSE: float = 1.0
    EMERGENCY_BATCH_SIZE: int = 50
    EMERGENCY_BATCH_PAUSE: float = 0.5

    # ── Emergency monitoring ──
    EMERGENCY_CHECK_INTERVAL: int = 120     # 2 min, below the 5-min SLA
    EMERGENCY_SLA_SECONDS: int = 300
    EMERGENCY_FETCH_TIMEOUT: float = 30.0
    EMERGENCY_SEND_ATTEMPTS: int = 3
    EMERGENCY_SEND_RETRY_DELAY: float = 30.0
    PROCESSED_ALERT_RETENTION: int = 86400  # 24h
    PROCESSED_ALERT_MAX_SIZE: int = 1000

    # ── Scheduling ──
    DAILY_BROADCAST_TIME: str = "07:00"
    WEATHER_RISK_CHECK_TIME: str = "09:00"
    WEATHER_REFRESH_INTERVAL: int = 3600
    AIR_QUALITY_REFRESH_INTERVAL: int = 7200
    CACHE_CLEANUP_INTERVAL: int = 3600
    HEATWAVE_THRESHOLD_C: float = 33.0
    COLDWAVE_THRESHOLD_C: float = -12.0
    MAX_REMINDERS_PER_RECIPIENT: int = 5

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
