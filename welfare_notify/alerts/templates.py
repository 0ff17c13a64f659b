"""
templates.py — SMS message rendering for welfare recipients.

All messages are kept within SMS_MAX_LENGTH (90 chars, feature-phone safe).
Longer text is cut on line boundaries and marked with "...":

    안녕하세요! 오늘 유성구 날씨는 맑음 18~30도☀
    미세먼지 '나쁨'😷, 외출시 마스크 착용하세요
    유성구청 드림

Message templates:
    daily weather   — condition, temperature range, rain chance, dust grade
    emergency       — [폭염경보] + alert text or per-hazard advice
    custom reminder — "{name}님, {title} 알림입니다." + body
    welfare notice  — [title] + body + deadline + contact
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from welfare_notify.alerts.classifier import LEVEL_LABELS_KO
from welfare_notify.alerts.models import AlertRecord
from welfare_notify.core.config import settings
from welfare_notify.ingestion.models import AirQualityRecord, WeatherRecord

UNKNOWN = "정보없음"
SIGNATURE = "유성구청 드림"
SAFETY_SIGNATURE = "유성구 안전재난과"
WELFARE_SIGNATURE = "유성구 보건소"

WEATHER_EMOJIS = {
    "맑음": "☀",
    "구름많음": "⛅",
    "흐림": "☁",
    "비": "🌧",
    "눈": "❄",
    "소나기": "🌦",
}

AIR_QUALITY_EMOJIS = {
    "좋음": "😊",
    "보통": "😐",
    "나쁨": "😷",
    "매우나쁨": "!",
}

# AirKorea grade codes
AIR_QUALITY_GRADES = {1: "좋음", 2: "보통", 3: "나쁨", 4: "매우나쁨"}

# Emoji and punctuation that feature phones render badly
_FEATURE_PHONE_REPLACEMENTS = (
    ("🌧️", "🌧"),
    ("❄️", "❄"),
    ("⚠️", "⚠"),
    ("🧥", ""),
    ("🚨", "!"),
    ("‘", "'"),
    ("’", "'"),
    ("“", '"'),
    ("”", '"'),
    ("–", "-"),
    ("—", "-"),
)


def format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def ensure_feature_phone_compatibility(message: str) -> str:
    for src, dst in _FEATURE_PHONE_REPLACEMENTS:
        message = message.replace(src, dst)
    return message


def truncate_message(message: str, max_length: Optional[int] = None) -> str:
    """
    Fit a message into `max_length` characters, cutting on line boundaries.

    When even the first line does not fit, it is hard-cut so the recipient
    still gets the beginning of the text.
    """
    if not message:
        return ""
    max_length = max_length or settings.SMS_MAX_LENGTH
    clean = ensure_feature_phone_compatibility(message)
    if len(clean) <= max_length:
        return clean

    budget = max_length - 3
    kept: List[str] = []
    for line in clean.split("\n"):
        candidate = "\n".join(kept + [line])
        if len(candidate) > budget:
            break
        kept.append(line)

    result = "\n".join(kept).strip()
    if not result:
        result = clean[:budget].rstrip()
    return result + "..."


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class MessageValidation:
    is_valid: bool = True
    length: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "length": self.length,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _is_feature_phone_safe(ch: str) -> bool:
    code = ord(ch)
    return (
        code < 0x80
        or 0xAC00 <= code <= 0xD7AF   # Hangul syllables
        or 0x3131 <= code <= 0x318E   # Hangul compatibility jamo
        or 0x1100 <= code <= 0x11FF   # Hangul jamo
    )


def validate_message(message: str) -> MessageValidation:
    result = MessageValidation()
    if not message or not message.strip():
        result.is_valid = False
        result.errors.append("message is empty")
        return result

    result.length = len(message)
    if result.length > settings.SMS_MAX_LENGTH:
        result.warnings.append(
            f"message exceeds {settings.SMS_MAX_LENGTH} characters ({result.length})"
        )
    if any(not _is_feature_phone_safe(ch) for ch in message):
        result.warnings.append("some characters may not display on feature phones")
    return result


def preview(message: str) -> Dict[str, Any]:
    validation = validate_message(message)
    return {
        "message": message,
        "max_length": settings.SMS_MAX_LENGTH,
        "message_type": "LMS" if len(message) > 80 else "SMS",
        **validation.to_dict(),
    }


# ═══════════════════════════════════════════════════════════════════════════
# Renderers
# ═══════════════════════════════════════════════════════════════════════════

def worst_air_quality_grade(air: Optional[AirQualityRecord], attr: str = "pm10_grade") -> Optional[str]:
    """Highest (worst) grade across stations, as a Korean label."""
    if air is None:
        return None
    grades = [
        int(getattr(s, attr)) for s in air.stations.values()
        if getattr(s, attr) is not None
    ]
    if not grades:
        return None
    return AIR_QUALITY_GRADES.get(max(grades))


def render_daily_weather(
    weather: Optional[WeatherRecord],
    air: Optional[AirQualityRecord] = None,
    region: Optional[str] = None,
) -> str:
    location = region or (weather.region if weather and weather.region else settings.DEFAULT_REGION)
    condition = weather.condition if weather else UNKNOWN

    temp_range = ""
    if weather and weather.min_temperature is not None and weather.max_temperature is not None:
        temp_range = f"{format_number(weather.min_temperature)}~{format_number(weather.max_temperature)}도"
    elif weather and weather.temperature is not None:
        temp_range = f"{format_number(weather.temperature)}도"

    message = f"안녕하세요! 오늘 {location} 날씨는 {condition}"
    if temp_range:
        message += f" {temp_range}"
    message += WEATHER_EMOJIS.get(condition, "")
    if weather and weather.precipitation_probability:
        message += f", 강수{weather.precipitation_probability}%"

    pm10 = worst_air_quality_grade(air, "pm10_grade")
    pm25 = worst_air_quality_grade(air, "pm25_grade")
    if pm10:
        message += f"\n미세먼지 '{pm10}'"
        if pm25 and pm25 != pm10:
            message += f", 초미세먼지 '{pm25}'"
        message += AIR_QUALITY_EMOJIS.get(pm10, "")
        if pm10 in ("나쁨", "매우나쁨"):
            message += ", 외출시 마스크 착용하세요"

    message += f"\n{SIGNATURE}"
    return truncate_message(message)


def render_emergency(
    keyword: str = "",
    level: str = "",
    content: str = "",
    location: Optional[str] = None,
    **details: Any,
) -> str:
    """
    Render an emergency SMS.

    `keyword` is the Korean hazard word (폭염, 지진, …) and `level` the Korean
    level word (경보, 주의보, …). When `content` is given it is used verbatim;
    otherwise a per-hazard advice line is generated from `details`.
    """
    location = location or settings.DEFAULT_REGION
    hazard = keyword or "긴급상황"
    message = f"[{hazard}{level}] "

    if content:
        message += content
    elif hazard == "폭염":
        message += f"오늘 낮 최고 {details.get('max_temp', 35)}도 예상!\n야외활동 자제, 물 자주 마시세요💧"
    elif hazard == "한파":
        message += f"오늘 최저 {details.get('min_temp', -10)}도 예상!\n외출시 보온에 주의하세요🧥"
    elif hazard == "지진":
        message += f"{location}에서 지진 발생!\n안전한 곳으로 대피하세요🚨"
    elif hazard == "호우":
        message += f"{location}에 호우경보 발령!\n저지대, 하천 접근 금지⚠️"
    elif hazard == "대설":
        message += f"{location}에 대설경보 발령!\n외출 자제, 교통 주의❄️"
    else:
        message += "긴급상황이 발생했습니다. 안전에 주의하세요!"

    message += f"\n{SAFETY_SIGNATURE}"
    return truncate_message(message)


def render_alert(alert: AlertRecord) -> str:
    """Emergency SMS for a classified disaster alert."""
    return render_emergency(
        keyword=alert.keyword,
        level=LEVEL_LABELS_KO.get(alert.emergency_level, ""),
        content=alert.message,
        location=alert.region,
    )


def render_custom_reminder(
    title: str,
    message: str = "",
    recipient_name: str = "",
    time_text: str = "",
) -> str:
    text = f"{recipient_name}님, " if recipient_name else ""
    text += f"{title or '알림'} 알림입니다.\n"
    if message:
        text += message
    if time_text:
        text += f"\n시간: {time_text}"
    text += f"\n{SIGNATURE}"
    return truncate_message(text)


def render_welfare(
    title: str = "공지사항",
    content: str = "",
    deadline: str = "",
    contact: str = "",
) -> str:
    text = f"[{title or '공지사항'}]\n"
    if content:
        text += content
    if deadline:
        text += f"\n마감: {deadline}"
    text += f"\n문의: {contact}" if contact else f"\n{WELFARE_SIGNATURE}"
    return truncate_message(text)


def render_error(error_text: str) -> str:
    return truncate_message(f"{error_text}\n서비스 일시 중단 중입니다.\n{SIGNATURE}")
