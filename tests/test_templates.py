"""
test_templates.py — SMS rendering, truncation and message validation.

Run with:
    pytest tests/test_templates.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

from welfare_notify.alerts import templates
from welfare_notify.alerts.models import AlertRecord
from welfare_notify.ingestion.models import AirQualityRecord, StationReading, WeatherRecord

NOW = datetime(2024, 7, 1, 5, 0, tzinfo=timezone.utc)


def _make_air(*grades) -> AirQualityRecord:
    return AirQualityRecord(
        stations={
            f"S{i}": StationReading(station_name=f"S{i}", pm10_grade=g, pm25_grade=g)
            for i, g in enumerate(grades)
        },
        region="유성구",
    )


class TestTruncation:

    def test_short_message_unchanged(self):
        assert templates.truncate_message("안녕하세요", 90) == "안녕하세요"

    def test_cuts_on_line_boundary(self):
        text = "가" * 50 + "\n" + "나" * 50
        result = templates.truncate_message(text, 90)
        assert result == "가" * 50 + "..."

    def test_hard_cut_when_first_line_too_long(self):
        result = templates.truncate_message("x" * 200, 90)
        assert len(result) == 90
        assert result.endswith("...")

    def test_empty_message(self):
        assert templates.truncate_message("") == ""

    def test_feature_phone_replacements(self):
        assert templates.ensure_feature_phone_compatibility("🚨 대피 “즉시”") == '! 대피 "즉시"'


class TestValidation:

    def test_empty_message_is_invalid(self):
        result = templates.validate_message("   ")
        assert not result.is_valid
        assert result.errors == ["message is empty"]

    def test_long_message_is_a_warning_only(self):
        result = templates.validate_message("가" * 100)
        assert result.is_valid
        assert result.length == 100
        assert any("exceeds" in w for w in result.warnings)

    def test_emoji_flagged_for_feature_phones(self):
        result = templates.validate_message("맑음☀")
        assert result.is_valid
        assert result.warnings

    def test_preview_reports_message_type(self):
        assert templates.preview("짧은 안내")["message_type"] == "SMS"
        assert templates.preview("가" * 85)["message_type"] == "LMS"


class TestDailyWeather:

    def test_temperature_range_and_signature(self):
        weather = WeatherRecord(
            temperature=25, min_temperature=18, max_temperature=30,
            condition="맑음", region="유성구", fetched_at=NOW,
        )
        text = templates.render_daily_weather(weather)
        assert text.startswith("안녕하세요! 오늘 유성구 날씨는 맑음 18~30도☀")
        assert text.endswith(templates.SIGNATURE)
        assert len(text) <= 90

    def test_rain_chance_included(self):
        weather = WeatherRecord(temperature=22.5, condition="흐림", precipitation_probability=60)
        text = templates.render_daily_weather(weather, region="유성구")
        assert "22.5도" in text
        assert "강수60%" in text

    def test_worst_station_grade_used(self):
        weather = WeatherRecord(temperature=20, condition="맑음", region="유성구")
        text = templates.render_daily_weather(weather, _make_air(1, 3, 2))
        assert "미세먼지 '나쁨'" in text
        assert "마스크" in text

    def test_good_air_has_no_mask_advice(self):
        weather = WeatherRecord(temperature=20, condition="맑음", region="유성구")
        text = templates.render_daily_weather(weather, _make_air(1, 1))
        assert "미세먼지 '좋음'" in text
        assert "마스크" not in text

    def test_without_weather(self):
        text = templates.render_daily_weather(None)
        assert templates.UNKNOWN in text

    def test_worst_grade_with_no_readings(self):
        assert templates.worst_air_quality_grade(None) is None
        assert templates.worst_air_quality_grade(_make_air()) is None


class TestEmergencyAndOthers:

    def test_alert_uses_keyword_and_level(self):
        alert = AlertRecord(
            id="1", region="대전광역시 유성구", category="heatwave", keyword="폭염",
            message="오늘 14시 폭염경보 발령", emergency_level="warning",
            is_emergency=True, observed_at=NOW, fetched_at=NOW,
        )
        text = templates.render_alert(alert)
        assert text.startswith("[폭염경보] 오늘 14시 폭염경보 발령")
        assert text.endswith(templates.SAFETY_SIGNATURE)

    def test_earthquake_advice_when_no_content(self):
        text = templates.render_emergency("지진", "", location="유성구")
        assert "유성구에서 지진 발생!" in text
        assert "🚨" not in text

    def test_custom_reminder(self):
        text = templates.render_custom_reminder("약 복용", "혈압약 드실 시간입니다.", recipient_name="김복지")
        assert text.startswith("김복지님, 약 복용 알림입니다.\n혈압약 드실 시간입니다.")

    def test_welfare_notice_with_contact(self):
        text = templates.render_welfare("독감 예방접종", "65세 이상 무료", "11월 30일", "042-611-5000")
        assert text == "[독감 예방접종]\n65세 이상 무료\n마감: 11월 30일\n문의: 042-611-5000"

    def test_welfare_notice_without_contact_is_signed(self):
        text = templates.render_welfare("공지", "내용")
        assert text.endswith(templates.WELFARE_SIGNATURE)

    def test_format_number(self):
        assert templates.format_number(30.0) == "30"
        assert templates.format_number(-3.5) == "-3.5"
        assert templates.format_number(None) == ""
