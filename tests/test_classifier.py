"""
test_classifier.py — Disaster message relevance, classification and the
processed-alert set.

Run with:
    pytest tests/test_classifier.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from welfare_notify.alerts.classifier import AlertClassifier
from welfare_notify.alerts.dedup import ProcessedAlertSet
from welfare_notify.ingestion.models import DisasterMessage

CREATED = datetime(2024, 7, 1, 5, 0, tzinfo=timezone.utc)


def _make_message(
    sn: str = "201234",
    location: str = "대전광역시 유성구",
    text: str = "[유성구] 오늘 14시 폭염경보 발령. 야외활동 자제 바랍니다.",
    disaster_type: str = "",
) -> DisasterMessage:
    return DisasterMessage(
        serial_number=sn,
        location_name=location,
        message=text,
        created_at=CREATED,
        disaster_type=disaster_type,
        fetched_at=CREATED,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Relevance
# ═══════════════════════════════════════════════════════════════════════════

class TestRelevance:

    @pytest.fixture(autouse=True)
    def _classifier(self):
        self.classifier = AlertClassifier(region_names=["대전", "유성구", "유성"])

    def test_local_location_is_relevant(self):
        assert self.classifier.is_relevant(_make_message())

    def test_region_in_text_is_relevant(self):
        msg = _make_message(location="충청권", text="유성구 일대 호우주의보")
        assert self.classifier.is_relevant(msg)

    def test_other_region_is_not_relevant(self):
        msg = _make_message(location="부산광역시 해운대구", text="해운대 폭염경보 발령")
        assert not self.classifier.is_relevant(msg)

    def test_nationwide_emergency_is_relevant(self):
        msg = _make_message(location="전국", text="전국 지진 발생, 낙하물 주의")
        assert self.classifier.is_relevant(msg)

    def test_nationwide_non_emergency_is_not_relevant(self):
        msg = _make_message(location="전국", text="코로나19 예방수칙을 지켜주세요")
        assert not self.classifier.is_relevant(msg)

    def test_classify_all_drops_irrelevant(self):
        messages = [
            _make_message(sn="1"),
            _make_message(sn="2", location="부산광역시", text="부산 폭염경보"),
        ]
        alerts = self.classifier.classify_all(messages)
        assert [a.id for a in alerts] == ["1"]


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

class TestClassification:

    @pytest.fixture(autouse=True)
    def _classifier(self):
        self.classifier = AlertClassifier(region_names=["유성구"])

    def test_heatwave_warning(self):
        alert = self.classifier.classify(_make_message())
        assert alert.id == "201234"
        assert alert.category == "heatwave"
        assert alert.keyword == "폭염"
        assert alert.emergency_level == "warning"
        assert alert.is_emergency
        assert alert.observed_at == CREATED

    def test_watch_is_not_confused_with_warning(self):
        alert = self.classifier.classify(_make_message(text="유성구 폭염주의보 발령"))
        assert alert.emergency_level == "watch"

    def test_first_emergency_keyword_wins(self):
        alert = self.classifier.classify(_make_message(text="유성구 태풍 및 호우 경보"))
        # 호우 precedes 태풍 in the keyword table
        assert alert.category == "heavy-rain"

    def test_secondary_keyword_without_level_is_not_emergency(self):
        alert = self.classifier.classify(_make_message(text="유성구 미세먼지 농도 안내"))
        assert alert.category == "fine-dust"
        assert alert.emergency_level == "general"
        assert not alert.is_emergency

    def test_level_keyword_alone_makes_emergency(self):
        alert = self.classifier.classify(_make_message(text="유성구 오존주의보 발령"))
        assert alert.category == "ozone"
        assert alert.emergency_level == "watch"
        assert alert.is_emergency

    def test_provider_type_used_when_text_has_no_keyword(self):
        alert = self.classifier.classify(
            _make_message(text="유성구 주민께서는 안전에 유의하세요", disaster_type="지진"),
        )
        assert alert.category == "earthquake"
        assert alert.is_emergency

    def test_unmatched_message_is_other(self):
        alert = self.classifier.classify(_make_message(text="유성구 도로 공사 안내"))
        assert alert.category == "other"
        assert alert.keyword == ""
        assert not alert.is_emergency

    def test_same_serial_number_same_identity(self):
        a = self.classifier.classify(_make_message())
        b = self.classifier.classify(_make_message())
        assert a == b


# ═══════════════════════════════════════════════════════════════════════════
# Processed alert set
# ═══════════════════════════════════════════════════════════════════════════

class TestProcessedAlertSet:

    def test_membership(self, clock):
        seen = ProcessedAlertSet(clock=clock)
        seen.add("A1")
        assert "A1" in seen
        assert "A2" not in seen
        assert len(seen) == 1

    def test_entries_age_out_after_retention(self, clock):
        seen = ProcessedAlertSet(retention=timedelta(hours=24), clock=clock)
        seen.add("A1")
        clock.advance(hours=23)
        assert "A1" in seen
        clock.advance(hours=2)
        assert "A1" not in seen

    def test_oldest_evicted_when_full(self, clock):
        seen = ProcessedAlertSet(max_size=3, clock=clock)
        for alert_id in ("A1", "A2", "A3", "A4"):
            seen.add(alert_id)
            clock.advance(minutes=1)
        assert len(seen) == 3
        assert "A1" not in seen
        assert all(a in seen for a in ("A2", "A3", "A4"))

    def test_re_adding_refreshes_position(self, clock):
        seen = ProcessedAlertSet(max_size=2, clock=clock)
        seen.add("A1")
        seen.add("A2")
        seen.add("A1")
        seen.add("A3")
        assert "A1" in seen
        assert "A2" not in seen
