"""
classifier.py — Disaster message relevance, category and level extraction.

═══════════════════════════════════════════════════════════════════════════
KEYWORD TABLES
═══════════════════════════════════════════════════════════════════════════

Emergency keywords (checked first, in order; any match ⇒ emergency):

    폭염 heatwave    한파 cold-wave    지진 earthquake    호우 heavy-rain
    대설 heavy-snow  강풍 strong-wind  태풍 typhoon       화재 fire
    가스누출 gas-leak

Secondary labels (category only, not emergency by themselves):

    미세먼지 fine-dust   오존 ozone   황사 yellow-dust   산불 wildfire
    정전 power-outage

Level keywords (priority order, first match wins; any match ⇒ emergency):

    경보 warning > 주의보 watch > 특보 advisory > 긴급 urgent
    > 심각 severe > 경계 alert > 관심 concern          (none ⇒ general)

═══════════════════════════════════════════════════════════════════════════
RELEVANCE
═══════════════════════════════════════════════════════════════════════════

A message is relevant when its location or text mentions a local region
name, or when it is addressed nationwide (전국) and the text contains an
emergency keyword. Irrelevant messages never reach classification.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from welfare_notify.alerts.models import AlertRecord
from welfare_notify.core.config import settings
from welfare_notify.ingestion.models import DisasterMessage

logger = logging.getLogger(__name__)

EMERGENCY_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("폭염", "heatwave"),
    ("한파", "cold-wave"),
    ("지진", "earthquake"),
    ("호우", "heavy-rain"),
    ("대설", "heavy-snow"),
    ("강풍", "strong-wind"),
    ("태풍", "typhoon"),
    ("화재", "fire"),
    ("가스누출", "gas-leak"),
)

SECONDARY_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("미세먼지", "fine-dust"),
    ("오존", "ozone"),
    ("황사", "yellow-dust"),
    ("산불", "wildfire"),
    ("정전", "power-outage"),
)

LEVEL_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("경보", "warning"),
    ("주의보", "watch"),
    ("특보", "advisory"),
    ("긴급", "urgent"),
    ("심각", "severe"),
    ("경계", "alert"),
    ("관심", "concern"),
)

OTHER_CATEGORY = "other"
GENERAL_LEVEL = "general"
NATIONWIDE = "전국"

CATEGORY_LABELS_KO = {label: ko for ko, label in EMERGENCY_KEYWORDS + SECONDARY_KEYWORDS}
LEVEL_LABELS_KO = {label: ko for ko, label in LEVEL_KEYWORDS}


def _first_match(text: str, table: Sequence[Tuple[str, str]]) -> Optional[Tuple[str, str]]:
    for keyword, label in table:
        if keyword in text:
            return keyword, label
    return None


def has_emergency_keyword(text: str) -> bool:
    return _first_match(text, EMERGENCY_KEYWORDS) is not None


class AlertClassifier:
    """
    Usage:
        classifier = AlertClassifier()
        alerts = classifier.classify_all(messages)
        emergencies = [a for a in alerts if a.is_emergency]
    """

    def __init__(self, region_names: Optional[Iterable[str]] = None):
        self.region_names = tuple(region_names or settings.LOCAL_REGION_NAMES)

    def is_relevant(self, msg: DisasterMessage) -> bool:
        location = msg.location_name or ""
        text = msg.message or ""
        if any(r in location or r in text for r in self.region_names):
            return True
        return NATIONWIDE in location and has_emergency_keyword(text)

    def classify(self, msg: DisasterMessage) -> AlertRecord:
        text = msg.message or ""
        provider_type = msg.disaster_type or ""

        emergency = _first_match(text, EMERGENCY_KEYWORDS)
        if emergency is None and provider_type:
            emergency = _first_match(provider_type, EMERGENCY_KEYWORDS)
        category = emergency or _first_match(text, SECONDARY_KEYWORDS)
        level = _first_match(text, LEVEL_KEYWORDS)

        keyword, category_label = category if category else ("", OTHER_CATEGORY)
        return AlertRecord(
            id=msg.serial_number,
            region=msg.location_name,
            category=category_label,
            keyword=keyword,
            message=text,
            emergency_level=level[1] if level else GENERAL_LEVEL,
            is_emergency=emergency is not None or level is not None,
            observed_at=msg.created_at,
            fetched_at=msg.fetched_at,
        )

    def classify_all(self, messages: Iterable[DisasterMessage]) -> List[AlertRecord]:
        """Drop irrelevant messages, then classify the rest."""
        messages = list(messages)
        relevant = [m for m in messages if self.is_relevant(m)]
        if len(relevant) != len(messages):
            logger.debug(
                "Dropped %d irrelevant disaster messages", len(messages) - len(relevant),
            )
        return [self.classify(m) for m in relevant]
