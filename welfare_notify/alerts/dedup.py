"""
dedup.py — Time-windowed set of alert ids that have already been dispatched.

Entries age out after `retention` (default 24h). When the set reaches
`max_size`, the oldest entries are evicted first. It is never cleared
wholesale, so an alert seen minutes ago cannot slip back in because an
unrelated size threshold was crossed.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from welfare_notify.core.config import settings

logger = logging.getLogger(__name__)


class ProcessedAlertSet:

    def __init__(
        self,
        retention: Optional[timedelta] = None,
        max_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.retention = retention or timedelta(seconds=settings.PROCESSED_ALERT_RETENTION)
        self.max_size = max_size or settings.PROCESSED_ALERT_MAX_SIZE
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # id → time added, insertion-ordered so the oldest entry is first
        self._entries: "OrderedDict[str, datetime]" = OrderedDict()

    def _expire(self) -> None:
        cutoff = self._clock() - self.retention
        expired = 0
        while self._entries:
            added_at = next(iter(self._entries.values()))
            if added_at > cutoff:
                break
            self._entries.popitem(last=False)
            expired += 1
        if expired:
            logger.debug("Aged out %d processed alert ids", expired)

    def add(self, alert_id: str) -> None:
        self._expire()
        if alert_id in self._entries:
            self._entries.move_to_end(alert_id)
        self._entries[alert_id] = self._clock()
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.info("Processed alert set full, evicted oldest id %s", evicted)

    def __contains__(self, alert_id: object) -> bool:
        self._expire()
        return alert_id in self._entries

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)
