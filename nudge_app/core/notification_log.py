"""Per-recipient log of sent notifications.

The WorkloadAnalyzer reads frequency state (today's count, last send time)
from here and the DeliveryManager writes to it on every successful delivery,
which closes the loop between delivery and future decisions.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

# the longest window any limit looks back over
RETENTION = timedelta(days=7)


@dataclass(slots=True, frozen=True)
class SentRecord:
    recipient: str
    issue_key: str | None
    sent_at: datetime


class NotificationLog:
    def __init__(self):
        self._records: dict[str, list[SentRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def record(self, recipient: str, issue_key: str | None, sent_at: datetime) -> None:
        with self._lock:
            cutoff = sent_at - RETENTION
            kept = [r for r in self._records[recipient] if r.sent_at >= cutoff]
            kept.append(SentRecord(recipient, issue_key, sent_at))
            self._records[recipient] = kept

    def _since(self, recipient: str, since: datetime) -> list[SentRecord]:
        with self._lock:
            return [r for r in self._records.get(recipient, ()) if r.sent_at >= since]

    def count_since(self, recipient: str, since: datetime, issue_key: str | None = None) -> int:
        records = self._since(recipient, since)
        if issue_key is not None:
            records = [r for r in records if r.issue_key == issue_key]
        return len(records)

    def daily_count(self, recipient: str, now: datetime) -> int:
        return self.count_since(recipient, now - timedelta(days=1))

    def weekly_count(self, recipient: str, now: datetime) -> int:
        return self.count_since(recipient, now - RETENTION)

    def issue_count(self, recipient: str, issue_key: str, now: datetime) -> int:
        return self.count_since(recipient, now - timedelta(days=1), issue_key=issue_key)

    def last_sent(self, recipient: str) -> datetime | None:
        with self._lock:
            records = self._records.get(recipient)
            if not records:
                return None
            return max(r.sent_at for r in records)
