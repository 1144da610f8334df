"""Notification and delivery bookkeeping records."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")
USER_RESPONSES = ("acknowledged", "dismissed", "actioned", "snoozed")
POSITIVE_RESPONSES = frozenset({"acknowledged", "actioned"})

# Lifecycle: pending -> delivered | retry_queued -> ... -> delivered | exhausted
NOTIFICATION_STATES = ("pending", "scheduled", "retry_queued", "delivered", "exhausted", "cancelled")


@dataclass(slots=True)
class Notification:
    id: str
    issue_key: str
    user_id: str
    type: str
    priority: str  # low | medium | high | urgent
    title: str
    message: str
    created_at: datetime
    scheduled_for: datetime | None = None
    next_steps: tuple[str, ...] = ()
    status: str = "pending"
    channel: str | None = None
    delivered_at: datetime | None = None
    acknowledged_at: datetime | None = None
    dismissed_at: datetime | None = None
    actioned_at: datetime | None = None
    snoozed_until: datetime | None = None
    last_error: str | None = None


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    success: bool
    delivery_id: str = ""
    timestamp: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DeliveryAttempt:
    """One due-time record in a recipient queue.

    ``kind`` is ``retry`` for a single-channel retry, or ``release`` for a
    scheduled or snoozed notification that runs the full channel fallback.
    """

    notification_id: str
    channel: str | None
    attempt_number: int
    scheduled_for: datetime
    kind: str = "retry"
    result: DeliveryResult | None = None
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.result is not None


@dataclass(slots=True)
class DeliveryQueue:
    """Pending attempts for one recipient; finished ones move to ``completed``."""

    user_id: str
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    completed: list[DeliveryAttempt] = field(default_factory=list)
    processing: bool = False
    last_processed: datetime | None = None
    error_count: int = 0
    success_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def due(self, now: datetime) -> list[DeliveryAttempt]:
        return sorted(
            (a for a in self.attempts if not a.done and a.scheduled_for <= now),
            key=lambda a: (a.scheduled_for, a.attempt_number),
        )

    def pending_for(self, notification_id: str) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.notification_id == notification_id and not a.done]

    def drop(self, notification_id: str) -> int:
        before = len(self.attempts)
        self.attempts = [a for a in self.attempts if a.notification_id != notification_id]
        return before - len(self.attempts)

    def complete(self, attempt: DeliveryAttempt, result: DeliveryResult) -> None:
        attempt.result = result
        if not result.success:
            attempt.error = attempt.error or result.error
        self.attempts = [a for a in self.attempts if a is not attempt]
        self.completed.append(attempt)
        if result.success:
            self.success_count += 1
        else:
            self.error_count += 1


@dataclass(slots=True)
class NotificationHistory:
    issue_key: str
    notifications: list[Notification] = field(default_factory=list)
    failures: list[Notification] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)
    last_sent: datetime | None = None
    total_count: int = 0
    effectiveness_score: float = 0.0

    def record_response(self, response: str) -> None:
        self.responses.append(response)
        positive = sum(1 for r in self.responses if r in POSITIVE_RESPONSES)
        self.effectiveness_score = positive / len(self.responses)


@dataclass(slots=True, frozen=True)
class DeliveryOutcome:
    notification_id: str
    success: bool
    status: str  # delivered | retry_queued | scheduled | suppressed | duplicate | exhausted
    channel: str | None = None
    retry_count: int = 0
    error: str | None = None
    scheduled_for: datetime | None = None


@dataclass(slots=True, frozen=True)
class GateDecision:
    action: str  # send_now | schedule | suppress
    scheduled_for: datetime | None = None
    reason: str | None = None

    @property
    def should_send(self) -> bool:
        return self.action == "send_now"
