"""DeliveryManager: channel ranking, synchronous fallback, retry queue, responses."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta

from nudge_app.core.cache import AnalysisCache
from nudge_app.core.config import DeliveryConfig
from nudge_app.core.errors import ValidationError
from nudge_app.core.models import UserPreferences
from nudge_app.core.notification_log import NotificationLog

from .channels import Channel
from .models import (
    USER_RESPONSES,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryQueue,
    DeliveryResult,
    Notification,
    NotificationHistory,
)

logger = logging.getLogger(__name__)

ACTIVE_STATES = frozenset({"delivered", "retry_queued", "scheduled"})
TERMINAL_STATES = frozenset({"delivered", "exhausted", "cancelled", "suppressed"})

# (notification, prefs, now) -> reason to hold the send, or None
SendHold = Callable[[Notification, UserPreferences, datetime], str | None]


class DeliveryManager:
    def __init__(
        self,
        config: DeliveryConfig,
        channels: Iterable[Channel] = (),
        *,
        notification_log: NotificationLog | None = None,
        cache: AnalysisCache | None = None,
        clock: Callable[[], datetime] | None = None,
        send_hold: SendHold | None = None,
    ):
        self.config = config
        self.channels: dict[str, Channel] = {c.name: c for c in channels}
        self.log = notification_log
        self.cache = cache
        self.clock = clock or (lambda: datetime.now(UTC))
        self.send_hold = send_hold
        self.queues: dict[str, DeliveryQueue] = {}
        self.history: dict[str, NotificationHistory] = {}
        self.notifications: dict[str, Notification] = {}
        self._prefs: dict[str, UserPreferences] = {}
        self._lock = threading.RLock()

    def reconfigure(self, config: DeliveryConfig) -> None:
        self.config = config

    def register_channel(self, channel: Channel) -> None:
        self.channels[channel.name] = channel

    def is_active(self, notification_id: str) -> bool:
        """True while the id is delivered, queued for retry or scheduled."""
        with self._lock:
            existing = self.notifications.get(notification_id)
        return existing is not None and existing.status in ACTIVE_STATES

    # ------------------ Channel selection ------------------
    def channel_score(self, name: str, priority: str, preferred: Sequence[str]) -> float:
        score = 10 - preferred.index(name) if name in preferred else 0
        return score + self.config.channel_priority_bonus.get(priority, {}).get(name, 0)

    def rank_channels(self, notification: Notification, prefs: UserPreferences) -> list[str]:
        """Preferred channels best first, with the default channel always last-resort."""
        preferred = [c for c in dict.fromkeys(prefs.preferred_channels) if c in self.channels]
        ranked = sorted(
            preferred,
            key=lambda name: self.channel_score(name, notification.priority, preferred),
            reverse=True,
        )
        default = self.config.default_channel
        if default in self.channels and default not in ranked:
            ranked.append(default)
        return ranked

    def _try_channel(self, name: str, notification: Notification, prefs: UserPreferences) -> DeliveryResult:
        channel = self.channels.get(name)
        if channel is None:
            return DeliveryResult(success=False, error=f"{name} channel is not registered")
        try:
            if not channel.is_available():
                return DeliveryResult(success=False, error=f"{name} channel is not available")
            if not channel.validate(notification, prefs):
                return DeliveryResult(success=False, error=f"Notification validation failed for {name}")
            result = channel.deliver(notification, prefs)
        except Exception as exc:
            logger.warning("Channel %s raised while delivering %s: %s", name, notification.id, exc)
            return DeliveryResult(success=False, error=f"{name} delivery error: {exc}")
        if not result.success and not result.error:
            return DeliveryResult(success=False, timestamp=result.timestamp, error=f"{name} delivery failed")
        return result

    # ------------------ Delivery ------------------
    def deliver(
        self, notification: Notification, prefs: UserPreferences, now: datetime | None = None
    ) -> DeliveryOutcome:
        """Deliver through the best channel, falling back synchronously; queue retries if all fail."""
        self._check(notification)
        now = now or self.clock()
        with self._lock:
            existing = self.notifications.get(notification.id)
            if existing is not None and existing.status in ACTIVE_STATES:
                logger.debug("Skipping duplicate notification %s (%s)", notification.id, existing.status)
                return DeliveryOutcome(
                    notification.id, False, "duplicate", channel=existing.channel, error="Notification already handled"
                )
            self.notifications[notification.id] = notification
            self._prefs[notification.id] = prefs
        return self._deliver_now(notification, prefs, now)

    def _deliver_now(self, notification: Notification, prefs: UserPreferences, now: datetime) -> DeliveryOutcome:
        ranked = self.rank_channels(notification, prefs)
        queue = self._queue(notification.user_id)
        last_error = "No delivery channel available"
        for name in ranked:
            attempt = DeliveryAttempt(notification.id, name, 0, now, kind="direct")
            result = self._try_channel(name, notification, prefs)
            with queue.lock:
                queue.complete(attempt, result)
            if result.success:
                self._record_success(notification, name, now)
                return DeliveryOutcome(notification.id, True, "delivered", channel=name)
            last_error = result.error or last_error
            logger.debug("Channel %s failed for %s: %s", name, notification.id, last_error)
        return self.queue_retries(notification, ranked, last_error, now)

    def queue_retries(
        self, notification: Notification, ranked: Sequence[str], error: str, now: datetime
    ) -> DeliveryOutcome:
        """Enqueue ``max_retry_attempts`` attempts at the backoff offsets, cycling ``ranked``."""
        notification.last_error = error
        if not ranked or self.config.max_retry_attempts <= 0:
            self._exhaust(notification, now)
            return DeliveryOutcome(notification.id, False, "exhausted", error=error)
        intervals = self.config.retry_intervals_minutes
        queue = self._queue(notification.user_id)
        attempts = [
            DeliveryAttempt(
                notification_id=notification.id,
                channel=ranked[i % len(ranked)],
                attempt_number=i + 1,
                scheduled_for=now + timedelta(minutes=intervals[min(i, len(intervals) - 1)]),
                error=error if i == 0 else None,
            )
            for i in range(self.config.max_retry_attempts)
        ]
        with queue.lock:
            queue.attempts.extend(attempts)
        notification.status = "retry_queued"
        logger.info(
            "All channels failed for %s; queued %s retries (%s)", notification.id, len(attempts), error
        )
        return DeliveryOutcome(
            notification.id,
            False,
            "retry_queued",
            retry_count=len(attempts),
            error=error,
            scheduled_for=attempts[0].scheduled_for,
        )

    def schedule(
        self, notification: Notification, prefs: UserPreferences, when: datetime
    ) -> DeliveryOutcome:
        """Hold a notification until ``when``; ``process_delivery_queue`` releases it."""
        self._check(notification)
        with self._lock:
            existing = self.notifications.get(notification.id)
            if existing is not None and existing.status in ACTIVE_STATES:
                return DeliveryOutcome(notification.id, False, "duplicate", error="Notification already handled")
            self.notifications[notification.id] = notification
            self._prefs[notification.id] = prefs
        self._enqueue_release(notification, when)
        return DeliveryOutcome(notification.id, True, "scheduled", scheduled_for=when)

    def _enqueue_release(self, notification: Notification, when: datetime) -> None:
        queue = self._queue(notification.user_id)
        with queue.lock:
            queue.attempts.append(DeliveryAttempt(notification.id, None, 0, when, kind="release"))
        notification.status = "scheduled"
        notification.scheduled_for = when

    def deliver_batch(
        self, notifications: Sequence[Notification], prefs: UserPreferences, now: datetime | None = None
    ) -> list[DeliveryOutcome]:
        """Merged delivery when the recipient's first preferred channel supports it, else one by one."""
        now = now or self.clock()
        fresh: list[Notification] = []
        outcomes: list[DeliveryOutcome] = []
        with self._lock:
            for n in notifications:
                self._check(n)
                existing = self.notifications.get(n.id)
                if existing is not None and existing.status in ACTIVE_STATES:
                    outcomes.append(DeliveryOutcome(n.id, False, "duplicate", error="Notification already handled"))
                    continue
                fresh.append(n)
        first = prefs.preferred_channels[0] if prefs.preferred_channels else None
        channel = self.channels.get(first) if first else None
        if fresh and channel is not None and getattr(channel, "supports_batch", False):
            try:
                if channel.is_available():
                    result = channel.deliver_batch(fresh, prefs)
                else:
                    result = DeliveryResult(success=False, error=f"{first} channel is not available")
            except Exception as exc:
                logger.warning("Batch delivery through %s failed: %s", first, exc)
                result = DeliveryResult(success=False, error=str(exc))
            if result.success:
                with self._lock:
                    for n in fresh:
                        self.notifications[n.id] = n
                        self._prefs[n.id] = prefs
                for n in fresh:
                    self._record_success(n, first, now)
                    outcomes.append(DeliveryOutcome(n.id, True, "delivered", channel=first))
                return outcomes
        outcomes.extend(self.deliver(n, prefs, now) for n in fresh)
        return outcomes

    # ------------------ Queue processing ------------------
    def process_delivery_queue(self, user_id: str, now: datetime | None = None) -> int:
        """Run every due attempt for ``user_id`` once; returns how many were processed.

        At most one processor runs per recipient queue; a concurrent call
        returns 0. Finished attempts are never re-run.
        """
        now = now or self.clock()
        queue = self.queues.get(user_id)
        if queue is None:
            return 0
        with queue.lock:
            if queue.processing:
                return 0
            queue.processing = True
        processed = 0
        try:
            for attempt in queue.due(now):
                if attempt.done:
                    continue
                notification = self.notifications.get(attempt.notification_id)
                prefs = self._prefs.get(attempt.notification_id)
                if notification is None or prefs is None or notification.status in TERMINAL_STATES:
                    with queue.lock:
                        queue.drop(attempt.notification_id)
                    continue
                if attempt.kind == "release":
                    self._release(queue, attempt, notification, prefs, now)
                else:
                    self._retry(queue, attempt, notification, prefs, now)
                processed += 1
            queue.last_processed = now
        finally:
            with queue.lock:
                queue.processing = False
        self.prune(now)
        if processed:
            logger.info("Processed %s due delivery attempts for %s", processed, user_id)
        return processed

    def _release(
        self,
        queue: DeliveryQueue,
        attempt: DeliveryAttempt,
        notification: Notification,
        prefs: UserPreferences,
        now: datetime,
    ) -> None:
        # a snooze is the recipient asking for the nudge again, so only gate-deferred sends are re-checked
        held = None
        if self.send_hold is not None and notification.snoozed_until is None:
            held = self.send_hold(notification, prefs, now)
        with queue.lock:
            attempt.result = DeliveryResult(
                success=held is None, timestamp=now, error=held, metadata={"released": True}
            )
            queue.attempts = [a for a in queue.attempts if a is not attempt]
        if held:
            self._suppress(notification, held)
            return
        notification.status = "pending"
        notification.snoozed_until = None
        self._deliver_now(notification, prefs, now)

    def _retry(
        self,
        queue: DeliveryQueue,
        attempt: DeliveryAttempt,
        notification: Notification,
        prefs: UserPreferences,
        now: datetime,
    ) -> None:
        result = self._try_channel(attempt.channel, notification, prefs)
        with queue.lock:
            queue.complete(attempt, result)
            remaining = queue.pending_for(notification.id)
            if result.success:
                queue.drop(notification.id)
        if result.success:
            logger.info("Retry %s of %s succeeded via %s", attempt.attempt_number, notification.id, attempt.channel)
            self._record_success(notification, attempt.channel, now)
            return
        notification.last_error = result.error
        if not remaining:
            self._exhaust(notification, now)

    # ------------------ Bookkeeping ------------------
    def _queue(self, user_id: str) -> DeliveryQueue:
        with self._lock:
            queue = self.queues.get(user_id)
            if queue is None:
                queue = self.queues[user_id] = DeliveryQueue(user_id=user_id)
            return queue

    def _history(self, issue_key: str) -> NotificationHistory:
        with self._lock:
            history = self.history.get(issue_key)
            if history is None:
                history = self.history[issue_key] = NotificationHistory(issue_key=issue_key)
            return history

    def _record_success(self, notification: Notification, channel: str, now: datetime) -> None:
        notification.status = "delivered"
        notification.channel = channel
        notification.delivered_at = now
        notification.last_error = None
        history = self._history(notification.issue_key)
        with self._lock:
            history.notifications.append(notification)
            history.last_sent = now
            history.total_count += 1
        if self.log is not None:
            self.log.record(notification.user_id, notification.issue_key, now)
        if self.cache is not None:
            self.cache.invalidate_recipient(notification.user_id)
        logger.info("Delivered %s to %s via %s", notification.id, notification.user_id, channel)

    def _exhaust(self, notification: Notification, now: datetime) -> None:
        notification.status = "exhausted"
        history = self._history(notification.issue_key)
        with self._lock:
            history.failures.append(notification)
            self._prefs.pop(notification.id, None)
        logger.warning(
            "Delivery of %s to %s permanently failed: %s",
            notification.id,
            notification.user_id,
            notification.last_error,
        )

    def _suppress(self, notification: Notification, reason: str) -> None:
        notification.status = "suppressed"
        notification.last_error = reason
        with self._lock:
            self._prefs.pop(notification.id, None)
        logger.info("Held %s for %s at release: %s", notification.id, notification.user_id, reason)

    def prune(self, now: datetime | None = None) -> int:
        """Forget finished notifications and attempts older than the retention window.

        Returns how many notifications were dropped.
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=self.config.retention_days)
        with self._lock:
            expired = [
                nid
                for nid, n in self.notifications.items()
                if n.status in TERMINAL_STATES and (n.delivered_at or n.created_at) < cutoff
            ]
            for nid in expired:
                del self.notifications[nid]
                self._prefs.pop(nid, None)
            for history in self.history.values():
                history.notifications = [
                    n for n in history.notifications if (n.delivered_at or n.created_at) >= cutoff
                ]
                history.failures = [n for n in history.failures if n.created_at >= cutoff]
            queues = list(self.queues.values())
        for queue in queues:
            with queue.lock:
                queue.completed = [a for a in queue.completed if a.scheduled_for >= cutoff]
        return len(expired)

    @staticmethod
    def _check(notification: Notification | None) -> None:
        if notification is None or not notification.id:
            raise ValidationError("Notification must carry an id")

    # ------------------ Responses ------------------
    def record_response(self, notification_id: str, response: str, timestamp: datetime | None = None) -> bool:
        """Record a recipient response; returns False when the notification is unknown."""
        if not notification_id:
            raise ValidationError("Notification id is required")
        if response not in USER_RESPONSES:
            raise ValidationError(f"Unknown response: {response}")
        timestamp = timestamp or self.clock()
        with self._lock:
            notification = self.notifications.get(notification_id)
        if notification is None:
            logger.warning("Response %s for unknown notification %s", response, notification_id)
            return False
        if response == "acknowledged":
            notification.acknowledged_at = timestamp
        elif response == "dismissed":
            notification.dismissed_at = timestamp
        elif response == "actioned":
            notification.acknowledged_at = timestamp
            notification.actioned_at = timestamp
        elif response == "snoozed":
            until = timestamp + timedelta(minutes=self.config.snooze_minutes)
            notification.snoozed_until = until
            self._enqueue_release(notification, until)
        history = self._history(notification.issue_key)
        with self._lock:
            history.record_response(response)
        return True

    def cancel(self, notification_id: str) -> bool:
        with self._lock:
            notification = self.notifications.get(notification_id)
        if notification is None or notification.status in TERMINAL_STATES:
            return False
        queue = self._queue(notification.user_id)
        with queue.lock:
            queue.drop(notification_id)
        notification.status = "cancelled"
        with self._lock:
            self._prefs.pop(notification_id, None)
        logger.info("Cancelled notification %s", notification_id)
        return True

    def delivery_statistics(self, user_id: str, days: int = 30, now: datetime | None = None) -> dict:
        now = now or self.clock()
        queue = self.queues.get(user_id)
        if queue is None:
            return {
                "total_attempts": 0,
                "successful_deliveries": 0,
                "failed_deliveries": 0,
                "average_retries": 0.0,
                "preferred_channels": [],
                "success_rate": 0.0,
                "pending_attempts": 0,
            }
        cutoff = now - timedelta(days=days)
        with queue.lock:
            recent = [a for a in queue.completed if a.scheduled_for >= cutoff]
            pending = len(queue.attempts)
        successful = [a for a in recent if a.result is not None and a.result.success]
        failed = [a for a in recent if a.result is not None and not a.result.success]
        channel_counts = Counter(a.channel for a in successful)
        return {
            "total_attempts": len(recent),
            "successful_deliveries": len(successful),
            "failed_deliveries": len(failed),
            "average_retries": sum(a.attempt_number for a in recent) / len(recent) if recent else 0.0,
            "preferred_channels": [name for name, _ in channel_counts.most_common()],
            "success_rate": len(successful) / len(recent) if recent else 0.0,
            "pending_attempts": pending,
        }
