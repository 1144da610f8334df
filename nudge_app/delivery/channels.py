"""Delivery channel adapters.

A channel is anything with ``name``, ``is_available()``, ``validate(notification,
prefs)`` and ``deliver(notification, prefs)``. ``deliver`` never raises: adapter
failures come back as ``DeliveryResult(success=False, error=...)``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib
import requests

from nudge_app.core.models import UserPreferences

from .models import DeliveryResult, Notification

logger = logging.getLogger(__name__)


class Channel(Protocol):
    name: str
    supports_batch: bool

    def is_available(self) -> bool: ...

    def validate(self, notification: Notification, prefs: UserPreferences) -> bool: ...

    def deliver(self, notification: Notification, prefs: UserPreferences) -> DeliveryResult: ...


def _now() -> datetime:
    return datetime.now(UTC)


class OutboxChannel:
    """In-process channel that appends to an outbox a UI layer drains."""

    name = "in-app"
    location = "notification-panel"
    supports_batch = True
    allowed_priorities: frozenset[str] | None = None

    def __init__(self):
        self.outbox: list[dict] = []

    def is_available(self) -> bool:
        return True

    def validate(self, notification: Notification, prefs: UserPreferences) -> bool:
        return self.allowed_priorities is None or notification.priority in self.allowed_priorities

    def deliver(self, notification: Notification, prefs: UserPreferences) -> DeliveryResult:
        entry = {
            "id": notification.id,
            "issue_key": notification.issue_key,
            "title": notification.title,
            "message": notification.message,
            "priority": notification.priority,
            "location": self.location,
        }
        self.outbox.append(entry)
        return DeliveryResult(
            success=True,
            delivery_id=f"{self.name}-{uuid.uuid4().hex[:12]}",
            timestamp=_now(),
            metadata={"location": self.location},
        )

    def deliver_batch(self, notifications: Sequence[Notification], prefs: UserPreferences) -> DeliveryResult:
        """One summary entry per notification type, listing the grouped items."""
        groups: dict[str, list[Notification]] = {}
        for n in notifications:
            groups.setdefault(n.type, []).append(n)
        for kind, items in groups.items():
            self.outbox.append(
                {
                    "id": ",".join(n.id for n in items),
                    "type": kind,
                    "title": f"{len(items)} {kind.replace('_', ' ')} notifications",
                    "issue_keys": [n.issue_key for n in items],
                    "location": self.location,
                }
            )
        return DeliveryResult(
            success=True,
            delivery_id=f"{self.name}-batch-{uuid.uuid4().hex[:12]}",
            timestamp=_now(),
            metadata={"groups": len(groups)},
        )


class InAppChannel(OutboxChannel):
    pass


class BannerChannel(OutboxChannel):
    name = "banner"
    location = "top-banner"
    supports_batch = False
    allowed_priorities = frozenset({"high", "urgent"})


class ModalChannel(OutboxChannel):
    name = "modal"
    location = "center-modal"
    supports_batch = False
    allowed_priorities = frozenset({"urgent"})


class EmailChannel:
    name = "email"
    supports_batch = False

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "nudges@localhost",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.host)

    def validate(self, notification: Notification, prefs: UserPreferences) -> bool:
        return bool(prefs.email)

    def build_message(self, notification: Notification, recipient: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = notification.title
        msg["From"] = self.sender
        msg["To"] = recipient
        body = notification.message
        if notification.next_steps:
            body += "\n\n" + "\n".join(f"- {step}" for step in notification.next_steps)
        msg.set_content(body)
        return msg

    async def _send(self, message: EmailMessage) -> None:
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=self.use_tls,
            timeout=self.timeout,
        )

    def deliver(self, notification: Notification, prefs: UserPreferences) -> DeliveryResult:
        # the engine is synchronous, so each send runs its own short event loop
        try:
            message = self.build_message(notification, prefs.email or "")
            asyncio.run(self._send(message))
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning("Email delivery of %s failed: %s", notification.id, exc)
            return DeliveryResult(success=False, timestamp=_now(), error=str(exc))
        return DeliveryResult(
            success=True,
            delivery_id=f"email-{uuid.uuid4().hex[:12]}",
            timestamp=_now(),
            metadata={"recipient": prefs.email, "subject": notification.title},
        )


class WebhookChannel:
    name = "webhook"
    supports_batch = False

    def __init__(self, session: requests.Session | None = None, timeout: float = 10.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def is_available(self) -> bool:
        return True

    def validate(self, notification: Notification, prefs: UserPreferences) -> bool:
        return bool(prefs.webhook_url)

    def deliver(self, notification: Notification, prefs: UserPreferences) -> DeliveryResult:
        payload = {
            "id": notification.id,
            "issue_key": notification.issue_key,
            "user_id": notification.user_id,
            "type": notification.type,
            "priority": notification.priority,
            "title": notification.title,
            "message": notification.message,
            "next_steps": list(notification.next_steps),
        }
        try:
            resp = self.session.post(prefs.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Webhook delivery of %s failed: %s", notification.id, exc)
            return DeliveryResult(success=False, timestamp=_now(), error=str(exc))
        if resp.status_code >= 400:
            return DeliveryResult(
                success=False,
                timestamp=_now(),
                error=f"Webhook returned {resp.status_code}: {resp.text[:200]}",
            )
        return DeliveryResult(
            success=True,
            delivery_id=f"webhook-{uuid.uuid4().hex[:12]}",
            timestamp=_now(),
            metadata={"endpoint": prefs.webhook_url, "status": resp.status_code},
        )


def default_channels() -> list:
    """In-process channels only; email and webhook need endpoints from the caller."""
    return [InAppChannel(), BannerChannel(), ModalChannel()]
