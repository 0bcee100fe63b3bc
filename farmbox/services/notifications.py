"""
Notification Service: tells customers about subscription transitions.

The core only emits intents (paused, resumed, delivery upcoming, …); channel
selection and delivery live behind the ``Notifier`` interface.
Failures are logged but NEVER raise exceptions: fire-and-forget.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from farmbox.config import settings
from farmbox.domain import EventType
from farmbox.repositories.base import ContactDirectory

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    type: EventType
    customer_id: uuid.UUID
    subscription_id: uuid.UUID | None = None
    trial_id: uuid.UUID | None = None
    data: dict[str, Any] = field(default_factory=dict)


class Notifier(ABC):
    """Delivery channel for customer notifications."""

    @abstractmethod
    async def notify(self, notification: Notification) -> bool:
        """Send one notification; returns whether it went out."""


class LoggingNotifier(Notifier):
    """Default notifier: logs the intent and drops it."""

    async def notify(self, notification: Notification) -> bool:
        logger.info(
            "Notification intent: type=%s customer=%s subscription=%s",
            notification.type.value,
            notification.customer_id,
            notification.subscription_id,
        )
        return True


class RecordingNotifier(Notifier):
    """Keeps every notification in memory (previews, tests)."""

    def __init__(self):
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True

    def types(self) -> list[EventType]:
        return [n.type for n in self.sent]


# ── Telegram ───────────────────────────────────────────────

def render_message(notification: Notification) -> str:
    """Render a notification as Telegram HTML."""
    d = notification.data
    t = notification.type
    if t == EventType.PAUSED:
        return f"⏸️ <b>Subscription paused</b>\nDeliveries resume after {d.get('paused_until', 'the pause')}."
    if t == EventType.RESUMED:
        return f"▶️ <b>Subscription resumed</b>\nNext delivery: {d.get('next_delivery', 'N/A')}"
    if t == EventType.SKIPPED:
        return f"⏭️ <b>Delivery skipped</b>\nNo box on {d.get('skip_date', 'N/A')}."
    if t == EventType.UNSKIPPED:
        return f"📦 <b>Delivery restored</b>\nYour box for {d.get('skip_date', 'N/A')} is back on."
    if t == EventType.CANCELLED:
        return "❌ <b>Subscription cancelled</b>\nYou can resubscribe anytime!"
    if t == EventType.CREATED:
        return f"✅ <b>Subscription started</b>\nFirst delivery: {d.get('next_delivery', 'N/A')}"
    if t == EventType.TRIAL_CREATED:
        return (
            "🎁 <b>Trial box created!</b>\n"
            f"Order before {d.get('expires_at', 'N/A')} to get {d.get('discount_percent', 25)}% off."
        )
    if t == EventType.TRIAL_CONVERTED:
        return "🎉 <b>Welcome aboard!</b>\nYour trial is now a recurring subscription."
    if t == EventType.DELIVERY_UPCOMING:
        return f"🚚 <b>Box on its way</b>\nYour next delivery is on {d.get('next_delivery', 'N/A')}."
    return f"📋 {t.value.replace('_', ' ').title()}"


class TelegramNotifier(Notifier):
    """
    Sends notifications through the Telegram Bot API.

    Chat ids come from the contact directory; customers without one are
    skipped.
    """

    def __init__(
        self,
        contacts: ContactDirectory,
        token: str | None = None,
        timeout: float = 10.0,
    ):
        self.contacts = contacts
        self.token = token if token is not None else settings.TELEGRAM_BOT_TOKEN
        self.timeout = timeout

    async def notify(self, notification: Notification) -> bool:
        if not self.token:
            logger.error("TELEGRAM_BOT_TOKEN not configured, cannot send notification")
            return False

        chat_id = await self.contacts.telegram_chat_id(notification.customer_id)
        if chat_id is None:
            logger.info("No Telegram chat for customer %s, skipping", notification.customer_id)
            return False

        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": render_message(notification),
            "parse_mode": "HTML",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload)
                if resp.status_code == 200:
                    logger.info(
                        "Notification sent: type=%s chat_id=%s",
                        notification.type.value, chat_id,
                    )
                    return True
                logger.warning(
                    "Notification failed: chat_id=%s, status=%s, body=%s",
                    chat_id, resp.status_code, resp.text[:200],
                )
                return False
        except Exception as e:
            logger.error("Notification error: chat_id=%s, error=%s", chat_id, str(e))
            return False


async def emit(notifier: Notifier, notification: Notification) -> None:
    """Fire a notification; a misbehaving notifier never breaks the caller."""
    try:
        await notifier.notify(notification)
    except Exception:
        logger.exception("Notifier raised for %s", notification.type.value)
