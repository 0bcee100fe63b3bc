"""
Delivery Reminders: "your box is coming" notices for upcoming deliveries.

Run by the same external scheduler as the quota resets. Subscriptions whose
next delivery is skipped get no reminder.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from farmbox.config import settings
from farmbox.domain import EventType
from farmbox.repositories.base import SubscriptionRepository
from farmbox.services.lifecycle import utcnow
from farmbox.services.notifications import Notification, Notifier, emit

logger = logging.getLogger(__name__)


class DeliveryReminderJob:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        notifier: Notifier,
        now: Callable[[], datetime] = utcnow,
        days_ahead: int | None = None,
    ):
        self.subscriptions = subscriptions
        self.notifier = notifier
        self.now = now
        self.days_ahead = days_ahead if days_ahead is not None else settings.REMINDER_DAYS_AHEAD

    async def run(self) -> int:
        """Send reminders; returns how many were emitted."""
        today = self.now().date()
        horizon = today + timedelta(days=self.days_ahead)
        due = await self.subscriptions.list_deliveries_between(today, horizon)

        sent = 0
        for sub in due:
            skipped = {s.skip_date for s in await self.subscriptions.list_skips(sub.id)}
            if sub.next_delivery in skipped:
                continue
            await emit(self.notifier, Notification(
                type=EventType.DELIVERY_UPCOMING,
                customer_id=sub.customer_id,
                subscription_id=sub.id,
                data={"next_delivery": sub.next_delivery.isoformat()},
            ))
            sent += 1

        logger.info("Delivery reminders sent: %d of %d due", sent, len(due))
        return sent
