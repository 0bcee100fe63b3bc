"""Tests for the delivery reminder job."""

from datetime import date, datetime

import pytest

from farmbox.domain import EventType
from farmbox.services.reminders import DeliveryReminderJob


@pytest.mark.asyncio
async def test_reminds_only_deliveries_within_horizon(new_subscription, subscription_repo, notifier, clock):
    due = await new_subscription()                                 # Friday 2026-03-06
    await new_subscription(category="fruits", delivery_day=1)      # Monday 2026-03-09
    notifier.sent.clear()

    sent = await DeliveryReminderJob(subscription_repo, notifier, now=clock, days_ahead=2).run()
    assert sent == 1
    assert notifier.types() == [EventType.DELIVERY_UPCOMING]
    assert notifier.sent[0].subscription_id == due.id
    assert notifier.sent[0].data == {"next_delivery": "2026-03-06"}


@pytest.mark.asyncio
async def test_skipped_and_paused_subscriptions_get_no_reminder(
    new_subscription, lifecycle, subscription_repo, notifier, clock, customer_id
):
    clock.current = datetime(2026, 3, 3, 9, 0)
    skipped = await new_subscription()
    paused = await new_subscription(category="fruits")
    await lifecycle.skip(customer_id, skipped.id, date(2026, 3, 6))
    await lifecycle.pause(customer_id, paused.id, weeks=1)
    notifier.sent.clear()

    clock.advance(days=1)
    sent = await DeliveryReminderJob(subscription_repo, notifier, now=clock, days_ahead=2).run()
    assert sent == 0
    assert notifier.sent == []
