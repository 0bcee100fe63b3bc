"""Tests for the periodic quota resets."""

from datetime import date

import pytest

from farmbox.domain import SubscriptionStatus
from farmbox.services.quota_reset import QuotaResetScheduler


@pytest.mark.asyncio
async def test_monthly_reset_only_touches_active(new_subscription, lifecycle, subscription_repo, customer_id):
    active = await new_subscription()
    paused = await new_subscription(category="fruits")
    await lifecycle.skip(customer_id, active.id, date(2026, 3, 13))
    await lifecycle.skip(customer_id, paused.id, date(2026, 3, 13))
    await lifecycle.pause(customer_id, paused.id, weeks=1)

    affected = await QuotaResetScheduler(subscription_repo).reset_all_monthly_skips()
    assert affected == 1
    assert (await subscription_repo.get(active.id)).skips_this_month == 0
    still_paused = await subscription_repo.get(paused.id)
    assert still_paused.status == SubscriptionStatus.PAUSED
    assert still_paused.skips_this_month == 1


@pytest.mark.asyncio
async def test_yearly_reset_touches_every_status(new_subscription, lifecycle, subscription_repo, customer_id):
    paused = await new_subscription()
    cancelled = await new_subscription(category="fruits")
    await lifecycle.pause(customer_id, paused.id, weeks=1)
    await lifecycle.pause(customer_id, cancelled.id, weeks=1)
    await lifecycle.cancel(customer_id, cancelled.id)

    affected = await QuotaResetScheduler(subscription_repo).reset_all_yearly_pauses()
    assert affected == 2
    for sub_id in (paused.id, cancelled.id):
        assert (await subscription_repo.get(sub_id)).pauses_used_this_year == 0


@pytest.mark.asyncio
async def test_resets_are_idempotent(new_subscription, lifecycle, subscription_repo, customer_id):
    sub = await new_subscription()
    await lifecycle.skip(customer_id, sub.id, date(2026, 3, 13))
    await lifecycle.pause(customer_id, sub.id, weeks=1)
    await lifecycle.resume(customer_id, sub.id)
    scheduler = QuotaResetScheduler(subscription_repo)

    await scheduler.reset_all_monthly_skips()
    await scheduler.reset_all_yearly_pauses()
    once = await subscription_repo.get(sub.id)
    await scheduler.reset_all_monthly_skips()
    await scheduler.reset_all_yearly_pauses()
    twice = await subscription_repo.get(sub.id)

    assert once == twice
    assert twice.skips_this_month == 0
    assert twice.pauses_used_this_year == 0
    # Skip records themselves are kept
    details = await lifecycle.get(customer_id, sub.id)
    assert [s.skip_date for s in details.skips] == [date(2026, 3, 13)]
