"""
Quota Reset Scheduler: periodic counter resets, triggered by an external cron.

  - monthly: zero skip counters on every ACTIVE subscription
  - yearly:  zero pause counters on every subscription, whatever its status

Both are idempotent: running one twice in a row leaves the same state as
running it once.
"""

import logging

from farmbox.repositories.base import SubscriptionRepository

logger = logging.getLogger(__name__)


class QuotaResetScheduler:
    def __init__(self, subscriptions: SubscriptionRepository):
        self.subscriptions = subscriptions

    async def reset_all_monthly_skips(self) -> int:
        count = await self.subscriptions.reset_skip_counters()
        logger.info("Monthly skips reset: subscriptions=%d", count)
        return count

    async def reset_all_yearly_pauses(self) -> int:
        count = await self.subscriptions.reset_pause_counters()
        logger.info("Yearly pauses reset: subscriptions=%d", count)
        return count
