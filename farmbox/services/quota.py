"""
Quota Tracker: capped, time-windowed allowances on a subscription.

Two independent counters:
  - pauses used this year  (cap: max_pauses_per_year)
  - skips used this month  (cap: max_skips_per_month)

The tracker mutates the subscription it wraps. Callers must hold the
subscription's transaction (see ``SubscriptionRepository.transaction``) so the
check-and-increment cannot interleave with another request.
"""

from farmbox.domain import Subscription


class QuotaTracker:
    def __init__(self, subscription: Subscription):
        self.subscription = subscription

    @property
    def pauses_remaining(self) -> int:
        s = self.subscription
        return max(s.max_pauses_per_year - s.pauses_used_this_year, 0)

    @property
    def skips_remaining(self) -> int:
        s = self.subscription
        return max(s.max_skips_per_month - s.skips_this_month, 0)

    def try_consume_pause(self) -> bool:
        if self.pauses_remaining <= 0:
            return False
        self.subscription.pauses_used_this_year += 1
        return True

    def try_consume_skip(self) -> bool:
        if self.skips_remaining <= 0:
            return False
        self.subscription.skips_this_month += 1
        return True

    def release_skip(self) -> None:
        self.subscription.skips_this_month = max(self.subscription.skips_this_month - 1, 0)

    def reset_monthly(self) -> None:
        self.subscription.skips_this_month = 0

    def reset_yearly(self) -> None:
        self.subscription.pauses_used_this_year = 0
