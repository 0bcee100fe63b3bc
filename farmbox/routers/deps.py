"""Shared dependencies: service wiring, customer identity, scheduler auth."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Header, HTTPException, Request

from farmbox.config import settings
from farmbox.repositories.base import Catalog, SubscriptionRepository, TrialRepository
from farmbox.services.lifecycle import SubscriptionLifecycle, utcnow
from farmbox.services.notifications import LoggingNotifier, Notifier
from farmbox.services.quota_reset import QuotaResetScheduler
from farmbox.services.reminders import DeliveryReminderJob
from farmbox.services.trials import TrialLifecycle


@dataclass
class Services:
    lifecycle: SubscriptionLifecycle
    trials: TrialLifecycle
    quota_reset: QuotaResetScheduler
    reminders: DeliveryReminderJob


def build_services(
    subscriptions: SubscriptionRepository,
    trials: TrialRepository,
    catalog: Catalog,
    notifier: Notifier | None = None,
    now: Callable[[], datetime] = utcnow,
) -> Services:
    notifier = notifier or LoggingNotifier()
    lifecycle = SubscriptionLifecycle(subscriptions, catalog, notifier, now=now)
    return Services(
        lifecycle=lifecycle,
        trials=TrialLifecycle(trials, catalog, lifecycle, notifier, now=now),
        quota_reset=QuotaResetScheduler(subscriptions),
        reminders=DeliveryReminderJob(subscriptions, notifier, now=now),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_customer_id(x_customer_id: str | None = Header(None)) -> uuid.UUID:
    """Authentication happens upstream; the gateway forwards the customer id."""
    if not x_customer_id:
        raise HTTPException(status_code=401, detail="Missing customer id")
    try:
        return uuid.UUID(x_customer_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid customer id")


def require_scheduler(x_scheduler_token: str = Header("")) -> None:
    if not settings.SCHEDULER_TOKEN or x_scheduler_token != settings.SCHEDULER_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid scheduler token")
