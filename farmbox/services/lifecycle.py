"""
Subscription Lifecycle: state machine for recurring box subscriptions.

States: ACTIVE <-> PAUSED, both -> CANCELLED (terminal).

Rules:
  - One ACTIVE subscription per (customer, farm) or (customer, category)
  - Pause: 1 to 28 days, at most ``max_pauses_per_year`` per year
  - Skip: at least 48 hours ahead, at most ``max_skips_per_month`` per month,
    one skip per date
  - Cancel keeps every pause/skip record and the history

Each mutating operation runs inside one repository transaction: the checks
and the writes (audit record + subscription fields) commit together or not
at all. Notifications are emitted only after the commit.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, TypeVar

from farmbox.config import settings
from farmbox.domain import (
    BoxSize, EventType, Frequency, LifecycleEvent, Pause, Preferences, Skip,
    Subscription, SubscriptionStatus,
)
from farmbox.errors import (
    ConflictError, NotFoundError, PreconditionError, QuotaExceededError, ValidationError,
)
from farmbox.repositories.base import Catalog, SubscriptionRepository, SubscriptionUnitOfWork
from farmbox.services.categories import validate_category
from farmbox.services.curation import BoxCurationEngine, BoxPreview
from farmbox.services.delivery_dates import next_delivery_date
from farmbox.services.notifications import LoggingNotifier, Notification, Notifier, emit
from farmbox.services.quota import QuotaTracker

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

MAX_PAUSE_WEEKS = 4


def utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class SubscriptionDetails:
    subscription: Subscription
    pauses: list[Pause] = field(default_factory=list)
    skips: list[Skip] = field(default_factory=list)


# ── Input validation ───────────────────────────────────────

def parse_enum(enum_cls: type[E], value, label: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


def validate_delivery_day(day) -> int:
    if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
        raise ValidationError("Delivery day must be between 0 (Sunday) and 6 (Saturday)")
    return day


def validate_max_farms(value) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError("Max farms per box must be a positive integer")
    return value


def _as_datetime(value: date | datetime) -> datetime:
    """Naive UTC, like the service clock."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def pause_window(
    now: datetime,
    weeks: int | None = None,
    start: date | datetime | None = None,
    end: date | datetime | None = None,
    max_days: int | None = None,
) -> tuple[datetime, datetime]:
    """
    Resolve a pause request into (start, end).

    Either ``weeks`` (1–4, starting now) or an explicit start/end pair.
    The span, rounded up to whole days, must be between 1 and ``max_days``.
    """
    max_days = max_days if max_days is not None else settings.MAX_PAUSE_DAYS

    if weeks is not None:
        if not isinstance(weeks, int) or isinstance(weeks, bool) or not 1 <= weeks <= MAX_PAUSE_WEEKS:
            raise ValidationError(f"Pause duration must be between 1 and {MAX_PAUSE_WEEKS} weeks")
        start_dt = now
        end_dt = now + timedelta(days=weeks * 7)
    elif start is not None and end is not None:
        start_dt = _as_datetime(start)
        end_dt = _as_datetime(end)
    else:
        raise ValidationError("Either weeks or start/end dates must be provided")

    span_days = math.ceil((end_dt - start_dt).total_seconds() / 86400)
    if span_days > max_days:
        raise ValidationError(f"Pause duration cannot exceed {max_days} days")
    if span_days < 1:
        raise ValidationError("End date must be after start date")
    return start_dt, end_dt


# ── Service ────────────────────────────────────────────────

class SubscriptionLifecycle:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        catalog: Catalog | None = None,
        notifier: Notifier | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.subscriptions = subscriptions
        self.catalog = catalog
        self.notifier = notifier or LoggingNotifier()
        self.now = now

    # ── Queries ────────────────────────────────────────────

    async def get(self, customer_id: uuid.UUID, subscription_id: uuid.UUID) -> SubscriptionDetails:
        sub = self._owned(await self.subscriptions.get(subscription_id), customer_id)
        return SubscriptionDetails(
            subscription=sub,
            pauses=await self.subscriptions.list_pauses(sub.id),
            skips=await self.subscriptions.list_skips(sub.id),
        )

    async def list_for_customer(
        self, customer_id: uuid.UUID, status: SubscriptionStatus | str | None = None
    ) -> list[Subscription]:
        if status is not None:
            status = parse_enum(SubscriptionStatus, status, "status")
        return await self.subscriptions.list_for_customer(customer_id, status)

    async def preview_box(self, customer_id: uuid.UUID, subscription_id: uuid.UUID) -> BoxPreview:
        if self.catalog is None:
            raise PreconditionError("Box preview needs a product catalog")
        sub = self._owned(await self.subscriptions.get(subscription_id), customer_id)
        return await BoxCurationEngine(self.catalog).preview(sub)

    # ── Create ─────────────────────────────────────────────

    async def create(
        self,
        customer_id: uuid.UUID,
        *,
        box_size: BoxSize | str,
        frequency: Frequency | str,
        delivery_day: int,
        delivery_address: str,
        delivery_zone: str,
        farm_id: uuid.UUID | None = None,
        category: str | None = None,
        preferences: Preferences | None = None,
        max_farms_per_box: int | None = None,
        start_date: date | datetime | None = None,
        auto_renew: bool = True,
        trial_converted: bool = False,
    ) -> Subscription:
        """Start a new ACTIVE subscription and seed its first delivery date."""
        if (farm_id is None) == (category is None):
            raise ValidationError("Exactly one of farm or category must be given")
        box_size = parse_enum(BoxSize, box_size, "box size")
        frequency = parse_enum(Frequency, frequency, "frequency")
        delivery_day = validate_delivery_day(delivery_day)
        if not delivery_address or not delivery_zone:
            raise ValidationError("Delivery address and zone are required")
        max_farms = validate_max_farms(
            max_farms_per_box if max_farms_per_box is not None else settings.DEFAULT_MAX_FARMS_PER_BOX
        )
        if category is not None:
            validate_category(category, box_size)

        if farm_id is not None and self.catalog is not None:
            farm = await self.catalog.find_farm(farm_id)
            if farm is None or not farm.is_active:
                raise NotFoundError("Farm not found")

        if await self.subscriptions.find_active(customer_id, farm_id=farm_id, category=category):
            target = category if category is not None else "this farm"
            raise ConflictError(f"You already have an active subscription for {target}")

        now = self.now()
        anchor = start_date if start_date is not None else now
        sub = Subscription(
            id=uuid.uuid4(),
            customer_id=customer_id,
            farm_id=farm_id,
            category=category,
            box_size=box_size,
            frequency=frequency,
            delivery_day=delivery_day,
            delivery_zone=delivery_zone,
            delivery_address=delivery_address,
            preferences=preferences or Preferences(),
            max_farms_per_box=max_farms,
            start_date=_as_date(anchor),
            next_delivery=next_delivery_date(anchor, delivery_day, frequency, now=now),
            max_pauses_per_year=settings.MAX_PAUSES_PER_YEAR,
            max_skips_per_month=settings.MAX_SKIPS_PER_MONTH,
            trial_converted=trial_converted,
            auto_renew=auto_renew,
            created_at=now,
        )
        sub.record(EventType.CREATED, now, trial_converted=trial_converted)
        sub = await self.subscriptions.add(sub)

        logger.info(
            "Subscription created: id=%s customer=%s target=%s next_delivery=%s",
            sub.id, customer_id, sub.target, sub.next_delivery,
        )
        await self._notify(sub, EventType.CREATED, next_delivery=str(sub.next_delivery))
        return sub

    # ── Pause / Resume ─────────────────────────────────────

    async def pause(
        self,
        customer_id: uuid.UUID,
        subscription_id: uuid.UUID,
        *,
        weeks: int | None = None,
        start: date | datetime | None = None,
        end: date | datetime | None = None,
        reason: str | None = None,
    ) -> Pause:
        now = self.now()
        start_dt, end_dt = pause_window(now, weeks=weeks, start=start, end=end)

        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            if not sub.is_active():
                raise PreconditionError("Only active subscriptions can be paused")
            if not QuotaTracker(sub).try_consume_pause():
                raise QuotaExceededError(
                    f"Maximum pauses for this year reached ({sub.max_pauses_per_year})"
                )

            pause = Pause(
                id=uuid.uuid4(),
                subscription_id=sub.id,
                start_date=start_dt,
                end_date=end_dt,
                reason=reason,
                created_at=now,
            )
            await uow.add_pause(pause)
            sub.status = SubscriptionStatus.PAUSED
            sub.paused_until = end_dt
            await self._record(uow, EventType.PAUSED, now, until=end_dt.isoformat(), reason=reason)

        logger.info("Subscription paused: id=%s customer=%s until=%s", sub.id, customer_id, end_dt)
        await self._notify(sub, EventType.PAUSED, paused_until=end_dt.date().isoformat())
        return pause

    async def resume(self, customer_id: uuid.UUID, subscription_id: uuid.UUID) -> Subscription:
        """End the running pause early and compute the next delivery from today."""
        now = self.now()
        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            if not sub.is_paused():
                raise PreconditionError("Subscription is not paused")
            await self._ensure_no_other_active(sub)

            await uow.close_open_pauses(now)
            sub.status = SubscriptionStatus.ACTIVE
            sub.paused_until = None
            sub.next_delivery = next_delivery_date(now, sub.delivery_day, sub.frequency, now=now)
            await self._record(uow, EventType.RESUMED, now, next_delivery=sub.next_delivery.isoformat())

        logger.info("Subscription resumed: id=%s customer=%s next=%s", sub.id, customer_id, sub.next_delivery)
        await self._notify(sub, EventType.RESUMED, next_delivery=sub.next_delivery.isoformat())
        return sub

    # ── Skip / Unskip ──────────────────────────────────────

    async def skip(
        self,
        customer_id: uuid.UUID,
        subscription_id: uuid.UUID,
        skip_date: date,
        reason: str | None = None,
    ) -> Skip:
        if isinstance(skip_date, datetime) or not isinstance(skip_date, date):
            raise ValidationError("Skip date must be a calendar date")
        skip_day = skip_date
        now = self.now()

        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            if not sub.is_active():
                raise PreconditionError("Can only skip deliveries for active subscriptions")
            quota = QuotaTracker(sub)
            if quota.skips_remaining <= 0:
                raise QuotaExceededError(
                    f"Maximum skips for this month reached ({sub.max_skips_per_month})"
                )
            if await uow.find_skip(skip_day) is not None:
                raise ConflictError("This delivery date is already skipped")
            notice = timedelta(hours=settings.SKIP_NOTICE_HOURS)
            if _as_datetime(skip_day) < now + notice:
                raise PreconditionError(
                    f"Must skip at least {settings.SKIP_NOTICE_HOURS} hours before delivery"
                )

            quota.try_consume_skip()
            skip = Skip(
                id=uuid.uuid4(),
                subscription_id=sub.id,
                skip_date=skip_day,
                reason=reason,
                created_at=now,
            )
            await uow.add_skip(skip)
            await self._record(uow, EventType.SKIPPED, now, skip_date=skip_day.isoformat(), reason=reason)

        logger.info("Delivery skipped: id=%s customer=%s date=%s", sub.id, customer_id, skip_day)
        await self._notify(sub, EventType.SKIPPED, skip_date=skip_day.isoformat())
        return skip

    async def unskip(
        self, customer_id: uuid.UUID, subscription_id: uuid.UUID, skip_date: date | datetime
    ) -> Subscription:
        skip_day = _as_date(skip_date)
        now = self.now()

        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            skip = await uow.find_skip(skip_day)
            if skip is None:
                raise NotFoundError("Skip not found")
            await uow.delete_skip(skip)
            QuotaTracker(sub).release_skip()
            await self._record(uow, EventType.UNSKIPPED, now, skip_date=skip_day.isoformat())

        logger.info("Delivery restored: id=%s customer=%s date=%s", sub.id, customer_id, skip_day)
        await self._notify(sub, EventType.UNSKIPPED, skip_date=skip_day.isoformat())
        return sub

    # ── Cancel ─────────────────────────────────────────────

    async def cancel(
        self, customer_id: uuid.UUID, subscription_id: uuid.UUID, reason: str | None = None
    ) -> Subscription:
        now = self.now()
        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            if sub.is_cancelled():
                raise PreconditionError("Subscription is already cancelled")

            if sub.is_paused():
                await uow.close_open_pauses(now)
            sub.status = SubscriptionStatus.CANCELLED
            sub.next_delivery = None
            sub.paused_until = None
            sub.cancelled_at = now
            sub.cancellation_reason = reason
            await self._record(uow, EventType.CANCELLED, now, reason=reason)

        logger.info("Subscription cancelled: id=%s customer=%s reason=%s", sub.id, customer_id, reason)
        await self._notify(sub, EventType.CANCELLED, reason=reason)
        return sub

    # ── Update ─────────────────────────────────────────────

    async def update_preferences(
        self,
        customer_id: uuid.UUID,
        subscription_id: uuid.UUID,
        *,
        box_size: BoxSize | str | None = None,
        frequency: Frequency | str | None = None,
        delivery_day: int | None = None,
        delivery_address: str | None = None,
        delivery_zone: str | None = None,
        preferences: Preferences | None = None,
        max_farms_per_box: int | None = None,
        auto_renew: bool | None = None,
    ) -> Subscription:
        """
        Change configuration in place. Lifecycle state is untouched.

        A new frequency or delivery day recomputes the next delivery, anchored
        on the current next delivery (or now when there is none).
        """
        if box_size is not None:
            box_size = parse_enum(BoxSize, box_size, "box size")
        if frequency is not None:
            frequency = parse_enum(Frequency, frequency, "frequency")
        if delivery_day is not None:
            validate_delivery_day(delivery_day)
        if max_farms_per_box is not None:
            validate_max_farms(max_farms_per_box)
        if delivery_address is not None and not delivery_address:
            raise ValidationError("Delivery address cannot be empty")
        if delivery_zone is not None and not delivery_zone:
            raise ValidationError("Delivery zone cannot be empty")

        now = self.now()
        changed: list[str] = []
        async with self.subscriptions.transaction(subscription_id) as uow:
            sub = self._owned(uow.subscription, customer_id)
            if sub.is_cancelled():
                raise PreconditionError("Cannot update a cancelled subscription")
            if box_size is not None and sub.category is not None:
                validate_category(sub.category, box_size)

            updates = {
                "box_size": box_size,
                "frequency": frequency,
                "delivery_day": delivery_day,
                "delivery_address": delivery_address,
                "delivery_zone": delivery_zone,
                "preferences": preferences,
                "max_farms_per_box": max_farms_per_box,
                "auto_renew": auto_renew,
            }
            for name, value in updates.items():
                if value is not None:
                    setattr(sub, name, value)
                    changed.append(name)

            if frequency is not None or delivery_day is not None:
                anchor = sub.next_delivery or now
                sub.next_delivery = next_delivery_date(anchor, sub.delivery_day, sub.frequency, now=now)
            await self._record(uow, EventType.UPDATED, now, fields=changed)

        logger.info("Subscription updated: id=%s customer=%s fields=%s", sub.id, customer_id, changed)
        await self._notify(sub, EventType.UPDATED, fields=changed)
        return sub

    # ── Helpers ────────────────────────────────────────────

    @staticmethod
    def _owned(sub: Subscription | None, customer_id: uuid.UUID) -> Subscription:
        if sub is None or sub.customer_id != customer_id:
            raise NotFoundError("Subscription not found")
        return sub

    async def _ensure_no_other_active(self, sub: Subscription) -> None:
        kind, value = sub.target
        other = await self.subscriptions.find_active(
            sub.customer_id,
            farm_id=value if kind == "farm" else None,
            category=value if kind == "category" else None,
        )
        if other is not None and other.id != sub.id:
            raise ConflictError("Another active subscription exists for this target")

    @staticmethod
    async def _record(uow: SubscriptionUnitOfWork, event_type: EventType, at: datetime, **detail) -> None:
        await uow.add_event(LifecycleEvent(type=event_type, at=at, detail=detail))

    async def _notify(self, sub: Subscription, event_type: EventType, **data) -> None:
        await emit(self.notifier, Notification(
            type=event_type,
            customer_id=sub.customer_id,
            subscription_id=sub.id,
            data=data,
        ))
