"""
Trial Lifecycle: one discounted box per (customer, farm), ever.

  PENDING ──(linked order delivered)──> DELIVERED ──(convert)──> CONVERTED
     └──(read after expires_at)──> EXPIRED

Expiry is lazy: any read of a PENDING trial past ``expires_at`` flips it to
EXPIRED and persists the change before returning.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from farmbox.config import settings
from farmbox.domain import (
    BoxSize, EventType, Farm, Frequency, Preferences, Subscription, TrialBox, TrialStatus,
)
from farmbox.errors import NotFoundError, PreconditionError, ValidationError
from farmbox.repositories.base import Catalog, TrialRepository
from farmbox.services.lifecycle import SubscriptionLifecycle, parse_enum, utcnow
from farmbox.services.notifications import LoggingNotifier, Notification, Notifier, emit

logger = logging.getLogger(__name__)


class TrialLifecycle:
    def __init__(
        self,
        trials: TrialRepository,
        catalog: Catalog,
        subscriptions: SubscriptionLifecycle,
        notifier: Notifier | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.trials = trials
        self.catalog = catalog
        self.subscriptions = subscriptions
        self.notifier = notifier or LoggingNotifier()
        self.now = now

    # ── Reads (with lazy expiry) ───────────────────────────

    async def _refresh(self, trial: TrialBox) -> TrialBox:
        if trial.is_expired(self.now()):
            async with self.trials.transaction(trial.id) as locked:
                if locked.is_expired(self.now()):
                    locked.status = TrialStatus.EXPIRED
                    logger.info("Trial expired: id=%s customer=%s", locked.id, locked.customer_id)
            return locked
        return trial

    async def get(self, customer_id: uuid.UUID, trial_id: uuid.UUID) -> TrialBox:
        trial = await self.trials.get(trial_id)
        if trial is None or trial.customer_id != customer_id:
            raise NotFoundError("Trial box not found")
        return await self._refresh(trial)

    async def list_for_customer(self, customer_id: uuid.UUID) -> list[TrialBox]:
        return [await self._refresh(t) for t in await self.trials.list_for_customer(customer_id)]

    async def check_availability(self, customer_id: uuid.UUID, farm_id: uuid.UUID) -> dict:
        existing = await self.trials.find(customer_id, farm_id)
        if existing is not None:
            existing = await self._refresh(existing)
        return {
            "available": existing is None,
            "existing_trial": existing,
        }

    async def available_farms(self, customer_id: uuid.UUID, zone: str | None = None) -> list[Farm]:
        """Active farms the customer has not trialled yet."""
        tried = [t.farm_id for t in await self.trials.list_for_customer(customer_id)]
        return await self.catalog.list_active_farms(zone=zone, exclude=tried)

    # ── Create ─────────────────────────────────────────────

    async def create(
        self, customer_id: uuid.UUID, farm_id: uuid.UUID, box_size: BoxSize | str
    ) -> TrialBox:
        box_size = parse_enum(BoxSize, box_size, "box size")
        farm = await self.catalog.find_farm(farm_id)
        if farm is None or not farm.is_active:
            raise NotFoundError("Farm not found")

        now = self.now()
        trial = TrialBox(
            id=uuid.uuid4(),
            customer_id=customer_id,
            farm_id=farm_id,
            box_size=box_size,
            discount_percent=settings.TRIAL_DISCOUNT_PERCENT,
            expires_at=now + timedelta(days=settings.TRIAL_VALIDITY_DAYS),
            created_at=now,
        )
        # add() enforces one trial per (customer, farm)
        trial = await self.trials.add(trial)

        logger.info("Trial created: id=%s customer=%s farm=%s", trial.id, customer_id, farm_id)
        await emit(self.notifier, Notification(
            type=EventType.TRIAL_CREATED,
            customer_id=customer_id,
            trial_id=trial.id,
            data={
                "expires_at": trial.expires_at.date().isoformat(),
                "discount_percent": trial.discount_percent,
            },
        ))
        return trial

    # ── Fulfilment hooks (order collaborator) ──────────────

    async def attach_order(self, trial_id: uuid.UUID, order_id: uuid.UUID) -> TrialBox:
        async with self.trials.transaction(trial_id) as trial:
            if trial.is_expired(self.now()):
                trial.status = TrialStatus.EXPIRED
            elif trial.status != TrialStatus.PENDING:
                raise PreconditionError("Only pending trials can take an order")
            elif trial.order_id is not None and trial.order_id != order_id:
                raise PreconditionError("Trial already has an order")
            else:
                trial.order_id = order_id
        if trial.status == TrialStatus.EXPIRED:
            raise PreconditionError("Trial has expired")
        return trial

    async def mark_delivered(self, trial_id: uuid.UUID) -> TrialBox:
        async with self.trials.transaction(trial_id) as trial:
            if trial.status != TrialStatus.PENDING:
                raise PreconditionError("Only pending trials can be delivered")
            trial.status = TrialStatus.DELIVERED
        logger.info("Trial delivered: id=%s", trial_id)
        return trial

    # ── Convert ────────────────────────────────────────────

    async def convert_to_subscription(
        self,
        customer_id: uuid.UUID,
        trial_id: uuid.UUID,
        *,
        frequency: Frequency | str,
        delivery_day: int,
        delivery_address: str,
        delivery_zone: str,
        preferences: Preferences | None = None,
    ) -> Subscription:
        """Turn a delivered trial into a recurring subscription with the trial's farm and box size."""
        frequency = parse_enum(Frequency, frequency, "frequency")
        if not delivery_address or not delivery_zone:
            raise ValidationError("Delivery address and zone are required")

        async with self.trials.transaction(trial_id) as trial:
            if trial.customer_id != customer_id:
                raise NotFoundError("Trial box not found")
            if trial.converted_to_sub:
                raise PreconditionError("This trial has already been converted to a subscription")
            if trial.status != TrialStatus.DELIVERED:
                raise PreconditionError("You can only convert after receiving your trial box")

            subscription = await self.subscriptions.create(
                customer_id,
                farm_id=trial.farm_id,
                box_size=trial.box_size,
                frequency=frequency,
                delivery_day=delivery_day,
                delivery_address=delivery_address,
                delivery_zone=delivery_zone,
                preferences=preferences,
                trial_converted=True,
            )
            trial.status = TrialStatus.CONVERTED
            trial.converted_to_sub = True
            trial.subscription_id = subscription.id

        logger.info("Trial converted: id=%s subscription=%s", trial_id, subscription.id)
        await emit(self.notifier, Notification(
            type=EventType.TRIAL_CONVERTED,
            customer_id=customer_id,
            subscription_id=subscription.id,
            trial_id=trial_id,
        ))
        return subscription
