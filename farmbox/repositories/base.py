"""
Repository interfaces consumed by the subscription, trial and curation services.

``SubscriptionRepository.transaction`` is the atomic unit for every lifecycle
operation: the yielded unit of work holds a private copy of the subscription,
all reads and staged writes go through it, and nothing becomes visible to
other callers unless the ``async with`` block exits cleanly. Two transactions
on the same subscription never overlap.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Iterable

from farmbox.domain import (
    Farm, LifecycleEvent, Pause, Product, Skip, Subscription, SubscriptionStatus, TrialBox,
)


class SubscriptionUnitOfWork(ABC):
    """Staged reads/writes against one locked subscription."""

    subscription: Subscription

    @abstractmethod
    async def find_skip(self, skip_date: date) -> Skip | None:
        pass

    @abstractmethod
    async def add_skip(self, skip: Skip) -> None:
        pass

    @abstractmethod
    async def delete_skip(self, skip: Skip) -> None:
        pass

    @abstractmethod
    async def add_pause(self, pause: Pause) -> None:
        pass

    @abstractmethod
    async def close_open_pauses(self, at: datetime) -> int:
        """Truncate every pause still running at ``at`` to end at ``at``, or at its start if that is later."""

    @abstractmethod
    async def add_event(self, event: LifecycleEvent) -> None:
        pass


class SubscriptionRepository(ABC):

    @abstractmethod
    async def get(self, subscription_id: uuid.UUID) -> Subscription | None:
        pass

    @abstractmethod
    async def find_active(
        self,
        customer_id: uuid.UUID,
        farm_id: uuid.UUID | None = None,
        category: str | None = None,
    ) -> Subscription | None:
        pass

    @abstractmethod
    async def list_for_customer(
        self, customer_id: uuid.UUID, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        pass

    @abstractmethod
    async def list_pauses(self, subscription_id: uuid.UUID) -> list[Pause]:
        pass

    @abstractmethod
    async def list_skips(self, subscription_id: uuid.UUID) -> list[Skip]:
        pass

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        """
        Persist a new subscription.

        Raises ConflictError if the customer already has an ACTIVE subscription
        for the same farm or category.
        """

    @abstractmethod
    def transaction(
        self, subscription_id: uuid.UUID
    ) -> AbstractAsyncContextManager[SubscriptionUnitOfWork]:
        """Lock one subscription; raises NotFoundError if it does not exist."""

    @abstractmethod
    async def reset_skip_counters(self) -> int:
        """Zero ``skips_this_month`` on every ACTIVE subscription."""

    @abstractmethod
    async def reset_pause_counters(self) -> int:
        """Zero ``pauses_used_this_year`` on every subscription."""

    @abstractmethod
    async def list_deliveries_between(self, start: date, end: date) -> list[Subscription]:
        """ACTIVE subscriptions whose next delivery falls in [start, end]."""


class TrialRepository(ABC):

    @abstractmethod
    async def get(self, trial_id: uuid.UUID) -> TrialBox | None:
        pass

    @abstractmethod
    async def find(self, customer_id: uuid.UUID, farm_id: uuid.UUID) -> TrialBox | None:
        pass

    @abstractmethod
    async def list_for_customer(self, customer_id: uuid.UUID) -> list[TrialBox]:
        pass

    @abstractmethod
    async def add(self, trial: TrialBox) -> TrialBox:
        """Raises ConflictError if (customer, farm) already has a trial."""

    @abstractmethod
    def transaction(self, trial_id: uuid.UUID) -> AbstractAsyncContextManager[TrialBox]:
        """Lock one trial and yield a copy; the copy is saved on clean exit."""


class Catalog(ABC):
    """Read-only product/farm catalog."""

    @abstractmethod
    async def find_available_products(
        self,
        categories: Iterable[str] | None,
        excluded_names: Iterable[str],
        farm_id: uuid.UUID | None = None,
    ) -> list[Product]:
        """Available products ordered by popularity desc, then newest first."""

    @abstractmethod
    async def find_product_by_id(self, product_id: uuid.UUID) -> Product | None:
        pass

    @abstractmethod
    async def find_farm(self, farm_id: uuid.UUID) -> Farm | None:
        pass

    @abstractmethod
    async def list_active_farms(
        self, zone: str | None = None, exclude: Iterable[uuid.UUID] = ()
    ) -> list[Farm]:
        pass


class ContactDirectory(ABC):
    """Customer contact details kept by the marketplace."""

    @abstractmethod
    async def telegram_chat_id(self, customer_id: uuid.UUID) -> int | None:
        pass
