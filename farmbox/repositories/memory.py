"""
In-memory repositories.

Used by the test-suite and for local box previews. Each subscription and trial
gets its own ``asyncio.Lock``; a unit of work edits deep copies and swaps them
in only when the ``async with`` block exits without an exception.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import date, datetime
from typing import AsyncIterator, Iterable

from farmbox.domain import (
    Farm, LifecycleEvent, Pause, Product, Skip, Subscription, SubscriptionStatus, TrialBox,
)
from farmbox.errors import ConflictError, NotFoundError
from farmbox.repositories.base import (
    Catalog, ContactDirectory, SubscriptionRepository, SubscriptionUnitOfWork, TrialRepository,
)


def _active_conflict(existing: Iterable[Subscription], candidate: Subscription) -> Subscription | None:
    for s in existing:
        if (
            s.id != candidate.id
            and s.customer_id == candidate.customer_id
            and s.is_active()
            and s.target == candidate.target
        ):
            return s
    return None


class _MemoryUnitOfWork(SubscriptionUnitOfWork):
    def __init__(self, repo: "InMemorySubscriptionRepository", subscription: Subscription):
        self._repo = repo
        self.subscription = deepcopy(subscription)
        self._skips: dict[date, Skip] = deepcopy(repo._skips[subscription.id])
        self._pauses: list[Pause] = deepcopy(repo._pauses[subscription.id])

    async def find_skip(self, skip_date: date) -> Skip | None:
        return self._skips.get(skip_date)

    async def add_skip(self, skip: Skip) -> None:
        if skip.skip_date in self._skips:
            raise ConflictError("This delivery date is already skipped")
        self._skips[skip.skip_date] = skip

    async def delete_skip(self, skip: Skip) -> None:
        self._skips.pop(skip.skip_date, None)

    async def add_pause(self, pause: Pause) -> None:
        self._pauses.append(pause)

    async def close_open_pauses(self, at: datetime) -> int:
        closed = 0
        for pause in self._pauses:
            if pause.is_open(at):
                pause.end_date = max(at, pause.start_date)
                closed += 1
        return closed

    async def add_event(self, event: LifecycleEvent) -> None:
        self.subscription.history.append(event)

    def commit(self) -> None:
        sub = self.subscription
        if sub.is_active():
            clash = _active_conflict(self._repo._subscriptions.values(), sub)
            if clash is not None:
                raise ConflictError("Another active subscription exists for this target")
        self._repo._subscriptions[sub.id] = sub
        self._repo._skips[sub.id] = self._skips
        self._repo._pauses[sub.id] = self._pauses


class InMemorySubscriptionRepository(SubscriptionRepository):

    def __init__(self):
        self._subscriptions: dict[uuid.UUID, Subscription] = {}
        self._skips: dict[uuid.UUID, dict[date, Skip]] = defaultdict(dict)
        self._pauses: dict[uuid.UUID, list[Pause]] = defaultdict(list)
        self._locks: dict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    async def get(self, subscription_id: uuid.UUID) -> Subscription | None:
        sub = self._subscriptions.get(subscription_id)
        return deepcopy(sub) if sub else None

    async def find_active(
        self,
        customer_id: uuid.UUID,
        farm_id: uuid.UUID | None = None,
        category: str | None = None,
    ) -> Subscription | None:
        for s in self._subscriptions.values():
            if s.customer_id != customer_id or not s.is_active():
                continue
            if farm_id is not None and s.farm_id == farm_id:
                return deepcopy(s)
            if category is not None and s.farm_id is None and s.category == category:
                return deepcopy(s)
        return None

    async def list_for_customer(
        self, customer_id: uuid.UUID, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        subs = [
            s for s in self._subscriptions.values()
            if s.customer_id == customer_id and (status is None or s.status == status)
        ]
        subs.sort(key=lambda s: s.created_at or datetime.min, reverse=True)
        return deepcopy(subs)

    async def list_pauses(self, subscription_id: uuid.UUID) -> list[Pause]:
        pauses = sorted(self._pauses[subscription_id], key=lambda p: p.created_at, reverse=True)
        return deepcopy(pauses)

    async def list_skips(self, subscription_id: uuid.UUID) -> list[Skip]:
        skips = sorted(self._skips[subscription_id].values(), key=lambda s: s.skip_date, reverse=True)
        return deepcopy(skips)

    async def add(self, subscription: Subscription) -> Subscription:
        async with self._create_lock:
            if _active_conflict(self._subscriptions.values(), subscription) is not None:
                raise ConflictError("You already have an active subscription for this target")
            self._subscriptions[subscription.id] = deepcopy(subscription)
        return deepcopy(subscription)

    @asynccontextmanager
    async def transaction(self, subscription_id: uuid.UUID) -> AsyncIterator[SubscriptionUnitOfWork]:
        async with self._locks[subscription_id]:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                raise NotFoundError("Subscription not found")
            uow = _MemoryUnitOfWork(self, current)
            yield uow
            async with self._create_lock:
                uow.commit()

    async def reset_skip_counters(self) -> int:
        count = 0
        for sub_id in list(self._subscriptions):
            async with self._locks[sub_id]:
                sub = self._subscriptions[sub_id]
                if sub.is_active():
                    sub.skips_this_month = 0
                    count += 1
        return count

    async def reset_pause_counters(self) -> int:
        count = 0
        for sub_id in list(self._subscriptions):
            async with self._locks[sub_id]:
                self._subscriptions[sub_id].pauses_used_this_year = 0
                count += 1
        return count

    async def list_deliveries_between(self, start: date, end: date) -> list[Subscription]:
        subs = [
            s for s in self._subscriptions.values()
            if s.is_active()
            and s.next_delivery is not None
            and start <= s.next_delivery <= end
        ]
        return deepcopy(sorted(subs, key=lambda s: s.next_delivery))


class InMemoryTrialRepository(TrialRepository):

    def __init__(self):
        self._trials: dict[uuid.UUID, TrialBox] = {}
        self._locks: dict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    async def get(self, trial_id: uuid.UUID) -> TrialBox | None:
        trial = self._trials.get(trial_id)
        return deepcopy(trial) if trial else None

    async def find(self, customer_id: uuid.UUID, farm_id: uuid.UUID) -> TrialBox | None:
        for t in self._trials.values():
            if t.customer_id == customer_id and t.farm_id == farm_id:
                return deepcopy(t)
        return None

    async def list_for_customer(self, customer_id: uuid.UUID) -> list[TrialBox]:
        trials = [t for t in self._trials.values() if t.customer_id == customer_id]
        trials.sort(key=lambda t: t.created_at, reverse=True)
        return deepcopy(trials)

    async def add(self, trial: TrialBox) -> TrialBox:
        async with self._create_lock:
            if await self.find(trial.customer_id, trial.farm_id) is not None:
                raise ConflictError("You have already used your trial with this farm")
            self._trials[trial.id] = deepcopy(trial)
        return deepcopy(trial)

    @asynccontextmanager
    async def transaction(self, trial_id: uuid.UUID) -> AsyncIterator[TrialBox]:
        async with self._locks[trial_id]:
            current = self._trials.get(trial_id)
            if current is None:
                raise NotFoundError("Trial box not found")
            trial = deepcopy(current)
            yield trial
            self._trials[trial_id] = trial


class InMemoryCatalog(Catalog):

    def __init__(self, farms: Iterable[Farm] = (), products: Iterable[Product] = ()):
        self._farms: dict[uuid.UUID, Farm] = {f.id: f for f in farms}
        self._products: dict[uuid.UUID, Product] = {p.id: p for p in products}

    def add_farm(self, farm: Farm) -> None:
        self._farms[farm.id] = farm

    def add_product(self, product: Product) -> None:
        self._products[product.id] = product

    async def find_available_products(
        self,
        categories: Iterable[str] | None,
        excluded_names: Iterable[str],
        farm_id: uuid.UUID | None = None,
    ) -> list[Product]:
        wanted = set(categories) if categories is not None else None
        excluded = set(excluded_names)
        products = [
            p for p in self._products.values()
            if p.is_available
            and (wanted is None or p.category in wanted)
            and (farm_id is None or p.farm_id == farm_id)
            and p.name not in excluded
        ]
        # Two stable passes: newest first, then popularity desc on top
        products.sort(key=lambda p: p.created_at or datetime.min, reverse=True)
        products.sort(key=lambda p: p.popularity_score, reverse=True)
        return deepcopy(products)

    async def find_product_by_id(self, product_id: uuid.UUID) -> Product | None:
        product = self._products.get(product_id)
        return deepcopy(product) if product else None

    async def find_farm(self, farm_id: uuid.UUID) -> Farm | None:
        farm = self._farms.get(farm_id)
        return deepcopy(farm) if farm else None

    async def list_active_farms(
        self, zone: str | None = None, exclude: Iterable[uuid.UUID] = ()
    ) -> list[Farm]:
        skip = set(exclude)
        farms = [
            f for f in self._farms.values()
            if f.is_active and f.id not in skip and (zone is None or zone in f.delivery_zones)
        ]
        farms.sort(key=lambda f: f.created_at or datetime.min, reverse=True)
        return deepcopy(farms)


class InMemoryContactDirectory(ContactDirectory):

    def __init__(self, chats: dict[uuid.UUID, int] | None = None):
        self._chats: dict[uuid.UUID, int] = dict(chats or {})

    def set_telegram_chat(self, customer_id: uuid.UUID, chat_id: int) -> None:
        self._chats[customer_id] = chat_id

    async def telegram_chat_id(self, customer_id: uuid.UUID) -> int | None:
        return self._chats.get(customer_id)
