"""
SQLAlchemy repositories.

A subscription unit of work is one DB transaction that starts with
``SELECT … FOR UPDATE`` on the subscription row, so concurrent lifecycle
operations on the same subscription serialize while different subscriptions
proceed in parallel. The partial unique indexes on ``subscriptions`` back the
one-ACTIVE-per-target rule; a violation surfaces as ConflictError.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Iterable

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from farmbox import models
from farmbox.domain import (
    BoxSize, EventType, Farm, Frequency, LifecycleEvent, Pause, Preferences, Product,
    Skip, Subscription, SubscriptionStatus, TrialBox, TrialStatus,
)
from farmbox.errors import ConflictError, NotFoundError
from farmbox.repositories.base import (
    Catalog, ContactDirectory, SubscriptionRepository, SubscriptionUnitOfWork, TrialRepository,
)


# ── Row <-> domain mapping ─────────────────────────────────

def preferences_to_json(prefs: Preferences) -> dict:
    return {
        "excluded_items": sorted(prefs.excluded_items),
        "preferred_farms": [str(f) for f in prefs.preferred_farms],
        "notes": prefs.notes,
    }


def preferences_from_json(data: dict | None) -> Preferences:
    data = data or {}
    return Preferences(
        excluded_items=set(data.get("excluded_items") or []),
        preferred_farms=[uuid.UUID(f) for f in data.get("preferred_farms") or []],
        notes=data.get("notes"),
    )


def _subscription_from_row(row: models.Subscription, events: list[models.SubscriptionEvent]) -> Subscription:
    return Subscription(
        id=row.id,
        customer_id=row.customer_id,
        farm_id=row.farm_id,
        category=row.category,
        box_size=BoxSize(row.box_size),
        frequency=Frequency(row.frequency),
        delivery_day=row.delivery_day,
        delivery_zone=row.delivery_zone,
        delivery_address=row.delivery_address,
        preferences=preferences_from_json(row.preferences),
        max_farms_per_box=row.max_farms_per_box,
        status=SubscriptionStatus(row.status),
        start_date=row.start_date,
        next_delivery=row.next_delivery,
        paused_until=row.paused_until,
        pauses_used_this_year=row.pauses_used_this_year,
        max_pauses_per_year=row.max_pauses_per_year,
        skips_this_month=row.skips_this_month,
        max_skips_per_month=row.max_skips_per_month,
        trial_converted=row.trial_converted,
        auto_renew=row.auto_renew,
        created_at=row.created_at,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        history=[
            LifecycleEvent(type=EventType(e.event_type), at=e.at, detail=e.detail or {})
            for e in events
        ],
    )


def _apply_subscription(row: models.Subscription, sub: Subscription) -> None:
    row.farm_id = sub.farm_id
    row.category = sub.category
    row.box_size = sub.box_size.value
    row.frequency = sub.frequency.value
    row.delivery_day = sub.delivery_day
    row.delivery_zone = sub.delivery_zone
    row.delivery_address = sub.delivery_address
    row.preferences = preferences_to_json(sub.preferences)
    row.max_farms_per_box = sub.max_farms_per_box
    row.status = sub.status.value
    row.start_date = sub.start_date
    row.next_delivery = sub.next_delivery
    row.paused_until = sub.paused_until
    row.pauses_used_this_year = sub.pauses_used_this_year
    row.max_pauses_per_year = sub.max_pauses_per_year
    row.skips_this_month = sub.skips_this_month
    row.max_skips_per_month = sub.max_skips_per_month
    row.trial_converted = sub.trial_converted
    row.auto_renew = sub.auto_renew
    row.cancelled_at = sub.cancelled_at
    row.cancellation_reason = sub.cancellation_reason


def _event_row(subscription_id: uuid.UUID, event: LifecycleEvent) -> models.SubscriptionEvent:
    return models.SubscriptionEvent(
        subscription_id=subscription_id,
        event_type=event.type.value,
        at=event.at,
        detail=event.detail,
    )


def _pause_from_row(row: models.SubscriptionPause) -> Pause:
    return Pause(
        id=row.id,
        subscription_id=row.subscription_id,
        start_date=row.start_date,
        end_date=row.end_date,
        reason=row.reason,
        created_at=row.created_at,
    )


def _skip_from_row(row: models.SubscriptionSkip) -> Skip:
    return Skip(
        id=row.id,
        subscription_id=row.subscription_id,
        skip_date=row.skip_date,
        reason=row.reason,
        created_at=row.created_at,
    )


def _trial_from_row(row: models.TrialBox) -> TrialBox:
    return TrialBox(
        id=row.id,
        customer_id=row.customer_id,
        farm_id=row.farm_id,
        box_size=BoxSize(row.box_size),
        discount_percent=row.discount_percent,
        status=TrialStatus(row.status),
        expires_at=row.expires_at,
        created_at=row.created_at,
        converted_to_sub=row.converted_to_sub,
        order_id=row.order_id,
        subscription_id=row.subscription_id,
    )


def _apply_trial(row: models.TrialBox, trial: TrialBox) -> None:
    row.box_size = trial.box_size.value
    row.discount_percent = trial.discount_percent
    row.status = trial.status.value
    row.expires_at = trial.expires_at
    row.converted_to_sub = trial.converted_to_sub
    row.order_id = trial.order_id
    row.subscription_id = trial.subscription_id


def _farm_from_row(row: models.Farm) -> Farm:
    return Farm(
        id=row.id,
        name=row.name,
        slug=row.slug,
        is_active=row.is_active,
        delivery_zones=list(row.delivery_zones or []),
        created_at=row.created_at,
    )


def _product_from_row(row: models.Product, farm_name: str | None = None) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        price=float(row.price),
        farm_id=row.farm_id,
        category=row.category,
        popularity_score=row.popularity_score or 0.0,
        created_at=row.created_at,
        is_available=row.is_available,
        farm_name=farm_name,
    )


# ── Subscriptions ──────────────────────────────────────────

class _SqlUnitOfWork(SubscriptionUnitOfWork):
    def __init__(self, session: AsyncSession, subscription: Subscription):
        self.session = session
        self.subscription = subscription

    async def find_skip(self, skip_date: date) -> Skip | None:
        result = await self.session.execute(
            select(models.SubscriptionSkip).where(
                models.SubscriptionSkip.subscription_id == self.subscription.id,
                models.SubscriptionSkip.skip_date == skip_date,
            )
        )
        row = result.scalar_one_or_none()
        return _skip_from_row(row) if row else None

    async def add_skip(self, skip: Skip) -> None:
        self.session.add(models.SubscriptionSkip(
            id=skip.id,
            subscription_id=skip.subscription_id,
            skip_date=skip.skip_date,
            reason=skip.reason,
            created_at=skip.created_at,
        ))

    async def delete_skip(self, skip: Skip) -> None:
        await self.session.execute(
            delete(models.SubscriptionSkip).where(models.SubscriptionSkip.id == skip.id)
        )

    async def add_pause(self, pause: Pause) -> None:
        self.session.add(models.SubscriptionPause(
            id=pause.id,
            subscription_id=pause.subscription_id,
            start_date=pause.start_date,
            end_date=pause.end_date,
            reason=pause.reason,
            created_at=pause.created_at,
        ))

    async def close_open_pauses(self, at: datetime) -> int:
        await self.session.flush()
        result = await self.session.execute(
            update(models.SubscriptionPause)
            .where(
                models.SubscriptionPause.subscription_id == self.subscription.id,
                models.SubscriptionPause.end_date >= at,
            )
            .values(end_date=case(
                (models.SubscriptionPause.start_date > at, models.SubscriptionPause.start_date),
                else_=at,
            ))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def add_event(self, event: LifecycleEvent) -> None:
        self.subscription.history.append(event)
        self.session.add(_event_row(self.subscription.id, event))


class SqlSubscriptionRepository(SubscriptionRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _load(self, session: AsyncSession, row: models.Subscription) -> Subscription:
        events = await session.execute(
            select(models.SubscriptionEvent)
            .where(models.SubscriptionEvent.subscription_id == row.id)
            .order_by(models.SubscriptionEvent.at, models.SubscriptionEvent.id)
        )
        return _subscription_from_row(row, list(events.scalars().all()))

    async def get(self, subscription_id: uuid.UUID) -> Subscription | None:
        async with self.session_factory() as session:
            row = await session.get(models.Subscription, subscription_id)
            return await self._load(session, row) if row else None

    async def find_active(
        self,
        customer_id: uuid.UUID,
        farm_id: uuid.UUID | None = None,
        category: str | None = None,
    ) -> Subscription | None:
        query = select(models.Subscription).where(
            models.Subscription.customer_id == customer_id,
            models.Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        if farm_id is not None:
            query = query.where(models.Subscription.farm_id == farm_id)
        else:
            query = query.where(
                models.Subscription.farm_id.is_(None),
                models.Subscription.category == category,
            )
        async with self.session_factory() as session:
            row = (await session.execute(query.limit(1))).scalar_one_or_none()
            return await self._load(session, row) if row else None

    async def list_for_customer(
        self, customer_id: uuid.UUID, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        query = select(models.Subscription).where(models.Subscription.customer_id == customer_id)
        if status is not None:
            query = query.where(models.Subscription.status == status.value)
        async with self.session_factory() as session:
            rows = (await session.execute(
                query.order_by(models.Subscription.created_at.desc())
            )).scalars().all()
            return [await self._load(session, r) for r in rows]

    async def list_pauses(self, subscription_id: uuid.UUID) -> list[Pause]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(models.SubscriptionPause)
                .where(models.SubscriptionPause.subscription_id == subscription_id)
                .order_by(models.SubscriptionPause.created_at.desc())
            )).scalars().all()
            return [_pause_from_row(r) for r in rows]

    async def list_skips(self, subscription_id: uuid.UUID) -> list[Skip]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(models.SubscriptionSkip)
                .where(models.SubscriptionSkip.subscription_id == subscription_id)
                .order_by(models.SubscriptionSkip.skip_date.desc())
            )).scalars().all()
            return [_skip_from_row(r) for r in rows]

    async def add(self, subscription: Subscription) -> Subscription:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    row = models.Subscription(
                        id=subscription.id,
                        customer_id=subscription.customer_id,
                        created_at=subscription.created_at,
                    )
                    _apply_subscription(row, subscription)
                    session.add(row)
                    await session.flush()
                    for event in subscription.history:
                        session.add(_event_row(subscription.id, event))
            except IntegrityError:
                raise ConflictError("You already have an active subscription for this target")
        return subscription

    @asynccontextmanager
    async def transaction(self, subscription_id: uuid.UUID) -> AsyncIterator[SubscriptionUnitOfWork]:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    row = (await session.execute(
                        select(models.Subscription)
                        .where(models.Subscription.id == subscription_id)
                        .with_for_update()
                    )).scalar_one_or_none()
                    if row is None:
                        raise NotFoundError("Subscription not found")
                    uow = _SqlUnitOfWork(session, await self._load(session, row))
                    yield uow
                    _apply_subscription(row, uow.subscription)
                    await session.flush()
            except IntegrityError:
                raise ConflictError("Conflicting subscription state, please retry")

    async def reset_skip_counters(self) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(models.Subscription)
                    .where(models.Subscription.status == SubscriptionStatus.ACTIVE.value)
                    .values(skips_this_month=0)
                )
                return result.rowcount or 0

    async def reset_pause_counters(self) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(models.Subscription).values(pauses_used_this_year=0)
                )
                return result.rowcount or 0

    async def list_deliveries_between(self, start: date, end: date) -> list[Subscription]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(models.Subscription)
                .where(
                    models.Subscription.status == SubscriptionStatus.ACTIVE.value,
                    models.Subscription.next_delivery >= start,
                    models.Subscription.next_delivery <= end,
                )
                .order_by(models.Subscription.next_delivery)
            )).scalars().all()
            return [await self._load(session, r) for r in rows]


# ── Trials ─────────────────────────────────────────────────

class SqlTrialRepository(TrialRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, trial_id: uuid.UUID) -> TrialBox | None:
        async with self.session_factory() as session:
            row = await session.get(models.TrialBox, trial_id)
            return _trial_from_row(row) if row else None

    async def find(self, customer_id: uuid.UUID, farm_id: uuid.UUID) -> TrialBox | None:
        async with self.session_factory() as session:
            row = (await session.execute(
                select(models.TrialBox).where(
                    models.TrialBox.customer_id == customer_id,
                    models.TrialBox.farm_id == farm_id,
                )
            )).scalar_one_or_none()
            return _trial_from_row(row) if row else None

    async def list_for_customer(self, customer_id: uuid.UUID) -> list[TrialBox]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(models.TrialBox)
                .where(models.TrialBox.customer_id == customer_id)
                .order_by(models.TrialBox.created_at.desc())
            )).scalars().all()
            return [_trial_from_row(r) for r in rows]

    async def add(self, trial: TrialBox) -> TrialBox:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    row = models.TrialBox(
                        id=trial.id,
                        customer_id=trial.customer_id,
                        farm_id=trial.farm_id,
                        created_at=trial.created_at,
                    )
                    _apply_trial(row, trial)
                    session.add(row)
            except IntegrityError:
                raise ConflictError("You have already used your trial with this farm")
        return trial

    @asynccontextmanager
    async def transaction(self, trial_id: uuid.UUID) -> AsyncIterator[TrialBox]:
        async with self.session_factory() as session:
            async with session.begin():
                row = (await session.execute(
                    select(models.TrialBox).where(models.TrialBox.id == trial_id).with_for_update()
                )).scalar_one_or_none()
                if row is None:
                    raise NotFoundError("Trial box not found")
                trial = _trial_from_row(row)
                yield trial
                _apply_trial(row, trial)


# ── Catalog ────────────────────────────────────────────────

class SqlCatalog(Catalog):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_available_products(
        self,
        categories: Iterable[str] | None,
        excluded_names: Iterable[str],
        farm_id: uuid.UUID | None = None,
    ) -> list[Product]:
        query = (
            select(models.Product, models.Farm.name)
            .join(models.Farm, models.Farm.id == models.Product.farm_id)
            .where(models.Product.is_available.is_(True))
        )
        if categories is not None:
            query = query.where(models.Product.category.in_(list(categories)))
        if farm_id is not None:
            query = query.where(models.Product.farm_id == farm_id)
        excluded = list(excluded_names)
        if excluded:
            query = query.where(models.Product.name.not_in(excluded))
        query = query.order_by(
            models.Product.popularity_score.desc(),
            models.Product.created_at.desc(),
        )
        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()
            return [_product_from_row(product, farm_name) for product, farm_name in rows]

    async def find_product_by_id(self, product_id: uuid.UUID) -> Product | None:
        async with self.session_factory() as session:
            row = await session.get(models.Product, product_id)
            return _product_from_row(row) if row else None

    async def find_farm(self, farm_id: uuid.UUID) -> Farm | None:
        async with self.session_factory() as session:
            row = await session.get(models.Farm, farm_id)
            return _farm_from_row(row) if row else None

    async def list_active_farms(
        self, zone: str | None = None, exclude: Iterable[uuid.UUID] = ()
    ) -> list[Farm]:
        query = select(models.Farm).where(models.Farm.is_active.is_(True))
        skip = list(exclude)
        if skip:
            query = query.where(models.Farm.id.not_in(skip))
        async with self.session_factory() as session:
            rows = (await session.execute(
                query.order_by(models.Farm.created_at.desc())
            )).scalars().all()
        farms = [_farm_from_row(r) for r in rows]
        # Zones live in a JSON list; filter here to stay dialect-neutral
        if zone is not None:
            farms = [f for f in farms if zone in f.delivery_zones]
        return farms


# ── Contacts ───────────────────────────────────────────────

class SqlContactDirectory(ContactDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def telegram_chat_id(self, customer_id: uuid.UUID) -> int | None:
        async with self.session_factory() as session:
            return (await session.execute(
                select(models.CustomerContact.telegram_chat_id)
                .where(models.CustomerContact.customer_id == customer_id)
            )).scalar_one_or_none()
