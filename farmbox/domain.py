"""
Domain objects for recurring farm-box subscriptions and trial boxes.

A subscription targets either one farm (seller box) or one product category
(category box); exactly one of ``farm_id`` / ``category`` is set. Pause and
skip records, plus the lifecycle history, are never rewritten destructively:
pauses are truncated, skips are deleted only by an explicit unskip, and every
transition appends a ``LifecycleEvent``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


# ── Enums ──────────────────────────────────────────────────

class BoxSize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    FAMILY = "FAMILY"


class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class TrialStatus(str, Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"


class EventType(str, Enum):
    CREATED = "CREATED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    SKIPPED = "SKIPPED"
    UNSKIPPED = "UNSKIPPED"
    CANCELLED = "CANCELLED"
    UPDATED = "UPDATED"
    TRIAL_CREATED = "TRIAL_CREATED"
    TRIAL_CONVERTED = "TRIAL_CONVERTED"
    DELIVERY_UPCOMING = "DELIVERY_UPCOMING"


# ── Subscriptions ──────────────────────────────────────────

@dataclass
class Preferences:
    """Curation preferences. ``preferred_farms`` ranks, it never filters."""
    excluded_items: set[str] = field(default_factory=set)
    preferred_farms: list[uuid.UUID] = field(default_factory=list)
    notes: str | None = None


@dataclass
class LifecycleEvent:
    type: EventType
    at: datetime
    detail: dict = field(default_factory=dict)


@dataclass
class Subscription:
    id: uuid.UUID
    customer_id: uuid.UUID
    box_size: BoxSize
    frequency: Frequency
    delivery_day: int            # 0 = Sunday … 6 = Saturday
    delivery_zone: str
    delivery_address: str
    start_date: date
    farm_id: uuid.UUID | None = None
    category: str | None = None
    preferences: Preferences = field(default_factory=Preferences)
    max_farms_per_box: int = 3

    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    next_delivery: date | None = None
    paused_until: datetime | None = None

    pauses_used_this_year: int = 0
    max_pauses_per_year: int = 4
    skips_this_month: int = 0
    max_skips_per_month: int = 2

    trial_converted: bool = False
    auto_renew: bool = True
    created_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    history: list[LifecycleEvent] = field(default_factory=list)

    @property
    def target(self) -> tuple[str, uuid.UUID | str]:
        if self.farm_id is not None:
            return ("farm", self.farm_id)
        return ("category", self.category)

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def is_paused(self) -> bool:
        return self.status == SubscriptionStatus.PAUSED

    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED

    def record(self, event_type: EventType, at: datetime, **detail) -> LifecycleEvent:
        """Append a history entry and return it."""
        event = LifecycleEvent(type=event_type, at=at, detail=detail)
        self.history.append(event)
        return event


@dataclass
class Pause:
    id: uuid.UUID
    subscription_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    reason: str | None
    created_at: datetime

    def is_open(self, at: datetime) -> bool:
        return self.end_date >= at


@dataclass
class Skip:
    id: uuid.UUID
    subscription_id: uuid.UUID
    skip_date: date
    reason: str | None
    created_at: datetime


# ── Trials ─────────────────────────────────────────────────

@dataclass
class TrialBox:
    id: uuid.UUID
    customer_id: uuid.UUID
    farm_id: uuid.UUID
    box_size: BoxSize
    discount_percent: int
    expires_at: datetime
    created_at: datetime
    status: TrialStatus = TrialStatus.PENDING
    converted_to_sub: bool = False
    order_id: uuid.UUID | None = None
    subscription_id: uuid.UUID | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == TrialStatus.PENDING and now > self.expires_at


# ── Catalog (read-only views) ──────────────────────────────

@dataclass
class Farm:
    id: uuid.UUID
    name: str
    slug: str
    is_active: bool = True
    delivery_zones: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass
class Product:
    id: uuid.UUID
    name: str
    price: float
    farm_id: uuid.UUID
    category: str
    popularity_score: float = 0.0
    created_at: datetime | None = None
    is_available: bool = True
    farm_name: str | None = None
