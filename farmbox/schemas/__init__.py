"""Pydantic schemas for API request/response models."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field

from farmbox.domain import BoxSize, EventType, Frequency, SubscriptionStatus, TrialStatus


# ── Shared ─────────────────────────────────────────────────

class PreferencesIn(BaseModel):
    excluded_items: list[str] = Field(default_factory=list)
    preferred_farms: list[uuid.UUID] = Field(default_factory=list)
    notes: str | None = None


class PreferencesOut(BaseModel):
    excluded_items: list[str]
    preferred_farms: list[uuid.UUID]
    notes: str | None

    class Config:
        from_attributes = True


class LifecycleEventOut(BaseModel):
    type: EventType
    at: datetime
    detail: dict

    class Config:
        from_attributes = True


# ── Subscription Schemas ───────────────────────────────────

class SubscriptionCreate(BaseModel):
    farm_id: uuid.UUID | None = None
    category: str | None = None
    box_size: BoxSize
    frequency: Frequency
    delivery_day: int = Field(ge=0, le=6)
    delivery_address: str = Field(min_length=1)
    delivery_zone: str = Field(min_length=1)
    preferences: PreferencesIn | None = None
    max_farms_per_box: int | None = Field(default=None, ge=1)
    start_date: date | None = None


class SubscriptionUpdate(BaseModel):
    box_size: BoxSize | None = None
    frequency: Frequency | None = None
    delivery_day: int | None = Field(default=None, ge=0, le=6)
    delivery_address: str | None = None
    delivery_zone: str | None = None
    preferences: PreferencesIn | None = None
    max_farms_per_box: int | None = Field(default=None, ge=1)
    auto_renew: bool | None = None


class PauseRequest(BaseModel):
    weeks: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    reason: str | None = None


class SkipRequest(BaseModel):
    skip_date: date
    reason: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    farm_id: uuid.UUID | None
    category: str | None
    box_size: BoxSize
    frequency: Frequency
    delivery_day: int
    delivery_zone: str
    delivery_address: str
    preferences: PreferencesOut
    max_farms_per_box: int
    status: SubscriptionStatus
    start_date: date
    next_delivery: date | None
    paused_until: datetime | None
    pauses_used_this_year: int
    max_pauses_per_year: int
    skips_this_month: int
    max_skips_per_month: int
    trial_converted: bool
    auto_renew: bool
    created_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None

    class Config:
        from_attributes = True


class PauseResponse(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    reason: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class SkipResponse(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    skip_date: date
    reason: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class SubscriptionDetailResponse(SubscriptionResponse):
    pauses: list[PauseResponse] = []
    skips: list[SkipResponse] = []
    history: list[LifecycleEventOut] = []


# ── Curation Schemas ───────────────────────────────────────

class ProductResponse(BaseModel):
    id: uuid.UUID
    name: str
    price: float
    farm_id: uuid.UUID
    farm_name: str | None
    category: str

    class Config:
        from_attributes = True


class BoxPreviewResponse(BaseModel):
    subscription_id: uuid.UUID
    category: str | None
    farm_id: uuid.UUID | None
    box_size: BoxSize
    next_delivery: date | None
    target_value: float
    value_range: tuple[float, float]
    actual_value: float
    products: list[ProductResponse]
    farms_included: list[uuid.UUID]

    class Config:
        from_attributes = True


class CategoryResponse(BaseModel):
    id: str
    name: str
    description: str
    box_sizes: list[BoxSize]


class CategoriesResponse(BaseModel):
    categories: list[CategoryResponse]
    box_prices: dict[BoxSize, float]


# ── Trial Schemas ──────────────────────────────────────────

class TrialCreate(BaseModel):
    farm_id: uuid.UUID
    box_size: BoxSize


class TrialConvert(BaseModel):
    frequency: Frequency
    delivery_day: int = Field(ge=0, le=6)
    delivery_address: str = Field(min_length=1)
    delivery_zone: str = Field(min_length=1)
    preferences: PreferencesIn | None = None


class TrialOrderAttach(BaseModel):
    order_id: uuid.UUID


class TrialResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    farm_id: uuid.UUID
    box_size: BoxSize
    discount_percent: int
    status: TrialStatus
    expires_at: datetime
    created_at: datetime
    converted_to_sub: bool
    order_id: uuid.UUID | None
    subscription_id: uuid.UUID | None

    class Config:
        from_attributes = True


class TrialAvailabilityResponse(BaseModel):
    available: bool
    existing_trial: TrialResponse | None


class FarmResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    delivery_zones: list[str]

    class Config:
        from_attributes = True


# ── Admin / Scheduler ──────────────────────────────────────

class JobResult(BaseModel):
    job: str
    affected: int
