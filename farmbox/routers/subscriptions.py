"""Subscription API endpoints: lifecycle transitions and box previews."""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query

from farmbox.domain import Preferences, SubscriptionStatus
from farmbox.routers.deps import Services, get_customer_id, get_services
from farmbox.schemas import (
    BoxPreviewResponse, CancelRequest, LifecycleEventOut, PauseRequest, PauseResponse,
    PreferencesIn, SkipRequest, SkipResponse, SubscriptionCreate, SubscriptionDetailResponse,
    SubscriptionResponse, SubscriptionUpdate,
)
from farmbox.services.lifecycle import SubscriptionDetails

router = APIRouter()


def to_preferences(prefs: PreferencesIn | None) -> Preferences | None:
    if prefs is None:
        return None
    return Preferences(
        excluded_items=set(prefs.excluded_items),
        preferred_farms=list(prefs.preferred_farms),
        notes=prefs.notes,
    )


def to_detail(details: SubscriptionDetails) -> SubscriptionDetailResponse:
    base = SubscriptionResponse.model_validate(details.subscription)
    return SubscriptionDetailResponse(
        **base.model_dump(),
        pauses=[PauseResponse.model_validate(p) for p in details.pauses],
        skips=[SkipResponse.model_validate(s) for s in details.skips],
        history=[LifecycleEventOut.model_validate(e) for e in details.subscription.history],
    )


@router.post("/", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    data: SubscriptionCreate,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """Subscribe to a farm box or a category box."""
    return await services.lifecycle.create(
        customer_id,
        farm_id=data.farm_id,
        category=data.category,
        box_size=data.box_size,
        frequency=data.frequency,
        delivery_day=data.delivery_day,
        delivery_address=data.delivery_address,
        delivery_zone=data.delivery_zone,
        preferences=to_preferences(data.preferences),
        max_farms_per_box=data.max_farms_per_box,
        start_date=data.start_date,
    )


@router.get("/", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    status: SubscriptionStatus | None = Query(None),
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.list_for_customer(customer_id, status)


@router.get("/{subscription_id}", response_model=SubscriptionDetailResponse)
async def get_subscription(
    subscription_id: uuid.UUID,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """Subscription with its pauses, skips and history."""
    return to_detail(await services.lifecycle.get(customer_id, subscription_id))


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: uuid.UUID,
    data: SubscriptionUpdate,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.update_preferences(
        customer_id,
        subscription_id,
        box_size=data.box_size,
        frequency=data.frequency,
        delivery_day=data.delivery_day,
        delivery_address=data.delivery_address,
        delivery_zone=data.delivery_zone,
        preferences=to_preferences(data.preferences),
        max_farms_per_box=data.max_farms_per_box,
        auto_renew=data.auto_renew,
    )


# ── Pause / Resume ─────────────────────────────────────────

@router.post("/{subscription_id}/pause", response_model=PauseResponse, status_code=201)
async def pause_subscription(
    subscription_id: uuid.UUID,
    data: PauseRequest,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.pause(
        customer_id,
        subscription_id,
        weeks=data.weeks,
        start=data.start_date,
        end=data.end_date,
        reason=data.reason,
    )


@router.delete("/{subscription_id}/pause", response_model=SubscriptionResponse)
async def resume_subscription(
    subscription_id: uuid.UUID,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """End the current pause early."""
    return await services.lifecycle.resume(customer_id, subscription_id)


# ── Skip / Unskip ──────────────────────────────────────────

@router.post("/{subscription_id}/skip", response_model=SkipResponse, status_code=201)
async def skip_delivery(
    subscription_id: uuid.UUID,
    data: SkipRequest,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.skip(customer_id, subscription_id, data.skip_date, data.reason)


@router.delete("/{subscription_id}/skip/{skip_date}", response_model=SubscriptionResponse)
async def unskip_delivery(
    subscription_id: uuid.UUID,
    skip_date: date,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.unskip(customer_id, subscription_id, skip_date)


# ── Cancel ─────────────────────────────────────────────────

@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: uuid.UUID,
    data: CancelRequest | None = None,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    reason = data.reason if data is not None else None
    return await services.lifecycle.cancel(customer_id, subscription_id, reason)


# ── Preview ────────────────────────────────────────────────

@router.get("/{subscription_id}/preview", response_model=BoxPreviewResponse)
async def preview_box(
    subscription_id: uuid.UUID,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """What the next box would contain with today's catalogue."""
    return await services.lifecycle.preview_box(customer_id, subscription_id)
