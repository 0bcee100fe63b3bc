"""Trial box API endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query

from farmbox.routers.deps import Services, get_customer_id, get_services, require_scheduler
from farmbox.routers.subscriptions import to_preferences
from farmbox.schemas import (
    FarmResponse, SubscriptionResponse, TrialAvailabilityResponse, TrialConvert, TrialCreate,
    TrialOrderAttach, TrialResponse,
)

router = APIRouter()


@router.post("/", response_model=TrialResponse, status_code=201)
async def create_trial(
    data: TrialCreate,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """Claim the one discounted trial box for a farm."""
    return await services.trials.create(customer_id, data.farm_id, data.box_size)


@router.get("/", response_model=list[TrialResponse])
async def list_trials(
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.trials.list_for_customer(customer_id)


@router.get("/farms", response_model=list[FarmResponse])
async def list_trial_farms(
    zone: str | None = Query(None),
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """Active farms the customer can still try."""
    return await services.trials.available_farms(customer_id, zone)


@router.get("/farms/{farm_id}/availability", response_model=TrialAvailabilityResponse)
async def check_trial_availability(
    farm_id: uuid.UUID,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.trials.check_availability(customer_id, farm_id)


@router.get("/{trial_id}", response_model=TrialResponse)
async def get_trial(
    trial_id: uuid.UUID,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    return await services.trials.get(customer_id, trial_id)


@router.post("/{trial_id}/convert", response_model=SubscriptionResponse, status_code=201)
async def convert_trial(
    trial_id: uuid.UUID,
    data: TrialConvert,
    customer_id: uuid.UUID = Depends(get_customer_id),
    services: Services = Depends(get_services),
):
    """Turn a delivered trial into a recurring subscription."""
    return await services.trials.convert_to_subscription(
        customer_id,
        trial_id,
        frequency=data.frequency,
        delivery_day=data.delivery_day,
        delivery_address=data.delivery_address,
        delivery_zone=data.delivery_zone,
        preferences=to_preferences(data.preferences),
    )


# ── Order hooks (called by the order service, not customers) ──

@router.post(
    "/{trial_id}/order",
    response_model=TrialResponse,
    dependencies=[Depends(require_scheduler)],
)
async def attach_trial_order(
    trial_id: uuid.UUID,
    data: TrialOrderAttach,
    services: Services = Depends(get_services),
):
    return await services.trials.attach_order(trial_id, data.order_id)


@router.post(
    "/{trial_id}/delivered",
    response_model=TrialResponse,
    dependencies=[Depends(require_scheduler)],
)
async def mark_trial_delivered(
    trial_id: uuid.UUID,
    services: Services = Depends(get_services),
):
    return await services.trials.mark_delivered(trial_id)
