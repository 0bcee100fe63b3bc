"""
Box Curation Engine: fills a box with concrete products when the customer
has not hand-picked items.

Algorithm (deterministic greedy, not bin-packing):
  1. Expand the category ("mixed" -> vegetables, fruits, herbs)
  2. Fetch available, non-excluded products ordered by popularity desc,
     then newest first
  3. Stable-partition products from preferred farms to the front
  4. Walk the list, adding products until the running total reaches the
     box's target value, never opening more than ``max_farms_per_box`` farms

Undershoot (catalog ran out) and overshoot (last item crossed the target)
are both valid outcomes. The catalog is only read.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from farmbox.domain import BoxSize, Product, Subscription
from farmbox.repositories.base import Catalog
from farmbox.services.categories import product_categories

logger = logging.getLogger(__name__)


# ── Constants ──────────────────────────────────────────────

BOX_TARGET_VALUE = {
    BoxSize.SMALL: 30.0,
    BoxSize.MEDIUM: 47.0,
    BoxSize.LARGE: 70.0,
    BoxSize.FAMILY: 105.0,
}

# Advertised value range shown in the preview
BOX_VALUE_RANGE = {
    BoxSize.SMALL: (25.0, 35.0),
    BoxSize.MEDIUM: (40.0, 55.0),
    BoxSize.LARGE: (60.0, 80.0),
    BoxSize.FAMILY: (90.0, 120.0),
}


# ── Data classes ───────────────────────────────────────────

@dataclass
class BoxPreview:
    subscription_id: uuid.UUID
    category: str | None
    farm_id: uuid.UUID | None
    box_size: BoxSize
    next_delivery: date | None
    target_value: float
    value_range: tuple[float, float]
    actual_value: float
    products: list[Product] = field(default_factory=list)
    farms_included: list[uuid.UUID] = field(default_factory=list)


# ── Core Functions ─────────────────────────────────────────

def prioritize_preferred(
    products: list[Product], preferred_farms: Iterable[uuid.UUID]
) -> list[Product]:
    """
    Move products from preferred farms ahead of the rest.

    A stable partition: relative order inside each group is unchanged, so the
    popularity ordering survives.
    """
    preferred = set(preferred_farms)
    if not preferred:
        return list(products)
    front = [p for p in products if p.farm_id in preferred]
    back = [p for p in products if p.farm_id not in preferred]
    return front + back


def select_products(
    candidates: list[Product],
    target_value: float,
    max_farms: int,
) -> list[Product]:
    """
    Greedy walk over ordered candidates.

    Returns:
        Selected products in walk order (each product at most once)
    """
    selected: list[Product] = []
    seen: set[uuid.UUID] = set()
    farms_used: set[uuid.UUID] = set()
    total = 0.0

    for product in candidates:
        if total >= target_value:
            break
        if product.id in seen:
            continue
        if len(farms_used) >= max_farms and product.farm_id not in farms_used:
            continue
        selected.append(product)
        seen.add(product.id)
        farms_used.add(product.farm_id)
        total += float(product.price)

    return selected


def farms_in(products: list[Product]) -> list[uuid.UUID]:
    """Distinct farm ids in first-seen order."""
    return list(dict.fromkeys(p.farm_id for p in products))


class BoxCurationEngine:
    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    async def candidates(self, subscription: Subscription) -> list[Product]:
        prefs = subscription.preferences
        if subscription.farm_id is not None:
            products = await self.catalog.find_available_products(
                None, prefs.excluded_items, farm_id=subscription.farm_id,
            )
        else:
            products = await self.catalog.find_available_products(
                product_categories(subscription.category), prefs.excluded_items,
            )
        # Catalog filters already; re-check exclusions so a lax catalog can't leak them
        products = [p for p in products if p.name not in prefs.excluded_items]
        return prioritize_preferred(products, prefs.preferred_farms)

    async def curate(self, subscription: Subscription) -> list[Product]:
        candidates = await self.candidates(subscription)
        target = BOX_TARGET_VALUE[subscription.box_size]
        selected = select_products(candidates, target, subscription.max_farms_per_box)
        logger.debug(
            "Curated box: subscription=%s candidates=%d selected=%d",
            subscription.id, len(candidates), len(selected),
        )
        return selected

    async def preview(self, subscription: Subscription) -> BoxPreview:
        products = await self.curate(subscription)
        return BoxPreview(
            subscription_id=subscription.id,
            category=subscription.category,
            farm_id=subscription.farm_id,
            box_size=subscription.box_size,
            next_delivery=subscription.next_delivery,
            target_value=BOX_TARGET_VALUE[subscription.box_size],
            value_range=BOX_VALUE_RANGE[subscription.box_size],
            actual_value=round(sum(float(p.price) for p in products), 2),
            products=products,
            farms_included=farms_in(products),
        )
