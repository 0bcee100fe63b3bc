"""Subscribable categories and box list prices."""

from fastapi import APIRouter

from farmbox.schemas import CategoriesResponse
from farmbox.services.categories import BOX_PRICES, list_categories

router = APIRouter()


@router.get("/", response_model=CategoriesResponse)
async def get_categories():
    return {"categories": list_categories(), "box_prices": BOX_PRICES}
