"""
Subscription categories: what a customer can subscribe to without picking a farm.

"mixed" is not a product category of its own; curation expands it into the
product categories listed in ``CATEGORY_EXPANSION``.
"""

from farmbox.domain import BoxSize
from farmbox.errors import ValidationError


# ── Constants ──────────────────────────────────────────────

ALL_SIZES = (BoxSize.SMALL, BoxSize.MEDIUM, BoxSize.LARGE, BoxSize.FAMILY)

SUBSCRIPTION_CATEGORIES = {
    "vegetables": {
        "name": "Légumes",
        "description": "Fresh seasonal vegetables from local farms",
        "box_sizes": ALL_SIZES,
    },
    "fruits": {
        "name": "Fruits",
        "description": "Fresh seasonal fruits from local orchards",
        "box_sizes": ALL_SIZES,
    },
    "herbs": {
        "name": "Herbes aromatiques",
        "description": "Fresh herbs and aromatics",
        "box_sizes": (BoxSize.SMALL, BoxSize.MEDIUM),
    },
    "mixed": {
        "name": "Box Mixte",
        "description": "A mix of vegetables, fruits, and herbs",
        "box_sizes": ALL_SIZES,
    },
}

# Subscription category -> product categories it draws from
CATEGORY_EXPANSION: dict[str, tuple[str, ...]] = {
    "mixed": ("vegetables", "fruits", "herbs"),
}

# List price per box
BOX_PRICES = {
    BoxSize.SMALL: 29.0,
    BoxSize.MEDIUM: 45.0,
    BoxSize.LARGE: 69.0,
    BoxSize.FAMILY: 99.0,
}


def product_categories(category: str) -> tuple[str, ...]:
    """Product categories a subscription category draws from."""
    return CATEGORY_EXPANSION.get(category, (category,))


def validate_category(category: str, box_size: BoxSize | None = None) -> None:
    """Reject unknown categories and box sizes the category does not offer."""
    entry = SUBSCRIPTION_CATEGORIES.get(category)
    if entry is None:
        raise ValidationError(f"Unknown category: {category}")
    if box_size is not None and box_size not in entry["box_sizes"]:
        raise ValidationError(f"Box size {box_size.value} is not offered for {category}")


def list_categories() -> list[dict]:
    return [
        {
            "id": key,
            "name": entry["name"],
            "description": entry["description"],
            "box_sizes": [s.value for s in entry["box_sizes"]],
        }
        for key, entry in SUBSCRIPTION_CATEGORIES.items()
    ]
