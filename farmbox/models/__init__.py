from farmbox.models.catalog import Farm, Product
from farmbox.models.customer import CustomerContact
from farmbox.models.subscription import (
    Subscription, SubscriptionEvent, SubscriptionPause, SubscriptionSkip,
)
from farmbox.models.trial_box import TrialBox

__all__ = [
    "Farm", "Product",
    "CustomerContact",
    "Subscription", "SubscriptionPause", "SubscriptionSkip", "SubscriptionEvent",
    "TrialBox",
]
