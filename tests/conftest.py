"""Shared fixtures: a controllable clock and in-memory wiring."""

import uuid

import pytest

from farmbox.repositories.memory import (
    InMemoryCatalog, InMemorySubscriptionRepository, InMemoryTrialRepository,
)
from farmbox.services.lifecycle import SubscriptionLifecycle
from farmbox.services.notifications import RecordingNotifier
from farmbox.services.trials import TrialLifecycle
from tests.factories import FakeClock, make_farm, make_product


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def customer_id():
    return uuid.uuid4()


@pytest.fixture
def farm():
    return make_farm("Ferme du Moulin")


@pytest.fixture
def other_farm():
    return make_farm("Les Jardins de Marie", zones=("paris-11", "paris-12"))


@pytest.fixture
def closed_farm():
    return make_farm("Vergers Fermés", is_active=False)


@pytest.fixture
def catalog(farm, other_farm, closed_farm):
    return InMemoryCatalog(
        farms=[farm, other_farm, closed_farm],
        products=[
            make_product("Carottes", 12.0, farm, popularity=9.0),
            make_product("Poireaux", 15.0, farm, popularity=8.0),
            make_product("Pommes", 10.0, other_farm, category="fruits", popularity=7.0),
            make_product("Courgettes", 20.0, other_farm, popularity=6.0),
        ],
    )


@pytest.fixture
def subscription_repo():
    return InMemorySubscriptionRepository()


@pytest.fixture
def trial_repo():
    return InMemoryTrialRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(subscription_repo, catalog, notifier, clock):
    return SubscriptionLifecycle(subscription_repo, catalog, notifier, now=clock)


@pytest.fixture
def trials(trial_repo, catalog, lifecycle, notifier, clock):
    return TrialLifecycle(trial_repo, catalog, lifecycle, notifier, now=clock)


@pytest.fixture
def new_subscription(lifecycle, customer_id):
    """Factory for a weekly Friday vegetables box; keyword overrides win."""

    async def _create(**overrides):
        params = {
            "category": "vegetables",
            "box_size": "MEDIUM",
            "frequency": "WEEKLY",
            "delivery_day": 5,
            "delivery_address": "12 Rue des Lilas, 75011 Paris",
            "delivery_zone": "paris-11",
        }
        params.update(overrides)
        customer = params.pop("customer_id", customer_id)
        return await lifecycle.create(customer, **params)

    return _create
