"""
SQL repository tests against a throwaway SQLite file (aiosqlite).

Row locking (SELECT … FOR UPDATE) is a no-op on SQLite; these tests cover the
mapping, the unique indexes and commit/rollback behaviour.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from farmbox import models
from farmbox.db.database import Base
from farmbox.domain import EventType, Preferences, SubscriptionStatus, TrialStatus
from farmbox.errors import ConflictError, NotFoundError, QuotaExceededError
from farmbox.repositories.sql import (
    SqlCatalog, SqlContactDirectory, SqlSubscriptionRepository, SqlTrialRepository,
)
from farmbox.services.lifecycle import SubscriptionLifecycle
from farmbox.services.notifications import RecordingNotifier
from farmbox.services.quota_reset import QuotaResetScheduler
from farmbox.services.trials import TrialLifecycle
from tests.factories import NOW, FakeClock

FARM_ID = uuid.uuid4()
OTHER_FARM_ID = uuid.uuid4()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'farmbox.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as session:
        async with session.begin():
            session.add_all([
                models.Farm(id=FARM_ID, name="Ferme du Moulin", slug="ferme-du-moulin",
                            delivery_zones=["paris-11"], created_at=NOW - timedelta(days=30)),
                models.Farm(id=OTHER_FARM_ID, name="Les Jardins", slug="les-jardins",
                            delivery_zones=["paris-12"], created_at=NOW - timedelta(days=20)),
            ])
            await session.flush()
            session.add_all([
                models.Product(farm_id=FARM_ID, name="Carottes", category="vegetables",
                               price=12, popularity_score=9.0, created_at=NOW),
                models.Product(farm_id=FARM_ID, name="Poireaux", category="vegetables",
                               price=15, popularity_score=8.0, created_at=NOW),
                models.Product(farm_id=OTHER_FARM_ID, name="Courgettes", category="vegetables",
                               price=20, popularity_score=8.0, created_at=NOW - timedelta(days=2)),
                models.Product(farm_id=OTHER_FARM_ID, name="Pommes", category="fruits",
                               price=10, popularity_score=7.0, created_at=NOW),
                models.Product(farm_id=OTHER_FARM_ID, name="Cerises", category="fruits",
                               price=18, popularity_score=9.5, is_available=False, created_at=NOW),
            ])

    yield factory
    await engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sql_lifecycle(session_factory, clock):
    return SubscriptionLifecycle(
        SqlSubscriptionRepository(session_factory),
        SqlCatalog(session_factory),
        RecordingNotifier(),
        now=clock,
    )


async def _create(lifecycle, customer_id, **overrides):
    params = {
        "category": "vegetables",
        "box_size": "MEDIUM",
        "frequency": "WEEKLY",
        "delivery_day": 5,
        "delivery_address": "12 Rue des Lilas, 75011 Paris",
        "delivery_zone": "paris-11",
        "preferences": Preferences(excluded_items={"Navets"}, preferred_farms=[OTHER_FARM_ID]),
    }
    params.update(overrides)
    return await lifecycle.create(customer_id, **params)


@pytest.mark.asyncio
async def test_subscription_round_trips_through_database(sql_lifecycle):
    customer_id = uuid.uuid4()
    created = await _create(sql_lifecycle, customer_id)

    details = await sql_lifecycle.get(customer_id, created.id)
    sub = details.subscription
    assert sub.next_delivery == date(2026, 3, 6)
    assert sub.preferences.excluded_items == {"Navets"}
    assert sub.preferences.preferred_farms == [OTHER_FARM_ID]
    assert [e.type for e in sub.history] == [EventType.CREATED]


@pytest.mark.asyncio
async def test_lifecycle_against_database(sql_lifecycle, clock):
    customer_id = uuid.uuid4()
    sub = await _create(sql_lifecycle, customer_id)

    await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 13))
    await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 20))
    with pytest.raises(QuotaExceededError):
        await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 27))
    await sql_lifecycle.unskip(customer_id, sub.id, date(2026, 3, 20))

    await sql_lifecycle.pause(customer_id, sub.id, weeks=2)
    clock.advance(days=3)
    resumed = await sql_lifecycle.resume(customer_id, sub.id)
    assert resumed.next_delivery == date(2026, 3, 13)

    details = await sql_lifecycle.get(customer_id, sub.id)
    assert details.subscription.status == SubscriptionStatus.ACTIVE
    assert details.subscription.skips_this_month == 1
    assert details.subscription.pauses_used_this_year == 1
    assert [s.skip_date for s in details.skips] == [date(2026, 3, 13)]
    assert details.pauses[0].end_date == clock()
    assert [e.type for e in details.subscription.history] == [
        EventType.CREATED,
        EventType.SKIPPED,
        EventType.SKIPPED,
        EventType.UNSKIPPED,
        EventType.PAUSED,
        EventType.RESUMED,
    ]


@pytest.mark.asyncio
async def test_early_resume_never_ends_pause_before_it_starts(sql_lifecycle):
    customer_id = uuid.uuid4()
    sub = await _create(sql_lifecycle, customer_id)
    await sql_lifecycle.pause(customer_id, sub.id, start=datetime(2026, 3, 10), end=datetime(2026, 3, 20))

    await sql_lifecycle.resume(customer_id, sub.id)
    pause = (await sql_lifecycle.get(customer_id, sub.id)).pauses[0]
    assert pause.start_date == datetime(2026, 3, 10)
    assert pause.end_date == pause.start_date


@pytest.mark.asyncio
async def test_failed_transition_rolls_back(sql_lifecycle):
    customer_id = uuid.uuid4()
    sub = await _create(sql_lifecycle, customer_id)
    await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 13))
    with pytest.raises(ConflictError):
        await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 13))

    details = await sql_lifecycle.get(customer_id, sub.id)
    assert details.subscription.skips_this_month == 1
    assert len(details.subscription.history) == 2


@pytest.mark.asyncio
async def test_unique_index_blocks_second_active_subscription(session_factory, sql_lifecycle):
    customer_id = uuid.uuid4()
    first = await _create(sql_lifecycle, customer_id)

    repo = SqlSubscriptionRepository(session_factory)
    duplicate = await repo.get(first.id)
    duplicate.id = uuid.uuid4()
    duplicate.history = []
    with pytest.raises(ConflictError):
        await repo.add(duplicate)

    # Cancelled rows do not count
    await sql_lifecycle.cancel(customer_id, first.id)
    await repo.add(duplicate)


@pytest.mark.asyncio
async def test_transaction_on_missing_subscription(session_factory):
    repo = SqlSubscriptionRepository(session_factory)
    with pytest.raises(NotFoundError):
        async with repo.transaction(uuid.uuid4()):
            pass


@pytest.mark.asyncio
async def test_quota_reset_against_database(session_factory, sql_lifecycle):
    customer_id = uuid.uuid4()
    sub = await _create(sql_lifecycle, customer_id)
    await sql_lifecycle.skip(customer_id, sub.id, date(2026, 3, 13))
    await sql_lifecycle.pause(customer_id, sub.id, weeks=1)

    scheduler = QuotaResetScheduler(SqlSubscriptionRepository(session_factory))
    assert await scheduler.reset_all_monthly_skips() == 0  # the only subscription is paused
    assert await scheduler.reset_all_yearly_pauses() == 1

    stored = (await sql_lifecycle.get(customer_id, sub.id)).subscription
    assert stored.skips_this_month == 1
    assert stored.pauses_used_this_year == 0


@pytest.mark.asyncio
async def test_catalog_ordering_and_filters(session_factory):
    catalog = SqlCatalog(session_factory)
    products = await catalog.find_available_products(["vegetables", "fruits"], ["Poireaux"])
    # Popularity desc, newest first on ties; unavailable and excluded items dropped
    assert [p.name for p in products] == ["Carottes", "Courgettes", "Pommes"]
    assert products[0].farm_name == "Ferme du Moulin"
    assert (await catalog.find_product_by_id(products[0].id)).name == "Carottes"
    assert await catalog.find_product_by_id(uuid.uuid4()) is None

    farm_only = await catalog.find_available_products(None, [], farm_id=FARM_ID)
    assert {p.name for p in farm_only} == {"Carottes", "Poireaux"}

    farms = await catalog.list_active_farms(zone="paris-12")
    assert [f.id for f in farms] == [OTHER_FARM_ID]
    assert await catalog.list_active_farms(exclude=[FARM_ID, OTHER_FARM_ID]) == []


@pytest.mark.asyncio
async def test_box_preview_against_database(sql_lifecycle):
    customer_id = uuid.uuid4()
    sub = await _create(sql_lifecycle, customer_id)
    preview = await sql_lifecycle.preview_box(customer_id, sub.id)
    # The preferred farm's Courgettes move to the front
    assert [p.name for p in preview.products] == ["Courgettes", "Carottes", "Poireaux"]
    assert preview.actual_value == 47.0


@pytest.mark.asyncio
async def test_trial_conversion_against_database(session_factory, sql_lifecycle, clock):
    trial_repo = SqlTrialRepository(session_factory)
    trials = TrialLifecycle(trial_repo, SqlCatalog(session_factory), sql_lifecycle, now=clock)
    customer_id = uuid.uuid4()

    trial = await trials.create(customer_id, FARM_ID, "SMALL")
    with pytest.raises(ConflictError):
        await trials.create(customer_id, FARM_ID, "LARGE")

    await trials.attach_order(trial.id, uuid.uuid4())
    await trials.mark_delivered(trial.id)
    sub = await trials.convert_to_subscription(
        customer_id, trial.id,
        frequency="WEEKLY", delivery_day=2,
        delivery_address="12 Rue des Lilas", delivery_zone="paris-11",
    )

    stored = await trial_repo.get(trial.id)
    assert stored.status == TrialStatus.CONVERTED
    assert stored.subscription_id == sub.id
    assert (await sql_lifecycle.get(customer_id, sub.id)).subscription.trial_converted is True


@pytest.mark.asyncio
async def test_trial_lazy_expiry_persists(session_factory, sql_lifecycle, clock):
    trial_repo = SqlTrialRepository(session_factory)
    trials = TrialLifecycle(trial_repo, SqlCatalog(session_factory), sql_lifecycle, now=clock)
    customer_id = uuid.uuid4()
    trial = await trials.create(customer_id, OTHER_FARM_ID, "SMALL")

    clock.current = datetime(2026, 3, 20, 9, 0)
    assert (await trials.get(customer_id, trial.id)).status == TrialStatus.EXPIRED
    assert (await trial_repo.get(trial.id)).status == TrialStatus.EXPIRED


@pytest.mark.asyncio
async def test_contact_directory_reads_telegram_chat(session_factory):
    customer_id = uuid.uuid4()
    async with session_factory() as session:
        async with session.begin():
            session.add(models.CustomerContact(customer_id=customer_id, telegram_chat_id=987654321))

    contacts = SqlContactDirectory(session_factory)
    assert await contacts.telegram_chat_id(customer_id) == 987654321
    assert await contacts.telegram_chat_id(uuid.uuid4()) is None
