from datetime import date
from decimal import Decimal

import pytest

pytest.importorskip("sqlmodel")
from sqlalchemy.pool import StaticPool

from conftest import FixedClock, add_people
from ridersos.exceptions import ConflictError, NotFoundError
from ridersos.models import BillingPeriod, BillingStatement, CareEvent, CareEventType, Currency, Horse, PaymentStatus
from ridersos.notifications import NotificationCenter
from ridersos.service import StableBilling
from ridersos.webapp.persistence import SqlRepository, make_engine

TRAINER = "trainer@stable.test"
RIDER = "rider@stable.test"


@pytest.fixture
def repository() -> SqlRepository:
    return SqlRepository(make_engine("sqlite://", poolclass=StaticPool))


@pytest.fixture
def sql_billing(repository: SqlRepository, clock: FixedClock, center: NotificationCenter) -> StableBilling:
    return StableBilling(repository, dispatcher=center, clock=clock)


def _statement(**fields: object) -> BillingStatement:
    values = dict(
        trainer_email=TRAINER,
        rider_email=RIDER,
        period_key="2024-05",
        sessions_revenue=Decimal("300"),
        competitions_revenue=Decimal("0"),
        total_revenue=Decimal("300"),
        currency=Currency.ILS,
    )
    values.update(fields)
    return BillingStatement(**values)  # type: ignore[arg-type]


def test_unique_constraint_rejects_duplicate_statement(repository: SqlRepository) -> None:
    repository.insert_statement(_statement())

    with pytest.raises(ConflictError):
        repository.insert_statement(_statement())

    repository.insert_statement(_statement(period_key="2024-06"))
    assert [item.period_key for item in repository.find_statements(rider_email=RIDER)] == ["2024-06", "2024-05"]


def test_statement_money_survives_storage(repository: SqlRepository) -> None:
    stored = repository.insert_statement(
        _statement(sessions_revenue=Decimal("120.55"), competitions_revenue=Decimal("0.45"), total_revenue=Decimal("121"))
    )
    loaded = repository.get_statement(stored.id)

    assert loaded.sessions_revenue == Decimal("120.55")
    assert loaded.competitions_revenue == Decimal("0.45")
    assert loaded.total_revenue == Decimal("121.00")
    assert loaded.payment_status is PaymentStatus.PENDING


def test_rate_upsert_keeps_one_row_per_service(sql_billing: StableBilling) -> None:
    sql_billing.rates.upsert(TRAINER, "Lesson", "ILS", 100)
    sql_billing.rates.upsert(TRAINER, "Lesson", "USD", "75.25")

    rates = sql_billing.rates.rates_for(TRAINER)
    assert len(rates) == 1
    assert rates[0].currency is Currency.USD
    assert rates[0].amount == Decimal("75.25")
    assert sql_billing.repository.delete_rate(TRAINER, rates[0].service_type) is True
    assert sql_billing.rates.rates_for(TRAINER) == ()


def test_generation_against_sql_is_idempotent(sql_billing: StableBilling, center: NotificationCenter) -> None:
    add_people(sql_billing, rider_birthday=date(2010, 1, 1))
    sql_billing.rates.upsert(TRAINER, "Lesson", "ILS", 100)
    for day in (6, 13, 20):
        session = sql_billing.sessions.schedule_session(
            TRAINER, rider_email=RIDER, session_type="Lesson", session_date=date(2024, 5, day)
        )
        sql_billing.sessions.verify_session(RIDER, session.id)

    first = sql_billing.statements.generate(TRAINER, BillingPeriod(2024, 5))
    second = sql_billing.statements.generate(TRAINER, BillingPeriod(2024, 5))

    assert first.created[0].total_revenue == Decimal("300.00")
    assert first.created[0].session_count == 3
    assert second.skipped_riders == (RIDER,)
    assert [intent.recipient for intent in center.history()] == ["parent@home.test"]
    assert [user.email for user in sql_billing.repository.trainers()] == [TRAINER]


def test_competition_riders_round_trip(sql_billing: StableBilling) -> None:
    competition = sql_billing.sessions.record_competition(
        TRAINER,
        name="Winter Classic",
        competition_date=date(2024, 5, 18),
        riders=[{"rider_email": RIDER, "services": ["Horse Transport", "Competition Prep"], "payment_status": "paid"}],
    )

    loaded = sql_billing.repository.get_competition(competition.id)
    assert loaded.rider(RIDER).is_paid
    assert [service.value for service in loaded.rider(RIDER).services] == ["Horse Transport", "Competition Prep"]
    assert sql_billing.repository.competitions_between(TRAINER, date(2024, 5, 1), date(2024, 5, 31))[0].id == competition.id


def test_conditional_completion_has_one_winner(repository: SqlRepository) -> None:
    repository.add_horse(Horse(id="h1", owner_email="owner@stable.test", name="Comet"))
    event = repository.add_event(
        CareEvent(horse_id="h1", event_type=CareEventType.VACCINATION, event_date=date(2024, 6, 1), cost=Decimal("75"))
    )

    completed = repository.complete_event(event.id, date(2024, 6, 2))
    assert completed is not None
    assert completed.completed_date == date(2024, 6, 2)
    assert completed.cost == Decimal("75.00")
    assert repository.complete_event(event.id, date(2024, 6, 3)) is None
    assert repository.scheduled_events() == ()

    with pytest.raises(NotFoundError):
        repository.complete_event("missing", date(2024, 6, 3))


def test_saving_stale_event_keeps_completion(repository: SqlRepository) -> None:
    repository.add_horse(Horse(id="h1", owner_email="owner@stable.test", name="Comet"))
    stale = repository.add_event(CareEvent(horse_id="h1", event_type=CareEventType.FARRIER, event_date=date(2024, 6, 1)))
    repository.complete_event(stale.id, date(2024, 6, 2))

    stale.notes = "late edit"
    repository.save_event(stale)

    loaded = repository.get_event(stale.id)
    assert loaded.is_completed
    assert loaded.notes == "late edit"


def test_delete_event_removes_the_row(repository: SqlRepository) -> None:
    repository.add_horse(Horse(id="h1", owner_email="owner@stable.test", name="Comet"))
    event = repository.add_event(CareEvent(horse_id="h1", event_type=CareEventType.OTHER, event_date=date(2024, 6, 1)))

    assert repository.delete_event(event.id) is True
    assert repository.get_event(event.id) is None
    assert repository.delete_event(event.id) is False


def test_sql_rollover_through_scheduler(sql_billing: StableBilling) -> None:
    sql_billing.register_user("owner@stable.test", first_name="Maya")
    horse = sql_billing.add_horse("owner@stable.test", "Comet")
    event = sql_billing.care.create_event(
        "owner@stable.test",
        horse_id=horse.id,
        event_type="Farrier",
        event_date=date(2024, 6, 1),
        is_recurring=True,
        recurrence_weeks=6,
    )

    _, successor = sql_billing.care.complete_event(event.id)
    with pytest.raises(ConflictError):
        sql_billing.care.complete_event(event.id)

    assert successor.event_date == date(2024, 7, 13)
    assert successor.next_due_date == date(2024, 8, 24)
    events = sql_billing.care.events_for_horse(horse.id)
    assert [item.id for item in events] == [successor.id, event.id]
