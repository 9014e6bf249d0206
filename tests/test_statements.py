import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import FailingDispatcher, FixedClock, add_people
from ridersos.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ridersos.models import BillingPeriod, BillingStatement, PaymentStatus
from ridersos.notifications import NotificationCenter, NotificationType
from ridersos.ops import StructuredLogger
from ridersos.repository import InMemoryRepository
from ridersos.service import StableBilling
from ridersos.statements import KeyedLocks

TRAINER = "trainer@stable.test"
RIDER = "rider@stable.test"
MAY = BillingPeriod(2024, 5)


def _bill_lessons(billing: StableBilling, rider: str = RIDER, count: int = 3) -> None:
    billing.rates.upsert(TRAINER, "Lesson", "ILS", 100)
    for day in range(1, count + 1):
        session = billing.sessions.schedule_session(
            TRAINER, rider_email=rider, session_type="Lesson", session_date=date(2024, 5, day)
        )
        billing.sessions.verify_session(rider, session.id)


def test_generation_creates_one_statement_per_billable_rider(
    billing: StableBilling, center: NotificationCenter
) -> None:
    add_people(billing)
    _bill_lessons(billing)

    result = billing.statements.generate(TRAINER, MAY)

    assert result.period_key == "2024-05"
    assert len(result.created) == 1
    statement = result.created[0]
    assert statement.rider_email == RIDER
    assert statement.total_revenue == Decimal("300.00")
    assert statement.session_count == 3
    assert statement.payment_requested is True
    assert statement.payment_status is PaymentStatus.PENDING

    intents = center.history(notification_type=NotificationType.PAYMENT_REQUEST)
    assert len(intents) == 1
    assert intents[0].recipient == RIDER
    assert intents[0].title == "Payment Request from Dana Levi"
    assert intents[0].message == "2024-05 total: ILS 300.00"
    assert intents[0].parameters["month"] == "May 2024"
    assert intents[0].related_entity_id == statement.id


def test_generation_is_idempotent(billing: StableBilling, center: NotificationCenter) -> None:
    add_people(billing)
    _bill_lessons(billing)

    billing.statements.generate(TRAINER, MAY)
    again = billing.statements.generate(TRAINER, MAY)

    assert again.created == ()
    assert again.skipped_riders == (RIDER,)
    assert len(billing.statements.statements(trainer_email=TRAINER, period_key="2024-05")) == 1
    assert len(center.history()) == 1


def test_keyed_locks_drop_released_keys() -> None:
    locks = KeyedLocks()
    start = threading.Barrier(4)
    seen = []

    def worker(month: int) -> None:
        start.wait()
        with locks.hold((TRAINER, f"2024-0{month}")):
            with locks.hold((RIDER, "2024-05")):
                seen.append(month)

    threads = [threading.Thread(target=worker, args=(month,)) for month in range(1, 5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(seen) == [1, 2, 3, 4]
    assert len(locks) == 0


def test_generation_leaves_no_lock_behind(billing: StableBilling) -> None:
    add_people(billing)
    _bill_lessons(billing)

    for month in (3, 4, 5):
        billing.statements.generate(TRAINER, BillingPeriod(2024, month))

    assert len(billing.statements._locks) == 0

def test_riders_with_nothing_owed_get_no_statement(billing: StableBilling) -> None:
    add_people(billing)
    billing.rates.upsert(TRAINER, "Lesson", "ILS", 100)
    billing.sessions.schedule_session(TRAINER, rider_email=RIDER, session_type="Lesson", session_date=date(2024, 5, 2))

    result = billing.statements.generate(TRAINER, MAY)

    assert result.created == ()
    assert billing.statements.statements(trainer_email=TRAINER) == ()


def test_minor_rider_payment_request_goes_to_parent(billing: StableBilling, center: NotificationCenter) -> None:
    add_people(billing, rider_birthday=date(2011, 3, 14))
    _bill_lessons(billing)

    billing.statements.generate(TRAINER, MAY)

    assert [intent.recipient for intent in center.history()] == ["parent@home.test"]


class FlakyRepository(InMemoryRepository):
    def __init__(self, fail_for: str) -> None:
        super().__init__()
        self.fail_for = fail_for

    def insert_statement(self, statement: BillingStatement) -> BillingStatement:
        if statement.rider_email == self.fail_for:
            self.fail_for = ""
            raise RuntimeError("database went away")
        return super().insert_statement(statement)


def test_rerun_after_partial_failure_bills_only_missing_riders(clock: FixedClock) -> None:
    center = NotificationCenter()
    billing = StableBilling(FlakyRepository("b@stable.test"), dispatcher=center, clock=clock)
    _bill_lessons(billing, rider="a@stable.test", count=1)
    _bill_lessons(billing, rider="b@stable.test", count=2)

    with pytest.raises(RuntimeError):
        billing.statements.generate(TRAINER, MAY)
    assert [s.rider_email for s in billing.statements.statements(trainer_email=TRAINER)] == ["a@stable.test"]

    retry = billing.statements.generate(TRAINER, MAY)

    assert [s.rider_email for s in retry.created] == ["b@stable.test"]
    assert retry.skipped_riders == ("a@stable.test",)
    assert len(center.history()) == 2


def test_previous_period_only_runs_inside_billing_window(billing: StableBilling) -> None:
    add_people(billing)
    _bill_lessons(billing)

    outside = billing.statements.generate_previous_period(TRAINER, now=datetime(2024, 6, 6, 8, 0))
    assert outside.ran is False
    assert outside.created == ()

    inside = billing.statements.generate_previous_period(TRAINER, now=datetime(2024, 6, 5, 23, 0))
    assert inside.ran is True
    assert inside.period_key == "2024-05"
    assert len(inside.created) == 1


def test_january_bills_previous_december(billing: StableBilling) -> None:
    result = billing.statements.generate_previous_period(TRAINER, now=datetime(2025, 1, 2))
    assert result.period_key == "2024-12"


def test_notification_failure_does_not_undo_statement(clock: FixedClock) -> None:
    dispatcher = FailingDispatcher()
    logger = StructuredLogger()
    billing = StableBilling(dispatcher=dispatcher, logger=logger, clock=clock)
    add_people(billing)
    _bill_lessons(billing)

    result = billing.statements.generate(TRAINER, MAY)

    assert len(result.created) == 1
    assert len(dispatcher.attempts) == 1
    assert billing.statements.get_statement(result.created[0].id).total_revenue == Decimal("300.00")
    failures = logger.tail(event="notification_failed")
    assert failures and failures[-1]["level"] == "warning"


def test_manual_statement_notifies_only_when_requested(billing: StableBilling, center: NotificationCenter) -> None:
    add_people(billing, rider_birthday=date(2012, 1, 1))

    quiet = billing.statements.create_statement(
        TRAINER,
        rider_email=RIDER,
        period_key="2024-04",
        sessions_revenue=200,
        competitions_revenue=0,
        total_revenue=200,
    )
    assert quiet.payment_requested is False
    assert center.history() == ()

    billing.statements.create_statement(
        TRAINER,
        rider_email=RIDER,
        period_key="2024-03",
        sessions_revenue="150",
        competitions_revenue="50",
        total_revenue="200",
        currency="USD",
        session_count=2,
        payment_requested=True,
    )
    assert [intent.recipient for intent in center.history()] == ["parent@home.test"]
    assert center.history()[0].message == "2024-03 total: USD 200.00"


def test_manual_statement_rejects_duplicates_and_bad_input(billing: StableBilling) -> None:
    fields = dict(rider_email=RIDER, period_key="2024-04", sessions_revenue=1, competitions_revenue=0, total_revenue=1)
    billing.statements.create_statement(TRAINER, **fields)

    with pytest.raises(ConflictError):
        billing.statements.create_statement(TRAINER, **fields)
    with pytest.raises(ValidationError):
        billing.statements.create_statement(TRAINER, **{**fields, "period_key": "April"})
    with pytest.raises(ValidationError):
        billing.statements.create_statement(TRAINER, **{**fields, "period_key": "2024-02", "total_revenue": -5})


def test_only_issuing_trainer_can_update(billing: StableBilling) -> None:
    add_people(billing)
    _bill_lessons(billing)
    statement = billing.statements.generate(TRAINER, MAY).created[0]

    with pytest.raises(AuthorizationError):
        billing.statements.update_statement(RIDER, statement.id, {"payment_status": "paid"})
    with pytest.raises(NotFoundError):
        billing.statements.update_statement(TRAINER, "missing", {"payment_status": "paid"})

    paid = billing.statements.mark_paid(TRAINER, statement.id)
    assert paid.payment_status is PaymentStatus.PAID

    adjusted = billing.statements.update_statement(TRAINER, statement.id, {"total_revenue": "250", "session_count": 2})
    assert adjusted.total_revenue == Decimal("250.00")
    assert billing.statements.get_statement(statement.id).session_count == 2


def test_statements_list_newest_period_first(billing: StableBilling) -> None:
    for key in ("2024-02", "2024-04", "2024-03"):
        billing.statements.create_statement(
            TRAINER, rider_email=RIDER, period_key=key, sessions_revenue=1, competitions_revenue=0, total_revenue=1
        )

    keys = [statement.period_key for statement in billing.statements.statements(rider_email=RIDER)]
    assert keys == ["2024-04", "2024-03", "2024-02"]
