import copy
import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import FailingDispatcher, FixedClock
from ridersos.care import format_due_date
from ridersos.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ridersos.models import CareEventStatus, CareEventType, Horse
from ridersos.notifications import NotificationCenter, NotificationType
from ridersos.service import StableBilling

OWNER = "owner@stable.test"


@pytest.fixture
def horse(billing: StableBilling) -> Horse:
    billing.register_user(OWNER, first_name="Maya", last_name="Bar")
    return billing.add_horse(OWNER, "Comet")


def _farrier(billing: StableBilling, horse: Horse, **fields: object):
    values = dict(
        horse_id=horse.id,
        event_type="Farrier",
        event_date=date(2024, 6, 1),
        provider_name="Yossi",
        cost="180",
        is_recurring=True,
        recurrence_weeks=6,
    )
    values.update(fields)
    return billing.care.create_event(OWNER, **values)


def test_recurring_event_defaults_next_due_from_cadence(
    billing: StableBilling, horse: Horse, center: NotificationCenter
) -> None:
    event = _farrier(billing, horse)

    assert event.next_due_date == date(2024, 7, 13)
    assert event.status is CareEventStatus.SCHEDULED
    reminder = center.history(notification_type=NotificationType.CARE_REMINDER)[0]
    assert reminder.recipient == OWNER
    assert reminder.title == "Farrier due for Comet"
    assert reminder.parameters["owner_name"] == "Maya"
    assert reminder.parameters["due_date"] == "Saturday, July 13, 2024"


def test_completing_recurring_event_spawns_successor(
    billing: StableBilling, horse: Horse, center: NotificationCenter
) -> None:
    event = _farrier(billing, horse, reminder_email="barn@stable.test", reminder_weeks_before=1)

    completed, successor = billing.care.complete_event(event.id)

    assert completed.status is CareEventStatus.COMPLETED
    assert completed.completed_date == date(2024, 6, 3)
    assert successor is not None
    assert successor.event_date == date(2024, 7, 13)
    assert successor.next_due_date == date(2024, 7, 13) + timedelta(days=42)
    assert successor.parent_event_id == event.id
    assert successor.event_type is CareEventType.FARRIER
    assert successor.provider_name == "Yossi"
    assert successor.cost == Decimal("180.00")
    assert successor.recurrence_weeks == 6
    assert successor.reminder_weeks_before == 1
    assert successor.status is CareEventStatus.SCHEDULED
    assert [intent.recipient for intent in center.history()] == ["barn@stable.test", "barn@stable.test"]
    assert center.history()[-1].related_entity_id == successor.id


def test_non_recurring_completion_is_terminal(billing: StableBilling, horse: Horse) -> None:
    event = billing.care.create_event(
        OWNER,
        horse_id=horse.id,
        event_type="Veterinarian",
        event_date=date(2024, 6, 2),
        next_due_date=date(2024, 9, 1),
    )

    completed, successor = billing.care.complete_event(event.id, date(2024, 6, 2))

    assert successor is None
    assert completed.completed_date == date(2024, 6, 2)
    assert len(billing.care.events_for_horse(horse.id)) == 1


def test_second_completion_is_rejected(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse)
    billing.care.complete_event(event.id)

    with pytest.raises(ConflictError):
        billing.care.complete_event(event.id)

    assert len(billing.care.events_for_horse(horse.id)) == 2


def test_concurrent_completions_spawn_one_successor(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse)
    barrier = threading.Barrier(4)
    outcomes = []

    def worker() -> None:
        barrier.wait()
        try:
            billing.care.complete_event(event.id)
        except ConflictError:
            outcomes.append("conflict")
        else:
            outcomes.append("completed")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["completed", "conflict", "conflict", "conflict"]
    successors = [item for item in billing.care.events_for_horse(horse.id) if item.parent_event_id == event.id]
    assert len(successors) == 1


def test_create_requires_known_horse_and_owner(billing: StableBilling, horse: Horse) -> None:
    with pytest.raises(NotFoundError):
        billing.care.create_event(OWNER, horse_id="nope", event_type="Other", event_date=date(2024, 6, 1))
    with pytest.raises(AuthorizationError):
        billing.care.create_event(
            "intruder@stable.test", horse_id=horse.id, event_type="Other", event_date=date(2024, 6, 1)
        )


def test_recurring_event_needs_positive_cadence(billing: StableBilling, horse: Horse) -> None:
    with pytest.raises(ValidationError):
        _farrier(billing, horse, recurrence_weeks=None)
    with pytest.raises(ValidationError):
        _farrier(billing, horse, recurrence_weeks=0)
    with pytest.raises(ValidationError):
        _farrier(billing, horse, event_type="Massage")
    with pytest.raises(ValidationError):
        _farrier(billing, horse, cost="-4")


def test_event_without_due_date_sends_no_reminder(
    billing: StableBilling, horse: Horse, center: NotificationCenter
) -> None:
    billing.care.create_event(OWNER, horse_id=horse.id, event_type="Other", event_date=date(2024, 6, 1))
    assert center.history() == ()


def test_update_with_completed_status_rolls_over(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse)

    updated, successor = billing.care.update_event(
        OWNER, event.id, {"status": "completed", "completed_date": date(2024, 6, 2), "notes": "front shoes only"}
    )

    assert updated.completed_date == date(2024, 6, 2)
    assert updated.notes == "front shoes only"
    assert successor is not None
    assert successor.notes == "front shoes only"

    with pytest.raises(ConflictError):
        billing.care.update_event(OWNER, event.id, {"status": "scheduled"})
    with pytest.raises(ConflictError):
        billing.care.update_event(OWNER, event.id, {"status": "completed"})


def test_update_losing_a_completion_race_writes_nothing(
    billing: StableBilling, horse: Horse, monkeypatch
) -> None:
    event = _farrier(billing, horse)
    stale = billing.repository.get_event(event.id)
    billing.care.complete_event(event.id)
    monkeypatch.setattr(billing.repository, "get_event", lambda event_id: copy.deepcopy(stale))

    with pytest.raises(ConflictError):
        billing.care.update_event(OWNER, event.id, {"status": "completed", "notes": "x", "provider_name": "Avi"})

    stored = [item for item in billing.care.events_for_horse(horse.id) if item.id == event.id][0]
    assert stored.notes is None
    assert stored.provider_name == "Yossi"
    assert stored.status is CareEventStatus.COMPLETED
    assert len(billing.care.events_for_horse(horse.id)) == 2

def test_update_is_owner_only(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse)

    with pytest.raises(AuthorizationError):
        billing.care.update_event("intruder@stable.test", event.id, {"notes": "hi"})
    with pytest.raises(AuthorizationError):
        billing.care.complete_event(event.id, actor_email="intruder@stable.test")

    changed, successor = billing.care.update_event(OWNER, event.id, {"provider_name": "Avi"})
    assert successor is None
    assert billing.care.get_event(event.id).provider_name == "Avi"


def test_delete_event_is_owner_only(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse)

    with pytest.raises(AuthorizationError):
        billing.care.delete_event("intruder@stable.test", event.id)

    billing.care.delete_event(OWNER, event.id)

    assert billing.care.events_for_horse(horse.id) == ()
    assert billing.logger.tail(event="care_event_deleted")[-1]["event_id"] == event.id
    with pytest.raises(NotFoundError):
        billing.care.delete_event(OWNER, event.id)

def test_reminders_due_uses_lead_time(billing: StableBilling, horse: Horse) -> None:
    event = _farrier(billing, horse, reminder_weeks_before=2)

    assert billing.care.reminders_due(date(2024, 6, 29)) == (billing.care.get_event(event.id),)
    assert billing.care.reminders_due(date(2024, 6, 30)) == ()


def test_reminder_failure_does_not_block_creation(clock: FixedClock) -> None:
    billing = StableBilling(dispatcher=FailingDispatcher(), clock=clock)
    billing.register_user(OWNER)
    comet = billing.add_horse(OWNER, "Comet")

    event = _farrier(billing, comet)

    assert billing.care.get_event(event.id).next_due_date == date(2024, 7, 13)
    assert billing.logger.tail(event="notification_failed")


def test_format_due_date() -> None:
    assert format_due_date(date(2024, 7, 13)) == "Saturday, July 13, 2024"
