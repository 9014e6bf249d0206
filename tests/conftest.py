from datetime import date, datetime
from typing import List, Optional

import pytest

from ridersos.models import User
from ridersos.notifications import DeliveryResult, NotificationCenter, NotificationIntent
from ridersos.ops import StructuredLogger
from ridersos.service import StableBilling


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


class FailingDispatcher:
    """Dispatcher whose transport is down."""

    def __init__(self) -> None:
        self.attempts: List[NotificationIntent] = []

    def send(self, intent: NotificationIntent) -> DeliveryResult:
        self.attempts.append(intent)
        raise ConnectionError("smtp unreachable")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 3, 9, 0))


@pytest.fixture
def center() -> NotificationCenter:
    return NotificationCenter()


@pytest.fixture
def billing(clock: FixedClock, center: NotificationCenter) -> StableBilling:
    return StableBilling(dispatcher=center, logger=StructuredLogger(), clock=clock)


def add_people(billing: StableBilling, *, rider_birthday: Optional[date] = date(1990, 1, 1)) -> None:
    billing.register_user("trainer@stable.test", first_name="Dana", last_name="Levi", roles=["trainer"])
    billing.register_user("parent@home.test", first_name="Ruth", last_name="Cohen")
    billing.register_user(
        "rider@stable.test",
        first_name="Noa",
        last_name="Cohen",
        birthday=rider_birthday,
        parent_email="parent@home.test",
    )


def user(email: str, **fields: object) -> User:
    return User(email=email, **fields)  # type: ignore[arg-type]
