"""Minor detection and guardian redirection for billing and care notifications."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional, TYPE_CHECKING

from .models import User

if TYPE_CHECKING:  # pragma: no cover
    from .repository import Repository

ADULT_AGE = 18


def age_on(birthday: date, today: date) -> int:
    """Return completed years between ``birthday`` and ``today``."""

    before_birthday = (today.month, today.day) < (birthday.month, birthday.day)
    return today.year - birthday.year - (1 if before_birthday else 0)


def is_minor(birthday: Optional[date], now: date | datetime) -> bool:
    """True when ``birthday`` puts the person under :data:`ADULT_AGE` on ``now``.

    A missing birthday is treated as an adult. That is a permissive default,
    not a verified adult status.
    """

    if birthday is None:
        return False
    today = now.date() if isinstance(now, datetime) else now
    return age_on(birthday, today) < ADULT_AGE


def resolve_notification_target(user: User, now: date | datetime) -> str:
    if user.parent_email and is_minor(user.birthday, now):
        return user.parent_email
    return user.email


class GuardianResolver:
    """Look up rider records and pick who receives their notifications."""

    def __init__(self, repository: "Repository", *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._repository = repository
        self._clock = clock

    def target_for(self, email: str) -> str:
        user = self._repository.get_user(email)
        if user is None:
            return email
        return resolve_notification_target(user, self._clock())


__all__ = ["ADULT_AGE", "GuardianResolver", "age_on", "is_minor", "resolve_notification_target"]
