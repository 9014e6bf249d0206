"""High level service wiring the billing and care components together."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from .care import CareEventScheduler
from .exceptions import ValidationError
from .guardian import GuardianResolver
from .jobs import BillingJob
from .models import GenerationResult, Horse, RevenueReport, User, new_id
from .notifications import NotificationCenter, NotificationDispatcher
from .ops import StructuredLogger
from .rates import RateCatalog
from .repository import InMemoryRepository, Repository
from .revenue import RevenueAggregator
from .sessions import SessionBook
from .statements import DEFAULT_BILLING_WINDOW_DAYS, StatementGenerator


class StableBilling:
    """Own the shared repository, dispatcher and logger and hand them to each component."""

    __slots__ = (
        "repository",
        "dispatcher",
        "logger",
        "rates",
        "revenue",
        "guardian",
        "statements",
        "care",
        "sessions",
        "job",
        "_clock",
    )

    def __init__(
        self,
        repository: Repository | None = None,
        *,
        dispatcher: NotificationDispatcher | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
        billing_window_days: int = DEFAULT_BILLING_WINDOW_DAYS,
    ) -> None:
        self.repository: Repository = repository if repository is not None else InMemoryRepository()
        self.dispatcher: NotificationDispatcher = dispatcher if dispatcher is not None else NotificationCenter()
        self.logger = logger or StructuredLogger()
        self._clock = clock
        self.rates = RateCatalog(self.repository, logger=self.logger, clock=clock)
        self.revenue = RevenueAggregator(self.repository, self.rates)
        self.guardian = GuardianResolver(self.repository, clock=clock)
        self.statements = StatementGenerator(
            self.repository,
            self.revenue,
            self.dispatcher,
            guardian=self.guardian,
            logger=self.logger,
            clock=clock,
            billing_window_days=billing_window_days,
        )
        self.care = CareEventScheduler(self.repository, self.dispatcher, logger=self.logger, clock=clock)
        self.sessions = SessionBook(self.repository, logger=self.logger, clock=clock)
        self.job = BillingJob(self.repository, self.statements, logger=self.logger, clock=clock)

    # ------------------------------------------------------------------
    # Collaborator records
    # ------------------------------------------------------------------
    def register_user(
        self,
        email: str,
        *,
        first_name: str = "",
        last_name: str = "",
        birthday: Optional[date] = None,
        parent_email: Optional[str] = None,
        roles: Iterable[str] = (),
    ) -> User:
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email address {email!r}.")
        if parent_email is not None and parent_email == email:
            raise ValidationError("A user cannot be their own guardian.")
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            birthday=birthday,
            parent_email=parent_email or None,
            roles=frozenset(role.strip().lower() for role in roles if role.strip()),
        )
        self.repository.save_user(user)
        self.logger.log("user_saved", email=email, roles=",".join(sorted(user.roles)))
        return user

    def add_horse(self, owner_email: str, name: str) -> Horse:
        if not name.strip():
            raise ValidationError("Horse name is required.")
        horse = Horse(id=new_id(), owner_email=owner_email, name=name.strip())
        self.repository.add_horse(horse)
        self.logger.log("horse_added", owner=owner_email, horse=horse.id)
        return horse

    # ------------------------------------------------------------------
    # Billing shortcuts
    # ------------------------------------------------------------------
    def revenue_between(self, trainer_email: str, start: date, end: date) -> RevenueReport:
        if end < start:
            raise ValidationError("Revenue range end must not be before its start.")
        return self.revenue.compute_range(trainer_email, start, end)

    def run_billing(self, now: datetime | None = None) -> List[GenerationResult]:
        return self.job.tick(now or self._clock())


__all__ = ["StableBilling"]
