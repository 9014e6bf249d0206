"""Monthly billing statement generation and maintenance."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Hashable, Iterator, List, Mapping, Optional, Sequence

from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .guardian import GuardianResolver
from .models import (
    BillingPeriod,
    BillingStatement,
    Currency,
    GenerationResult,
    PaymentStatus,
    parse_choice,
)
from .money import ZERO, format_amount, to_decimal
from .notifications import NotificationDispatcher, NotificationIntent, NotificationType, dispatch_safely
from .ops import StructuredLogger
from .repository import Repository
from .revenue import RevenueAggregator

DEFAULT_BILLING_WINDOW_DAYS = 5

_DECIMAL_FIELDS = ("sessions_revenue", "competitions_revenue", "total_revenue")


class KeyedLocks:
    """Hand out one lock per key so unrelated keys never wait on each other.

    Entries are reference counted and dropped once the last holder leaves.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def _amount(name: str, value: object) -> Decimal:
    try:
        amount = to_decimal(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}.") from exc
    if amount < ZERO:
        raise ValidationError(f"{name} cannot be negative.")
    return amount


def _count(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"session_count must be a non-negative integer, got {value!r}.")
    return value


class StatementGenerator:
    """Turn a trainer's revenue for a period into per-rider statements.

    Generation holds a lock per (trainer, period) and relies on the
    repository rejecting a second statement for the same (trainer, rider,
    period). A rider that already has a statement is skipped, so re-running
    after a partial failure bills only the riders that were missed.
    """

    def __init__(
        self,
        repository: Repository,
        aggregator: RevenueAggregator,
        dispatcher: NotificationDispatcher,
        *,
        guardian: GuardianResolver | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
        billing_window_days: int = DEFAULT_BILLING_WINDOW_DAYS,
    ) -> None:
        self._repository = repository
        self._aggregator = aggregator
        self._dispatcher = dispatcher
        self._guardian = guardian or GuardianResolver(repository, clock=clock)
        self._logger = logger or StructuredLogger()
        self._clock = clock
        self._window_days = billing_window_days
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Periodic generation
    # ------------------------------------------------------------------
    def in_billing_window(self, moment: datetime) -> bool:
        return moment.day <= self._window_days

    def generate_previous_period(self, trainer_email: str, *, now: datetime | None = None) -> GenerationResult:
        moment = now or self._clock()
        period = BillingPeriod.containing(moment.date()).previous()
        if not self.in_billing_window(moment):
            return GenerationResult(trainer_email=trainer_email, period_key=period.key, ran=False)
        return self.generate(trainer_email, period)

    def generate(self, trainer_email: str, period: BillingPeriod) -> GenerationResult:
        with self._locks.hold((trainer_email, period.key)):
            report = self._aggregator.compute_revenue(trainer_email, period)
            trainer_name = self._display_name(trainer_email, fallback=trainer_email)
            created: List[BillingStatement] = []
            skipped: List[str] = []

            for rider_email in sorted(report.per_rider):
                revenue = report.per_rider[rider_email]
                if revenue.total <= ZERO:
                    continue
                statement = BillingStatement(
                    trainer_email=trainer_email,
                    rider_email=rider_email,
                    period_key=period.key,
                    sessions_revenue=revenue.sessions_revenue,
                    competitions_revenue=revenue.competitions_revenue,
                    total_revenue=revenue.total,
                    currency=report.currency,
                    session_count=revenue.session_count,
                    payment_requested=True,
                    payment_status=PaymentStatus.PENDING,
                    created_at=self._clock(),
                )
                try:
                    self._repository.insert_statement(statement)
                except ConflictError:
                    skipped.append(rider_email)
                    self._logger.log("statement_exists", trainer=trainer_email, rider=rider_email, period=period.key)
                    continue
                created.append(statement)
                self._logger.log(
                    "statement_created",
                    trainer=trainer_email,
                    rider=rider_email,
                    period=period.key,
                    total=str(statement.total_revenue),
                    currency=statement.currency.value,
                )
                self._request_payment(statement, trainer_name)

        self._logger.log(
            "statements_generated",
            trainer=trainer_email,
            period=period.key,
            created=len(created),
            skipped=len(skipped),
        )
        return GenerationResult(
            trainer_email=trainer_email,
            period_key=period.key,
            created=tuple(created),
            skipped_riders=tuple(skipped),
        )

    # ------------------------------------------------------------------
    # Manual statements
    # ------------------------------------------------------------------
    def create_statement(
        self,
        trainer_email: str,
        *,
        rider_email: str,
        period_key: str,
        sessions_revenue: object,
        competitions_revenue: object,
        total_revenue: object,
        currency: Currency | str = Currency.ILS,
        session_count: int = 0,
        payment_requested: bool = False,
        payment_status: PaymentStatus | str = PaymentStatus.PENDING,
    ) -> BillingStatement:
        statement = BillingStatement(
            trainer_email=trainer_email,
            rider_email=rider_email,
            period_key=BillingPeriod.from_key(period_key).key,
            sessions_revenue=_amount("sessions_revenue", sessions_revenue),
            competitions_revenue=_amount("competitions_revenue", competitions_revenue),
            total_revenue=_amount("total_revenue", total_revenue),
            currency=parse_choice(Currency, currency),
            session_count=_count(session_count),
            payment_requested=bool(payment_requested),
            payment_status=parse_choice(PaymentStatus, payment_status),
            created_at=self._clock(),
        )
        self._repository.insert_statement(statement)
        self._logger.log("statement_created", trainer=trainer_email, rider=rider_email, period=statement.period_key)
        if statement.payment_requested:
            self._request_payment(statement, self._display_name(trainer_email, fallback="Your trainer"))
        return statement

    def update_statement(self, actor_email: str, statement_id: str, changes: Mapping[str, object]) -> BillingStatement:
        statement = self.get_statement(statement_id)
        if statement.trainer_email != actor_email:
            raise AuthorizationError("Only the trainer who issued a statement can change it.")
        for name in _DECIMAL_FIELDS:
            if changes.get(name) is not None:
                setattr(statement, name, _amount(name, changes[name]))
        if changes.get("session_count") is not None:
            statement.session_count = _count(changes["session_count"])
        if changes.get("payment_requested") is not None:
            statement.payment_requested = bool(changes["payment_requested"])
        if changes.get("payment_status") is not None:
            statement.payment_status = parse_choice(PaymentStatus, changes["payment_status"])
        self._repository.save_statement(statement)
        self._logger.log(
            "statement_updated",
            trainer=actor_email,
            statement=statement_id,
            fields=",".join(sorted(name for name, value in changes.items() if value is not None)),
        )
        return statement

    def mark_paid(self, actor_email: str, statement_id: str) -> BillingStatement:
        return self.update_statement(actor_email, statement_id, {"payment_status": PaymentStatus.PAID})

    def get_statement(self, statement_id: str) -> BillingStatement:
        statement = self._repository.get_statement(statement_id)
        if statement is None:
            raise NotFoundError(f"Statement '{statement_id}' does not exist.")
        return statement

    def statements(
        self,
        *,
        trainer_email: Optional[str] = None,
        rider_email: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> Sequence[BillingStatement]:
        return self._repository.find_statements(
            trainer_email=trainer_email,
            rider_email=rider_email,
            period_key=period_key,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _display_name(self, email: str, *, fallback: str) -> str:
        user = self._repository.get_user(email)
        if user is None:
            return fallback
        return user.display_name

    def _request_payment(self, statement: BillingStatement, trainer_name: str) -> None:
        rider = self._repository.get_user(statement.rider_email)
        period = BillingPeriod.from_key(statement.period_key)
        amount = f"{statement.total_revenue:.2f}"
        intent = NotificationIntent(
            recipient=self._guardian.target_for(statement.rider_email),
            type=NotificationType.PAYMENT_REQUEST,
            title=f"Payment Request from {trainer_name}",
            message=f"{statement.period_key} total: {format_amount(statement.currency.value, statement.total_revenue)}",
            parameters={
                "rider_name": (rider.first_name or rider.display_name) if rider else "Rider",
                "trainer_name": trainer_name,
                "amount": amount,
                "currency": statement.currency.value,
                "month": period.label,
                "session_count": str(statement.session_count),
            },
            related_entity_type="MonthlyBillingSummary",
            related_entity_id=statement.id,
            link="/RiderProfile",
            created_at=self._clock(),
        )
        dispatch_safely(self._dispatcher, intent, self._logger)


__all__ = ["DEFAULT_BILLING_WINDOW_DAYS", "KeyedLocks", "StatementGenerator"]
