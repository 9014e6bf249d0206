"""Domain models used by the RidersOS billing and care core."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Type, TypeVar
from uuid import uuid4

from .exceptions import ValidationError
from .money import ZERO, to_decimal

_E = TypeVar("_E", bound=Enum)


def new_id() -> str:
    return str(uuid4())


def parse_choice(enum_cls: Type[_E], value: object) -> _E:
    """Return the ``enum_cls`` member matching ``value`` or raise :class:`ValidationError`."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(f"{value!r} is not a valid {enum_cls.__name__} (expected one of: {allowed}).") from exc


class ServiceType(str, Enum):
    """Session types and competition services a trainer can put a price on."""

    LESSON = "Lesson"
    TRAINING = "Training"
    HORSE_TRAINING = "Horse Training"
    HORSE_TRANSPORT = "Horse Transport"
    COMPETITION_PREP = "Competition Prep"
    EVALUATION = "Evaluation"
    OTHER = "Other"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    ILS = "ILS"


DEFAULT_CURRENCY = Currency.ILS


class PaymentStatus(str, Enum):
    """Lifecycle shared by competition rider entries and billing statements."""

    PENDING = "pending"
    REQUESTED = "requested"
    PAID = "paid"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CareEventType(str, Enum):
    FARRIER = "Farrier"
    VACCINATION = "Vaccination"
    VETERINARIAN = "Veterinarian"
    OTHER = "Other"


class CareEventStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


@dataclass(slots=True, frozen=True)
class BillingPeriod:
    """A calendar-month billing window identified by a ``YYYY-MM`` key."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError(f"Month must be between 1 and 12, got {self.month}.")

    @classmethod
    def from_key(cls, key: str) -> "BillingPeriod":
        try:
            year_text, month_text = key.strip().split("-")
            return cls(int(year_text), int(month_text))
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"Billing period must look like YYYY-MM, got {key!r}.") from exc

    @classmethod
    def containing(cls, day: date) -> "BillingPeriod":
        return cls(day.year, day.month)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"

    def previous(self) -> "BillingPeriod":
        if self.month == 1:
            return BillingPeriod(self.year - 1, 12)
        return BillingPeriod(self.year, self.month - 1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(slots=True)
class User:
    """The slice of a user record the billing core needs."""

    email: str
    first_name: str = ""
    last_name: str = ""
    birthday: Optional[date] = None
    parent_email: Optional[str] = None
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.first_name or self.email

    @property
    def is_trainer(self) -> bool:
        return "trainer" in self.roles


@dataclass(slots=True)
class Horse:
    id: str
    owner_email: str
    name: str


@dataclass(slots=True)
class RateEntry:
    """Price a trainer charges for one session type or competition service."""

    trainer_email: str
    service_type: ServiceType
    currency: Currency
    amount: Decimal
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)


@dataclass(slots=True)
class TrainingSession:
    trainer_email: str
    rider_email: str
    session_type: ServiceType
    session_date: date
    id: str = field(default_factory=new_id)
    duration: int = 60
    notes: str = ""
    verified: bool = False
    verified_at: Optional[datetime] = None
    status: SessionStatus = SessionStatus.SCHEDULED


@dataclass(slots=True)
class CompetitionRider:
    rider_email: str
    services: Tuple[ServiceType, ...] = ()
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID


@dataclass(slots=True)
class CompetitionEntry:
    trainer_email: str
    name: str
    competition_date: date
    location: str = ""
    riders: List[CompetitionRider] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    def rider(self, rider_email: str) -> Optional[CompetitionRider]:
        for entry in self.riders:
            if entry.rider_email == rider_email:
                return entry
        return None


@dataclass(slots=True)
class BillingStatement:
    """Monthly billing summary for one (trainer, rider, period)."""

    trainer_email: str
    rider_email: str
    period_key: str
    sessions_revenue: Decimal
    competitions_revenue: Decimal
    total_revenue: Decimal
    currency: Currency
    session_count: int = 0
    payment_requested: bool = False
    payment_status: PaymentStatus = PaymentStatus.PENDING
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.sessions_revenue = to_decimal(self.sessions_revenue)
        self.competitions_revenue = to_decimal(self.competitions_revenue)
        self.total_revenue = to_decimal(self.total_revenue)

    @property
    def unique_key(self) -> Tuple[str, str, str]:
        return (self.trainer_email, self.rider_email, self.period_key)


@dataclass(slots=True)
class CareEvent:
    """A scheduled or completed horse-care appointment."""

    horse_id: str
    event_type: CareEventType
    event_date: date
    next_due_date: Optional[date] = None
    provider_name: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    notes: Optional[str] = None
    is_recurring: bool = False
    recurrence_weeks: Optional[int] = None
    reminder_weeks_before: Optional[int] = None
    reminder_email: Optional[str] = None
    status: CareEventStatus = CareEventStatus.SCHEDULED
    completed_date: Optional[date] = None
    parent_event_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.cost is not None:
            self.cost = to_decimal(self.cost)

    @property
    def is_completed(self) -> bool:
        return self.status is CareEventStatus.COMPLETED


@dataclass(slots=True)
class RiderRevenue:
    """Revenue owed by a single rider over a billing window."""

    rider_email: str
    sessions_revenue: Decimal = ZERO
    competitions_revenue: Decimal = ZERO
    session_count: int = 0
    sessions_by_type: Dict[ServiceType, int] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return self.sessions_revenue + self.competitions_revenue


@dataclass(slots=True)
class RevenueReport:
    trainer_email: str
    start: date
    end: date
    currency: Currency
    per_rider: Dict[str, RiderRevenue] = field(default_factory=dict)

    @property
    def sessions_revenue(self) -> Decimal:
        return sum((entry.sessions_revenue for entry in self.per_rider.values()), ZERO)

    @property
    def competitions_revenue(self) -> Decimal:
        return sum((entry.competitions_revenue for entry in self.per_rider.values()), ZERO)

    @property
    def total(self) -> Decimal:
        return self.sessions_revenue + self.competitions_revenue

    @property
    def session_count(self) -> int:
        return sum(entry.session_count for entry in self.per_rider.values())

    def rider(self, rider_email: str) -> RiderRevenue:
        entry = self.per_rider.get(rider_email)
        if entry is None:
            entry = RiderRevenue(rider_email=rider_email)
            self.per_rider[rider_email] = entry
        return entry


@dataclass(slots=True)
class GenerationResult:
    """Outcome of one statement generation run for a trainer and period."""

    trainer_email: str
    period_key: str
    created: Tuple[BillingStatement, ...] = ()
    skipped_riders: Tuple[str, ...] = ()
    ran: bool = True


__all__ = [
    "BillingPeriod",
    "BillingStatement",
    "CareEvent",
    "CareEventStatus",
    "CareEventType",
    "CompetitionEntry",
    "CompetitionRider",
    "Currency",
    "DEFAULT_CURRENCY",
    "GenerationResult",
    "Horse",
    "PaymentStatus",
    "RateEntry",
    "RevenueReport",
    "RiderRevenue",
    "ServiceType",
    "SessionStatus",
    "TrainingSession",
    "User",
    "new_id",
    "parse_choice",
]
