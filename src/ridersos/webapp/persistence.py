"""Persistence and SQLModel definitions for the RidersOS web service."""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import UniqueConstraint, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, create_engine, desc, select

from ..exceptions import ConflictError, NotFoundError
from ..models import (
    BillingStatement,
    CareEvent,
    CareEventStatus,
    CareEventType,
    CompetitionEntry,
    CompetitionRider,
    Currency,
    Horse,
    PaymentStatus,
    RateEntry,
    ServiceType,
    SessionStatus,
    TrainingSession,
    User,
)
from ..money import to_decimal
from .config import DATABASE_URL


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class UserRecord(SQLModel, table=True):
    email: str = Field(primary_key=True)
    first_name: str = ""
    last_name: str = ""
    birthday: Optional[date] = None
    parent_email: Optional[str] = None
    roles: str = ""  # comma separated


class HorseRecord(SQLModel, table=True):
    id: str = Field(primary_key=True)
    owner_email: str = Field(index=True)
    name: str


class BillingRate(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("trainer_email", "session_type", name="uq_rate_trainer_type"),)

    id: str = Field(primary_key=True)
    trainer_email: str = Field(index=True)
    session_type: str
    currency: str = Currency.ILS.value
    rate_cents: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class TrainingSessionRecord(SQLModel, table=True):
    id: str = Field(primary_key=True)
    trainer_email: str = Field(index=True)
    rider_email: str = Field(index=True)
    session_type: str
    session_date: date
    duration: int = 60
    notes: str = ""
    rider_verified: bool = False
    rider_verified_date: Optional[datetime] = None
    status: str = SessionStatus.SCHEDULED.value  # scheduled|completed|cancelled


class CompetitionRecord(SQLModel, table=True):
    id: str = Field(primary_key=True)
    trainer_email: str = Field(index=True)
    name: str
    competition_date: date
    location: str = ""
    riders: str = "[]"  # JSON list of {rider_email, services, payment_status}


class MonthlyBillingSummary(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("trainer_email", "rider_email", "month", name="uq_summary_trainer_rider_month"),
    )

    id: str = Field(primary_key=True)
    trainer_email: str = Field(index=True)
    rider_email: str = Field(index=True)
    month: str  # YYYY-MM
    sessions_revenue_cents: int = 0
    competitions_revenue_cents: int = 0
    total_revenue_cents: int = 0
    currency: str = Currency.ILS.value
    session_count: int = 0
    payment_requested: bool = False
    payment_status: str = PaymentStatus.PENDING.value  # pending|requested|paid
    created_at: datetime = Field(default_factory=datetime.now)


class HorseEvent(SQLModel, table=True):
    id: str = Field(primary_key=True)
    horse_id: str = Field(index=True)
    event_type: str
    event_date: date
    next_due_date: Optional[date] = None
    provider_name: Optional[str] = None
    description: Optional[str] = None
    cost_cents: Optional[int] = None
    notes: Optional[str] = None
    is_recurring: bool = False
    recurrence_weeks: Optional[int] = None
    reminder_weeks_before: Optional[int] = None
    reminder_email: Optional[str] = None
    status: str = CareEventStatus.SCHEDULED.value  # scheduled|completed
    completed_date: Optional[date] = None
    parent_event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------
def make_engine(url: str = DATABASE_URL, **kwargs: object) -> Engine:
    if url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}) or {})  # type: ignore[call-overload]
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    return create_engine(url, echo=False, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def _cents(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).to_integral_value())


def _from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return to_decimal(Decimal(cents) / 100)


# ---------------------------------------------------------------------------
# Record <-> domain conversion
# ---------------------------------------------------------------------------
def _user(record: UserRecord) -> User:
    return User(
        email=record.email,
        first_name=record.first_name,
        last_name=record.last_name,
        birthday=record.birthday,
        parent_email=record.parent_email,
        roles=frozenset(role for role in record.roles.split(",") if role),
    )


def _rate(record: BillingRate) -> RateEntry:
    return RateEntry(
        id=record.id,
        trainer_email=record.trainer_email,
        service_type=ServiceType(record.session_type),
        currency=Currency(record.currency),
        amount=_from_cents(record.rate_cents),  # type: ignore[arg-type]
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _training_session(record: TrainingSessionRecord) -> TrainingSession:
    return TrainingSession(
        id=record.id,
        trainer_email=record.trainer_email,
        rider_email=record.rider_email,
        session_type=ServiceType(record.session_type),
        session_date=record.session_date,
        duration=record.duration,
        notes=record.notes,
        verified=record.rider_verified,
        verified_at=record.rider_verified_date,
        status=SessionStatus(record.status),
    )


def _session_values(session: TrainingSession) -> dict:
    return {
        "id": session.id,
        "trainer_email": session.trainer_email,
        "rider_email": session.rider_email,
        "session_type": session.session_type.value,
        "session_date": session.session_date,
        "duration": session.duration,
        "notes": session.notes,
        "rider_verified": session.verified,
        "rider_verified_date": session.verified_at,
        "status": session.status.value,
    }


def _competition(record: CompetitionRecord) -> CompetitionEntry:
    riders = [
        CompetitionRider(
            rider_email=item["rider_email"],
            services=tuple(ServiceType(service) for service in item.get("services", [])),
            payment_status=PaymentStatus(item.get("payment_status", PaymentStatus.PENDING.value)),
        )
        for item in json.loads(record.riders or "[]")
    ]
    return CompetitionEntry(
        id=record.id,
        trainer_email=record.trainer_email,
        name=record.name,
        competition_date=record.competition_date,
        location=record.location,
        riders=riders,
    )


def _competition_values(competition: CompetitionEntry) -> dict:
    riders = [
        {
            "rider_email": rider.rider_email,
            "services": [service.value for service in rider.services],
            "payment_status": rider.payment_status.value,
        }
        for rider in competition.riders
    ]
    return {
        "id": competition.id,
        "trainer_email": competition.trainer_email,
        "name": competition.name,
        "competition_date": competition.competition_date,
        "location": competition.location,
        "riders": json.dumps(riders),
    }


def _statement(record: MonthlyBillingSummary) -> BillingStatement:
    return BillingStatement(
        id=record.id,
        trainer_email=record.trainer_email,
        rider_email=record.rider_email,
        period_key=record.month,
        sessions_revenue=_from_cents(record.sessions_revenue_cents),  # type: ignore[arg-type]
        competitions_revenue=_from_cents(record.competitions_revenue_cents),  # type: ignore[arg-type]
        total_revenue=_from_cents(record.total_revenue_cents),  # type: ignore[arg-type]
        currency=Currency(record.currency),
        session_count=record.session_count,
        payment_requested=record.payment_requested,
        payment_status=PaymentStatus(record.payment_status),
        created_at=record.created_at,
    )


def _statement_values(statement: BillingStatement) -> dict:
    return {
        "id": statement.id,
        "trainer_email": statement.trainer_email,
        "rider_email": statement.rider_email,
        "month": statement.period_key,
        "sessions_revenue_cents": _cents(statement.sessions_revenue),
        "competitions_revenue_cents": _cents(statement.competitions_revenue),
        "total_revenue_cents": _cents(statement.total_revenue),
        "currency": statement.currency.value,
        "session_count": statement.session_count,
        "payment_requested": statement.payment_requested,
        "payment_status": statement.payment_status.value,
        "created_at": statement.created_at,
    }


def _event(record: HorseEvent) -> CareEvent:
    return CareEvent(
        id=record.id,
        horse_id=record.horse_id,
        event_type=CareEventType(record.event_type),
        event_date=record.event_date,
        next_due_date=record.next_due_date,
        provider_name=record.provider_name,
        description=record.description,
        cost=_from_cents(record.cost_cents),
        notes=record.notes,
        is_recurring=record.is_recurring,
        recurrence_weeks=record.recurrence_weeks,
        reminder_weeks_before=record.reminder_weeks_before,
        reminder_email=record.reminder_email,
        status=CareEventStatus(record.status),
        completed_date=record.completed_date,
        parent_event_id=record.parent_event_id,
        created_at=record.created_at,
    )


def _event_values(event: CareEvent) -> dict:
    return {
        "id": event.id,
        "horse_id": event.horse_id,
        "event_type": event.event_type.value,
        "event_date": event.event_date,
        "next_due_date": event.next_due_date,
        "provider_name": event.provider_name,
        "description": event.description,
        "cost_cents": _cents(event.cost) if event.cost is not None else None,
        "notes": event.notes,
        "is_recurring": event.is_recurring,
        "recurrence_weeks": event.recurrence_weeks,
        "reminder_weeks_before": event.reminder_weeks_before,
        "reminder_email": event.reminder_email,
        "status": event.status.value,
        "completed_date": event.completed_date,
        "parent_event_id": event.parent_event_id,
        "created_at": event.created_at,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------
class SqlRepository:
    """Repository backed by SQLModel tables.

    Uniqueness of rates and statements is enforced by table constraints, and
    event completion is a conditional UPDATE so only one caller can win it.
    """

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self._engine = engine
        if create_tables:
            create_db_and_tables(engine)

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    def _commit(self, session: Session, conflict_message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(conflict_message) from exc

    # users & horses ---------------------------------------------------
    def save_user(self, user: User) -> User:
        with self._session() as session:
            record = session.get(UserRecord, user.email) or UserRecord(email=user.email)
            record.first_name = user.first_name
            record.last_name = user.last_name
            record.birthday = user.birthday
            record.parent_email = user.parent_email
            record.roles = ",".join(sorted(user.roles))
            session.add(record)
            session.commit()
        return user

    def get_user(self, email: str) -> Optional[User]:
        with self._session() as session:
            record = session.get(UserRecord, email)
            return _user(record) if record else None

    def trainers(self) -> Sequence[User]:
        with self._session() as session:
            records = session.exec(select(UserRecord).where(UserRecord.roles.contains("trainer"))).all()
        return tuple(user for user in (_user(record) for record in records) if user.is_trainer)

    def add_horse(self, horse: Horse) -> Horse:
        with self._session() as session:
            session.add(HorseRecord(id=horse.id, owner_email=horse.owner_email, name=horse.name))
            self._commit(session, f"Horse '{horse.id}' already exists.")
        return horse

    def get_horse(self, horse_id: str) -> Optional[Horse]:
        with self._session() as session:
            record = session.get(HorseRecord, horse_id)
            return Horse(id=record.id, owner_email=record.owner_email, name=record.name) if record else None

    # rates ------------------------------------------------------------
    def _rate_record(self, session: Session, trainer_email: str, service_type: ServiceType) -> Optional[BillingRate]:
        query = select(BillingRate).where(
            BillingRate.trainer_email == trainer_email,
            BillingRate.session_type == service_type.value,
        )
        return session.exec(query).first()

    def save_rate(self, rate: RateEntry) -> RateEntry:
        with self._session() as session:
            record = self._rate_record(session, rate.trainer_email, rate.service_type)
            if record is None:
                record = BillingRate(
                    id=rate.id,
                    trainer_email=rate.trainer_email,
                    session_type=rate.service_type.value,
                    created_at=rate.created_at,
                )
            record.currency = rate.currency.value
            record.rate_cents = _cents(rate.amount)
            record.updated_at = rate.updated_at
            session.add(record)
            self._commit(session, f"Rate for {rate.service_type.value} was written concurrently; retry.")
        return rate

    def get_rate(self, trainer_email: str, service_type: ServiceType) -> Optional[RateEntry]:
        with self._session() as session:
            record = self._rate_record(session, trainer_email, service_type)
            return _rate(record) if record else None

    def list_rates(self, trainer_email: str) -> Sequence[RateEntry]:
        with self._session() as session:
            query = select(BillingRate).where(BillingRate.trainer_email == trainer_email).order_by(BillingRate.created_at)
            return tuple(_rate(record) for record in session.exec(query).all())

    def delete_rate(self, trainer_email: str, service_type: ServiceType) -> bool:
        with self._session() as session:
            record = self._rate_record(session, trainer_email, service_type)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    # sessions & competitions -----------------------------------------
    def add_session(self, session_entry: TrainingSession) -> TrainingSession:
        with self._session() as session:
            session.add(TrainingSessionRecord(**_session_values(session_entry)))
            self._commit(session, f"Session '{session_entry.id}' already exists.")
        return session_entry

    def get_session(self, session_id: str) -> Optional[TrainingSession]:
        with self._session() as session:
            record = session.get(TrainingSessionRecord, session_id)
            return _training_session(record) if record else None

    def save_session(self, session_entry: TrainingSession) -> TrainingSession:
        with self._session() as session:
            record = session.get(TrainingSessionRecord, session_entry.id)
            if record is None:
                raise NotFoundError(f"Session '{session_entry.id}' does not exist.")
            for key, value in _session_values(session_entry).items():
                setattr(record, key, value)
            session.add(record)
            session.commit()
        return session_entry

    def sessions_between(self, trainer_email: str, start: date, end: date) -> Sequence[TrainingSession]:
        with self._session() as session:
            query = select(TrainingSessionRecord).where(
                TrainingSessionRecord.trainer_email == trainer_email,
                TrainingSessionRecord.session_date >= start,
                TrainingSessionRecord.session_date <= end,
            )
            return tuple(_training_session(record) for record in session.exec(query).all())

    def add_competition(self, competition: CompetitionEntry) -> CompetitionEntry:
        with self._session() as session:
            session.add(CompetitionRecord(**_competition_values(competition)))
            self._commit(session, f"Competition '{competition.id}' already exists.")
        return competition

    def get_competition(self, competition_id: str) -> Optional[CompetitionEntry]:
        with self._session() as session:
            record = session.get(CompetitionRecord, competition_id)
            return _competition(record) if record else None

    def save_competition(self, competition: CompetitionEntry) -> CompetitionEntry:
        with self._session() as session:
            record = session.get(CompetitionRecord, competition.id)
            if record is None:
                raise NotFoundError(f"Competition '{competition.id}' does not exist.")
            for key, value in _competition_values(competition).items():
                setattr(record, key, value)
            session.add(record)
            session.commit()
        return competition

    def competitions_between(self, trainer_email: str, start: date, end: date) -> Sequence[CompetitionEntry]:
        with self._session() as session:
            query = select(CompetitionRecord).where(
                CompetitionRecord.trainer_email == trainer_email,
                CompetitionRecord.competition_date >= start,
                CompetitionRecord.competition_date <= end,
            )
            return tuple(_competition(record) for record in session.exec(query).all())

    # statements -------------------------------------------------------
    def insert_statement(self, statement: BillingStatement) -> BillingStatement:
        with self._session() as session:
            session.add(MonthlyBillingSummary(**_statement_values(statement)))
            self._commit(
                session,
                f"Statement for {statement.rider_email} in {statement.period_key} already exists "
                f"for {statement.trainer_email}.",
            )
        return statement

    def get_statement(self, statement_id: str) -> Optional[BillingStatement]:
        with self._session() as session:
            record = session.get(MonthlyBillingSummary, statement_id)
            return _statement(record) if record else None

    def save_statement(self, statement: BillingStatement) -> BillingStatement:
        with self._session() as session:
            record = session.get(MonthlyBillingSummary, statement.id)
            if record is None:
                raise NotFoundError(f"Statement '{statement.id}' does not exist.")
            for key, value in _statement_values(statement).items():
                setattr(record, key, value)
            session.add(record)
            self._commit(session, "Statement update collides with an existing statement.")
        return statement

    def find_statements(
        self,
        *,
        trainer_email: Optional[str] = None,
        rider_email: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> Sequence[BillingStatement]:
        query = select(MonthlyBillingSummary)
        if trainer_email is not None:
            query = query.where(MonthlyBillingSummary.trainer_email == trainer_email)
        if rider_email is not None:
            query = query.where(MonthlyBillingSummary.rider_email == rider_email)
        if period_key is not None:
            query = query.where(MonthlyBillingSummary.month == period_key)
        query = query.order_by(desc(MonthlyBillingSummary.month), desc(MonthlyBillingSummary.created_at))
        with self._session() as session:
            return tuple(_statement(record) for record in session.exec(query).all())

    # care events ------------------------------------------------------
    def add_event(self, event: CareEvent) -> CareEvent:
        with self._session() as session:
            session.add(HorseEvent(**_event_values(event)))
            self._commit(session, f"Care event '{event.id}' already exists.")
        return event

    def get_event(self, event_id: str) -> Optional[CareEvent]:
        with self._session() as session:
            record = session.get(HorseEvent, event_id)
            return _event(record) if record else None

    def save_event(self, event: CareEvent) -> CareEvent:
        with self._session() as session:
            record = session.get(HorseEvent, event.id)
            if record is None:
                raise NotFoundError(f"Care event '{event.id}' does not exist.")
            values = _event_values(event)
            # status only moves through complete_event
            values.pop("status")
            values.pop("completed_date")
            for key, value in values.items():
                setattr(record, key, value)
            session.add(record)
            session.commit()
        return event

    def events_for_horse(self, horse_id: str) -> Sequence[CareEvent]:
        with self._session() as session:
            query = select(HorseEvent).where(HorseEvent.horse_id == horse_id).order_by(desc(HorseEvent.event_date))
            return tuple(_event(record) for record in session.exec(query).all())

    def scheduled_events(self) -> Sequence[CareEvent]:
        with self._session() as session:
            query = select(HorseEvent).where(HorseEvent.status == CareEventStatus.SCHEDULED.value)
            return tuple(_event(record) for record in session.exec(query).all())

    def complete_event(self, event_id: str, completed_on: date) -> Optional[CareEvent]:
        statement = (
            update(HorseEvent)
            .where(HorseEvent.id == event_id, HorseEvent.status == CareEventStatus.SCHEDULED.value)
            .values(status=CareEventStatus.COMPLETED.value, completed_date=completed_on)
        )
        with self._session() as session:
            updated = session.connection().execute(statement).rowcount
            session.commit()
            if updated == 0:
                if session.get(HorseEvent, event_id) is None:
                    raise NotFoundError(f"Care event '{event_id}' does not exist.")
                return None
            record = session.get(HorseEvent, event_id, populate_existing=True)
            return _event(record) if record else None

    def delete_event(self, event_id: str) -> bool:
        with self._session() as session:
            record = session.get(HorseEvent, event_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True


__all__: List[str] = [
    "BillingRate",
    "CompetitionRecord",
    "HorseEvent",
    "HorseRecord",
    "MonthlyBillingSummary",
    "SqlRepository",
    "TrainingSessionRecord",
    "UserRecord",
    "create_db_and_tables",
    "make_engine",
]
