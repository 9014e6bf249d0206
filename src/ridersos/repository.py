"""Storage contract for the billing core and its in-memory implementation."""

from __future__ import annotations

import copy
import threading
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .exceptions import ConflictError, NotFoundError
from .models import (
    BillingStatement,
    CareEvent,
    CareEventStatus,
    CompetitionEntry,
    Horse,
    RateEntry,
    ServiceType,
    TrainingSession,
    User,
)


class Repository(Protocol):
    """Persistence operations the billing and care services rely on.

    Implementations must reject a second statement for the same
    (trainer, rider, period) with :class:`ConflictError` and must make
    :meth:`complete_event` a single guarded state transition.
    """

    # users & horses
    def save_user(self, user: User) -> User: ...

    def get_user(self, email: str) -> Optional[User]: ...

    def trainers(self) -> Sequence[User]: ...

    def add_horse(self, horse: Horse) -> Horse: ...

    def get_horse(self, horse_id: str) -> Optional[Horse]: ...

    # rates
    def save_rate(self, rate: RateEntry) -> RateEntry: ...

    def get_rate(self, trainer_email: str, service_type: ServiceType) -> Optional[RateEntry]: ...

    def list_rates(self, trainer_email: str) -> Sequence[RateEntry]: ...

    def delete_rate(self, trainer_email: str, service_type: ServiceType) -> bool: ...

    # sessions & competitions
    def add_session(self, session: TrainingSession) -> TrainingSession: ...

    def get_session(self, session_id: str) -> Optional[TrainingSession]: ...

    def save_session(self, session: TrainingSession) -> TrainingSession: ...

    def sessions_between(self, trainer_email: str, start: date, end: date) -> Sequence[TrainingSession]: ...

    def add_competition(self, competition: CompetitionEntry) -> CompetitionEntry: ...

    def get_competition(self, competition_id: str) -> Optional[CompetitionEntry]: ...

    def save_competition(self, competition: CompetitionEntry) -> CompetitionEntry: ...

    def competitions_between(self, trainer_email: str, start: date, end: date) -> Sequence[CompetitionEntry]: ...

    # statements
    def insert_statement(self, statement: BillingStatement) -> BillingStatement: ...

    def get_statement(self, statement_id: str) -> Optional[BillingStatement]: ...

    def save_statement(self, statement: BillingStatement) -> BillingStatement: ...

    def find_statements(
        self,
        *,
        trainer_email: Optional[str] = None,
        rider_email: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> Sequence[BillingStatement]: ...

    # care events
    def add_event(self, event: CareEvent) -> CareEvent: ...

    def get_event(self, event_id: str) -> Optional[CareEvent]: ...

    def save_event(self, event: CareEvent) -> CareEvent: ...

    def events_for_horse(self, horse_id: str) -> Sequence[CareEvent]: ...

    def scheduled_events(self) -> Sequence[CareEvent]: ...

    def delete_event(self, event_id: str) -> bool: ...

    def complete_event(self, event_id: str, completed_on: date) -> Optional[CareEvent]:
        """Flip ``scheduled`` to ``completed``; ``None`` when already completed."""
        ...


class InMemoryRepository:
    """Thread-safe dictionary backed repository used by tests and local runs."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._horses: Dict[str, Horse] = {}
        self._rates: Dict[Tuple[str, ServiceType], RateEntry] = {}
        self._sessions: Dict[str, TrainingSession] = {}
        self._competitions: Dict[str, CompetitionEntry] = {}
        self._statements: Dict[str, BillingStatement] = {}
        self._statement_keys: Dict[Tuple[str, str, str], str] = {}
        self._events: Dict[str, CareEvent] = {}

    # ------------------------------------------------------------------
    # Users & horses
    # ------------------------------------------------------------------
    def save_user(self, user: User) -> User:
        with self._lock:
            self._users[user.email] = copy.deepcopy(user)
        return user

    def get_user(self, email: str) -> Optional[User]:
        with self._lock:
            return copy.deepcopy(self._users.get(email))

    def trainers(self) -> Sequence[User]:
        with self._lock:
            return tuple(copy.deepcopy(user) for user in self._users.values() if user.is_trainer)

    def add_horse(self, horse: Horse) -> Horse:
        with self._lock:
            self._horses[horse.id] = copy.deepcopy(horse)
        return horse

    def get_horse(self, horse_id: str) -> Optional[Horse]:
        with self._lock:
            return copy.deepcopy(self._horses.get(horse_id))

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------
    def save_rate(self, rate: RateEntry) -> RateEntry:
        with self._lock:
            self._rates[(rate.trainer_email, rate.service_type)] = copy.deepcopy(rate)
        return rate

    def get_rate(self, trainer_email: str, service_type: ServiceType) -> Optional[RateEntry]:
        with self._lock:
            return copy.deepcopy(self._rates.get((trainer_email, service_type)))

    def list_rates(self, trainer_email: str) -> Sequence[RateEntry]:
        with self._lock:
            rates = [rate for (trainer, _), rate in self._rates.items() if trainer == trainer_email]
            rates.sort(key=lambda rate: rate.created_at)
            return tuple(copy.deepcopy(rate) for rate in rates)

    def delete_rate(self, trainer_email: str, service_type: ServiceType) -> bool:
        with self._lock:
            return self._rates.pop((trainer_email, service_type), None) is not None

    # ------------------------------------------------------------------
    # Sessions & competitions
    # ------------------------------------------------------------------
    def add_session(self, session: TrainingSession) -> TrainingSession:
        with self._lock:
            if session.id in self._sessions:
                raise ConflictError(f"Session '{session.id}' already exists.")
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    def get_session(self, session_id: str) -> Optional[TrainingSession]:
        with self._lock:
            return copy.deepcopy(self._sessions.get(session_id))

    def save_session(self, session: TrainingSession) -> TrainingSession:
        with self._lock:
            if session.id not in self._sessions:
                raise NotFoundError(f"Session '{session.id}' does not exist.")
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    def sessions_between(self, trainer_email: str, start: date, end: date) -> Sequence[TrainingSession]:
        with self._lock:
            return tuple(
                copy.deepcopy(session)
                for session in self._sessions.values()
                if session.trainer_email == trainer_email and start <= session.session_date <= end
            )

    def add_competition(self, competition: CompetitionEntry) -> CompetitionEntry:
        with self._lock:
            self._competitions[competition.id] = copy.deepcopy(competition)
        return competition

    def get_competition(self, competition_id: str) -> Optional[CompetitionEntry]:
        with self._lock:
            return copy.deepcopy(self._competitions.get(competition_id))

    def save_competition(self, competition: CompetitionEntry) -> CompetitionEntry:
        with self._lock:
            if competition.id not in self._competitions:
                raise NotFoundError(f"Competition '{competition.id}' does not exist.")
            self._competitions[competition.id] = copy.deepcopy(competition)
        return competition

    def competitions_between(self, trainer_email: str, start: date, end: date) -> Sequence[CompetitionEntry]:
        with self._lock:
            return tuple(
                copy.deepcopy(competition)
                for competition in self._competitions.values()
                if competition.trainer_email == trainer_email and start <= competition.competition_date <= end
            )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------
    def insert_statement(self, statement: BillingStatement) -> BillingStatement:
        with self._lock:
            if statement.unique_key in self._statement_keys:
                trainer, rider, period = statement.unique_key
                raise ConflictError(f"Statement for {rider} in {period} already exists for {trainer}.")
            self._statement_keys[statement.unique_key] = statement.id
            self._statements[statement.id] = copy.deepcopy(statement)
        return statement

    def get_statement(self, statement_id: str) -> Optional[BillingStatement]:
        with self._lock:
            return copy.deepcopy(self._statements.get(statement_id))

    def save_statement(self, statement: BillingStatement) -> BillingStatement:
        with self._lock:
            if statement.id not in self._statements:
                raise NotFoundError(f"Statement '{statement.id}' does not exist.")
            self._statements[statement.id] = copy.deepcopy(statement)
        return statement

    def find_statements(
        self,
        *,
        trainer_email: Optional[str] = None,
        rider_email: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> Sequence[BillingStatement]:
        with self._lock:
            records: List[BillingStatement] = list(self._statements.values())
        if trainer_email is not None:
            records = [entry for entry in records if entry.trainer_email == trainer_email]
        if rider_email is not None:
            records = [entry for entry in records if entry.rider_email == rider_email]
        if period_key is not None:
            records = [entry for entry in records if entry.period_key == period_key]
        records.sort(key=lambda entry: (entry.period_key, entry.created_at), reverse=True)
        return tuple(copy.deepcopy(entry) for entry in records)

    # ------------------------------------------------------------------
    # Care events
    # ------------------------------------------------------------------
    def add_event(self, event: CareEvent) -> CareEvent:
        with self._lock:
            self._events[event.id] = copy.deepcopy(event)
        return event

    def get_event(self, event_id: str) -> Optional[CareEvent]:
        with self._lock:
            return copy.deepcopy(self._events.get(event_id))

    def save_event(self, event: CareEvent) -> CareEvent:
        with self._lock:
            current = self._events.get(event.id)
            if current is None:
                raise NotFoundError(f"Care event '{event.id}' does not exist.")
            stored = copy.deepcopy(event)
            # status only moves through complete_event
            stored.status = current.status
            stored.completed_date = current.completed_date
            self._events[event.id] = stored
        return event

    def events_for_horse(self, horse_id: str) -> Sequence[CareEvent]:
        with self._lock:
            events = [copy.deepcopy(event) for event in self._events.values() if event.horse_id == horse_id]
        events.sort(key=lambda event: event.event_date, reverse=True)
        return tuple(events)

    def scheduled_events(self) -> Sequence[CareEvent]:
        with self._lock:
            return tuple(
                copy.deepcopy(event)
                for event in self._events.values()
                if event.status is CareEventStatus.SCHEDULED
            )

    def complete_event(self, event_id: str, completed_on: date) -> Optional[CareEvent]:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise NotFoundError(f"Care event '{event_id}' does not exist.")
            if event.status is not CareEventStatus.SCHEDULED:
                return None
            event.status = CareEventStatus.COMPLETED
            event.completed_date = completed_on
            return copy.deepcopy(event)

    def delete_event(self, event_id: str) -> bool:
        with self._lock:
            return self._events.pop(event_id, None) is not None


__all__ = ["InMemoryRepository", "Repository"]
