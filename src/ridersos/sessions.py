"""Training sessions and competition entries that feed the revenue aggregator."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterable, Mapping

from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import (
    CompetitionEntry,
    CompetitionRider,
    PaymentStatus,
    ServiceType,
    SessionStatus,
    TrainingSession,
    parse_choice,
)
from .ops import StructuredLogger
from .repository import Repository


class SessionBook:
    """Schedule, verify and cancel sessions; record competitions and their payments."""

    def __init__(
        self,
        repository: Repository,
        *,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._logger = logger or StructuredLogger()
        self._clock = clock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def schedule_session(
        self,
        trainer_email: str,
        *,
        rider_email: str,
        session_type: ServiceType | str,
        session_date: date,
        duration: int = 60,
        notes: str = "",
    ) -> TrainingSession:
        if duration <= 0:
            raise ValidationError("Session duration must be positive.")
        session = TrainingSession(
            trainer_email=trainer_email,
            rider_email=rider_email,
            session_type=parse_choice(ServiceType, session_type),
            session_date=session_date,
            duration=duration,
            notes=notes,
        )
        self._repository.add_session(session)
        self._logger.log("session_scheduled", trainer=trainer_email, rider=rider_email, session=session.id)
        return session

    def get_session(self, session_id: str) -> TrainingSession:
        session = self._repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session '{session_id}' does not exist.")
        return session

    def verify_session(self, actor_email: str, session_id: str) -> TrainingSession:
        """Rider confirms the session took place; verification is one-way."""

        session = self.get_session(session_id)
        if session.rider_email != actor_email:
            raise AuthorizationError("Only the rider can verify a session.")
        if session.status is SessionStatus.CANCELLED:
            raise ConflictError("Cancelled sessions cannot be verified.")
        if session.verified:
            return session
        session.verified = True
        session.verified_at = self._clock()
        session.status = SessionStatus.COMPLETED
        self._repository.save_session(session)
        self._logger.log("session_verified", rider=actor_email, session=session_id)
        return session

    def cancel_session(self, actor_email: str, session_id: str) -> TrainingSession:
        session = self.get_session(session_id)
        if session.trainer_email != actor_email:
            raise AuthorizationError("Only the trainer can cancel a session.")
        if session.verified:
            raise ConflictError("Verified sessions cannot be cancelled.")
        session.status = SessionStatus.CANCELLED
        self._repository.save_session(session)
        self._logger.log("session_cancelled", trainer=actor_email, session=session_id)
        return session

    # ------------------------------------------------------------------
    # Competitions
    # ------------------------------------------------------------------
    def record_competition(
        self,
        trainer_email: str,
        *,
        name: str,
        competition_date: date,
        location: str = "",
        riders: Iterable[Mapping[str, object]] = (),
    ) -> CompetitionEntry:
        if not name.strip():
            raise ValidationError("Competition name is required.")
        entries = []
        seen = set()
        for rider in riders:
            email = str(rider["rider_email"])
            if email in seen:
                raise ValidationError(f"Rider {email} is listed twice.")
            seen.add(email)
            services = rider.get("services") or ()
            entries.append(
                CompetitionRider(
                    rider_email=email,
                    services=tuple(parse_choice(ServiceType, service) for service in services),  # type: ignore[union-attr]
                    payment_status=parse_choice(PaymentStatus, rider.get("payment_status", PaymentStatus.PENDING)),
                )
            )
        competition = CompetitionEntry(
            trainer_email=trainer_email,
            name=name.strip(),
            competition_date=competition_date,
            location=location,
            riders=entries,
        )
        self._repository.add_competition(competition)
        self._logger.log("competition_recorded", trainer=trainer_email, competition=competition.id, riders=len(entries))
        return competition

    def set_rider_payment_status(
        self,
        actor_email: str,
        competition_id: str,
        rider_email: str,
        status: PaymentStatus | str,
    ) -> CompetitionEntry:
        competition = self._repository.get_competition(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition '{competition_id}' does not exist.")
        if competition.trainer_email != actor_email:
            raise AuthorizationError("Only the trainer can update competition payments.")
        rider = competition.rider(rider_email)
        if rider is None:
            raise NotFoundError(f"Rider {rider_email} is not entered in '{competition.name}'.")
        rider.payment_status = parse_choice(PaymentStatus, status)
        self._repository.save_competition(competition)
        self._logger.log(
            "competition_payment_updated",
            competition=competition_id,
            rider=rider_email,
            status=rider.payment_status.value,
        )
        return competition


__all__ = ["SessionBook"]
