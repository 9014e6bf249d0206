"""Horse-care events, completion and recurring rollover."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Mapping, Optional, Sequence, Tuple

from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import CareEvent, CareEventStatus, CareEventType, Horse, parse_choice
from .money import to_decimal
from .notifications import NotificationDispatcher, NotificationIntent, NotificationType, dispatch_safely
from .ops import StructuredLogger
from .repository import Repository

_PLAIN_FIELDS = ("provider_name", "description", "notes", "reminder_email")


def _weeks(name: str, value: object, *, minimum: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"{name} must be an integer of at least {minimum}, got {value!r}.")
    return value


def _cost(value: object) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        cost = to_decimal(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"cost must be a number, got {value!r}.") from exc
    if cost < 0:
        raise ValidationError("cost cannot be negative.")
    return cost


def format_due_date(day: date) -> str:
    return f"{day:%A, %B} {day.day}, {day.year}"


class CareEventScheduler:
    """Create care events, complete them and roll recurring ones forward.

    Reminders go out once, when an event with a ``next_due_date`` is created.
    Sending them again ``reminder_weeks_before`` the due date is left to an
    external sweep that can use :meth:`reminders_due`.
    """

    def __init__(
        self,
        repository: Repository,
        dispatcher: NotificationDispatcher,
        *,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._logger = logger or StructuredLogger()
        self._clock = clock

    def create_event(
        self,
        actor_email: str,
        *,
        horse_id: str,
        event_type: CareEventType | str,
        event_date: date,
        next_due_date: Optional[date] = None,
        provider_name: Optional[str] = None,
        description: Optional[str] = None,
        cost: object = None,
        notes: Optional[str] = None,
        is_recurring: bool = False,
        recurrence_weeks: Optional[int] = None,
        reminder_weeks_before: Optional[int] = None,
        reminder_email: Optional[str] = None,
    ) -> CareEvent:
        horse = self._owned_horse(actor_email, horse_id)
        weeks = _weeks("recurrence_weeks", recurrence_weeks, minimum=1)
        if is_recurring:
            if weeks is None:
                raise ValidationError("Recurring events need recurrence_weeks.")
            if next_due_date is None:
                next_due_date = event_date + timedelta(weeks=weeks)
        event = CareEvent(
            horse_id=horse.id,
            event_type=parse_choice(CareEventType, event_type),
            event_date=event_date,
            next_due_date=next_due_date,
            provider_name=provider_name,
            description=description,
            cost=_cost(cost),
            notes=notes,
            is_recurring=bool(is_recurring),
            recurrence_weeks=weeks,
            reminder_weeks_before=_weeks("reminder_weeks_before", reminder_weeks_before, minimum=0),
            reminder_email=reminder_email,
            created_at=self._clock(),
        )
        return self._store(event, horse)

    def complete_event(
        self,
        event_id: str,
        completed_on: Optional[date] = None,
        *,
        actor_email: Optional[str] = None,
    ) -> Tuple[CareEvent, Optional[CareEvent]]:
        event = self.get_event(event_id)
        horse = self._horse(event.horse_id)
        if actor_email is not None and horse.owner_email != actor_email:
            raise AuthorizationError("Only the horse owner can complete its care events.")

        completed = self._transition(event_id, completed_on, horse)
        return completed, self._roll_over(completed, horse)

    def update_event(
        self,
        actor_email: str,
        event_id: str,
        changes: Mapping[str, object],
    ) -> Tuple[CareEvent, Optional[CareEvent]]:
        """Apply ``changes`` and, when asked to, complete the event.

        The completion transition runs before the edits are written, so a
        request that loses a completion race leaves the stored event as it was.
        """

        event = self.get_event(event_id)
        horse = self._horse(event.horse_id)
        if horse.owner_email != actor_email:
            raise AuthorizationError("Only the horse owner can change its care events.")

        status = changes.get("status")
        completing = False
        if status is not None:
            target = parse_choice(CareEventStatus, status)
            if target is CareEventStatus.COMPLETED:
                if event.is_completed:
                    raise ConflictError(f"Care event '{event_id}' is already completed.")
                completing = True
            elif event.is_completed:
                raise ConflictError("Completed care events cannot be re-opened.")

        if changes.get("event_type") is not None:
            event.event_type = parse_choice(CareEventType, changes["event_type"])
        for name in ("event_date", "next_due_date"):
            if changes.get(name) is not None:
                setattr(event, name, changes[name])
        for name in _PLAIN_FIELDS:
            if changes.get(name) is not None:
                setattr(event, name, changes[name])
        if changes.get("cost") is not None:
            event.cost = _cost(changes["cost"])
        if changes.get("is_recurring") is not None:
            event.is_recurring = bool(changes["is_recurring"])
        if changes.get("recurrence_weeks") is not None:
            event.recurrence_weeks = _weeks("recurrence_weeks", changes["recurrence_weeks"], minimum=1)
        if changes.get("reminder_weeks_before") is not None:
            event.reminder_weeks_before = _weeks("reminder_weeks_before", changes["reminder_weeks_before"], minimum=0)
        if event.is_recurring and not event.recurrence_weeks:
            raise ValidationError("Recurring events need recurrence_weeks.")

        if not completing:
            self._repository.save_event(event)
            return event, None

        completed_on = changes.get("completed_date")
        completed = self._transition(event_id, completed_on if isinstance(completed_on, date) else None, horse)
        event.status = completed.status
        event.completed_date = completed.completed_date
        self._repository.save_event(event)
        return event, self._roll_over(event, horse)

    def delete_event(self, actor_email: str, event_id: str) -> None:
        event = self.get_event(event_id)
        horse = self._horse(event.horse_id)
        if horse.owner_email != actor_email:
            raise AuthorizationError("Only the horse owner can delete its care events.")
        if not self._repository.delete_event(event_id):
            raise NotFoundError(f"Care event '{event_id}' does not exist.")
        self._logger.log("care_event_deleted", event_id=event_id, horse=horse.id)

    def get_event(self, event_id: str) -> CareEvent:
        event = self._repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Care event '{event_id}' does not exist.")
        return event

    def events_for_horse(self, horse_id: str) -> Sequence[CareEvent]:
        self._horse(horse_id)
        return self._repository.events_for_horse(horse_id)

    def reminders_due(self, today: date) -> Sequence[CareEvent]:
        """Scheduled events whose reminder lead time ends on ``today``."""

        return tuple(
            event
            for event in self._repository.scheduled_events()
            if event.next_due_date is not None
            and event.reminder_weeks_before is not None
            and event.next_due_date - timedelta(weeks=event.reminder_weeks_before) == today
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _horse(self, horse_id: str) -> Horse:
        horse = self._repository.get_horse(horse_id)
        if horse is None:
            raise NotFoundError(f"Horse '{horse_id}' does not exist.")
        return horse

    def _owned_horse(self, actor_email: str, horse_id: str) -> Horse:
        horse = self._horse(horse_id)
        if horse.owner_email != actor_email:
            raise AuthorizationError("Only the horse owner can schedule its care events.")
        return horse

    def _transition(self, event_id: str, completed_on: Optional[date], horse: Horse) -> CareEvent:
        completed = self._repository.complete_event(event_id, completed_on or self._clock().date())
        if completed is None:
            raise ConflictError(f"Care event '{event_id}' is already completed.")
        self._logger.log("care_event_completed", event_id=event_id, horse=horse.id)
        return completed

    def _roll_over(self, completed: CareEvent, horse: Horse) -> Optional[CareEvent]:
        if not (completed.is_recurring and completed.next_due_date):
            return None
        weeks = completed.recurrence_weeks or 0
        successor = CareEvent(
            horse_id=completed.horse_id,
            event_type=completed.event_type,
            event_date=completed.next_due_date,
            next_due_date=completed.next_due_date + timedelta(weeks=weeks) if weeks else None,
            provider_name=completed.provider_name,
            description=completed.description,
            cost=completed.cost,
            notes=completed.notes,
            is_recurring=True,
            recurrence_weeks=completed.recurrence_weeks,
            reminder_weeks_before=completed.reminder_weeks_before,
            reminder_email=completed.reminder_email,
            status=CareEventStatus.SCHEDULED,
            parent_event_id=completed.id,
            created_at=self._clock(),
        )
        self._store(successor, horse)
        self._logger.log("care_event_rolled_over", event_id=completed.id, successor=successor.id)
        return successor

    def _store(self, event: CareEvent, horse: Horse) -> CareEvent:
        self._repository.add_event(event)
        self._logger.log("care_event_created", event_id=event.id, horse=horse.id, type=event.event_type.value)
        if event.next_due_date is not None:
            self._send_reminder(event, horse)
        return event

    def _send_reminder(self, event: CareEvent, horse: Horse) -> None:
        owner = self._repository.get_user(horse.owner_email)
        due = format_due_date(event.next_due_date)  # type: ignore[arg-type]
        intent = NotificationIntent(
            recipient=event.reminder_email or horse.owner_email,
            type=NotificationType.CARE_REMINDER,
            title=f"{event.event_type.value} due for {horse.name}",
            message=f"{horse.name} has a {event.event_type.value} appointment due on {due}.",
            parameters={
                "owner_name": (owner.first_name or owner.display_name) if owner else "Horse Owner",
                "horse_name": horse.name,
                "event_type": event.event_type.value,
                "due_date": due,
            },
            related_entity_type="HorseEvent",
            related_entity_id=event.id,
            link="/MyHorses",
            created_at=self._clock(),
        )
        dispatch_safely(self._dispatcher, intent, self._logger)


__all__ = ["CareEventScheduler", "format_due_date"]
