"""Translate RidersOS records to the JSON shapes served by the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Optional

from .models import (
    BillingStatement,
    CareEvent,
    CompetitionEntry,
    GenerationResult,
    Horse,
    RateEntry,
    RevenueReport,
    TrainingSession,
    User,
)


def _iso(value: Optional[date | datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ApiExporter:
    """Convert domain records to JSON friendly dictionaries with snake_case keys."""

    def rate(self, rate: RateEntry) -> Dict[str, object]:
        return {
            "id": rate.id,
            "trainer_email": rate.trainer_email,
            "session_type": rate.service_type.value,
            "currency": rate.currency.value,
            "rate": float(rate.amount),
            "created_date": _iso(rate.created_at),
            "updated_date": _iso(rate.updated_at),
        }

    def statement(self, statement: BillingStatement) -> Dict[str, object]:
        return {
            "id": statement.id,
            "trainer_email": statement.trainer_email,
            "rider_email": statement.rider_email,
            "month": statement.period_key,
            "sessions_revenue": float(statement.sessions_revenue),
            "competitions_revenue": float(statement.competitions_revenue),
            "total_revenue": float(statement.total_revenue),
            "currency": statement.currency.value,
            "session_count": statement.session_count,
            "payment_requested": statement.payment_requested,
            "payment_status": statement.payment_status.value,
            "created_date": _iso(statement.created_at),
        }

    def event(self, event: Optional[CareEvent]) -> Optional[Dict[str, object]]:
        if event is None:
            return None
        return {
            "id": event.id,
            "horse_id": event.horse_id,
            "event_type": event.event_type.value,
            "event_date": _iso(event.event_date),
            "provider_name": event.provider_name,
            "description": event.description,
            "cost": float(event.cost) if event.cost is not None else None,
            "next_due_date": _iso(event.next_due_date),
            "notes": event.notes,
            "status": event.status.value,
            "completed_date": _iso(event.completed_date),
            "is_recurring": event.is_recurring,
            "recurrence_weeks": event.recurrence_weeks,
            "reminder_weeks_before": event.reminder_weeks_before,
            "reminder_email": event.reminder_email,
            "parent_event_id": event.parent_event_id,
            "created_date": _iso(event.created_at),
        }

    def session(self, session: TrainingSession) -> Dict[str, object]:
        return {
            "id": session.id,
            "trainer_email": session.trainer_email,
            "rider_email": session.rider_email,
            "session_type": session.session_type.value,
            "session_date": _iso(session.session_date),
            "duration": session.duration,
            "notes": session.notes,
            "rider_verified": session.verified,
            "rider_verified_date": _iso(session.verified_at),
            "status": session.status.value,
        }

    def competition(self, competition: CompetitionEntry) -> Dict[str, object]:
        return {
            "id": competition.id,
            "trainer_email": competition.trainer_email,
            "name": competition.name,
            "competition_date": _iso(competition.competition_date),
            "location": competition.location,
            "riders": [
                {
                    "rider_email": rider.rider_email,
                    "services": [service.value for service in rider.services],
                    "payment_status": rider.payment_status.value,
                }
                for rider in competition.riders
            ],
        }

    def revenue(self, report: RevenueReport) -> Dict[str, object]:
        return {
            "trainer_email": report.trainer_email,
            "start": _iso(report.start),
            "end": _iso(report.end),
            "currency": report.currency.value,
            "sessions_revenue": float(report.sessions_revenue),
            "competitions_revenue": float(report.competitions_revenue),
            "total": float(report.total),
            "session_count": report.session_count,
            "per_rider": {
                email: {
                    "sessions_revenue": float(entry.sessions_revenue),
                    "competitions_revenue": float(entry.competitions_revenue),
                    "total": float(entry.total),
                    "session_count": entry.session_count,
                    "sessions_by_type": {kind.value: count for kind, count in entry.sessions_by_type.items()},
                }
                for email, entry in sorted(report.per_rider.items(), key=lambda item: item[1].total, reverse=True)
            },
        }

    def generation(self, result: GenerationResult) -> Dict[str, object]:
        return {
            "trainer_email": result.trainer_email,
            "month": result.period_key,
            "ran": result.ran,
            "created": [self.statement(statement) for statement in result.created],
            "skipped_riders": list(result.skipped_riders),
        }

    def horse(self, horse: Horse) -> Dict[str, object]:
        return {"id": horse.id, "owner_email": horse.owner_email, "name": horse.name}

    def user(self, user: User) -> Dict[str, object]:
        return {
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "birthday": _iso(user.birthday),
            "parent_email": user.parent_email,
            "roles": sorted(user.roles),
        }


__all__ = ["ApiExporter"]
