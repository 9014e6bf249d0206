"""FastAPI frontend for the RidersOS billing and horse-care core.

The application is a thin JSON layer over :class:`ridersos.service.StableBilling`
backed by :class:`ridersos.webapp.persistence.SqlRepository`.  Callers identify
themselves with the ``X-User-Email`` header; authenticating that header is the
job of whatever sits in front of the service.  Run it with
``uvicorn ridersos.webapp:app``.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from ..api import ApiExporter
from ..emailing import EmailClient, EmailDispatcher
from ..exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RidersOSError,
    ValidationError,
)
from ..models import BillingPeriod, DEFAULT_CURRENCY, PaymentStatus
from ..notifications import NotificationCenter
from ..ops import StructuredLogger
from ..service import StableBilling
from .config import (
    BILLING_JOB_INTERVAL_SECONDS,
    BILLING_WINDOW_DAYS,
    DATABASE_URL,
    FRONTEND_URL,
    LOG_PATH,
    SMTP_FROM,
    SMTP_HOST,
    SMTP_PASS,
    SMTP_PORT,
    SMTP_USER,
    USER_HEADER,
    email_enabled,
)
from .persistence import SqlRepository, make_engine

exporter = ApiExporter()

_STATUS_CODES = {
    NotFoundError: 404,
    AuthorizationError: 403,
    ConflictError: 409,
    ValidationError: 400,
    RidersOSError: 400,
}


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class RateIn(BaseModel):
    session_type: str
    currency: str = DEFAULT_CURRENCY.value
    rate: Decimal


class SummaryIn(BaseModel):
    rider_email: str
    month: str
    sessions_revenue: Decimal = Decimal("0")
    competitions_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY.value
    session_count: int = 0
    payment_requested: bool = False
    payment_status: str = PaymentStatus.PENDING.value


class SummaryPatch(BaseModel):
    sessions_revenue: Optional[Decimal] = None
    competitions_revenue: Optional[Decimal] = None
    total_revenue: Optional[Decimal] = None
    session_count: Optional[int] = None
    payment_requested: Optional[bool] = None
    payment_status: Optional[str] = None


class GenerateIn(BaseModel):
    month: Optional[str] = None


class UserIn(BaseModel):
    email: str
    first_name: str = ""
    last_name: str = ""
    birthday: Optional[date] = None
    parent_email: Optional[str] = None
    roles: List[str] = Field(default_factory=list)


class HorseIn(BaseModel):
    name: str


class EventIn(BaseModel):
    horse_id: str
    event_type: str
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


class EventPatch(BaseModel):
    event_type: Optional[str] = None
    event_date: Optional[date] = None
    next_due_date: Optional[date] = None
    provider_name: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    notes: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurrence_weeks: Optional[int] = None
    reminder_weeks_before: Optional[int] = None
    reminder_email: Optional[str] = None
    status: Optional[str] = None
    completed_date: Optional[date] = None


class SessionIn(BaseModel):
    rider_email: str
    session_type: str
    session_date: date
    duration: int = 60
    notes: str = ""


class CompetitionRiderIn(BaseModel):
    rider_email: str
    services: List[str] = Field(default_factory=list)
    payment_status: str = PaymentStatus.PENDING.value


class CompetitionIn(BaseModel):
    name: str
    competition_date: date
    location: str = ""
    riders: List[CompetitionRiderIn] = Field(default_factory=list)


class PaymentStatusIn(BaseModel):
    payment_status: str


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
def build_dispatcher() -> NotificationCenter:
    """Keep intents in memory and forward them over SMTP when credentials exist."""

    forward = None
    if email_enabled():
        client = EmailClient(SMTP_HOST, SMTP_PORT, username=SMTP_USER, password=SMTP_PASS)
        forward = EmailDispatcher(client, sender=SMTP_FROM, frontend_url=FRONTEND_URL)
    return NotificationCenter(forward_to=forward)


def build_billing(engine: Engine | None = None) -> StableBilling:
    return StableBilling(
        SqlRepository(engine if engine is not None else make_engine(DATABASE_URL)),
        dispatcher=build_dispatcher(),
        logger=StructuredLogger(path=LOG_PATH),
        billing_window_days=BILLING_WINDOW_DAYS,
    )


def get_billing(request: Request) -> StableBilling:
    return request.app.state.billing


def current_user(x_user_email: Optional[str] = Header(default=None, alias=USER_HEADER)) -> str:
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header.")
    return x_user_email.strip()


def _changes(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(exclude_unset=True)


router = APIRouter()


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------
@router.get("/billing/rates")
def list_rates(
    trainer_email: Optional[str] = None,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> List[Dict[str, Any]]:
    return [exporter.rate(rate) for rate in billing.rates.rates_for(trainer_email or caller)]


@router.post("/billing/rates")
def upsert_rate(
    payload: RateIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    rate = billing.rates.upsert(caller, payload.session_type, payload.currency, payload.rate)
    return exporter.rate(rate)


@router.put("/billing/rates")
def bulk_upsert_rates(
    payload: List[RateIn],
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> List[Dict[str, Any]]:
    rates = billing.rates.bulk_upsert(caller, [entry.model_dump() for entry in payload])
    return [exporter.rate(rate) for rate in rates]


@router.delete("/billing/rates/{session_type}")
def delete_rate(
    session_type: str,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    billing.rates.delete(caller, session_type)
    return {"success": True}


@router.get("/billing/summaries")
def list_summaries(
    trainer_email: Optional[str] = None,
    rider_email: Optional[str] = None,
    month: Optional[str] = None,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> List[Dict[str, Any]]:
    if trainer_email is None and rider_email is None:
        trainer_email = caller
    if month is not None:
        month = BillingPeriod.from_key(month).key
    statements = billing.statements.statements(
        trainer_email=trainer_email,
        rider_email=rider_email,
        period_key=month,
    )
    return [exporter.statement(statement) for statement in statements]


@router.post("/billing/summaries")
def create_summary(
    payload: SummaryIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    statement = billing.statements.create_statement(
        caller,
        rider_email=payload.rider_email,
        period_key=payload.month,
        sessions_revenue=payload.sessions_revenue,
        competitions_revenue=payload.competitions_revenue,
        total_revenue=payload.total_revenue,
        currency=payload.currency,
        session_count=payload.session_count,
        payment_requested=payload.payment_requested,
        payment_status=payload.payment_status,
    )
    return exporter.statement(statement)


@router.patch("/billing/summaries/{summary_id}")
def update_summary(
    summary_id: str,
    payload: SummaryPatch,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    statement = billing.statements.update_statement(caller, summary_id, _changes(payload))
    return exporter.statement(statement)


@router.post("/billing/generate")
def generate_statements(
    payload: Optional[GenerateIn] = None,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    if payload is not None and payload.month:
        result = billing.statements.generate(caller, BillingPeriod.from_key(payload.month))
    else:
        result = billing.statements.generate_previous_period(caller)
    return exporter.generation(result)


@router.get("/billing/revenue")
def revenue(
    start: date,
    end: date,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    return exporter.revenue(billing.revenue_between(caller, start, end))


# ---------------------------------------------------------------------------
# Horses and care events
# ---------------------------------------------------------------------------
@router.post("/horses")
def add_horse(
    payload: HorseIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    return exporter.horse(billing.add_horse(caller, payload.name))


@router.get("/horses/{horse_id}/events")
def horse_events(
    horse_id: str,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> List[Optional[Dict[str, Any]]]:
    return [exporter.event(event) for event in billing.care.events_for_horse(horse_id)]


@router.post("/horses/events")
def create_event(
    payload: EventIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Optional[Dict[str, Any]]:
    fields = payload.model_dump()
    event = billing.care.create_event(caller, **fields)
    return exporter.event(event)


@router.patch("/horses/events/{event_id}")
def update_event(
    event_id: str,
    payload: EventPatch,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    event, next_event = billing.care.update_event(caller, event_id, _changes(payload))
    return {"event": exporter.event(event), "next_event": exporter.event(next_event)}


@router.delete("/horses/events/{event_id}")
def delete_event(
    event_id: str,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    billing.care.delete_event(caller, event_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Users, sessions and competitions
# ---------------------------------------------------------------------------
@router.post("/users")
def upsert_user(
    payload: UserIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    if payload.email != caller:
        raise AuthorizationError("Users can only update their own profile.")
    user = billing.register_user(
        payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        birthday=payload.birthday,
        parent_email=payload.parent_email,
        roles=payload.roles,
    )
    return exporter.user(user)


@router.post("/sessions")
def schedule_session(
    payload: SessionIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    session = billing.sessions.schedule_session(caller, **payload.model_dump())
    return exporter.session(session)


@router.post("/sessions/{session_id}/verify")
def verify_session(
    session_id: str,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    return exporter.session(billing.sessions.verify_session(caller, session_id))


@router.post("/sessions/{session_id}/cancel")
def cancel_session(
    session_id: str,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    return exporter.session(billing.sessions.cancel_session(caller, session_id))


@router.post("/competitions")
def record_competition(
    payload: CompetitionIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    competition = billing.sessions.record_competition(
        caller,
        name=payload.name,
        competition_date=payload.competition_date,
        location=payload.location,
        riders=[rider.model_dump() for rider in payload.riders],
    )
    return exporter.competition(competition)


@router.patch("/competitions/{competition_id}/riders/{rider_email}")
def set_competition_payment(
    competition_id: str,
    rider_email: str,
    payload: PaymentStatusIn,
    caller: str = Depends(current_user),
    billing: StableBilling = Depends(get_billing),
) -> Dict[str, Any]:
    competition = billing.sessions.set_rider_payment_status(
        caller, competition_id, rider_email, payload.payment_status
    )
    return exporter.competition(competition)


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
def _install_error_handlers(app: FastAPI) -> None:
    async def domain_error(request: Request, exc: Exception) -> JSONResponse:
        status = next(code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind))
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    async def schema_error(request: Request, exc: Exception) -> JSONResponse:
        errors = exc.errors() if isinstance(exc, RequestValidationError) else str(exc)
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})

    for kind in _STATUS_CODES:
        app.add_exception_handler(kind, domain_error)
    app.add_exception_handler(RequestValidationError, schema_error)


def create_app(
    billing: StableBilling | None = None,
    *,
    job_interval: float = BILLING_JOB_INTERVAL_SECONDS,
) -> FastAPI:
    """Build the API; without ``billing`` the SQLite-backed service is created at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.billing is None:
            app.state.billing = build_billing()
        task = None
        if job_interval > 0:
            task = asyncio.create_task(app.state.billing.job.run_forever(job_interval))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(title="RidersOS", lifespan=lifespan)
    app.state.billing = billing
    _install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "build_billing", "build_dispatcher", "create_app", "current_user", "router"]
