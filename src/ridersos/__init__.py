"""RidersOS package for stable billing reconciliation and horse-care scheduling."""

from .api import ApiExporter
from .care import CareEventScheduler
from .emailing import EmailClient, EmailDispatcher
from .exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    NotificationDeliveryError,
    RidersOSError,
    ValidationError,
)
from .guardian import GuardianResolver, is_minor, resolve_notification_target
from .jobs import BillingJob
from .models import (
    BillingPeriod,
    BillingStatement,
    CareEvent,
    CareEventStatus,
    CareEventType,
    CompetitionEntry,
    CompetitionRider,
    Currency,
    GenerationResult,
    Horse,
    PaymentStatus,
    RateEntry,
    RevenueReport,
    RiderRevenue,
    ServiceType,
    SessionStatus,
    TrainingSession,
    User,
)
from .notifications import (
    DeliveryResult,
    NotificationCenter,
    NotificationDispatcher,
    NotificationIntent,
    NotificationType,
)
from .ops import StructuredLogger
from .rates import RateCatalog
from .repository import InMemoryRepository, Repository
from .revenue import RevenueAggregator
from .service import StableBilling
from .sessions import SessionBook
from .statements import StatementGenerator

__all__ = [
    "ApiExporter",
    "AuthorizationError",
    "BillingJob",
    "BillingPeriod",
    "BillingStatement",
    "CareEvent",
    "CareEventScheduler",
    "CareEventStatus",
    "CareEventType",
    "CompetitionEntry",
    "CompetitionRider",
    "ConflictError",
    "Currency",
    "DeliveryResult",
    "EmailClient",
    "EmailDispatcher",
    "GenerationResult",
    "GuardianResolver",
    "Horse",
    "InMemoryRepository",
    "NotFoundError",
    "NotificationCenter",
    "NotificationDeliveryError",
    "NotificationDispatcher",
    "NotificationIntent",
    "NotificationType",
    "PaymentStatus",
    "RateCatalog",
    "RateEntry",
    "Repository",
    "RevenueAggregator",
    "RevenueReport",
    "RiderRevenue",
    "RidersOSError",
    "ServiceType",
    "SessionBook",
    "SessionStatus",
    "StableBilling",
    "StatementGenerator",
    "StructuredLogger",
    "TrainingSession",
    "User",
    "ValidationError",
    "is_minor",
    "resolve_notification_target",
]
