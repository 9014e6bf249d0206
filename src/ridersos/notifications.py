"""Notification intents and the dispatcher contract used by RidersOS."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, TYPE_CHECKING

from .exceptions import NotificationDeliveryError

if TYPE_CHECKING:  # pragma: no cover
    from .ops import StructuredLogger


class NotificationType(str, Enum):
    PAYMENT_REQUEST = "payment_request"
    CARE_REMINDER = "care_reminder"


@dataclass(slots=True)
class NotificationIntent:
    """A notification the core wants delivered; the template key is ``type``."""

    recipient: str
    type: NotificationType
    title: str
    message: str
    parameters: Dict[str, str] = field(default_factory=dict)
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    link: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def as_dict(self) -> Dict[str, object]:
        return {
            "user_email": self.recipient,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "parameters": dict(self.parameters),
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "link": self.link,
            "created_date": self.created_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    delivered: bool
    error: Optional[str] = None


class NotificationDispatcher(Protocol):
    def send(self, intent: NotificationIntent) -> DeliveryResult: ...


class NotificationCenter:
    """In-memory notification inbox, optionally forwarding to a delivery channel."""

    def __init__(self, *, forward_to: NotificationDispatcher | None = None) -> None:
        self._inbox: List[NotificationIntent] = []
        self._forward_to = forward_to
        self._lock = threading.Lock()

    def send(self, intent: NotificationIntent) -> DeliveryResult:
        with self._lock:
            self._inbox.append(intent)
        if self._forward_to is None:
            return DeliveryResult(delivered=True)
        return self._forward_to.send(intent)

    def history(self, *, notification_type: NotificationType | None = None) -> Sequence[NotificationIntent]:
        with self._lock:
            items = tuple(self._inbox)
        if notification_type is None:
            return items
        return tuple(item for item in items if item.type is notification_type)

    def for_recipient(self, email: str) -> Sequence[NotificationIntent]:
        return tuple(item for item in self.history() if item.recipient == email)


def dispatch_safely(
    dispatcher: NotificationDispatcher,
    intent: NotificationIntent,
    logger: "StructuredLogger",
) -> DeliveryResult:
    """Send ``intent`` without letting a delivery problem reach the caller."""

    try:
        result = dispatcher.send(intent)
    except NotificationDeliveryError as exc:
        result = DeliveryResult(delivered=False, error=str(exc))
    except Exception as exc:  # dispatcher is an external collaborator
        result = DeliveryResult(delivered=False, error=f"{type(exc).__name__}: {exc}")
    if not result.delivered:
        logger.warning(
            "notification_failed",
            recipient=intent.recipient,
            type=intent.type.value,
            related_entity_id=intent.related_entity_id,
            error=result.error,
        )
    return result


__all__ = [
    "DeliveryResult",
    "NotificationCenter",
    "NotificationDispatcher",
    "NotificationIntent",
    "NotificationType",
    "dispatch_safely",
]
