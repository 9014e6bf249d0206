"""SMTP email delivery for RidersOS notification intents."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Callable, Dict, Optional, Sequence, Tuple

from .exceptions import NotificationDeliveryError
from .notifications import DeliveryResult, NotificationIntent, NotificationType

SIGNATURE = "Best regards,\nThe RidersOS Team"


def _payment_request(params: Dict[str, str], frontend_url: str) -> Tuple[str, str]:
    subject = f"Payment request from {params.get('trainer_name', 'your trainer')} - {params.get('month', '')}"
    body = (
        f"Hi {params.get('rider_name', 'Rider')},\n\n"
        f"{params.get('trainer_name', 'Your trainer')} has requested payment for {params.get('month', '')}.\n\n"
        f"Amount: {params.get('currency', '')} {params.get('amount', '')}\n\n"
        f"View the details at {frontend_url}/RiderProfile\n\n{SIGNATURE}"
    )
    return subject, body


def _care_reminder(params: Dict[str, str], frontend_url: str) -> Tuple[str, str]:
    subject = f"Reminder: {params.get('event_type', 'Care')} due for {params.get('horse_name', 'your horse')}"
    body = (
        f"Hi {params.get('owner_name', 'Horse Owner')},\n\n"
        f"This is a reminder that {params.get('horse_name', 'your horse')} has a "
        f"{params.get('event_type', 'care')} appointment due on {params.get('due_date', '')}.\n\n"
        f"Manage the care schedule at {frontend_url}/MyHorses\n\n{SIGNATURE}"
    )
    return subject, body


TEMPLATES: Dict[NotificationType, Callable[[Dict[str, str], str], Tuple[str, str]]] = {
    NotificationType.PAYMENT_REQUEST: _payment_request,
    NotificationType.CARE_REMINDER: _care_reminder,
}


class EmailClient:
    """Very small wrapper around :mod:`smtplib`."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 5,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, subject: str, body: str, *, sender: str, recipients: Sequence[str]) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        message.set_content(body)
        return message

    def send(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            raise NotificationDeliveryError(f"SMTP delivery to {message['To']} failed: {exc}") from exc


class EmailDispatcher:
    """Render intents with :data:`TEMPLATES` and deliver them through an :class:`EmailClient`."""

    def __init__(self, client: EmailClient, *, sender: str, frontend_url: str = "") -> None:
        self.client = client
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")

    def render(self, intent: NotificationIntent) -> EmailMessage:
        template = TEMPLATES.get(intent.type)
        if template is None:
            subject, body = intent.title, intent.message
        else:
            subject, body = template(intent.parameters, self.frontend_url)
        return self.client.build_message(
            subject,
            body,
            sender=f'"RidersOS" <{self.sender}>',
            recipients=[intent.recipient],
        )

    def send(self, intent: NotificationIntent) -> DeliveryResult:
        try:
            self.client.send(self.render(intent))
        except NotificationDeliveryError as exc:
            return DeliveryResult(delivered=False, error=str(exc))
        return DeliveryResult(delivered=True)


__all__ = ["EmailClient", "EmailDispatcher", "TEMPLATES"]
