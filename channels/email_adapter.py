"""
Email Sender — Appointment notification emails.

Provides:
- Subject and plain-text body per notification type
- Suppression list (bounces, complaints, unsubscribes)
- Pluggable async transport; without one the send is simulated and logged
"""
from __future__ import annotations

import re
import uuid
import structlog
from typing import Any, Optional

from channels.base import NotificationSender
from models.schemas import JobType, SendResult

logger = structlog.get_logger()

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _when(data: dict[str, Any]) -> str:
    date = data.get("appointment_date", "")
    time_ = data.get("appointment_time", "")
    return f"{date} at {time_}" if date and time_ else (date or time_ or "the scheduled time")


class EmailSender(NotificationSender):
    """
    Email sender with suppression handling.

    For actual SMTP sending, wire a transport (e.g. an aiosmtplib wrapper).
    Without one, a send to a valid, non-suppressed address is simulated:
    a Message-ID is generated and the delivery is logged.
    """

    channel = "email"

    def __init__(self, transport=None, **kwargs):
        super().__init__(transport, **kwargs)
        self._suppressed: set[str] = set()      # emails that should not receive
        self._from_email: str = "noreply@example.com"
        self._from_name: str = "Appointments"
        self._domain: str = "example.com"

    def configure(self, config: dict[str, Any]) -> None:
        super().configure(config)
        self._from_email = self._config.get("from_email", self._from_email)
        self._from_name = self._config.get("from_name", self._from_name)
        self._domain = self._config.get("domain", self._domain)

    # ── Operations ────────────────────────────────────────────

    async def send_confirmation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        subject, body = self.render(JobType.CONFIRMATION, payload)
        return await self._send_email(recipient, tenant_id, subject, body)

    async def send_reminder(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        subject, body = self.render(JobType.REMINDER, payload)
        return await self._send_email(recipient, tenant_id, subject, body)

    async def send_cancellation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        subject, body = self.render(JobType.CANCELLATION, payload)
        return await self._send_email(recipient, tenant_id, subject, body)

    async def send_reschedule(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        subject, body = self.render(JobType.RESCHEDULE, payload)
        return await self._send_email(recipient, tenant_id, subject, body)

    # ── Send ──────────────────────────────────────────────────

    async def _send_email(self, recipient: str, tenant_id: str, subject: str, body: str) -> SendResult:
        email = (recipient or "").strip().lower()
        if not _EMAIL_RE.match(email):
            return SendResult.failure(f"Invalid email address: {recipient}")

        if self.is_suppressed(email):
            return SendResult.failure(f"Suppressed: {email}")

        message = {
            "from": f"{self._from_name} <{self._from_email}>",
            "to": email,
            "subject": subject,
            "body": body,
            "tenant_id": tenant_id,
            "message_id": f"<{uuid.uuid4().hex}@{self._domain}>",
        }
        provider_id = await self._deliver(message)
        message_id = provider_id or message["message_id"]

        logger.info("email_sent", to=email, subject=subject, message_id=message_id,
                    tenant_id=tenant_id)
        return SendResult.ok(message_id, to=email, subject=subject)

    # ── Suppression ───────────────────────────────────────────

    def is_suppressed(self, email: str) -> bool:
        return email.lower() in self._suppressed

    async def handle_unsubscribe(self, email: str) -> dict[str, Any]:
        email = email.lower()
        self._suppressed.add(email)
        logger.info("email_unsubscribed", email=email)
        return {"status": "unsubscribed", "email": email}

    async def handle_bounce(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email", "").lower()
        bounce_type = data.get("type", "transient")
        if bounce_type == "permanent":
            self._suppressed.add(email)
            logger.warning("permanent_bounce_suppressed", email=email)
        else:
            logger.info("transient_bounce", email=email)
        return {"status": "processed", "email": email, "type": bounce_type}

    async def handle_complaint(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email", "").lower()
        self._suppressed.add(email)
        logger.warning("spam_complaint_suppressed", email=email)
        return {"status": "suppressed", "email": email}

    # ── Rendering ─────────────────────────────────────────────

    def render(self, job_type: JobType, data: Optional[dict[str, Any]]) -> tuple[str, str]:
        """Returns (subject, body) for a notification type."""
        data = data or {}
        if job_type == JobType.RESCHEDULE:
            old, new = data.get("old") or {}, data.get("new") or {}
            name = new.get("patient_name") or old.get("patient_name") or "there"
            return (
                f"Appointment rescheduled to {_when(new)}",
                f"Hi {name},\n\n"
                f"Your appointment on {_when(old)} has been moved to {_when(new)}.\n\n"
                f"Best regards,\n{self._from_name}",
            )

        name = data.get("patient_name", "there")
        with_whom = f" with {data['practitioner']}" if data.get("practitioner") else ""
        templates = {
            JobType.CONFIRMATION: (
                f"Appointment confirmed for {_when(data)}",
                f"Hi {name},\n\nYour appointment{with_whom} on {_when(data)} is confirmed.",
            ),
            JobType.REMINDER: (
                f"Reminder: appointment on {_when(data)}",
                f"Hi {name},\n\nThis is a reminder of your appointment{with_whom} "
                f"on {_when(data)}.",
            ),
            JobType.CANCELLATION: (
                f"Appointment on {_when(data)} cancelled",
                f"Hi {name},\n\nYour appointment{with_whom} on {_when(data)} has been cancelled.",
            ),
        }
        subject, body = templates[job_type]
        if data.get("location"):
            body += f"\nLocation: {data['location']}"
        return subject, f"{body}\n\nBest regards,\n{self._from_name}"
