"""
SMS Sender — Twilio-style SMS appointment notifications.

Provides:
- GSM-7 vs Unicode detection for accurate segment counting
- Automatic message truncation to max segment limit
- STOP/START opt-out/opt-in compliance
"""
from __future__ import annotations

import re
import uuid
import structlog
from typing import Any, Optional

from channels.base import NotificationSender
from models.schemas import JobType, SendResult

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  GSM-7 CHARACTER SET & SEGMENT COUNTING
# ══════════════════════════════════════════════════════════════

# GSM-7 basic character set (includes space, digits, common punctuation, Latin letters)
_GSM7_CHARS = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)

# Extended GSM-7 (takes 2 bytes each): ^{}[~]|\€
_GSM7_EXTENDED = set("^{}[]~|\\€")

_OPT_OUT_WORDS = ("STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT")
_OPT_IN_WORDS = ("START", "YES", "UNSTOP", "SUBSCRIBE")


def _is_gsm7(text: str) -> bool:
    """Check if all characters in text are in the GSM-7 charset."""
    return all(c in _GSM7_CHARS or c in _GSM7_EXTENDED for c in text)


def _segment_count(text: str) -> int:
    """
    Calculate SMS segment count based on encoding.

    GSM-7: 160 chars single / 153 chars per segment (7 chars for UDH header)
    Unicode: 70 chars single / 67 chars per segment
    """
    if not text:
        return 0

    if _is_gsm7(text):
        # Count extended chars as 2
        char_count = sum(2 if c in _GSM7_EXTENDED else 1 for c in text)
        if char_count <= 160:
            return 1
        return (char_count + 152) // 153  # ceil division
    else:
        if len(text) <= 70:
            return 1
        return (len(text) + 66) // 67


def _normalize(phone: str) -> str:
    return re.sub(r"[^\d]", "", phone or "")


# ══════════════════════════════════════════════════════════════
#  SMS SENDER
# ══════════════════════════════════════════════════════════════

class SMSSender(NotificationSender):
    """
    SMS sender with segment awareness and opt-out compliance.

    Truncates messages to stay within the configured max_segments limit.
    Recipients who texted STOP are refused until they text START.
    """

    channel = "sms"

    def __init__(self, transport=None, **kwargs):
        super().__init__(transport, **kwargs)
        self._from_number: str = ""
        self._max_segments: int = 3
        self._opt_out_list: set[str] = set()

    def configure(self, config: dict[str, Any]) -> None:
        super().configure(config)
        self._from_number = self._config.get("from_number", self._from_number)
        self._max_segments = int(self._config.get("max_segments", self._max_segments))

    # ── Operations ────────────────────────────────────────────

    async def send_confirmation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self._send_sms(recipient, tenant_id, self.render(JobType.CONFIRMATION, payload))

    async def send_reminder(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self._send_sms(recipient, tenant_id, self.render(JobType.REMINDER, payload))

    async def send_cancellation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self._send_sms(recipient, tenant_id, self.render(JobType.CANCELLATION, payload))

    async def send_reschedule(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self._send_sms(recipient, tenant_id, self.render(JobType.RESCHEDULE, payload))

    # ── Send ──────────────────────────────────────────────────

    async def _send_sms(self, phone: str, tenant_id: str, content: str) -> SendResult:
        normalized = _normalize(phone)
        if not normalized:
            return SendResult.failure(f"Invalid phone number: {phone}")
        if normalized in self._opt_out_list:
            return SendResult.failure("opted_out")

        content = self._truncate_to_segments(content, self._max_segments)
        segments = _segment_count(content)

        message = {
            "from": self._from_number,
            "to": phone,
            "body": content,
            "tenant_id": tenant_id,
        }
        # Production: Twilio client.messages.create()
        msg_sid = await self._deliver(message) or f"SM{uuid.uuid4().hex}"

        logger.info("sms_sent", to=phone, segments=segments, msg_sid=msg_sid,
                    tenant_id=tenant_id)
        return SendResult.ok(msg_sid, to=phone, segments=segments)

    # ── Opt-out ───────────────────────────────────────────────

    def is_opted_out(self, phone: str) -> bool:
        return _normalize(phone) in self._opt_out_list

    def handle_inbound_keyword(self, phone: str, body: str) -> Optional[str]:
        """
        Apply STOP/START keywords from an inbound SMS.
        Returns "opt_out", "opt_in" or None when the body is not a keyword.
        """
        normalized = _normalize(phone)
        keyword = (body or "").strip().upper()
        if keyword in _OPT_OUT_WORDS:
            self._opt_out_list.add(normalized)
            logger.info("sms_opt_out", phone=phone)
            return "opt_out"
        if keyword in _OPT_IN_WORDS:
            self._opt_out_list.discard(normalized)
            logger.info("sms_opt_in", phone=phone)
            return "opt_in"
        return None

    # ── Truncation ────────────────────────────────────────────

    def _truncate_to_segments(self, content: str, max_segments: int) -> str:
        """Truncate message to fit within max_segments."""
        if _segment_count(content) <= max_segments:
            return content

        if _is_gsm7(content):
            # Extended chars take two septets each
            budget = 153 * max_segments - 3  # space for "..."
            out, used = [], 0
            for c in content:
                cost = 2 if c in _GSM7_EXTENDED else 1
                if used + cost > budget:
                    break
                out.append(c)
                used += cost
            return "".join(out) + "..."

        return content[:67 * max_segments - 3] + "..."

    # ── Templates ─────────────────────────────────────────────

    def render(self, job_type: JobType, data: Optional[dict[str, Any]]) -> str:
        data = data or {}
        if job_type == JobType.RESCHEDULE:
            old, new = data.get("old") or {}, data.get("new") or {}
            name = new.get("patient_name") or old.get("patient_name") or "there"
            return (
                f"Hi {name}, your appointment on {old.get('appointment_date', '')} "
                f"{old.get('appointment_time', '')} moved to {new.get('appointment_date', '')} "
                f"{new.get('appointment_time', '')}. Reply STOP to opt out."
            )

        name = data.get("patient_name", "there")
        when = f"{data.get('appointment_date', '')} {data.get('appointment_time', '')}".strip()
        lines = {
            JobType.CONFIRMATION: f"Hi {name}, your appointment on {when} is confirmed.",
            JobType.REMINDER: f"Hi {name}, reminder: appointment on {when}.",
            JobType.CANCELLATION: f"Hi {name}, your appointment on {when} was cancelled.",
        }
        return f"{lines[job_type]} Reply STOP to opt out."
