"""
ChannelRouter — Picks the delivery channel from the recipient address.

Recipients containing "@" go to email, everything else to SMS. The router is
itself a NotificationSender so the queue engine can use it directly; each
delegate keeps its own circuit breaker and metrics.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from channels.base import NotificationSender
from channels.email_adapter import EmailSender
from channels.sms_adapter import SMSSender
from models.schemas import JobType, SendResult

logger = structlog.get_logger()


class ChannelRouter(NotificationSender):

    channel = "router"

    def __init__(self, email: Optional[NotificationSender] = None, sms: Optional[NotificationSender] = None):
        super().__init__()
        self.email = email or EmailSender()
        self.sms = sms or SMSSender()

    @classmethod
    def from_settings(cls, channels: dict[str, Any]) -> ChannelRouter:
        """Build from Settings.channels (name → ChannelConfig)."""
        router = cls()
        for name, sender in (("email", router.email), ("sms", router.sms)):
            ch_cfg = channels.get(name)
            if ch_cfg is None:
                continue
            # ChannelConfig dataclass → dict
            if hasattr(ch_cfg, "credentials"):
                ch_cfg = ch_cfg.credentials
            sender.configure(ch_cfg)
        return router

    def route(self, recipient: str) -> NotificationSender:
        return self.email if "@" in (recipient or "") else self.sms

    async def send(
        self,
        job_type: JobType | str,
        recipient: str,
        tenant_id: str,
        payload: dict[str, Any],
    ) -> SendResult:
        sender = self.route(recipient)
        logger.debug("channel_routed", channel=sender.channel, recipient=recipient)
        return await sender.send(job_type, recipient, tenant_id, payload)

    async def send_confirmation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self.route(recipient).send_confirmation(recipient, tenant_id, payload)

    async def send_reminder(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self.route(recipient).send_reminder(recipient, tenant_id, payload)

    async def send_cancellation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self.route(recipient).send_cancellation(recipient, tenant_id, payload)

    async def send_reschedule(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        return await self.route(recipient).send_reschedule(recipient, tenant_id, payload)

    async def health_check(self) -> dict[str, Any]:
        return {
            "email": await self.email.health_check(),
            "sms": await self.sms.health_check(),
        }
