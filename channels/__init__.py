"""Notification senders for the supported delivery channels."""
from channels.base import (
    NotificationSender,
    ChannelError,
    CircuitOpenError,
    CircuitBreaker,
    ChannelMetrics,
    Transport,
)
from channels.email_adapter import EmailSender
from channels.sms_adapter import SMSSender
from channels.router import ChannelRouter

__all__ = [
    "NotificationSender", "ChannelError", "CircuitOpenError",
    "CircuitBreaker", "ChannelMetrics", "Transport",
    "EmailSender", "SMSSender", "ChannelRouter",
]
