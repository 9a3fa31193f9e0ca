"""Tests for email delivery and the notification dispatcher."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from app.services.email_service import EmailService
from app.services.notification_service import (
    CHANNEL_EMAIL,
    CHANNEL_WHATSAPP,
    ChannelResult,
    NotificationDispatcher,
)


def _make_order(**overrides):  # type: ignore[no-untyped-def]
    defaults = {
        "order_ref": "SSC-20261019-ABC123",
        "currency": "INR",
        "subtotal_subunits": 250000,
        "shipping_fee_subunits": 5000,
        "discount_total_subunits": 25000,
        "total_subunits": 230000,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def _make_user(**overrides):  # type: ignore[no-untyped-def]
    defaults = {"id": "user-001", "name": "Asha Rao", "email": "asha@example.com"}
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


class TestSendEmail:
    @pytest.mark.asyncio
    async def test_noop_when_smtp_unconfigured(self) -> None:
        mock_send = AsyncMock()
        with (
            patch("app.services.email_service.settings") as mock_settings,
            patch("aiosmtplib.send", mock_send),
        ):
            mock_settings.SMTP_HOST = ""
            result = await EmailService().send_email("a@example.com", "Hi", "<p>Hi</p>")

        assert result is True
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_via_smtp(self) -> None:
        mock_send = AsyncMock()
        with (
            patch("app.services.email_service.settings") as mock_settings,
            patch("aiosmtplib.send", mock_send),
        ):
            mock_settings.SMTP_HOST = "smtp.example.com"
            mock_settings.SMTP_PORT = 587
            mock_settings.SMTP_USERNAME = ""
            mock_settings.SMTP_PASSWORD = ""
            mock_settings.SMTP_FROM_EMAIL = "care@example.com"
            mock_settings.SMTP_FROM_NAME = "Jewels"
            mock_settings.SMTP_USE_TLS = True

            result = await EmailService().send_email(
                "a@example.com", "Your cart", "<p>Hi</p>", text_body="Hi"
            )

        assert result is True
        msg = mock_send.call_args[0][0]
        assert msg["From"] == "Jewels <care@example.com>"
        assert msg["Subject"] == "Your cart"
        kwargs = mock_send.call_args[1]
        assert kwargs["username"] is None
        assert kwargs["password"] is None
        assert kwargs["start_tls"] is True


class TestOrderConfirmation:
    @pytest.mark.asyncio
    async def test_composes_totals(self) -> None:
        service = EmailService()
        with patch.object(service, "send_email", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = True
            result = await service.send_order_confirmation(_make_order(), _make_user())

        assert result is True
        kwargs = mock_send.call_args[1]
        assert kwargs["to"] == "asha@example.com"
        assert kwargs["subject"] == "Order SSC-20261019-ABC123 confirmed"
        assert "₹2,300.00" in kwargs["html_body"]
        assert "Total paid: ₹2,300.00." in kwargs["text_body"]

    @pytest.mark.asyncio
    async def test_user_without_email(self) -> None:
        service = EmailService()
        with patch.object(service, "send_email", new_callable=AsyncMock) as mock_send:
            result = await service.send_order_confirmation(_make_order(), _make_user(email=None))

        assert result is False
        mock_send.assert_not_called()


class TestNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_email_success(self) -> None:
        email_service = SimpleNamespace(send_email=AsyncMock(return_value=True))
        dispatcher = NotificationDispatcher(email_service)  # type: ignore[arg-type]

        result = await dispatcher.send_email("a@example.com", "Subject", "<p>x</p>", "x")

        assert result == ChannelResult(CHANNEL_EMAIL, ok=True, detail={"to": "a@example.com"})
        email_service.send_email.assert_awaited_once_with(
            "a@example.com", "Subject", "<p>x</p>", text_body="x"
        )

    @pytest.mark.asyncio
    async def test_email_error_is_reported(self) -> None:
        email_service = SimpleNamespace(send_email=AsyncMock(side_effect=OSError("connection refused")))
        dispatcher = NotificationDispatcher(email_service)  # type: ignore[arg-type]

        result = await dispatcher.send_email("a@example.com", "Subject", "<p>x</p>", "x")

        assert result.ok is False
        assert result.error == "connection refused"
        assert result.to_dict() == {"channel": "email", "ok": False, "error": "connection refused"}

    @pytest.mark.asyncio
    async def test_whatsapp_reports_success(self) -> None:
        result = await NotificationDispatcher().send_whatsapp({"journeyId": "j1"})

        assert result.channel == CHANNEL_WHATSAPP
        assert result.ok is True


def test_channel_result_to_dict() -> None:
    skipped = ChannelResult(CHANNEL_WHATSAPP, ok=False, skipped=True)
    assert skipped.to_dict() == {"channel": "whatsapp", "ok": False, "skipped": True}
