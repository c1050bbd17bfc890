"""Unit tests for outbound email senders."""

import json

import httpx
import pytest

from idcard_api.services.email_service import (
    BrevoEmailSender,
    LoggingEmailSender,
    build_password_reset_email,
    build_verification_email,
)


def _sender(handler) -> BrevoEmailSender:
    return BrevoEmailSender(
        api_key="test-key",
        sender_email="noreply@example.com",
        sender_name="ID Cards",
        api_url="https://mail.test/v3/smtp/email",
        transport=httpx.MockTransport(handler),
    )


class TestBrevoEmailSender:
    @pytest.mark.asyncio
    async def test_posts_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"messageId": "abc"})

        ok = await _sender(handler).send_verification_email(
            "user@example.com", "https://app.test/verify-email?token=t", "User"
        )

        assert ok is True
        assert captured["headers"]["api-key"] == "test-key"
        assert captured["body"]["to"] == [{"email": "user@example.com"}]
        assert captured["body"]["sender"]["email"] == "noreply@example.com"
        assert "https://app.test/verify-email?token=t" in captured["body"]["textContent"]

    @pytest.mark.asyncio
    async def test_provider_error_reported_not_raised(self):
        sender = _sender(lambda request: httpx.Response(500))

        assert await sender.send_password_reset_email("user@example.com", "https://app.test/r") is False

    @pytest.mark.asyncio
    async def test_transport_error_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        assert await _sender(handler).send_verification_email("user@example.com", "https://app.test/v") is False


class TestTemplates:
    def test_link_is_escaped_in_html(self):
        _, html, text = build_verification_email('https://app.test/v?token=a&x="y"', "<b>Eve</b>")

        assert "&amp;x=&quot;y&quot;" in html
        assert "&lt;b&gt;Eve&lt;/b&gt;" in html
        assert text.endswith('https://app.test/v?token=a&x="y"')

    def test_reset_subject(self):
        subject, _, _ = build_password_reset_email("https://app.test/r")

        assert subject == "Reset your password"


@pytest.mark.asyncio
async def test_logging_sender_skips():
    sender = LoggingEmailSender()

    assert await sender.send_verification_email("user@example.com", "https://app.test/v") is False
    assert await sender.send_password_reset_email("user@example.com", "https://app.test/r") is False
