"""Tests for the Brevo email transport."""

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from newsletter_queue.infrastructure.api_clients.brevo_api import BrevoEmailClient, is_valid_email
from newsletter_queue.infrastructure.error_handling import EmailDeliveryError
from newsletter_queue.models.email import DeliveryStatus, EmailContent


class FakeResponse:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload or {}
        self._text = text

    async def json(self):
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession and records posted requests."""

    requests = []
    response = None
    error = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def post(self, url, headers=None, json=None):
        FakeSession.requests.append({"url": url, "headers": headers, "json": json})
        if FakeSession.error:
            raise FakeSession.error
        return FakeSession.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def fake_session():
    FakeSession.requests = []
    FakeSession.response = FakeResponse(201, {"messageId": "<abc@smtp-relay>"})
    FakeSession.error = None
    with patch.object(aiohttp, "ClientSession", FakeSession):
        yield FakeSession


@pytest.fixture
def client():
    return BrevoEmailClient(
        api_key="test_key",
        sender_email="newsletter@example.com",
        sender_name="Acme News",
    )


@pytest.fixture
def email_content():
    return EmailContent(html="<p>Hi</p>", text="Hi", subject="Acme Monthly")


class TestBrevoEmailClient:
    """Request building and response handling."""

    def test_requires_api_key(self):
        with pytest.raises(EmailDeliveryError):
            BrevoEmailClient(api_key="", sender_email="newsletter@example.com")

    def test_requires_valid_sender(self):
        with pytest.raises(EmailDeliveryError):
            BrevoEmailClient(api_key="key", sender_email="nobody")

    def test_from_config(self, config):
        client = BrevoEmailClient.from_config(config)

        assert client.sender_email == "newsletter@example.com"
        assert client.base_url == "https://api.brevo.com/v3"

    @pytest.mark.asyncio
    async def test_send_email_posts_payload(self, client, fake_session):
        message_id = await client.send_email(
            "reader@example.com", "Subject", "<p>Hi</p>", text="Hi", to_name="Reader"
        )

        assert message_id == "<abc@smtp-relay>"
        request = fake_session.requests[0]
        assert request["url"] == "https://api.brevo.com/v3/smtp/email"
        assert request["headers"]["api-key"] == "test_key"
        assert request["json"] == {
            "sender": {"email": "newsletter@example.com", "name": "Acme News"},
            "to": [{"email": "reader@example.com", "name": "Reader"}],
            "subject": "Subject",
            "htmlContent": "<p>Hi</p>",
            "textContent": "Hi",
        }

    @pytest.mark.asyncio
    async def test_error_status_raises(self, client, fake_session):
        fake_session.response = FakeResponse(400, text="invalid parameter")

        with pytest.raises(EmailDeliveryError) as exc_info:
            await client.send_email("reader@example.com", "Subject", "<p>Hi</p>")

        assert exc_info.value.status_code == 400
        assert "invalid parameter" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self, client, fake_session):
        fake_session.error = aiohttp.ClientConnectionError("connection reset")

        with pytest.raises(EmailDeliveryError):
            await client.send_email("reader@example.com", "Subject", "<p>Hi</p>")

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, client, fake_session):
        fake_session.error = asyncio.TimeoutError()

        with pytest.raises(EmailDeliveryError) as exc_info:
            await client.send_email("reader@example.com", "Subject", "<p>Hi</p>")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_recipient_never_reaches_network(self, client, fake_session):
        with pytest.raises(EmailDeliveryError):
            await client.send_email("not-an-email", "Subject", "<p>Hi</p>")

        assert fake_session.requests == []


class TestSendNewsletter:
    """Delivery results reported by the transport base class."""

    @pytest.mark.asyncio
    async def test_success_result(self, client, email_content, fake_session):
        result = await client.send_newsletter(email_content, "reader@example.com", "Reader")

        assert result.success
        assert result.status == DeliveryStatus.SENT
        assert result.delivery_id == "<abc@smtp-relay>"
        assert result.sent_at is not None

    @pytest.mark.asyncio
    async def test_delivery_error_becomes_failed_result(self, client, email_content):
        with patch.object(
            client,
            "send_email",
            AsyncMock(side_effect=EmailDeliveryError("quota exceeded", status_code=402)),
        ):
            result = await client.send_newsletter(email_content, "reader@example.com")

        assert not result.success
        assert result.status == DeliveryStatus.FAILED
        assert result.error_message == "quota exceeded"
        assert result.metadata["status_code"] == 402

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, client, email_content):
        with patch.object(client, "send_email", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await client.send_newsletter(email_content, "reader@example.com")

        assert not result.success
        assert result.status == DeliveryStatus.FAILED
        assert result.error_message == "RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_invalid_address_becomes_failed_result(self, client, email_content):
        with patch.object(client, "send_email", AsyncMock()) as send_email:
            result = await client.send_newsletter(email_content, "broken@")

        assert not result.success
        send_email.assert_not_awaited()


@pytest.mark.parametrize(
    "email,valid",
    [
        ("reader@example.com", True),
        ("first.last+tag@mail.example.org", True),
        ("", False),
        (None, False),
        ("no-at-sign.example.com", False),
        ("two@@example.com", False),
        ("spaces in@example.com", False),
    ],
)
def test_is_valid_email(email, valid):
    assert is_valid_email(email) is valid
