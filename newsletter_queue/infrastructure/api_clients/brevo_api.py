"""Brevo transactional email API client."""

import asyncio
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
import structlog

from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.error_handling import EmailDeliveryError
from newsletter_queue.models.email import DeliveryResult, DeliveryStatus, EmailContent

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Optional[str]) -> bool:
    """Loose address check applied before anything is handed to the transport."""
    return bool(email) and bool(EMAIL_PATTERN.match(email))


class EmailTransport(ABC):
    """Sends one rendered email to one recipient."""

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        to_name: Optional[str] = None,
    ) -> str:
        """Send an email and return the provider's message id.

        Raises:
            EmailDeliveryError: If the provider refuses or the request fails
        """

    async def send_newsletter(
        self,
        email_content: EmailContent,
        recipient_email: str,
        recipient_name: Optional[str] = None,
    ) -> DeliveryResult:
        """Send rendered newsletter content, reporting failure as a result."""
        if not is_valid_email(recipient_email):
            return DeliveryResult(
                success=False,
                recipient=recipient_email,
                status=DeliveryStatus.FAILED,
                error_message=f"Invalid email address: {recipient_email}",
            )

        try:
            delivery_id = await self.send_email(
                to_email=recipient_email,
                subject=email_content.subject,
                html=email_content.html,
                text=email_content.text,
                to_name=recipient_name,
            )
        except EmailDeliveryError as e:
            return DeliveryResult(
                success=False,
                recipient=recipient_email,
                status=DeliveryStatus.FAILED,
                error_message=e.message,
                metadata={"status_code": e.status_code, "subject": email_content.subject},
            )
        except Exception as e:
            structlog.get_logger(__name__).error(
                "Unexpected transport failure",
                recipient=recipient_email,
                error_type=type(e).__name__,
                error=str(e),
            )
            return DeliveryResult(
                success=False,
                recipient=recipient_email,
                status=DeliveryStatus.FAILED,
                error_message=f"{type(e).__name__}: {e}",
                metadata={"subject": email_content.subject},
            )

        return DeliveryResult(
            success=True,
            recipient=recipient_email,
            delivery_id=delivery_id,
            status=DeliveryStatus.SENT,
            sent_at=datetime.now(timezone.utc),
            metadata={"subject": email_content.subject, "tags": email_content.tags},
        )


class BrevoEmailClient(EmailTransport):
    """Brevo (Sendinblue) SMTP API client."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str = "AI Newsletter",
        base_url: str = "https://api.brevo.com/v3",
        timeout: int = 60,
    ):
        """Initialize Brevo API client.

        Args:
            api_key: Brevo API key
            sender_email: Verified sender address
            sender_name: Display name of the sender
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise EmailDeliveryError("Brevo API key not provided")
        if not is_valid_email(sender_email):
            raise EmailDeliveryError(f"Invalid sender email: {sender_email}")

        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = structlog.get_logger(__name__)

        self.headers = {
            "api-key": self.api_key,
            "content-type": "application/json",
            "accept": "application/json",
        }

    @classmethod
    def from_config(cls, config: ApplicationConfig) -> "BrevoEmailClient":
        """Build a client from application settings."""
        return cls(
            api_key=config.brevo_api_key or "",
            sender_email=config.sender_email or "",
            sender_name=config.sender_name,
            base_url=config.brevo_api_url,
            timeout=config.request_timeout,
        )

    def _build_payload(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str],
        to_name: Optional[str],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sender": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": to_email, "name": to_name or to_email}],
            "subject": subject,
            "htmlContent": html,
        }
        if text:
            payload["textContent"] = text
        return payload

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        to_name: Optional[str] = None,
    ) -> str:
        if not is_valid_email(to_email):
            raise EmailDeliveryError(f"Invalid email address: {to_email}")

        payload = self._build_payload(to_email, subject, html, text, to_name)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.base_url}/smtp/email",
                    headers=self.headers,
                    json=payload,
                ) as response:
                    if response.status in (200, 201, 202):
                        result = await response.json()
                        message_id = result.get("messageId", "")
                        self.logger.debug(
                            "Email accepted by Brevo",
                            to=to_email,
                            message_id=message_id,
                        )
                        return message_id

                    error_text = await response.text()
                    raise EmailDeliveryError(
                        f"Brevo API error {response.status}: {error_text}",
                        status_code=response.status,
                    )
        except asyncio.TimeoutError as e:
            raise EmailDeliveryError(
                f"Brevo request timed out after {self.timeout.total}s"
            ) from e
        except aiohttp.ClientError as e:
            raise EmailDeliveryError(f"Brevo request failed: {e}") from e
