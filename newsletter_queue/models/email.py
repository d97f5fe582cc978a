"""Email models for newsletter delivery."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class DeliveryStatus(str, Enum):
    """Email delivery status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class EmailContent:
    """Complete email content ready for delivery."""

    html: str
    text: str
    subject: str
    preview_text: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def estimated_size_kb(self) -> float:
        """Estimate email size in KB."""
        html_size = len(self.html.encode('utf-8'))
        text_size = len(self.text.encode('utf-8'))
        return (html_size + text_size) / 1024

    @property
    def is_valid(self) -> bool:
        """Check if email content is valid for sending."""
        return bool(
            self.html and
            self.subject and
            len(self.subject) <= 998 and  # RFC 5322 limit
            self.estimated_size_kb < 10000
        )


@dataclass
class SectionTemplateData:
    """One rendered newsletter section."""

    section_number: int
    title: str
    paragraphs: List[str] = field(default_factory=list)
    image_url: Optional[str] = None


@dataclass
class TemplateData:
    """Data structure for email template rendering."""

    subject: str
    company_name: str
    sections: List[SectionTemplateData] = field(default_factory=list)
    is_draft: bool = False
    generated_on: str = ""

    brand_colors: Dict[str, str] = field(default_factory=lambda: {
        "primary": "#2c5282",
        "background": "#ffffff",
        "section": "#f8fafc",
        "text": "#333333",
        "muted": "#6b7280",
    })


@dataclass
class DeliveryResult:
    """Result of one email delivery attempt."""

    success: bool
    recipient: Optional[str] = None
    delivery_id: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RecipientOutcome:
    """Per-recipient outcome of a contact-list send."""

    newsletter_contact_id: uuid.UUID
    email: str
    result: DeliveryResult


@dataclass
class SendSummary:
    """Result of sending a newsletter to its contact list."""

    newsletter_id: uuid.UUID
    outcomes: List[RecipientOutcome] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.result.success)

    @property
    def failed_recipients(self) -> List[str]:
        return [outcome.email for outcome in self.outcomes if not outcome.result.success]
