"""Newsletter, section and generation queue records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class NewsletterStatus(str, Enum):
    """Newsletter lifecycle status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class DraftStatus(str, Enum):
    """Draft delivery status of a newsletter."""

    DRAFT = "draft"
    DRAFT_SENT = "draft_sent"
    PENDING_CONTACTS = "pending_contacts"
    READY_TO_SEND = "ready_to_send"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class SectionStatus(str, Enum):
    """Generation status of a newsletter section."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueStatus(str, Enum):
    """Status of a generation job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class ContactStatus(str, Enum):
    """Contact list membership status."""

    ACTIVE = "active"
    DELETED = "deleted"


class NewsletterContactStatus(str, Enum):
    """Per-recipient send status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class Company:
    """Client company and its content-generation context."""

    id: uuid.UUID
    company_name: str
    industry: str
    contact_email: str
    target_audience: Optional[str] = None
    audience_description: Optional[str] = None
    contact_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def prompt_context(self) -> Dict[str, Optional[str]]:
        """Values available to section prompt templates."""
        return {
            "company_name": self.company_name,
            "industry": self.industry,
            "target_audience": self.target_audience,
            "audience_description": self.audience_description,
        }


@dataclass(frozen=True)
class Newsletter:
    """A newsletter issue belonging to one company."""

    id: uuid.UUID
    company_id: uuid.UUID
    subject: str
    status: NewsletterStatus = NewsletterStatus.DRAFT
    draft_status: DraftStatus = DraftStatus.DRAFT
    draft_recipient_email: Optional[str] = None
    sent_count: int = 0
    failed_count: int = 0
    last_sent_status: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SectionType:
    """Prompt configuration for one kind of section.

    A row without a company_id is the global default; a company row with the
    same section_type replaces it for that company.
    """

    section_type: str
    prompt_template: str
    section_number: int = 0
    title: Optional[str] = None
    company_id: Optional[uuid.UUID] = None
    required: bool = False
    generate_image: bool = True

    @property
    def display_title(self) -> str:
        return self.title or self.section_type.replace("_", " ").title()


@dataclass(frozen=True)
class NewsletterSection:
    """One content block of a newsletter."""

    id: uuid.UUID
    newsletter_id: uuid.UUID
    section_number: int
    section_type: str
    status: SectionStatus = SectionStatus.PENDING
    title: Optional[str] = None
    content: Optional[str] = None
    image_prompt: Optional[str] = None
    image_url: Optional[str] = None
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == SectionStatus.COMPLETED


@dataclass(frozen=True)
class QueueItem:
    """Generation job for exactly one section."""

    id: int
    newsletter_id: uuid.UUID
    section_type: str
    section_number: int
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Contact:
    """A company contact that can receive newsletters."""

    id: uuid.UUID
    company_id: uuid.UUID
    email: str
    name: Optional[str] = None
    status: ContactStatus = ContactStatus.ACTIVE


@dataclass(frozen=True)
class NewsletterRecipient:
    """A contact attached to a newsletter send."""

    newsletter_contact_id: uuid.UUID
    contact: Contact
    status: NewsletterContactStatus = NewsletterContactStatus.PENDING
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None


@dataclass
class PlanResult:
    """Outcome of planning a newsletter's sections and jobs."""

    newsletter_id: uuid.UUID
    sections: List[NewsletterSection] = field(default_factory=list)
    jobs: List[QueueItem] = field(default_factory=list)
    sections_created: int = 0
    jobs_created: int = 0

    @property
    def already_planned(self) -> bool:
        return self.sections_created == 0 and self.jobs_created == 0


@dataclass
class NewsletterProgress:
    """Generation progress summary for one newsletter."""

    newsletter: Newsletter
    sections: List[NewsletterSection] = field(default_factory=list)
    jobs: List[QueueItem] = field(default_factory=list)

    def count_jobs(self, status: QueueStatus) -> int:
        return sum(1 for job in self.jobs if job.status == status)

    @property
    def all_sections_completed(self) -> bool:
        return bool(self.sections) and all(s.is_completed for s in self.sections)

    @property
    def has_permanent_failures(self) -> bool:
        return any(job.status == QueueStatus.FAILED for job in self.jobs)

    @property
    def is_settled(self) -> bool:
        """Every job has reached a terminal status."""
        return bool(self.jobs) and all(job.status.is_terminal for job in self.jobs)


# Pydantic models for the exposed creation interface
class OnboardingRequest(BaseModel):
    """Company onboarding form payload."""

    company_name: str = Field(..., min_length=1, max_length=255)
    industry: str = Field(..., min_length=1, max_length=255)
    target_audience: Optional[str] = None
    audience_description: Optional[str] = None
    contact_email: EmailStr
    contact_name: Optional[str] = None

    @field_validator("company_name", "industry")
    @classmethod
    def strip_required(cls, v):
        """Reject whitespace-only values."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class NewsletterCreateRequest(BaseModel):
    """Explicit newsletter creation payload."""

    company_id: uuid.UUID
    subject: str = Field(..., min_length=1, max_length=500)
    draft_recipient_email: Optional[EmailStr] = None


class ContactCreateRequest(BaseModel):
    """Contact list addition payload."""

    company_id: uuid.UUID
    email: EmailStr
    name: Optional[str] = None
