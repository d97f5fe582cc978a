"""Data models for the AI newsletter generation queue."""

from .newsletter import (
    Company,
    Contact,
    ContactCreateRequest,
    DraftStatus,
    Newsletter,
    NewsletterCreateRequest,
    NewsletterProgress,
    NewsletterSection,
    NewsletterStatus,
    OnboardingRequest,
    PlanResult,
    QueueItem,
    QueueStatus,
    SectionStatus,
    SectionType,
)
from .email import DeliveryResult, EmailContent, SendSummary, TemplateData

__all__ = [
    "Company",
    "Contact",
    "ContactCreateRequest",
    "DraftStatus",
    "Newsletter",
    "NewsletterCreateRequest",
    "NewsletterProgress",
    "NewsletterSection",
    "NewsletterStatus",
    "OnboardingRequest",
    "PlanResult",
    "QueueItem",
    "QueueStatus",
    "SectionStatus",
    "SectionType",
    "DeliveryResult",
    "EmailContent",
    "SendSummary",
    "TemplateData",
]
