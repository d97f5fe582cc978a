"""Business logic services for the AI newsletter generation queue."""

from .email_generation import EmailGenerationService
from .job_processor import JobProcessor, JobResult
from .notification import NewsletterDispatcher
from .openai_service import ContentProvider, OpenAIContentProvider
from .queue_store import QueueStore
from .section_planner import SectionPlanner

__all__ = [
    "EmailGenerationService",
    "JobProcessor",
    "JobResult",
    "NewsletterDispatcher",
    "ContentProvider",
    "OpenAIContentProvider",
    "QueueStore",
    "SectionPlanner",
]
