"""AI Newsletter Generation Queue

Plans newsletter sections for client companies, generates each section
through a rate-limited content provider and emails the finished issue.
"""

__version__ = "0.1.0"
__author__ = "AI Newsletter"
__email__ = "newsletter@yourdomain.com"

from newsletter_queue.models.newsletter import Newsletter, NewsletterSection, QueueItem
from newsletter_queue.services.onboarding import NewsletterService

__all__ = [
    "Newsletter",
    "NewsletterSection",
    "QueueItem",
    "NewsletterService",
]
