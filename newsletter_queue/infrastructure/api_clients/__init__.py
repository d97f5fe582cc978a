"""API clients for external services."""

from .brevo_api import BrevoEmailClient, EmailTransport, is_valid_email
from .rate_limiter import RetryPolicy, SlidingWindowRateLimiter

__all__ = [
    "BrevoEmailClient",
    "EmailTransport",
    "is_valid_email",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
]
