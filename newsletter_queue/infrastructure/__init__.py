"""Infrastructure layer for external integrations and data persistence."""

from .database import Database, init_database
from .api_clients import BrevoEmailClient, EmailTransport, RetryPolicy, SlidingWindowRateLimiter
from .config import ApplicationConfig, load_config
from .logging import setup_logging
from .error_handling import handle_service_errors, is_retryable

__all__ = [
    "Database",
    "init_database",
    "BrevoEmailClient",
    "EmailTransport",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
    "ApplicationConfig",
    "load_config",
    "setup_logging",
    "handle_service_errors",
    "is_retryable",
]
