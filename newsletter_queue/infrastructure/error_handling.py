"""Error taxonomy and error handling utilities for the generation queue."""

import functools
from typing import Any, Callable, Dict, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError

from newsletter_queue.infrastructure.logging import get_logger

F = TypeVar('F', bound=Callable[..., Any])
logger = get_logger(__name__)


class NewsletterQueueError(Exception):
    """Base exception for newsletter queue errors."""

    error_code = "NEWSLETTER_QUEUE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.error_code
        self.details = details or {}


class ConfigurationError(NewsletterQueueError):
    """Missing or invalid section type template, or a missing required section."""

    error_code = "CONFIGURATION_ERROR"


class NotFoundError(NewsletterQueueError):
    """A newsletter, company, section or queue item does not exist."""

    error_code = "NOT_FOUND"


class DataIntegrityError(NewsletterQueueError):
    """Rows that must exist together are inconsistent."""

    error_code = "DATA_INTEGRITY"


class PreconditionError(NewsletterQueueError):
    """An operation was invoked in a state that does not allow it."""

    error_code = "PRECONDITION_FAILED"


class PersistenceError(NewsletterQueueError):
    """A store read or write failed."""

    error_code = "PERSISTENCE_ERROR"


class ContentProviderError(NewsletterQueueError):
    """The content provider rejected a request."""

    error_code = "PROVIDER_ERROR"


class TransientProviderError(ContentProviderError):
    """Timeouts, rate-limit responses or empty generation output."""

    error_code = "PROVIDER_TRANSIENT"


class EmailDeliveryError(NewsletterQueueError):
    """The email transport refused or failed to deliver a message."""

    error_code = "EMAIL_DELIVERY_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


def is_retryable(error: BaseException) -> bool:
    """Return True when a failed job may be returned to the queue."""
    return isinstance(error, (TransientProviderError, PersistenceError))


def handle_service_errors(
    service_name: str,
    log_level: str = "error",
    reraise: bool = True
) -> Callable[[F], F]:
    """
    Decorator for store-facing service methods.

    SQLAlchemy failures are logged and re-raised as PersistenceError; the
    queue's own errors pass through untouched.

    Args:
        service_name: Name of the service for logging context
        log_level: Logging level ('error', 'warning', 'info')
        reraise: Whether to re-raise the exception after logging

    Usage:
        @handle_service_errors("QueueStore")
        async def claim(self, item_id: int) -> Optional[QueueItem]:
            ...
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except NewsletterQueueError:
                raise
            except SQLAlchemyError as e:
                log_func = getattr(logger, log_level, logger.error)
                log_func(
                    "Persistence failure",
                    service=service_name,
                    operation=func.__name__,
                    error=str(e),
                )
                if reraise:
                    raise PersistenceError(
                        f"{service_name}.{func.__name__} failed: {e}",
                        details={"operation": func.__name__, "exception_type": type(e).__name__},
                    ) from e
                return None

        return cast(F, wrapper)
    return decorator
