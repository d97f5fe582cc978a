"""Generation queue accessor with atomic claim."""

import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.sql import select, update

from newsletter_queue.infrastructure.api_clients.rate_limiter import RetryPolicy
from newsletter_queue.infrastructure.database import Database, QueueItemRow, SectionRow, utcnow
from newsletter_queue.infrastructure.error_handling import handle_service_errors
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.newsletter import QueueItem, QueueStatus, SectionStatus

MAX_ATTEMPTS = 3


class QueueStore(LoggerMixin):
    """Reads and transitions rows of the generation queue.

    Every transition is a single conditional UPDATE, so several worker
    processes can share one queue.
    """

    def __init__(self, db: Database, max_attempts: int = MAX_ATTEMPTS):
        self.db = db
        self.retry_policy = RetryPolicy(max_attempts=max_attempts)

    @property
    def max_attempts(self) -> int:
        return self.retry_policy.max_attempts

    @handle_service_errors("QueueStore")
    async def get(self, item_id: int) -> Optional[QueueItem]:
        async with self.db.get_session() as session:
            row = await session.get(QueueItemRow, item_id)
            return row.to_record() if row else None

    @handle_service_errors("QueueStore")
    async def fetch_next_pending(self) -> Optional[QueueItem]:
        """Oldest pending item, ties broken by insertion order."""
        async with self.db.get_session() as session:
            stmt = (
                select(QueueItemRow)
                .where(QueueItemRow.status == QueueStatus.PENDING.value)
                .order_by(QueueItemRow.created_at, QueueItemRow.id)
                .limit(1)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return row.to_record() if row else None

    @handle_service_errors("QueueStore")
    async def claim(self, item_id: int) -> Optional[QueueItem]:
        """Move an item from pending to processing and count the attempt.

        Returns None when another worker claimed it first.
        """
        now = utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(
                update(QueueItemRow)
                .where(
                    QueueItemRow.id == item_id,
                    QueueItemRow.status == QueueStatus.PENDING.value,
                )
                .values(
                    status=QueueStatus.PROCESSING.value,
                    attempts=QueueItemRow.attempts + 1,
                    last_attempt_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount != 1:
                self.logger.debug("Claim lost", queue_item_id=item_id)
                return None

            row = await session.get(QueueItemRow, item_id, populate_existing=True)
            item = row.to_record()

        self.logger.info(
            "Queue item claimed",
            queue_item_id=item.id,
            newsletter_id=str(item.newsletter_id),
            section_number=item.section_number,
            attempts=item.attempts,
        )
        return item

    @handle_service_errors("QueueStore")
    async def mark_completed(self, item_id: int) -> bool:
        """Complete a processing item and clear its error."""
        async with self.db.get_session() as session:
            result = await session.execute(
                update(QueueItemRow)
                .where(
                    QueueItemRow.id == item_id,
                    QueueItemRow.status == QueueStatus.PROCESSING.value,
                )
                .values(
                    status=QueueStatus.COMPLETED.value,
                    error_message=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            self.logger.warning("Completed item was not in processing", queue_item_id=item_id)
            return False
        return True

    @handle_service_errors("QueueStore")
    async def mark_failed(self, item_id: int, error: str, retryable: bool) -> Optional[QueueStatus]:
        """Requeue or permanently fail a processing item.

        The attempt was already counted by claim(). A retryable failure goes
        back to pending while attempts remain; anything else is terminal.
        Returns the resulting status, or None if the item was not processing.
        """
        async with self.db.get_session() as session:
            row = await session.get(QueueItemRow, item_id)
            if row is None or row.status != QueueStatus.PROCESSING.value:
                self.logger.warning("Failed item was not in processing", queue_item_id=item_id)
                return None

            if retryable and self.retry_policy.allows_another(row.attempts):
                new_status = QueueStatus.PENDING
            else:
                new_status = QueueStatus.FAILED

            result = await session.execute(
                update(QueueItemRow)
                .where(
                    QueueItemRow.id == item_id,
                    QueueItemRow.status == QueueStatus.PROCESSING.value,
                )
                .values(
                    status=new_status.value,
                    error_message=error,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            attempts = row.attempts

        if result.rowcount != 1:
            self.logger.warning("Failed item changed state concurrently", queue_item_id=item_id)
            return None

        self.logger.info(
            "Queue item failed",
            queue_item_id=item_id,
            attempts=attempts,
            max_attempts=self.max_attempts,
            requeued=new_status == QueueStatus.PENDING,
            error=error,
        )
        return new_status

    @handle_service_errors("QueueStore")
    async def list_for_newsletter(self, newsletter_id: uuid.UUID) -> List[QueueItem]:
        async with self.db.get_session() as session:
            stmt = (
                select(QueueItemRow)
                .where(QueueItemRow.newsletter_id == newsletter_id)
                .order_by(QueueItemRow.section_number)
            )
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    @handle_service_errors("QueueStore")
    async def find_stale_processing(self, older_than: timedelta) -> List[QueueItem]:
        """Items stuck in processing since before the cutoff. Reporting only."""
        cutoff: datetime = utcnow() - older_than
        async with self.db.get_session() as session:
            stmt = (
                select(QueueItemRow)
                .where(
                    QueueItemRow.status == QueueStatus.PROCESSING.value,
                    QueueItemRow.last_attempt_at < cutoff,
                )
                .order_by(QueueItemRow.last_attempt_at)
            )
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    @handle_service_errors("QueueStore")
    async def reset_for_newsletter(self, newsletter_id: uuid.UUID) -> int:
        """Operator reset: unfinished jobs back to pending with a fresh attempt count.

        Completed jobs are kept. Sections that are not completed go back to
        pending as well.
        """
        now = utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(
                update(QueueItemRow)
                .where(
                    QueueItemRow.newsletter_id == newsletter_id,
                    QueueItemRow.status != QueueStatus.COMPLETED.value,
                )
                .values(
                    status=QueueStatus.PENDING.value,
                    attempts=0,
                    error_message=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(SectionRow)
                .where(
                    SectionRow.newsletter_id == newsletter_id,
                    SectionRow.status != SectionStatus.COMPLETED.value,
                )
                .values(
                    status=SectionStatus.PENDING.value,
                    error_message=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        self.logger.info(
            "Queue reset",
            newsletter_id=str(newsletter_id),
            items_reset=result.rowcount,
        )
        return result.rowcount
