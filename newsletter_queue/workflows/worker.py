"""Polling worker that drains the generation queue one job at a time."""

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from newsletter_queue.infrastructure.api_clients.rate_limiter import RetryPolicy, SleepFunc
from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.database import Database
from newsletter_queue.infrastructure.error_handling import NewsletterQueueError
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.newsletter import QueueStatus, SectionStatus
from newsletter_queue.services.job_processor import JobProcessor, JobResult
from newsletter_queue.services.notification import NewsletterDispatcher
from newsletter_queue.services.queue_store import QueueStore


class IterationOutcome(str, Enum):
    """What one worker iteration did."""

    IDLE = "idle"
    PROCESSED = "processed"
    FAILED = "failed"
    CONTENDED = "contended"


@dataclass
class WorkerStats:
    """Counters over the worker's lifetime."""

    iterations: int = 0
    processed: int = 0
    failed: int = 0
    contended: int = 0
    cooldowns: int = 0
    drafts_sent: int = 0


class QueueWorker(LoggerMixin):
    """Single-flight queue worker with failure-storm protection.

    Each iteration fetches the oldest pending job and waits for it to finish
    before polling again. Consecutive failed iterations grow the pause
    between iterations, and reaching the threshold triggers a cooldown.
    """

    def __init__(
        self,
        db: Database,
        queue_store: QueueStore,
        processor: JobProcessor,
        config: ApplicationConfig,
        dispatcher: Optional[NewsletterDispatcher] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.db = db
        self.queue_store = queue_store
        self.processor = processor
        self.config = config
        self.dispatcher = dispatcher
        self.sleep = sleep

        self.backoff = RetryPolicy(
            max_attempts=config.worker_max_consecutive_errors,
            base_delay=config.worker_initial_retry_delay,
            multiplier=2.0,
            max_delay=config.worker_max_retry_delay,
            sleep=sleep,
        )
        self.consecutive_failures = 0
        self.stats = WorkerStats()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Stop after the current iteration."""
        if self._running:
            self.logger.info("Worker stopping", **self.stats.__dict__)
        self._running = False

    async def run(self) -> None:
        """Poll the queue until stop() is called."""
        self._running = True
        self.logger.info(
            "Worker started",
            poll_interval=self.config.worker_poll_interval,
            failure_threshold=self.config.worker_max_consecutive_errors,
        )

        while self._running:
            try:
                outcome = await self.run_once()
            except Exception as e:
                self.logger.error("Worker iteration crashed", error=str(e), exc_info=True)
                outcome = IterationOutcome.FAILED
                self._track(outcome)

            if self._running:
                await self._pause(outcome)

        self.logger.info("Worker stopped", **self.stats.__dict__)

    async def run_until_idle(self, max_iterations: Optional[int] = None) -> WorkerStats:
        """Process jobs until the queue has no pending item left."""
        self._running = True
        iterations = 0
        try:
            while self._running:
                if max_iterations is not None and iterations >= max_iterations:
                    self.logger.warning("Iteration limit reached before queue drained", limit=max_iterations)
                    break
                iterations += 1

                outcome = await self.run_once()
                if outcome == IterationOutcome.IDLE:
                    break
                await self._pause(outcome)
        finally:
            self._running = False
        return self.stats

    async def run_once(self) -> IterationOutcome:
        """One poll-and-process iteration."""
        try:
            outcome = await self._iterate()
        except NewsletterQueueError as e:
            self.logger.error(
                "Queue polling failed",
                error_code=e.error_code,
                error=e.message,
            )
            outcome = IterationOutcome.FAILED

        self._track(outcome)
        return outcome

    async def _iterate(self) -> IterationOutcome:
        item = await self.queue_store.fetch_next_pending()
        if item is None:
            return IterationOutcome.IDLE

        result = await self.processor.process(item.id)

        if not result.claimed:
            if result.retryable:
                return IterationOutcome.FAILED
            self.logger.debug("Queue item taken by another worker", queue_item_id=item.id)
            return IterationOutcome.CONTENDED

        if not result.success:
            if result.status == QueueStatus.FAILED:
                self.logger.error(
                    "Newsletter blocked by a permanently failed section",
                    newsletter_id=str(result.newsletter_id),
                    queue_item_id=result.queue_item_id,
                    section_number=result.section_number,
                    error=result.error,
                )
            return IterationOutcome.FAILED

        await self._dispatch_if_complete(result)
        return IterationOutcome.PROCESSED

    def _track(self, outcome: IterationOutcome) -> None:
        self.stats.iterations += 1
        if outcome == IterationOutcome.FAILED:
            self.consecutive_failures += 1
            self.stats.failed += 1
        elif outcome == IterationOutcome.PROCESSED:
            self.consecutive_failures = 0
            self.stats.processed += 1
        elif outcome == IterationOutcome.IDLE:
            self.consecutive_failures = 0
        else:
            self.stats.contended += 1

    async def _pause(self, outcome: IterationOutcome) -> None:
        if outcome == IterationOutcome.FAILED:
            if self.consecutive_failures >= self.config.worker_max_consecutive_errors:
                self.logger.warning(
                    "Too many consecutive failures, cooling down",
                    consecutive_failures=self.consecutive_failures,
                    cooldown_seconds=self.config.worker_error_cooldown,
                )
                self.stats.cooldowns += 1
                await self.sleep(self.config.worker_error_cooldown)
                self.consecutive_failures = 0
                return

            delay = self.backoff.delay_for(self.consecutive_failures)
            self.logger.info(
                "Backing off after failure",
                consecutive_failures=self.consecutive_failures,
                delay_seconds=delay,
            )
            await self.sleep(delay)
        elif outcome in (IterationOutcome.IDLE, IterationOutcome.CONTENDED):
            await self.sleep(self.config.worker_poll_interval)

    async def _dispatch_if_complete(self, result: JobResult) -> None:
        """Send the draft once the newsletter's last section completes."""
        if self.dispatcher is None or not self.config.auto_send_drafts:
            return

        newsletter_id: uuid.UUID = result.newsletter_id
        try:
            sections = await self.db.list_sections(newsletter_id)
            if not sections or not all(s.is_completed for s in sections):
                if any(s.status == SectionStatus.FAILED for s in sections):
                    self.logger.warning(
                        "Newsletter cannot be sent until failed sections are reset",
                        newsletter_id=str(newsletter_id),
                    )
                return

            newsletter = await self.db.get_newsletter(newsletter_id)
            if newsletter is None or not newsletter.draft_recipient_email:
                self.logger.info(
                    "All sections completed, no draft recipient configured",
                    newsletter_id=str(newsletter_id),
                )
                return

            delivery = await self.dispatcher.send_draft(newsletter_id, newsletter.draft_recipient_email)
            if delivery.success:
                self.stats.drafts_sent += 1
        except NewsletterQueueError as e:
            self.logger.error(
                "Automatic draft dispatch failed",
                newsletter_id=str(newsletter_id),
                error_code=e.error_code,
                error=e.message,
            )
        except Exception as e:
            self.logger.error(
                "Automatic draft dispatch failed unexpectedly",
                newsletter_id=str(newsletter_id),
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
