"""Job processor: generates the content of one queued section."""

import uuid
from dataclasses import dataclass
from typing import Optional

from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.database import Database
from newsletter_queue.infrastructure.error_handling import (
    ConfigurationError,
    DataIntegrityError,
    NewsletterQueueError,
    is_retryable,
)
from newsletter_queue.infrastructure.logging import LoggerMixin, bind_queue_item
from newsletter_queue.models.newsletter import (
    Company,
    QueueItem,
    QueueStatus,
    SectionStatus,
    SectionType,
)
from newsletter_queue.services.openai_service import ContentProvider
from newsletter_queue.services.prompts import (
    build_image_prompt,
    build_messages,
    parse_section_content,
    render_prompt,
)
from newsletter_queue.services.queue_store import QueueStore


@dataclass
class JobResult:
    """Outcome of processing one queue item."""

    success: bool
    queue_item_id: int
    claimed: bool = True
    status: Optional[QueueStatus] = None
    newsletter_id: Optional[uuid.UUID] = None
    section_number: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    retryable: bool = False


class JobProcessor(LoggerMixin):
    """Claims a queue item, generates its section and records the outcome.

    process() never raises: every failure ends as a queue status update and,
    when terminal, a failed section with its error message.
    """

    def __init__(
        self,
        db: Database,
        queue_store: QueueStore,
        provider: ContentProvider,
        config: ApplicationConfig,
    ):
        self.db = db
        self.queue_store = queue_store
        self.provider = provider
        self.config = config

    async def process(self, queue_item_id: int) -> JobResult:
        """Process one queue item by id."""
        try:
            item = await self.queue_store.get(queue_item_id)
        except NewsletterQueueError as e:
            self.logger.error("Queue item lookup failed", queue_item_id=queue_item_id, error=e.message)
            return JobResult(
                success=False,
                queue_item_id=queue_item_id,
                claimed=False,
                error=e.message,
                retryable=is_retryable(e),
            )

        if item is None:
            self.logger.error("Queue item not found", queue_item_id=queue_item_id)
            return JobResult(
                success=False,
                queue_item_id=queue_item_id,
                claimed=False,
                error=f"Queue item {queue_item_id} not found",
            )

        try:
            claimed = await self.queue_store.claim(item.id)
        except NewsletterQueueError as e:
            self.logger.error("Queue item claim failed", queue_item_id=item.id, error=e.message)
            return JobResult(
                success=False,
                queue_item_id=item.id,
                claimed=False,
                newsletter_id=item.newsletter_id,
                section_number=item.section_number,
                error=e.message,
                retryable=is_retryable(e),
            )

        if claimed is None:
            return JobResult(
                success=False,
                queue_item_id=item.id,
                claimed=False,
                newsletter_id=item.newsletter_id,
                section_number=item.section_number,
                attempts=item.attempts,
                error="Queue item is not pending",
            )

        try:
            await self._generate_section(claimed)
            await self.queue_store.mark_completed(claimed.id)
        except Exception as e:
            return await self._record_failure(claimed, e)

        bind_queue_item(self.logger, claimed).info("Section generated", attempts=claimed.attempts)
        return JobResult(
            success=True,
            queue_item_id=claimed.id,
            status=QueueStatus.COMPLETED,
            newsletter_id=claimed.newsletter_id,
            section_number=claimed.section_number,
            attempts=claimed.attempts,
        )

    async def resolve_section_type(self, company_id: uuid.UUID, section_type: str) -> SectionType:
        """Company template for the section type, else the global one."""
        candidates = [
            t for t in await self.db.list_section_types(company_id)
            if t.section_type == section_type
        ]
        if not candidates:
            raise ConfigurationError(
                f"No prompt template configured for section type '{section_type}'",
                details={"section_type": section_type, "company_id": str(company_id)},
            )

        company_specific = [t for t in candidates if t.company_id == company_id]
        return company_specific[0] if company_specific else candidates[0]

    async def _generate_section(self, item: QueueItem) -> None:
        newsletter = await self.db.get_newsletter(item.newsletter_id)
        if newsletter is None:
            raise DataIntegrityError(
                f"Newsletter {item.newsletter_id} for queue item {item.id} does not exist"
            )

        company = await self.db.get_company(newsletter.company_id)
        if company is None:
            raise DataIntegrityError(
                f"Company {newsletter.company_id} for newsletter {newsletter.id} does not exist"
            )

        section_found = await self.db.update_section(
            item.newsletter_id,
            item.section_number,
            status=SectionStatus.IN_PROGRESS,
        )
        if not section_found:
            raise DataIntegrityError(
                f"Section {item.section_number} of newsletter {item.newsletter_id} does not exist"
            )

        section_type = await self.resolve_section_type(company.id, item.section_type)
        user_prompt = render_prompt(section_type.prompt_template, company.prompt_context)
        messages, max_tokens = build_messages(
            item.section_type,
            user_prompt,
            context_window=self.config.openai_context_window,
            token_buffer=self.config.openai_token_buffer,
            max_output_tokens=self.config.openai_max_tokens,
        )

        bind_queue_item(self.logger, item).debug("Generating section", max_tokens=max_tokens)
        response = await self.provider.generate_text(messages, max_tokens)
        parsed = parse_section_content(response)

        image_prompt = None
        image_url = None
        if self.config.image_generation_enabled and section_type.generate_image:
            image_prompt = build_image_prompt(parsed.title, item.section_type, company.industry)
            image_url = await self._generate_image(item, company, image_prompt)

        await self.db.update_section(
            item.newsletter_id,
            item.section_number,
            title=parsed.title or section_type.display_title,
            content=parsed.content,
            image_prompt=image_prompt,
            image_url=image_url,
            status=SectionStatus.COMPLETED,
            error_message=None,
        )

    async def _generate_image(self, item: QueueItem, company: Company, prompt: str) -> Optional[str]:
        """Best effort; a failed image never fails the section."""
        try:
            return await self.provider.generate_image(prompt)
        except Exception as e:
            bind_queue_item(self.logger, item).warning(
                "Image generation failed, continuing without image",
                company=company.company_name,
                error=str(e),
            )
            return None

    async def _record_failure(self, item: QueueItem, error: Exception) -> JobResult:
        retryable = is_retryable(error)
        message = getattr(error, "message", None) or str(error) or type(error).__name__

        logger = bind_queue_item(self.logger, item)
        log = logger.warning if retryable else logger.error
        log(
            "Section generation failed",
            attempts=item.attempts,
            retryable=retryable,
            error_type=type(error).__name__,
            error=message,
            exc_info=not isinstance(error, NewsletterQueueError),
        )

        status: Optional[QueueStatus] = None
        try:
            status = await self.queue_store.mark_failed(item.id, message, retryable)
            if status is not None:
                section_status = (
                    SectionStatus.PENDING if status == QueueStatus.PENDING else SectionStatus.FAILED
                )
                await self.db.update_section(
                    item.newsletter_id,
                    item.section_number,
                    status=section_status,
                    content=None,
                    error_message=message,
                )
        except NewsletterQueueError as store_error:
            logger.error("Could not record job failure", error=store_error.message)

        return JobResult(
            success=False,
            queue_item_id=item.id,
            status=status,
            newsletter_id=item.newsletter_id,
            section_number=item.section_number,
            attempts=item.attempts,
            error=message,
            retryable=retryable and status == QueueStatus.PENDING,
        )
