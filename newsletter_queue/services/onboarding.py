"""Company onboarding, newsletter creation and generation triggers."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from newsletter_queue.infrastructure.api_clients.brevo_api import BrevoEmailClient, EmailTransport
from newsletter_queue.infrastructure.api_clients.rate_limiter import SleepFunc
from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.database import Database
from newsletter_queue.infrastructure.error_handling import NotFoundError, PreconditionError
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.email import DeliveryResult, SendSummary
from newsletter_queue.models.newsletter import (
    Company,
    Contact,
    ContactCreateRequest,
    Newsletter,
    NewsletterCreateRequest,
    NewsletterProgress,
    OnboardingRequest,
    PlanResult,
    QueueItem,
)
from newsletter_queue.services.job_processor import JobProcessor
from newsletter_queue.services.notification import NewsletterDispatcher
from newsletter_queue.services.openai_service import ContentProvider, OpenAIContentProvider
from newsletter_queue.services.queue_store import QueueStore
from newsletter_queue.services.section_planner import SectionPlanner
from newsletter_queue.workflows.worker import QueueWorker, WorkerStats


@dataclass
class GenerationOutcome:
    """Result of triggering generation for a newsletter."""

    plan: PlanResult
    worker_stats: Optional[WorkerStats] = None


class NewsletterService(LoggerMixin):
    """Entry point used by the CLI and any thin HTTP layer.

    Collaborators are built from configuration on first use; tests inject
    fakes for the content provider and email transport.
    """

    def __init__(
        self,
        db: Database,
        config: ApplicationConfig,
        provider: Optional[ContentProvider] = None,
        transport: Optional[EmailTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.db = db
        self.config = config
        self.sleep = sleep
        self.planner = SectionPlanner(db)
        self.queue_store = QueueStore(db, max_attempts=config.max_attempts)
        self._provider = provider
        self._transport = transport
        self._dispatcher: Optional[NewsletterDispatcher] = None

    @property
    def email_configured(self) -> bool:
        return self._transport is not None or bool(
            self.config.brevo_api_key and self.config.sender_email
        )

    @property
    def dispatcher(self) -> NewsletterDispatcher:
        if self._dispatcher is None:
            if self._transport is None:
                self._transport = BrevoEmailClient.from_config(self.config)
            self._dispatcher = NewsletterDispatcher(
                self.db,
                self._transport,
                max_concurrent_sends=self.config.max_concurrent_sends,
            )
        return self._dispatcher

    @property
    def provider(self) -> ContentProvider:
        if self._provider is None:
            self._provider = OpenAIContentProvider(self.config, sleep=self.sleep)
        return self._provider

    def build_worker(self) -> QueueWorker:
        """Worker wired to this service's store, provider and dispatcher."""
        processor = JobProcessor(self.db, self.queue_store, self.provider, self.config)
        dispatcher = self.dispatcher if self.email_configured else None
        if dispatcher is None:
            self.logger.warning("Email transport not configured, drafts will not be sent automatically")
        return QueueWorker(
            self.db,
            self.queue_store,
            processor,
            self.config,
            dispatcher=dispatcher,
            sleep=self.sleep,
        )

    async def onboard(
        self,
        request: OnboardingRequest,
        plan_sections: bool = True,
    ) -> Tuple[Company, Newsletter]:
        """Create a company, its first draft newsletter and its first contact."""
        company = await self.db.create_company(
            company_name=request.company_name,
            industry=request.industry,
            contact_email=str(request.contact_email),
            target_audience=request.target_audience,
            audience_description=request.audience_description,
            contact_name=request.contact_name,
        )
        newsletter = await self.db.create_newsletter(
            company_id=company.id,
            subject=f"{company.company_name} Newsletter",
            draft_recipient_email=company.contact_email,
        )
        await self.db.add_contact(company.id, company.contact_email, request.contact_name)

        if plan_sections:
            await self.planner.plan(newsletter.id)

        self.logger.info(
            "Company onboarded",
            company_id=str(company.id),
            newsletter_id=str(newsletter.id),
            company_name=company.company_name,
        )
        return company, await self.db.get_newsletter(newsletter.id)

    async def create_newsletter(
        self,
        company_id: uuid.UUID,
        subject: str,
        draft_recipient_email: Optional[str] = None,
    ) -> Newsletter:
        """Create a draft newsletter for an existing company."""
        request = NewsletterCreateRequest(
            company_id=company_id,
            subject=subject,
            draft_recipient_email=draft_recipient_email,
        )
        company = await self.db.get_company(request.company_id)
        if company is None:
            raise NotFoundError(f"Company {request.company_id} not found")

        newsletter = await self.db.create_newsletter(
            company_id=company.id,
            subject=request.subject,
            draft_recipient_email=(
                str(request.draft_recipient_email) if request.draft_recipient_email else None
            ),
        )
        self.logger.info(
            "Newsletter created",
            newsletter_id=str(newsletter.id),
            company_id=str(company.id),
        )
        return newsletter

    async def add_contact(
        self,
        company_id: uuid.UUID,
        email: str,
        name: Optional[str] = None,
    ) -> Contact:
        request = ContactCreateRequest(company_id=company_id, email=email, name=name)
        if await self.db.get_company(request.company_id) is None:
            raise NotFoundError(f"Company {request.company_id} not found")
        return await self.db.add_contact(request.company_id, str(request.email), request.name)

    async def trigger_generation(
        self,
        newsletter_id: uuid.UUID,
        process_now: bool = False,
        selected_section_types: Optional[Sequence[str]] = None,
    ) -> GenerationOutcome:
        """Plan the newsletter and optionally drain the queue right away."""
        plan = await self.planner.plan(newsletter_id, selected_section_types)
        outcome = GenerationOutcome(plan=plan)

        if process_now:
            worker = self.build_worker()
            outcome.worker_stats = await worker.run_until_idle()

        return outcome

    async def send_draft(
        self,
        newsletter_id: uuid.UUID,
        recipient_email: Optional[str] = None,
    ) -> DeliveryResult:
        """Send the draft to the given address or the newsletter's draft recipient."""
        if recipient_email is None:
            newsletter = await self.db.get_newsletter(newsletter_id)
            if newsletter is None:
                raise NotFoundError(f"Newsletter {newsletter_id} not found")
            recipient_email = newsletter.draft_recipient_email
            if not recipient_email:
                raise PreconditionError(f"Newsletter {newsletter_id} has no draft recipient")
        return await self.dispatcher.send_draft(newsletter_id, recipient_email)

    async def attach_contacts(self, newsletter_id: uuid.UUID) -> int:
        return await self.dispatcher.attach_contacts(newsletter_id)

    async def send_to_contacts(self, newsletter_id: uuid.UUID) -> SendSummary:
        return await self.dispatcher.send_to_contacts(newsletter_id)

    async def newsletter_status(self, newsletter_id: uuid.UUID) -> NewsletterProgress:
        newsletter = await self.db.get_newsletter(newsletter_id)
        if newsletter is None:
            raise NotFoundError(f"Newsletter {newsletter_id} not found")
        return NewsletterProgress(
            newsletter=newsletter,
            sections=await self.db.list_sections(newsletter_id),
            jobs=await self.queue_store.list_for_newsletter(newsletter_id),
        )

    async def reset_queue(self, newsletter_id: uuid.UUID) -> int:
        """Operator tool: put unfinished jobs and sections back to pending."""
        if await self.db.get_newsletter(newsletter_id) is None:
            raise NotFoundError(f"Newsletter {newsletter_id} not found")
        return await self.queue_store.reset_for_newsletter(newsletter_id)

    async def stale_jobs(self) -> List[QueueItem]:
        return await self.queue_store.find_stale_processing(
            timedelta(minutes=self.config.stale_processing_minutes)
        )
