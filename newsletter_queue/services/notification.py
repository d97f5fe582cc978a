"""Draft and contact-list delivery of generated newsletters."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from newsletter_queue.infrastructure.api_clients.brevo_api import EmailTransport
from newsletter_queue.infrastructure.database import Database, utcnow
from newsletter_queue.infrastructure.error_handling import NotFoundError, PreconditionError
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.email import (
    DeliveryResult,
    DeliveryStatus,
    EmailContent,
    RecipientOutcome,
    SendSummary,
)
from newsletter_queue.models.newsletter import (
    Company,
    DraftStatus,
    Newsletter,
    NewsletterContactStatus,
    NewsletterRecipient,
    NewsletterSection,
    NewsletterStatus,
)
from newsletter_queue.services.email_generation import EmailGenerationService


class NewsletterDispatcher(LoggerMixin):
    """Service for newsletter email delivery with per-recipient tracking."""

    def __init__(
        self,
        db: Database,
        transport: EmailTransport,
        email_generator: Optional[EmailGenerationService] = None,
        max_concurrent_sends: int = 5,
    ):
        self.db = db
        self.transport = transport
        self.email_generator = email_generator or EmailGenerationService()
        self.max_concurrent_sends = max_concurrent_sends

    async def _load_complete_newsletter(
        self, newsletter_id: uuid.UUID
    ) -> Tuple[Newsletter, Company, List[NewsletterSection]]:
        """Newsletter, company and sections, requiring every section completed."""
        newsletter = await self.db.get_newsletter(newsletter_id)
        if newsletter is None:
            raise NotFoundError(f"Newsletter {newsletter_id} not found")

        company = await self.db.get_company(newsletter.company_id)
        if company is None:
            raise NotFoundError(f"Company {newsletter.company_id} not found")

        sections = await self.db.list_sections(newsletter_id)
        if not sections:
            raise PreconditionError(
                f"Newsletter {newsletter_id} has no sections",
                details={"newsletter_id": str(newsletter_id)},
            )

        incomplete = [s.section_number for s in sections if not s.is_completed]
        if incomplete:
            raise PreconditionError(
                f"Newsletter {newsletter_id} has sections that are not completed: {incomplete}",
                details={"newsletter_id": str(newsletter_id), "incomplete_sections": incomplete},
            )

        return newsletter, company, sections

    async def send_draft(self, newsletter_id: uuid.UUID, recipient_email: str) -> DeliveryResult:
        """Send the draft preview to one recipient.

        Raises:
            NotFoundError: The newsletter or its company does not exist
            PreconditionError: Some section is not completed; nothing is sent
        """
        newsletter, company, sections = await self._load_complete_newsletter(newsletter_id)

        self.logger.info(
            "Sending draft",
            newsletter_id=str(newsletter_id),
            recipient=recipient_email,
            sections=len(sections),
        )

        email_content = await self.email_generator.generate_newsletter_email(
            newsletter, company, sections, is_draft=True
        )
        result = await self.transport.send_newsletter(email_content, recipient_email)

        if result.success:
            await self.db.update_newsletter(newsletter_id, draft_status=DraftStatus.DRAFT_SENT)
            self.logger.info(
                "Draft sent",
                newsletter_id=str(newsletter_id),
                delivery_id=result.delivery_id,
            )
        else:
            self.logger.error(
                "Draft delivery failed",
                newsletter_id=str(newsletter_id),
                recipient=recipient_email,
                error=result.error_message,
            )

        return result

    async def attach_contacts(self, newsletter_id: uuid.UUID) -> int:
        """Attach the company's active contacts as pending recipients."""
        newsletter = await self.db.get_newsletter(newsletter_id)
        if newsletter is None:
            raise NotFoundError(f"Newsletter {newsletter_id} not found")

        contacts = await self.db.list_active_contacts(newsletter.company_id)
        created = await self.db.attach_contacts(newsletter_id, contacts)

        draft_status = DraftStatus.READY_TO_SEND if contacts else DraftStatus.PENDING_CONTACTS
        await self.db.update_newsletter(newsletter_id, draft_status=draft_status)

        self.logger.info(
            "Contacts attached",
            newsletter_id=str(newsletter_id),
            active_contacts=len(contacts),
            newly_attached=created,
            draft_status=draft_status.value,
        )
        return created

    async def _send_one(
        self,
        semaphore: asyncio.Semaphore,
        email_content: EmailContent,
        recipient: NewsletterRecipient,
    ) -> RecipientOutcome:
        async with semaphore:
            result = await self.transport.send_newsletter(
                email_content,
                recipient.contact.email,
                recipient.contact.name,
            )
        return RecipientOutcome(
            newsletter_contact_id=recipient.newsletter_contact_id,
            email=recipient.contact.email,
            result=result,
        )

    async def send_to_contacts(self, newsletter_id: uuid.UUID) -> SendSummary:
        """Send the newsletter to every pending recipient.

        Recipients succeed or fail independently; nothing is rolled back.
        The newsletter is published only when no recipient failed.
        """
        newsletter, company, sections = await self._load_complete_newsletter(newsletter_id)

        recipients = await self.db.list_recipients(newsletter_id, NewsletterContactStatus.PENDING)
        summary = SendSummary(newsletter_id=newsletter_id)
        if not recipients:
            self.logger.warning("No pending recipients", newsletter_id=str(newsletter_id))
            await self.db.update_newsletter(newsletter_id, draft_status=DraftStatus.PENDING_CONTACTS)
            return summary

        await self.db.update_newsletter(newsletter_id, draft_status=DraftStatus.SENDING)

        email_content = await self.email_generator.generate_newsletter_email(
            newsletter, company, sections, is_draft=False
        )

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)
        summary.outcomes = list(
            await asyncio.gather(
                *(self._send_one(semaphore, email_content, r) for r in recipients)
            )
        )

        now = utcnow()
        await self.db.record_recipient_results({
            outcome.newsletter_contact_id: {
                "status": NewsletterContactStatus.SENT if outcome.result.success else NewsletterContactStatus.FAILED,
                "sent_at": now if outcome.result.success else None,
                "error_message": outcome.result.error_message,
            }
            for outcome in summary.outcomes
        })

        tracked = await self.db.list_recipients(newsletter_id)
        all_sent = summary.failed == 0
        await self.db.update_newsletter(
            newsletter_id,
            status=NewsletterStatus.PUBLISHED if all_sent else NewsletterStatus.DRAFT,
            draft_status=DraftStatus.SENT if all_sent else DraftStatus.FAILED,
            sent_count=sum(1 for r in tracked if r.status == NewsletterContactStatus.SENT),
            failed_count=sum(1 for r in tracked if r.status == NewsletterContactStatus.FAILED),
            last_sent_status=(
                DeliveryStatus.SENT.value if all_sent else f"partial: {summary.failed} failed"
            ),
            sent_at=now if summary.sent else newsletter.sent_at,
        )

        log = self.logger.info if all_sent else self.logger.warning
        log(
            "Newsletter sent to contacts",
            newsletter_id=str(newsletter_id),
            sent=summary.sent,
            failed=summary.failed,
            failed_recipients=summary.failed_recipients,
            finished_at=datetime.now(timezone.utc).isoformat(),
        )
        return summary
