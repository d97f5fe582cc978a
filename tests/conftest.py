import re
from typing import Dict, List, Optional, Union

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from newsletter_queue.infrastructure.api_clients.brevo_api import EmailTransport
from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.database import init_database
from newsletter_queue.infrastructure.error_handling import EmailDeliveryError
from newsletter_queue.models.newsletter import SectionStatus
from newsletter_queue.services.openai_service import ContentProvider

SECTION_TYPE_PATTERN = re.compile(r"Write a (.+?) section")


class FakeContentProvider(ContentProvider):
    """Content provider that answers from a script instead of the network."""

    def __init__(
        self,
        script: Optional[List[Union[str, Exception]]] = None,
        fail_section_types: Optional[Dict[str, Exception]] = None,
        image_url: str = "https://images.example.com/section.png",
        image_error: Optional[Exception] = None,
    ):
        self.script = list(script or [])
        self.fail_section_types = fail_section_types or {}
        self.image_url = image_url
        self.image_error = image_error
        self.text_calls = []
        self.image_calls = []

    async def generate_text(self, messages, max_tokens):
        self.text_calls.append({"messages": messages, "max_tokens": max_tokens})

        match = SECTION_TYPE_PATTERN.search(messages[0]["content"])
        section_label = match.group(1) if match else "section"
        section_type = section_label.replace(" ", "_")

        if section_type in self.fail_section_types:
            raise self.fail_section_types[section_type]

        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        return (
            f"# {section_label.title()} Title\n\n"
            f"First paragraph about {section_label}.\n\n"
            f"Second paragraph about {section_label}."
        )

    async def generate_image(self, prompt):
        self.image_calls.append(prompt)
        if self.image_error:
            raise self.image_error
        return self.image_url


class FakeEmailTransport(EmailTransport):
    """Records sent emails; addresses in fail_for are rejected.

    raise_for maps an address to an arbitrary exception raised for it.
    """

    def __init__(self, fail_for=(), raise_for=None):
        self.fail_for = set(fail_for)
        self.raise_for = dict(raise_for or {})
        self.sent = []

    async def send_email(self, to_email, subject, html, text=None, to_name=None):
        if to_email in self.raise_for:
            raise self.raise_for[to_email]
        if to_email in self.fail_for:
            raise EmailDeliveryError(f"Recipient rejected: {to_email}", status_code=400)
        self.sent.append({
            "to": to_email,
            "name": to_name,
            "subject": subject,
            "html": html,
            "text": text,
        })
        return f"message-{len(self.sent)}"


@pytest.fixture
def config(tmp_path):
    """Settings pointing at a throwaway SQLite file."""
    return ApplicationConfig(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        openai_api_key="test_key",
        brevo_api_key="test_key",
        sender_email="newsletter@example.com",
        worker_poll_interval=0.0,
        worker_initial_retry_delay=5.0,
        worker_max_retry_delay=60.0,
        worker_max_consecutive_errors=5,
        worker_error_cooldown=300.0,
    )


@pytest_asyncio.fixture
async def db(config):
    database = await init_database(config)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def company(db):
    return await db.create_company(
        company_name="Acme Corp",
        industry="Robotics",
        contact_email="owner@acme.io",
        target_audience="factory managers",
        audience_description="Operations leads at mid-sized manufacturers",
        contact_name="Ada Owner",
    )


@pytest_asyncio.fixture
async def newsletter(db, company):
    return await db.create_newsletter(
        company_id=company.id,
        subject="Acme Monthly",
        draft_recipient_email="owner@acme.io",
    )


@pytest.fixture
def provider():
    return FakeContentProvider()


@pytest.fixture
def transport():
    return FakeEmailTransport()


@pytest.fixture
def no_sleep():
    return AsyncMock()


async def complete_sections(db, newsletter_id):
    """Mark every section of a newsletter completed with simple content."""
    for section in await db.list_sections(newsletter_id):
        await db.update_section(
            newsletter_id,
            section.section_number,
            title=f"Title {section.section_number}",
            content=f"Content of section {section.section_number}.",
            status=SectionStatus.COMPLETED,
        )
