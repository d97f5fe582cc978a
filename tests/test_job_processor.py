"""Tests for the section job processor."""

import pytest
import pytest_asyncio

from sqlalchemy.sql import delete, update

from conftest import FakeContentProvider
from newsletter_queue.infrastructure.database import CompanyRow, QueueItemRow, SectionTypeRow
from newsletter_queue.infrastructure.error_handling import (
    ContentProviderError,
    TransientProviderError,
)
from newsletter_queue.models.newsletter import QueueStatus, SectionStatus, SectionType
from newsletter_queue.services.job_processor import JobProcessor
from newsletter_queue.services.queue_store import QueueStore
from newsletter_queue.services.section_planner import SectionPlanner


@pytest.fixture
def store(db):
    return QueueStore(db, max_attempts=3)


@pytest_asyncio.fixture
async def plan(db, newsletter):
    return await SectionPlanner(db).plan(newsletter.id)


def make_processor(db, store, provider, config):
    return JobProcessor(db, store, provider, config)


class TestSuccessfulProcessing:
    """Sections generated on the first attempt."""

    @pytest.mark.asyncio
    async def test_generates_section(self, db, store, plan, provider, config, newsletter):
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.success
        assert result.status == QueueStatus.COMPLETED
        assert result.attempts == 1

        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.COMPLETED
        assert section.title == "Welcome Title"
        assert section.content == "First paragraph about welcome.\n\nSecond paragraph about welcome."
        assert section.image_url == provider.image_url
        assert "Welcome Title" in section.image_prompt
        assert section.error_message is None

        item = await store.get(plan.jobs[0].id)
        assert item.status == QueueStatus.COMPLETED
        assert item.error_message is None

    @pytest.mark.asyncio
    async def test_title_only_response_completes(self, db, store, plan, config, newsletter):
        provider = FakeContentProvider(script=["# Just a headline"])
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.success
        assert result.status == QueueStatus.COMPLETED
        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.COMPLETED
        assert section.title == "Just a headline"
        assert section.content == ""
        assert (await store.get(plan.jobs[0].id)).attempts == 1

    @pytest.mark.asyncio
    async def test_prompt_uses_company_context(self, db, store, plan, provider, config):
        processor = make_processor(db, store, provider, config)

        await processor.process(plan.jobs[1].id)

        call = provider.text_calls[0]
        system, user = call["messages"]
        assert "industry trends" in system["content"]
        assert "Robotics" in user["content"]
        assert "factory managers" in user["content"]
        assert "Acme Corp" in user["content"]
        assert "{{" not in user["content"]
        assert 0 < call["max_tokens"] <= config.openai_max_tokens

    @pytest.mark.asyncio
    async def test_missing_company_fields_use_fillers(self, db, store, provider, config):
        company = await db.create_company(
            company_name="Bare Co", industry="Retail", contact_email="bare@example.com"
        )
        newsletter = await db.create_newsletter(company.id, "Bare News")
        plan = await SectionPlanner(db).plan(newsletter.id)
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.success
        user_prompt = provider.text_calls[0]["messages"][1]["content"]
        assert "our readers" in user_prompt
        assert "professionals interested in this topic" in user_prompt

    @pytest.mark.asyncio
    async def test_company_template_overrides_global(
        self, db, store, plan, provider, config, company
    ):
        await db.save_section_type(
            SectionType(
                "welcome",
                "Say hello to {{target_audience}} from the robot shop.",
                section_number=1,
                company_id=company.id,
                required=True,
            )
        )
        processor = make_processor(db, store, provider, config)

        await processor.process(plan.jobs[0].id)

        user_prompt = provider.text_calls[0]["messages"][1]["content"]
        assert user_prompt == "Say hello to factory managers from the robot shop."

    @pytest.mark.asyncio
    async def test_image_failure_does_not_fail_section(
        self, db, store, plan, config, newsletter
    ):
        provider = FakeContentProvider(image_error=ContentProviderError("content policy"))
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.success
        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.COMPLETED
        assert section.image_url is None
        assert section.image_prompt is not None

    @pytest.mark.asyncio
    async def test_images_disabled(self, db, store, plan, provider, config, newsletter):
        config.image_generation_enabled = False
        processor = make_processor(db, store, provider, config)

        await processor.process(plan.jobs[0].id)

        assert provider.image_calls == []
        section = await db.get_section(newsletter.id, 1)
        assert section.image_url is None
        assert section.image_prompt is None

    @pytest.mark.asyncio
    async def test_section_type_without_images(
        self, db, store, provider, config, company, newsletter
    ):
        await db.save_section_type(
            SectionType(
                "welcome",
                "Hello {{company_name}}",
                section_number=1,
                company_id=company.id,
                required=True,
                generate_image=False,
            )
        )
        plan = await SectionPlanner(db).plan(newsletter.id)
        processor = make_processor(db, store, provider, config)

        await processor.process(plan.jobs[0].id)

        assert provider.image_calls == []


class TestFailureHandling:
    """Retry and terminal failure paths."""

    @pytest.mark.asyncio
    async def test_transient_failure_requeues(self, db, store, plan, config, newsletter):
        provider = FakeContentProvider(script=[TransientProviderError("rate limited")])
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert not result.success
        assert result.retryable
        assert result.status == QueueStatus.PENDING

        item = await store.get(plan.jobs[0].id)
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 1
        assert item.error_message == "rate limited"

        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.PENDING
        assert section.content is None

    @pytest.mark.asyncio
    async def test_success_on_second_attempt(self, db, store, plan, config, newsletter):
        provider = FakeContentProvider(script=[TransientProviderError("timeout")])
        processor = make_processor(db, store, provider, config)

        await processor.process(plan.jobs[0].id)
        result = await processor.process(plan.jobs[0].id)

        assert result.success
        item = await store.get(plan.jobs[0].id)
        assert item.status == QueueStatus.COMPLETED
        assert item.attempts == 2
        assert item.error_message is None
        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.COMPLETED
        assert section.error_message is None

    @pytest.mark.asyncio
    async def test_fails_permanently_after_max_attempts(
        self, db, store, plan, config, newsletter
    ):
        provider = FakeContentProvider(
            fail_section_types={"welcome": TransientProviderError("rate limited")}
        )
        processor = make_processor(db, store, provider, config)

        results = [await processor.process(plan.jobs[0].id) for _ in range(4)]

        assert [r.status for r in results[:3]] == [
            QueueStatus.PENDING,
            QueueStatus.PENDING,
            QueueStatus.FAILED,
        ]
        assert not results[2].retryable
        assert results[3].claimed is False

        item = await store.get(plan.jobs[0].id)
        assert item.status == QueueStatus.FAILED
        assert item.attempts == 3
        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.FAILED
        assert section.content is None
        assert section.error_message == "rate limited"

    @pytest.mark.asyncio
    async def test_last_attempt_transient_failure_is_terminal(
        self, db, store, plan, config
    ):
        async with db.get_session() as session:
            await session.execute(
                update(QueueItemRow)
                .where(QueueItemRow.id == plan.jobs[0].id)
                .values(attempts=2)
            )
            await session.commit()
        provider = FakeContentProvider(script=[TransientProviderError("timeout")])
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.status == QueueStatus.FAILED
        item = await store.get(plan.jobs[0].id)
        assert item.attempts == 3
        assert item.status == QueueStatus.FAILED

    @pytest.mark.asyncio
    async def test_empty_response_is_retried(self, db, store, plan, config):
        provider = FakeContentProvider(script=["   "])
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.status == QueueStatus.PENDING
        assert result.retryable

    @pytest.mark.asyncio
    async def test_non_transient_provider_error_is_terminal(
        self, db, store, plan, config, newsletter
    ):
        provider = FakeContentProvider(script=[ContentProviderError("invalid request")])
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.status == QueueStatus.FAILED
        item = await store.get(plan.jobs[0].id)
        assert item.attempts == 1
        section = await db.get_section(newsletter.id, 1)
        assert section.status == SectionStatus.FAILED
        assert section.error_message == "invalid request"

    @pytest.mark.asyncio
    async def test_missing_template_is_terminal(self, db, store, plan, provider, config, newsletter):
        async with db.get_session() as session:
            await session.execute(
                delete(SectionTypeRow).where(SectionTypeRow.section_type == "industry_trends")
            )
            await session.commit()
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[1].id)

        assert result.status == QueueStatus.FAILED
        assert "industry_trends" in result.error
        assert provider.text_calls == []
        section = await db.get_section(newsletter.id, 2)
        assert section.status == SectionStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_company_is_terminal(self, db, store, plan, provider, config, company):
        async with db.get_session() as session:
            await session.execute(delete(CompanyRow).where(CompanyRow.id == company.id))
            await session.commit()
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert result.status == QueueStatus.FAILED
        assert not result.retryable
        assert provider.text_calls == []

    @pytest.mark.asyncio
    async def test_unknown_item(self, db, store, provider, config):
        processor = make_processor(db, store, provider, config)

        result = await processor.process(12345)

        assert not result.success
        assert not result.claimed
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_item_already_claimed(self, db, store, plan, provider, config):
        await store.claim(plan.jobs[0].id)
        processor = make_processor(db, store, provider, config)

        result = await processor.process(plan.jobs[0].id)

        assert not result.claimed
        assert not result.retryable
        assert provider.text_calls == []
