"""Tests for newsletter email rendering."""

import uuid

import pytest

from newsletter_queue.models.newsletter import Company, Newsletter, NewsletterSection, SectionStatus
from newsletter_queue.services.email_generation import EmailGenerationService, split_paragraphs


@pytest.fixture
def company():
    return Company(
        id=uuid.uuid4(),
        company_name="Acme Corp",
        industry="Robotics",
        contact_email="owner@acme.io",
    )


@pytest.fixture
def newsletter(company):
    return Newsletter(id=uuid.uuid4(), company_id=company.id, subject="Acme Monthly")


def make_section(newsletter, number, title, content, image_url=None):
    return NewsletterSection(
        id=uuid.uuid4(),
        newsletter_id=newsletter.id,
        section_number=number,
        section_type="welcome",
        status=SectionStatus.COMPLETED,
        title=title,
        content=content,
        image_url=image_url,
    )


class TestSplitParagraphs:
    def test_splits_on_blank_lines(self):
        assert split_paragraphs("One.\n\nTwo\ncontinued.\n \nThree.") == [
            "One.",
            "Two continued.",
            "Three.",
        ]

    def test_empty_content(self):
        assert split_paragraphs(None) == []
        assert split_paragraphs("") == []


class TestEmailGenerationService:
    """Rendering completed sections into email content."""

    @pytest.mark.asyncio
    async def test_sections_rendered_in_order(self, company, newsletter):
        sections = [
            make_section(newsletter, 3, "Third Heading", "Tips."),
            make_section(newsletter, 1, "First Heading", "Hello.", "https://img.example.com/1.png"),
            make_section(newsletter, 2, "Second Heading", "Trends."),
        ]

        email = await EmailGenerationService().generate_newsletter_email(
            newsletter, company, sections
        )

        html = email.html
        assert html.index("First Heading") < html.index("Second Heading") < html.index("Third Heading")
        assert "https://img.example.com/1.png" in html
        assert "Acme Corp" in html
        assert email.subject == "Acme Monthly"
        assert "Draft preview" not in html
        assert email.text.index("FIRST HEADING") < email.text.index("THIRD HEADING")
        assert email.preview_text == "Hello."

    @pytest.mark.asyncio
    async def test_draft_subject_and_banner(self, company, newsletter):
        sections = [make_section(newsletter, 1, "Welcome", "Hi.")]

        email = await EmailGenerationService().generate_newsletter_email(
            newsletter, company, sections, is_draft=True
        )

        assert email.subject == "[DRAFT] Acme Monthly"
        assert "Draft preview" in email.html
        assert "draft" in email.tags

    @pytest.mark.asyncio
    async def test_generated_text_is_escaped(self, company, newsletter):
        sections = [make_section(newsletter, 1, "Welcome", "Beware <script>alert(1)</script> tags.")]

        email = await EmailGenerationService().generate_newsletter_email(
            newsletter, company, sections
        )

        assert "<script>" not in email.html
