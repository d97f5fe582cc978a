"""Email generation service rendering newsletter sections to HTML."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from premailer import Premailer

from newsletter_queue.infrastructure.config import get_templates_dir
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.email import EmailContent, SectionTemplateData, TemplateData
from newsletter_queue.models.newsletter import Company, Newsletter, NewsletterSection

DRAFT_SUBJECT_PREFIX = "[DRAFT] "
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def split_paragraphs(content: Optional[str]) -> List[str]:
    """Split section text on blank lines, joining wrapped lines."""
    if not content:
        return []
    paragraphs = []
    for block in PARAGRAPH_BREAK.split(content.strip()):
        text = " ".join(line.strip() for line in block.splitlines() if line.strip())
        if text:
            paragraphs.append(text)
    return paragraphs


class EmailGenerationService(LoggerMixin):
    """Service for generating HTML emails from completed newsletter sections."""

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = templates_dir or get_templates_dir()
        self.jinja_env = self._setup_jinja_environment()
        self.css_inliner = Premailer(
            remove_classes=False,
            keep_style_tags=True,
            strip_important=False,
            disable_validation=True,
            cssutils_logging_level=logging.CRITICAL,
        )

    def _setup_jinja_environment(self) -> Environment:
        """Set up Jinja2 environment with proper configuration."""
        return Environment(
            loader=FileSystemLoader(self.templates_dir),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    async def generate_newsletter_email(
        self,
        newsletter: Newsletter,
        company: Company,
        sections: List[NewsletterSection],
        is_draft: bool = False,
    ) -> EmailContent:
        """Generate complete email content for a newsletter.

        Args:
            newsletter: Newsletter being sent
            company: Owning company, used for the header
            sections: Completed sections, in any order
            is_draft: Prefix the subject and show the draft banner

        Returns:
            Complete email content ready for sending
        """
        ordered = sorted(sections, key=lambda s: s.section_number)
        subject = f"{DRAFT_SUBJECT_PREFIX}{newsletter.subject}" if is_draft else newsletter.subject

        template_data = TemplateData(
            subject=subject,
            company_name=company.company_name,
            sections=[
                SectionTemplateData(
                    section_number=section.section_number,
                    title=section.title or section.section_type.replace("_", " ").title(),
                    paragraphs=split_paragraphs(section.content),
                    image_url=section.image_url,
                )
                for section in ordered
            ],
            is_draft=is_draft,
            generated_on=datetime.now().strftime("%B %d, %Y"),
        )

        html_content = self._render_html_template(template_data)
        inlined_html = self._inline_css(html_content)
        text_content = self._generate_text_version(template_data)

        email_content = EmailContent(
            html=inlined_html,
            text=text_content,
            subject=subject,
            preview_text=self._generate_preview_text(template_data),
            tags=["newsletter", "draft" if is_draft else "send"],
            metadata={
                "newsletter_id": str(newsletter.id),
                "company_id": str(company.id),
                "sections": [section.title for section in template_data.sections],
            },
        )

        self.logger.info(
            "Newsletter email generated",
            newsletter_id=str(newsletter.id),
            sections_count=len(ordered),
            email_size_kb=round(email_content.estimated_size_kb, 1),
            is_draft=is_draft,
        )
        return email_content

    def _render_html_template(self, template_data: TemplateData) -> str:
        """Render HTML email template with data."""
        template = self.jinja_env.get_template("email/newsletter.html")
        return template.render(**template_data.__dict__)

    def _inline_css(self, html_content: str) -> str:
        """Inline CSS styles for better email client compatibility."""
        try:
            return self.css_inliner.transform(html_content)
        except Exception as e:
            self.logger.warning("Failed to inline CSS, using original HTML", error=str(e))
            return html_content

    def _generate_text_version(self, template_data: TemplateData) -> str:
        """Generate plain text version of the newsletter."""
        lines = [template_data.company_name, template_data.subject, ""]

        for section in template_data.sections:
            lines.append(section.title.upper())
            lines.append("-" * 40)
            for paragraph in section.paragraphs:
                lines.append(paragraph)
                lines.append("")
            if section.image_url:
                lines.append(f"Image: {section.image_url}")
                lines.append("")

        lines.append(f"Generated on {template_data.generated_on}")
        return "\n".join(lines)

    def _generate_preview_text(self, template_data: TemplateData) -> str:
        """Generate email preview text."""
        for section in template_data.sections:
            if section.paragraphs:
                return section.paragraphs[0][:120]
        return template_data.subject
