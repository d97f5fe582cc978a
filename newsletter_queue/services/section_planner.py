"""Section planning: turns a newsletter into ordered sections and queue jobs."""

import uuid
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.sql import select, update

from newsletter_queue.infrastructure.database import (
    Database,
    NewsletterRow,
    QueueItemRow,
    SectionRow,
    utcnow,
)
from newsletter_queue.infrastructure.error_handling import (
    ConfigurationError,
    NotFoundError,
    handle_service_errors,
)
from newsletter_queue.infrastructure.logging import LoggerMixin
from newsletter_queue.models.newsletter import (
    DraftStatus,
    PlanResult,
    QueueStatus,
    SectionStatus,
    SectionType,
)


def merge_section_types(
    section_types: Iterable[SectionType],
    selected: Optional[Sequence[str]] = None,
) -> List[SectionType]:
    """Resolve the ordered section types for one company.

    A company row replaces the global row with the same section_type. The
    result is ordered by (section_number, section_type); `selected` limits
    the plan but may not drop a required type.
    """
    resolved: Dict[str, SectionType] = {}
    for section_type in section_types:
        current = resolved.get(section_type.section_type)
        if current is None or (current.company_id is None and section_type.company_id is not None):
            resolved[section_type.section_type] = section_type

    if not resolved:
        raise ConfigurationError("No section types are configured")

    ordered = sorted(resolved.values(), key=lambda t: (t.section_number, t.section_type))

    if selected is None:
        return ordered

    wanted = set(selected)
    unknown = wanted - set(resolved)
    if unknown:
        raise ConfigurationError(
            f"Unknown section types: {', '.join(sorted(unknown))}",
            details={"unknown": sorted(unknown)},
        )

    missing_required = [t.section_type for t in ordered if t.required and t.section_type not in wanted]
    if missing_required:
        raise ConfigurationError(
            f"Required section types missing from plan: {', '.join(missing_required)}",
            details={"missing_required": missing_required},
        )

    plan = [t for t in ordered if t.section_type in wanted]
    if not plan:
        raise ConfigurationError("Section plan is empty")
    return plan


class SectionPlanner(LoggerMixin):
    """Creates section rows and one generation job per section."""

    def __init__(self, db: Database):
        self.db = db

    async def resolve_section_types(
        self,
        company_id: uuid.UUID,
        selected: Optional[Sequence[str]] = None,
    ) -> List[SectionType]:
        section_types = await self.db.list_section_types(company_id)
        return merge_section_types(section_types, selected)

    @handle_service_errors("SectionPlanner")
    async def plan(
        self,
        newsletter_id: uuid.UUID,
        selected_section_types: Optional[Sequence[str]] = None,
    ) -> PlanResult:
        """Plan a newsletter's sections and queue jobs.

        Runs in one transaction. Sections that already exist are the plan;
        only missing jobs are added, so re-planning never duplicates rows.

        Raises:
            NotFoundError: The newsletter or its company does not exist
            ConfigurationError: No usable section types, or a required type
                was filtered out
        """
        newsletter = await self.db.get_newsletter(newsletter_id)
        if newsletter is None:
            raise NotFoundError(f"Newsletter {newsletter_id} not found")

        company = await self.db.get_company(newsletter.company_id)
        if company is None:
            raise NotFoundError(
                f"Company {newsletter.company_id} for newsletter {newsletter_id} not found"
            )

        available_types = await self.db.list_section_types(company.id)
        result = PlanResult(newsletter_id=newsletter_id)
        now = utcnow()

        async with self.db.get_session() as session:
            async with session.begin():
                stmt = (
                    select(SectionRow)
                    .where(SectionRow.newsletter_id == newsletter_id)
                    .order_by(SectionRow.section_number)
                )
                section_rows = list((await session.execute(stmt)).scalars().all())

                if not section_rows:
                    section_types = merge_section_types(available_types, selected_section_types)
                    for number, section_type in enumerate(section_types, start=1):
                        row = SectionRow(
                            id=uuid.uuid4(),
                            newsletter_id=newsletter_id,
                            section_number=number,
                            section_type=section_type.section_type,
                            title=section_type.display_title,
                            status=SectionStatus.PENDING.value,
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(row)
                        section_rows.append(row)
                    result.sections_created = len(section_rows)

                stmt = select(QueueItemRow).where(QueueItemRow.newsletter_id == newsletter_id)
                job_rows = {
                    row.section_number: row
                    for row in (await session.execute(stmt)).scalars().all()
                }

                for section in section_rows:
                    if section.section_number in job_rows:
                        continue
                    job = QueueItemRow(
                        newsletter_id=newsletter_id,
                        section_type=section.section_type,
                        section_number=section.section_number,
                        status=QueueStatus.PENDING.value,
                        attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(job)
                    job_rows[section.section_number] = job
                    result.jobs_created += 1

                await session.execute(
                    update(NewsletterRow)
                    .where(
                        NewsletterRow.id == newsletter_id,
                        NewsletterRow.draft_status == DraftStatus.DRAFT.value,
                    )
                    .values(draft_status=DraftStatus.DRAFT_SENT.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.flush()

                result.sections = [row.to_record() for row in section_rows]
                result.jobs = [job_rows[number].to_record() for number in sorted(job_rows)]

        self.logger.info(
            "Newsletter planned",
            newsletter_id=str(newsletter_id),
            sections=len(result.sections),
            sections_created=result.sections_created,
            jobs_created=result.jobs_created,
        )
        return result
