"""Database management and models for the newsletter generation queue."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import or_, select, update

from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.error_handling import handle_service_errors
from newsletter_queue.models.newsletter import (
    Company,
    Contact,
    ContactStatus,
    DraftStatus,
    Newsletter,
    NewsletterContactStatus,
    NewsletterRecipient,
    NewsletterSection,
    NewsletterStatus,
    QueueItem,
    QueueStatus,
    SectionStatus,
    SectionType,
)

Base = declarative_base()

SQLITE_BUSY_TIMEOUT_MS = 10000


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # SQLAlchemy emits BEGIN itself (see _sqlite_on_begin)
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    # Write lock taken at BEGIN; competing claims wait on busy_timeout
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class CompanyRow(Base):
    """Client company and its content-generation context."""

    __tablename__ = "companies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_name = Column(String(255), nullable=False)
    industry = Column(String(255), nullable=False)
    target_audience = Column(String(500), nullable=True)
    audience_description = Column(Text, nullable=True)
    contact_email = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_record(self) -> Company:
        return Company(
            id=self.id,
            company_name=self.company_name,
            industry=self.industry,
            contact_email=self.contact_email,
            target_audience=self.target_audience,
            audience_description=self.audience_description,
            contact_name=self.contact_name,
            created_at=self.created_at,
        )


class ContactRow(Base):
    """Company contact list entries."""

    __tablename__ = "contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    status = Column(String(20), default=ContactStatus.ACTIVE.value, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="unique_company_contact"),
        Index("idx_contacts_company_id", "company_id"),
    )

    def to_record(self) -> Contact:
        return Contact(
            id=self.id,
            company_id=self.company_id,
            email=self.email,
            name=self.name,
            status=ContactStatus(self.status),
        )


class NewsletterRow(Base):
    """Newsletter issues."""

    __tablename__ = "newsletters"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False)
    subject = Column(String(500), nullable=False)
    status = Column(String(20), default=NewsletterStatus.DRAFT.value, nullable=False)
    draft_status = Column(String(20), default=DraftStatus.DRAFT.value, nullable=False)
    draft_recipient_email = Column(String(255), nullable=True)
    sent_at = Column(DateTime, nullable=True)
    sent_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    last_sent_status = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_newsletters_company_id", "company_id"),
    )

    def to_record(self) -> Newsletter:
        return Newsletter(
            id=self.id,
            company_id=self.company_id,
            subject=self.subject,
            status=NewsletterStatus(self.status),
            draft_status=DraftStatus(self.draft_status),
            draft_recipient_email=self.draft_recipient_email,
            sent_count=self.sent_count or 0,
            failed_count=self.failed_count or 0,
            last_sent_status=self.last_sent_status,
            sent_at=self.sent_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SectionTypeRow(Base):
    """Section prompt templates, global (company_id NULL) or per company."""

    __tablename__ = "newsletter_section_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=True)
    section_type = Column(String(100), nullable=False)
    section_number = Column(Integer, default=0, nullable=False)
    title = Column(String(255), nullable=True)
    prompt_template = Column(Text, nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    generate_image = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "section_type", name="unique_company_section_type"),
    )

    def to_record(self) -> SectionType:
        return SectionType(
            section_type=self.section_type,
            prompt_template=self.prompt_template,
            section_number=self.section_number or 0,
            title=self.title,
            company_id=self.company_id,
            required=bool(self.required),
            generate_image=bool(self.generate_image),
        )


class SectionRow(Base):
    """Generated newsletter sections."""

    __tablename__ = "newsletter_sections"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    newsletter_id = Column(Uuid(as_uuid=True), ForeignKey("newsletters.id"), nullable=False)
    section_number = Column(Integer, nullable=False)
    section_type = Column(String(100), nullable=False)
    title = Column(String(500), nullable=True)
    content = Column(Text, nullable=True)
    image_prompt = Column(Text, nullable=True)
    image_url = Column(String(1000), nullable=True)
    status = Column(String(20), default=SectionStatus.PENDING.value, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("newsletter_id", "section_number", name="unique_newsletter_section"),
        Index("idx_newsletter_sections_newsletter_id", "newsletter_id"),
    )

    def to_record(self) -> NewsletterSection:
        return NewsletterSection(
            id=self.id,
            newsletter_id=self.newsletter_id,
            section_number=self.section_number,
            section_type=self.section_type,
            status=SectionStatus(self.status),
            title=self.title,
            content=self.content,
            image_prompt=self.image_prompt,
            image_url=self.image_url,
            error_message=self.error_message,
            updated_at=self.updated_at,
        )


class QueueItemRow(Base):
    """Generation jobs, one per newsletter section."""

    __tablename__ = "newsletter_generation_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    newsletter_id = Column(Uuid(as_uuid=True), ForeignKey("newsletters.id"), nullable=False)
    section_type = Column(String(100), nullable=False)
    section_number = Column(Integer, nullable=False)
    status = Column(String(20), default=QueueStatus.PENDING.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("newsletter_id", "section_number", name="unique_newsletter_job"),
        Index("idx_generation_queue_status_created", "status", "created_at"),
        Index("idx_generation_queue_newsletter_id", "newsletter_id"),
    )

    def to_record(self) -> QueueItem:
        return QueueItem(
            id=self.id,
            newsletter_id=self.newsletter_id,
            section_type=self.section_type,
            section_number=self.section_number,
            status=QueueStatus(self.status),
            attempts=self.attempts or 0,
            last_attempt_at=self.last_attempt_at,
            error_message=self.error_message,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class NewsletterContactRow(Base):
    """Per-recipient send tracking."""

    __tablename__ = "newsletter_contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    newsletter_id = Column(Uuid(as_uuid=True), ForeignKey("newsletters.id"), nullable=False)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("contacts.id"), nullable=False)
    status = Column(String(20), default=NewsletterContactStatus.PENDING.value, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("newsletter_id", "contact_id", name="unique_newsletter_contact"),
        Index("idx_newsletter_contacts_status", "newsletter_id", "status"),
    )


# Global section types seeded on first start. Every template asks for the
# title on the first line because the processor parses it from there.
DEFAULT_SECTION_TYPES: List[Dict[str, Any]] = [
    {
        "section_type": "welcome",
        "section_number": 1,
        "title": "Welcome",
        "required": True,
        "prompt_template": (
            "Write a warm welcome message for the {{company_name}} newsletter, "
            "a company in the {{industry}} industry. Introduce this issue and set "
            "the tone for {{target_audience}}.\n"
            "Audience description: {{audience_description}}\n\n"
            "Start with a short title on its own line, then write approximately 150-200 words."
        ),
    },
    {
        "section_type": "industry_trends",
        "section_number": 2,
        "title": "Industry Trends",
        "required": False,
        "prompt_template": (
            "Write about current trends and innovations in the {{industry}} industry "
            "that would be relevant to {{target_audience}} reading the {{company_name}} "
            "newsletter.\nAudience description: {{audience_description}}\n\n"
            "Start with a short title on its own line, then write approximately 300-400 words."
        ),
    },
    {
        "section_type": "practical_tips",
        "section_number": 3,
        "title": "Practical Tips",
        "required": False,
        "prompt_template": (
            "Provide practical tips and actionable advice related to {{industry}} "
            "that would benefit {{target_audience}}.\n"
            "Audience description: {{audience_description}}\n\n"
            "Start with a short title on its own line, then write approximately 300-400 words."
        ),
    },
]


class Database:
    """Database manager with async support."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url,
            echo=False,  # Set to True for SQL debugging
            pool_pre_ping=True,
        )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _sqlite_on_connect)
            event.listen(self.engine.sync_engine, "begin", _sqlite_on_begin)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init_tables(self) -> None:
        """Initialize database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    def get_session(self) -> AsyncSession:
        """Get database session."""
        return self.session_factory()

    # Section type configuration
    @handle_service_errors("Database")
    async def seed_default_section_types(self) -> int:
        """Insert the global default section types that are missing."""
        async with self.get_session() as session:
            result = await session.execute(
                select(SectionTypeRow.section_type).where(SectionTypeRow.company_id.is_(None))
            )
            existing = set(result.scalars().all())

            created = 0
            for data in DEFAULT_SECTION_TYPES:
                if data["section_type"] in existing:
                    continue
                session.add(SectionTypeRow(company_id=None, **data))
                created += 1

            await session.commit()
            return created

    @handle_service_errors("Database")
    async def save_section_type(self, section_type: SectionType) -> SectionType:
        """Create or replace a section type for its company (or globally)."""
        async with self.get_session() as session:
            stmt = select(SectionTypeRow).where(
                SectionTypeRow.section_type == section_type.section_type,
                SectionTypeRow.company_id.is_(None)
                if section_type.company_id is None
                else SectionTypeRow.company_id == section_type.company_id,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = SectionTypeRow(
                    company_id=section_type.company_id,
                    section_type=section_type.section_type,
                )
                session.add(row)

            row.section_number = section_type.section_number
            row.title = section_type.title
            row.prompt_template = section_type.prompt_template
            row.required = section_type.required
            row.generate_image = section_type.generate_image

            await session.commit()
            return row.to_record()

    @handle_service_errors("Database")
    async def list_section_types(self, company_id: Optional[uuid.UUID] = None) -> List[SectionType]:
        """Global section types plus the company's own, ordered for planning."""
        async with self.get_session() as session:
            condition = SectionTypeRow.company_id.is_(None)
            if company_id is not None:
                condition = or_(condition, SectionTypeRow.company_id == company_id)

            stmt = (
                select(SectionTypeRow)
                .where(condition)
                .order_by(SectionTypeRow.section_number, SectionTypeRow.section_type)
            )
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    # Company operations
    @handle_service_errors("Database")
    async def create_company(
        self,
        company_name: str,
        industry: str,
        contact_email: str,
        target_audience: Optional[str] = None,
        audience_description: Optional[str] = None,
        contact_name: Optional[str] = None,
    ) -> Company:
        """Create a new company."""
        async with self.get_session() as session:
            company = CompanyRow(
                company_name=company_name,
                industry=industry,
                contact_email=contact_email,
                target_audience=target_audience,
                audience_description=audience_description,
                contact_name=contact_name,
            )
            session.add(company)
            await session.commit()
            await session.refresh(company)
            return company.to_record()

    @handle_service_errors("Database")
    async def get_company(self, company_id: uuid.UUID) -> Optional[Company]:
        """Get company by ID."""
        async with self.get_session() as session:
            row = await session.get(CompanyRow, company_id)
            return row.to_record() if row else None

    # Contact operations
    @handle_service_errors("Database")
    async def add_contact(
        self,
        company_id: uuid.UUID,
        email: str,
        name: Optional[str] = None,
    ) -> Contact:
        """Add a contact, reactivating an existing one with the same email."""
        async with self.get_session() as session:
            stmt = select(ContactRow).where(
                ContactRow.company_id == company_id,
                ContactRow.email == email,
            )
            contact = (await session.execute(stmt)).scalar_one_or_none()
            if contact is None:
                contact = ContactRow(company_id=company_id, email=email, name=name)
                session.add(contact)
            else:
                contact.status = ContactStatus.ACTIVE.value
                if name:
                    contact.name = name

            await session.commit()
            await session.refresh(contact)
            return contact.to_record()

    @handle_service_errors("Database")
    async def list_active_contacts(self, company_id: uuid.UUID) -> List[Contact]:
        """Active contacts for a company."""
        async with self.get_session() as session:
            stmt = (
                select(ContactRow)
                .where(
                    ContactRow.company_id == company_id,
                    ContactRow.status == ContactStatus.ACTIVE.value,
                )
                .order_by(ContactRow.created_at, ContactRow.email)
            )
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    # Newsletter operations
    @handle_service_errors("Database")
    async def create_newsletter(
        self,
        company_id: uuid.UUID,
        subject: str,
        draft_recipient_email: Optional[str] = None,
    ) -> Newsletter:
        """Create a draft newsletter."""
        async with self.get_session() as session:
            newsletter = NewsletterRow(
                company_id=company_id,
                subject=subject,
                status=NewsletterStatus.DRAFT.value,
                draft_status=DraftStatus.DRAFT.value,
                draft_recipient_email=draft_recipient_email,
            )
            session.add(newsletter)
            await session.commit()
            await session.refresh(newsletter)
            return newsletter.to_record()

    @handle_service_errors("Database")
    async def get_newsletter(self, newsletter_id: uuid.UUID) -> Optional[Newsletter]:
        """Get newsletter by ID."""
        async with self.get_session() as session:
            row = await session.get(NewsletterRow, newsletter_id)
            return row.to_record() if row else None

    @handle_service_errors("Database")
    async def update_newsletter(self, newsletter_id: uuid.UUID, **values: Any) -> None:
        """Update newsletter columns; enum values are stored by value."""
        values = {
            key: value.value if hasattr(value, "value") else value
            for key, value in values.items()
        }
        values["updated_at"] = utcnow()
        async with self.get_session() as session:
            await session.execute(
                update(NewsletterRow)
                .where(NewsletterRow.id == newsletter_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # Section operations
    @handle_service_errors("Database")
    async def list_sections(self, newsletter_id: uuid.UUID) -> List[NewsletterSection]:
        """Sections of a newsletter ordered by section number."""
        async with self.get_session() as session:
            stmt = (
                select(SectionRow)
                .where(SectionRow.newsletter_id == newsletter_id)
                .order_by(SectionRow.section_number)
            )
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    @handle_service_errors("Database")
    async def get_section(
        self, newsletter_id: uuid.UUID, section_number: int
    ) -> Optional[NewsletterSection]:
        """Get the section identified by (newsletter_id, section_number)."""
        async with self.get_session() as session:
            stmt = select(SectionRow).where(
                SectionRow.newsletter_id == newsletter_id,
                SectionRow.section_number == section_number,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return row.to_record() if row else None

    @handle_service_errors("Database")
    async def update_section(
        self, newsletter_id: uuid.UUID, section_number: int, **values: Any
    ) -> bool:
        """Update one section; returns False when no row matched."""
        values = {
            key: value.value if isinstance(value, SectionStatus) else value
            for key, value in values.items()
        }
        values["updated_at"] = utcnow()
        async with self.get_session() as session:
            result = await session.execute(
                update(SectionRow)
                .where(
                    SectionRow.newsletter_id == newsletter_id,
                    SectionRow.section_number == section_number,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    # Recipient tracking
    @handle_service_errors("Database")
    async def attach_contacts(self, newsletter_id: uuid.UUID, contacts: List[Contact]) -> int:
        """Create pending recipient rows for contacts not yet attached."""
        async with self.get_session() as session:
            result = await session.execute(
                select(NewsletterContactRow.contact_id).where(
                    NewsletterContactRow.newsletter_id == newsletter_id
                )
            )
            attached = set(result.scalars().all())

            created = 0
            for contact in contacts:
                if contact.id in attached:
                    continue
                session.add(NewsletterContactRow(newsletter_id=newsletter_id, contact_id=contact.id))
                created += 1

            await session.commit()
            return created

    @handle_service_errors("Database")
    async def list_recipients(
        self,
        newsletter_id: uuid.UUID,
        status: Optional[NewsletterContactStatus] = None,
    ) -> List[NewsletterRecipient]:
        """Recipients of a newsletter, optionally filtered by send status."""
        async with self.get_session() as session:
            stmt = (
                select(NewsletterContactRow, ContactRow)
                .join(ContactRow, ContactRow.id == NewsletterContactRow.contact_id)
                .where(NewsletterContactRow.newsletter_id == newsletter_id)
                .order_by(NewsletterContactRow.created_at, ContactRow.email)
            )
            if status is not None:
                stmt = stmt.where(NewsletterContactRow.status == status.value)

            result = await session.execute(stmt)
            return [
                NewsletterRecipient(
                    newsletter_contact_id=link.id,
                    contact=contact.to_record(),
                    status=NewsletterContactStatus(link.status),
                    sent_at=link.sent_at,
                    error_message=link.error_message,
                )
                for link, contact in result.all()
            ]

    @handle_service_errors("Database")
    async def record_recipient_results(self, results: Dict[uuid.UUID, Dict[str, Any]]) -> None:
        """Store per-recipient send outcomes keyed by newsletter_contact id."""
        async with self.get_session() as session:
            for newsletter_contact_id, values in results.items():
                values = dict(values)
                status = values.get("status")
                if isinstance(status, NewsletterContactStatus):
                    values["status"] = status.value
                values["updated_at"] = utcnow()
                await session.execute(
                    update(NewsletterContactRow)
                    .where(NewsletterContactRow.id == newsletter_contact_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()


async def init_database(config: ApplicationConfig, seed: bool = True) -> Database:
    """Initialize database with configuration."""
    db = Database(config.async_database_url)
    await db.init_tables()
    if seed:
        await db.seed_default_section_types()
    return db
