#!/usr/bin/env python3
"""Main entry point for the AI Newsletter Generation Queue."""

import argparse
import asyncio
import signal
import sys
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.database import init_database
from newsletter_queue.infrastructure.error_handling import NewsletterQueueError
from newsletter_queue.infrastructure.logging import get_logger, setup_logging
from newsletter_queue.models.newsletter import OnboardingRequest, QueueStatus
from newsletter_queue.services.onboarding import NewsletterService

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    "pending": "yellow",
    "in_progress": "blue",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def _styled(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


class NewsletterCLI:
    """Command-line interface for the newsletter generation queue."""

    def __init__(self, config: ApplicationConfig):
        self.config = config

    @asynccontextmanager
    async def service(self) -> AsyncIterator[NewsletterService]:
        db = await init_database(self.config)
        try:
            yield NewsletterService(db, self.config)
        finally:
            await db.close()

    async def init_db(self) -> None:
        with console.status("[bold blue]Creating tables..."):
            db = await init_database(self.config, seed=False)
            try:
                seeded = await db.seed_default_section_types()
                section_types = await db.list_section_types()
            finally:
                await db.close()

        table = Table(title="Global Section Types")
        table.add_column("#", style="cyan")
        table.add_column("Type", style="white")
        table.add_column("Title", style="blue")
        table.add_column("Required", style="yellow")
        for section_type in section_types:
            table.add_row(
                str(section_type.section_number),
                section_type.section_type,
                section_type.display_title,
                "yes" if section_type.required else "no",
            )
        console.print(table)
        console.print(f"[green]✓[/green] Database ready ({seeded} section types seeded)")

    async def onboard(self, args: argparse.Namespace) -> None:
        request = OnboardingRequest(
            company_name=args.company,
            industry=args.industry,
            target_audience=args.audience,
            audience_description=args.audience_description,
            contact_email=args.email,
            contact_name=args.name,
        )
        async with self.service() as service:
            company, newsletter = await service.onboard(request)

        console.print(Panel.fit(
            f"[bold]Company:[/bold] {company.company_name} ({company.id})\n"
            f"[bold]Newsletter:[/bold] {newsletter.subject} ({newsletter.id})\n"
            f"[bold]Draft recipient:[/bold] {newsletter.draft_recipient_email}",
            title="Onboarded",
            border_style="green",
        ))

    async def create_newsletter(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            newsletter = await service.create_newsletter(
                args.company_id, args.subject, args.draft_recipient
            )
        console.print(f"[green]✓[/green] Newsletter created: {newsletter.id}")

    async def add_contact(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            contact = await service.add_contact(args.company_id, args.email, args.name)
        console.print(f"[green]✓[/green] Contact active: {contact.email} ({contact.id})")

    async def generate(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            with console.status("[bold green]Planning sections..."):
                outcome = await service.trigger_generation(
                    args.newsletter_id,
                    process_now=args.process,
                    selected_section_types=args.sections,
                )
            progress = await service.newsletter_status(args.newsletter_id)

        plan = outcome.plan
        if plan.already_planned:
            console.print("[yellow]Newsletter was already planned, no rows added[/yellow]")
        else:
            console.print(
                f"[green]✓[/green] Planned {len(plan.sections)} sections "
                f"({plan.sections_created} new sections, {plan.jobs_created} new jobs)"
            )
        if outcome.worker_stats:
            stats = outcome.worker_stats
            console.print(
                f"Processed {stats.processed} jobs, {stats.failed} failed attempts, "
                f"{stats.drafts_sent} drafts sent"
            )
        self._print_progress(progress)

    async def run_worker(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            worker = service.build_worker()

            def signal_handler(signum, frame):
                console.print("\n[yellow]Shutdown signal received. Stopping worker...[/yellow]")
                worker.stop()

            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)

            if args.until_idle:
                stats = await worker.run_until_idle()
            else:
                console.print(Panel.fit(
                    f"Polling every {self.config.worker_poll_interval}s\n"
                    f"Press Ctrl+C to stop",
                    title="Worker Started",
                    border_style="blue",
                ))
                await worker.run()
                stats = worker.stats

        console.print(
            f"Worker finished: {stats.processed} processed, {stats.failed} failed, "
            f"{stats.contended} contended, {stats.cooldowns} cooldowns"
        )

    async def send_draft(self, args: argparse.Namespace) -> bool:
        async with self.service() as service:
            with console.status("[bold blue]Sending draft..."):
                result = await service.send_draft(args.newsletter_id, args.to)

        if result.success:
            console.print(f"[bold green]Draft sent[/bold green] to {result.recipient} ({result.delivery_id})")
            return True
        console.print(f"[bold red]Draft delivery failed:[/bold red] {result.error_message}")
        return False

    async def attach_contacts(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            created = await service.attach_contacts(args.newsletter_id)
        console.print(f"[green]✓[/green] {created} contacts attached")

    async def send(self, args: argparse.Namespace) -> bool:
        async with self.service() as service:
            with console.status("[bold blue]Sending to contacts..."):
                summary = await service.send_to_contacts(args.newsletter_id)

        console.print(f"Sent: [green]{summary.sent}[/green]  Failed: [red]{summary.failed}[/red]")
        for email in summary.failed_recipients:
            console.print(f"  [red]✗[/red] {email}")
        return summary.failed == 0

    async def status(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            progress = await service.newsletter_status(args.newsletter_id)
            stale = await service.stale_jobs()

        self._print_progress(progress)

        if stale:
            table = Table(title=f"Jobs stuck in processing > {self.config.stale_processing_minutes} min")
            table.add_column("Job", style="cyan")
            table.add_column("Newsletter", style="white")
            table.add_column("Section", style="blue")
            table.add_column("Last attempt", style="yellow")
            for item in stale:
                table.add_row(
                    str(item.id),
                    str(item.newsletter_id),
                    str(item.section_number),
                    item.last_attempt_at.strftime("%Y-%m-%d %H:%M:%S") if item.last_attempt_at else "-",
                )
            console.print(table)
            console.print("[dim]Use reset-queue to return them to pending[/dim]")

    async def reset_queue(self, args: argparse.Namespace) -> None:
        async with self.service() as service:
            count = await service.reset_queue(args.newsletter_id)
        console.print(f"[green]✓[/green] {count} queue items reset to pending")

    def _print_progress(self, progress) -> None:
        newsletter = progress.newsletter
        table = Table(title=f"{newsletter.subject} [{newsletter.status.value} / {newsletter.draft_status.value}]")
        table.add_column("#", style="cyan")
        table.add_column("Type", style="white")
        table.add_column("Title", style="blue")
        table.add_column("Section")
        table.add_column("Job")
        table.add_column("Attempts", justify="right")
        table.add_column("Error", style="red")

        jobs = {job.section_number: job for job in progress.jobs}
        for section in progress.sections:
            job = jobs.get(section.section_number)
            table.add_row(
                str(section.section_number),
                section.section_type,
                section.title or "-",
                _styled(section.status.value),
                _styled(job.status.value) if job else "-",
                str(job.attempts) if job else "-",
                (section.error_message or "")[:60],
            )
        console.print(table)

        if progress.all_sections_completed:
            console.print("[bold green]All sections completed, ready to send[/bold green]")
        elif progress.has_permanent_failures:
            console.print(
                f"[bold red]{progress.count_jobs(QueueStatus.FAILED)} jobs failed permanently; "
                f"reset the queue to retry[/bold red]"
            )


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="AI Newsletter Generation Queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  newsletter-queue init-db
  newsletter-queue onboard --company Acme --industry Robotics --email owner@acme.io
  newsletter-queue generate <newsletter-id> --process
  newsletter-queue worker
  newsletter-queue send-draft <newsletter-id>
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create tables and seed default section types")

    onboard_parser = subparsers.add_parser("onboard", help="Onboard a company")
    onboard_parser.add_argument("--company", required=True, help="Company name")
    onboard_parser.add_argument("--industry", required=True, help="Industry")
    onboard_parser.add_argument("--email", required=True, help="Contact email")
    onboard_parser.add_argument("--name", help="Contact name")
    onboard_parser.add_argument("--audience", help="Target audience")
    onboard_parser.add_argument("--audience-description", help="Audience description")

    create_parser_ = subparsers.add_parser("create-newsletter", help="Create a draft newsletter")
    create_parser_.add_argument("company_id", type=uuid.UUID, help="Company ID")
    create_parser_.add_argument("subject", help="Newsletter subject")
    create_parser_.add_argument("--draft-recipient", help="Draft recipient email")

    contact_parser = subparsers.add_parser("add-contact", help="Add a company contact")
    contact_parser.add_argument("company_id", type=uuid.UUID, help="Company ID")
    contact_parser.add_argument("email", help="Contact email")
    contact_parser.add_argument("--name", help="Contact name")

    generate_parser = subparsers.add_parser("generate", help="Plan sections and queue generation jobs")
    generate_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")
    generate_parser.add_argument(
        "--process",
        action="store_true",
        help="Process the queue immediately until it is empty"
    )
    generate_parser.add_argument(
        "--sections",
        nargs="+",
        metavar="SECTION_TYPE",
        help="Only plan these section types (required types must be included)"
    )

    worker_parser = subparsers.add_parser("worker", help="Run the queue worker")
    worker_parser.add_argument(
        "--until-idle",
        action="store_true",
        help="Exit once no pending job is left"
    )

    draft_parser = subparsers.add_parser("send-draft", help="Send the draft preview")
    draft_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")
    draft_parser.add_argument("--to", help="Recipient (defaults to the newsletter's draft recipient)")

    attach_parser = subparsers.add_parser("attach-contacts", help="Attach active contacts as recipients")
    attach_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")

    send_parser = subparsers.add_parser("send", help="Send the newsletter to attached contacts")
    send_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")

    status_parser = subparsers.add_parser("status", help="Show generation progress")
    status_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")

    reset_parser = subparsers.add_parser("reset-queue", help="Return unfinished jobs to pending")
    reset_parser.add_argument("newsletter_id", type=uuid.UUID, help="Newsletter ID")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


async def main(argv: Optional[list] = None) -> int:
    """Main application entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    config = ApplicationConfig()
    setup_logging(
        level="DEBUG" if args.verbose else config.log_level,
        format_type=config.log_format,
        log_file=config.log_file,
    )

    cli = NewsletterCLI(config)
    commands = {
        "init-db": lambda: cli.init_db(),
        "onboard": lambda: cli.onboard(args),
        "create-newsletter": lambda: cli.create_newsletter(args),
        "add-contact": lambda: cli.add_contact(args),
        "generate": lambda: cli.generate(args),
        "worker": lambda: cli.run_worker(args),
        "send-draft": lambda: cli.send_draft(args),
        "attach-contacts": lambda: cli.attach_contacts(args),
        "send": lambda: cli.send(args),
        "status": lambda: cli.status(args),
        "reset-queue": lambda: cli.reset_queue(args),
    }

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        result = await command()
        return 1 if result is False else 0

    except ValidationError as e:
        console.print(f"[bold red]Invalid input:[/bold red]\n{e}")
        return 2
    except NewsletterQueueError as e:
        logger.error("Command failed", command=args.command, error_code=e.error_code, error=e.message)
        console.print(f"[bold red]Error ({e.error_code}):[/bold red] {e.message}")
        return 1
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Operation cancelled by user[/yellow]")
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
