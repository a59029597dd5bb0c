"""Rich-based display functions for Subscription Scanner."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .constants import CONFIDENCE_HIGH, MIN_CONFIDENCE
from .models import ExpenseRecord, Record, SubscriptionRecord, SyncResult, SyncState

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through Rich on the shared console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    for noisy in ("googleapiclient", "httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _confidence_color(confidence: float) -> str:
    """Return a Rich color name based on the confidence value."""
    if confidence >= CONFIDENCE_HIGH:
        return "green"
    if confidence >= MIN_CONFIDENCE:
        return "yellow"
    return "red"


def display_sync_result(result: SyncResult) -> None:
    """Display the ranked subscription candidates of a sync."""
    if result.state is SyncState.FAILED:
        console.print(
            Panel(f"[bold red]{result.error}[/bold red]", title=f"Sync failed: {result.account_id}")
        )
        return

    table = Table(title=f"Subscription Candidates ({result.account_id})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Service")
    table.add_column("Amount", justify="right")
    table.add_column("Date")
    table.add_column("Confidence", justify="right")
    table.add_column("Message", style="dim")

    for idx, candidate in enumerate(result.candidates, start=1):
        color = _confidence_color(candidate.confidence)
        table.add_row(
            str(idx),
            candidate.service_name,
            f"{candidate.amount:.2f}",
            candidate.date,
            f"[{color}]{candidate.confidence:.0f}[/{color}]",
            candidate.message_id,
        )

    console.print(table)

    expenses = [r for r in result.records if isinstance(r, ExpenseRecord)]
    summary = (
        f"Matched: {result.total_found}  |  Scanned: {result.selected}  |  "
        f"Fetched: {result.fetched}  |  Empty: {result.skipped_empty}  |  "
        f"Subscriptions: {len(result.candidates)}  |  Expenses: {len(expenses)}"
    )
    console.print(Panel(summary, title="Summary"))

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def display_record(record: Record) -> None:
    """Display one classified message."""
    color = _confidence_color(record.confidence)
    if isinstance(record, SubscriptionRecord):
        lines = [
            f"[bold]Subscription:[/bold] {record.name}",
            f"[bold]Amount:[/bold] {record.amount:.2f} {record.currency} ({record.frequency})",
            f"[bold]Status:[/bold] {record.status}",
        ]
        if record.next_billing_at:
            lines.append(f"[bold]Next billing:[/bold] {record.next_billing_at.date().isoformat()}")
    else:
        lines = [
            f"[bold]Expense:[/bold] {record.merchant}",
            f"[bold]Amount:[/bold] {record.amount:.2f} {record.currency}",
            f"[bold]Date:[/bold] {record.date.date().isoformat()}",
        ]
    lines.append(f"[bold]Confidence:[/bold] [{color}]{record.confidence:.0f}[/{color}]")
    console.print(Panel("\n".join(lines), title=f"Message {record.message_id}"))
