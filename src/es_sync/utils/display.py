"""
Rich Terminal Display Components.

Tables for pass results and checkpoints, plus one-line status helpers.
"""

from __future__ import annotations

from typing import Any, Iterable

from rich.console import Console
from rich.table import Table

from es_sync.core.checkpoint import CheckpointRecord
from es_sync.core.engine import PassStatus, SyncStats


console = Console()

_STATUS_STYLES = {
    PassStatus.COMPLETED: "[green]✓ completed[/green]",
    PassStatus.UP_TO_DATE: "[green]✓ up to date[/green]",
    PassStatus.STOPPED: "[yellow]■ stopped[/yellow]",
    PassStatus.FAILED: "[red]✗ failed[/red]",
    PassStatus.SKIPPED: "[dim]skipped[/dim]",
    PassStatus.DISABLED: "[red]disabled[/red]",
    PassStatus.PENDING: "[dim]pending[/dim]",
}


def format_status(status: PassStatus) -> str:
    """Format status with color."""
    return _STATUS_STYLES.get(status, status.value)


def print_results(results: Iterable[SyncStats]) -> None:
    """Print one row per relation after a sync run."""
    table = Table(title="Sync Results", border_style="green")
    table.add_column("Relation", style="cyan")
    table.add_column("Status")
    table.add_column("Pages", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Written", justify="right")
    table.add_column("Tie Rounds", justify="right")
    table.add_column("Checkpoint")
    table.add_column("Duration", justify="right")

    for stats in results:
        table.add_row(
            stats.relation,
            format_status(stats.status),
            f"{stats.pages:,}",
            f"{stats.rows_fetched:,}",
            f"{stats.documents_written:,}",
            f"{stats.tie_rounds:,}",
            stats.cursor or "[dim]none[/dim]",
            f"{stats.duration_seconds:.1f}s",
        )

    console.print(table)


def print_summary(stats: dict[str, Any]) -> None:
    """Print totals after sync completion."""
    table = Table(title="Sync Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Relations", f"{stats.get('relations', 0)}")
    table.add_row("Failed", f"{stats.get('failed', 0)}")
    table.add_row("Stopped", f"{stats.get('stopped', 0)}")
    table.add_row("Rows Fetched", f"{stats.get('rows_fetched', 0):,}")
    table.add_row("Documents Written", f"{stats.get('documents_written', 0):,}")
    table.add_row("Duration", f"{stats.get('duration', 0):.1f}s")

    console.print(table)


def print_checkpoints(records: dict[str, CheckpointRecord], known: Iterable[str] = ()) -> None:
    """Print checkpoints, including configured relations that have none yet."""
    table = Table(title="Checkpoints", border_style="blue")
    table.add_column("Relation", style="cyan")
    table.add_column("Cursor")
    table.add_column("Updated")

    for relation_id in sorted(set(records) | set(known)):
        record = records.get(relation_id)
        if record is None:
            table.add_row(relation_id, "[dim]full sync pending[/dim]", "")
        else:
            table.add_row(relation_id, record.value, record.updated_at)

    console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
