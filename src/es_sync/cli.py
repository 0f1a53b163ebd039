"""
ES Sync CLI - Command Line Interface.

Incremental SQLite -> Elasticsearch synchronization.

Commands:
    sync    Run one incremental pass per relation
    run     Run passes on a schedule until interrupted
    scheme  Show or create index mappings from table structure
    status  Show checkpoints
    reset   Delete a checkpoint to force a full resync
    config  Manage configuration
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from es_sync import __version__
from es_sync.config import Relation, RelationConfigError, Settings, load_settings
from es_sync.connectors.es_client import ElasticsearchError, create_es_client
from es_sync.connectors.sqlite import SourceQueryError
from es_sync.core.checkpoint import CheckpointStore
from es_sync.core.engine import PassStatus, SyncEngine, SyncStats, summarize
from es_sync.core.scheduler import SyncScheduler
from es_sync.utils.display import (
    print_checkpoints,
    print_error,
    print_info,
    print_results,
    print_success,
    print_summary,
    print_warning,
)
from es_sync.utils.logger import setup_logging_from_config


app = typer.Typer(
    name="es-sync",
    help="Incremental SQLite → Elasticsearch synchronization.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file (TOML or JSON).",
    exists=True,
    dir_okay=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]es-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """ES Sync - incremental table to index synchronization."""


# =============================================================================
# SYNC Command
# =============================================================================
@app.command()
def sync(
    config_file: Optional[Path] = CONFIG_OPTION,
    relations: Optional[list[str]] = typer.Option(
        None,
        "--relation",
        "-r",
        help="Table name or relation id to sync (can be repeated).",
    ),
    source: Optional[Path] = typer.Option(
        None,
        "--source",
        "-s",
        help="Path to source SQLite database (overrides config).",
    ),
    es_url: Optional[str] = typer.Option(
        None,
        "--es-url",
        help="Elasticsearch URL (overrides config).",
    ),
    page_limit: Optional[int] = typer.Option(
        None,
        "--page-limit",
        "-l",
        min=1,
        help="Rows per fetch for relations without their own limit.",
    ),
    scheme: bool = typer.Option(
        False,
        "--scheme/--no-scheme",
        help="Create index mappings before syncing.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Run one incremental pass for each relation.

    Example:
        es-sync sync --config es-sync.toml --relation orders
    """
    settings = _load(config_file, source=source, es_url=es_url, page_limit=page_limit)
    selected = _select_relations(settings, relations)
    setup_logging_from_config(settings.logging, level="WARNING" if quiet else None)

    results = asyncio.run(_sync(settings, selected, scheme))

    if not quiet:
        console.print()
        print_results(results)
        print_summary(summarize(results))

    failed = [s for s in results if s.status in (PassStatus.FAILED, PassStatus.DISABLED)]
    for stats in failed:
        for err in stats.errors[:3]:
            print_error(f"{stats.relation}: {err}")
    if failed:
        raise typer.Exit(1)

    stopped = [s for s in results if s.status is PassStatus.STOPPED]
    for stats in stopped:
        print_warning(f"{stats.relation} stopped early: {stats.errors[-1] if stats.errors else ''}")
    if not stopped:
        print_success("Sync completed successfully!")


async def _sync(settings: Settings, relations: list[Relation], scheme: bool) -> list[SyncStats]:
    async with create_es_client(settings) as es:
        engine = SyncEngine(settings, es)
        for relation in relations:
            try:
                await engine.prepare(relation, provision=scheme)
            except RelationConfigError:
                # Recorded by the engine, the pass reports it as disabled
                continue
            except (ElasticsearchError, SourceQueryError, FileNotFoundError) as e:
                # The pass retries and reports the failure
                print_warning(f"{relation.relation_id}: {e}")
        return await engine.run_all(relations)


# =============================================================================
# RUN Command
# =============================================================================
@app.command()
def run(
    config_file: Optional[Path] = CONFIG_OPTION,
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        "-i",
        min=1,
        help="Seconds between passes (overrides config).",
    ),
    cron: Optional[str] = typer.Option(
        None,
        "--cron",
        help="Crontab schedule, e.g. '*/5 * * * *' (overrides interval).",
    ),
) -> None:
    """
    Sync every relation on a schedule until interrupted.

    Example:
        es-sync run --config es-sync.toml --interval 30
    """
    settings = _load(config_file)
    if interval:
        settings.sync.interval_seconds = interval
    if cron:
        settings.sync.cron = cron
    setup_logging_from_config(settings.logging)

    async def _serve() -> None:
        async with create_es_client(settings) as es:
            await SyncScheduler(settings, SyncEngine(settings, es)).serve()

    asyncio.run(_serve())


# =============================================================================
# SCHEME Command
# =============================================================================
@app.command()
def scheme(
    config_file: Optional[Path] = CONFIG_OPTION,
    relations: Optional[list[str]] = typer.Option(
        None,
        "--relation",
        "-r",
        help="Table name or relation id (can be repeated).",
    ),
    create: bool = typer.Option(
        False,
        "--create/--no-create",
        help="Create or update the index mappings.",
    ),
) -> None:
    """Resolve key columns and show (or create) index mappings."""
    settings = _load(config_file)
    selected = _select_relations(settings, relations)
    setup_logging_from_config(settings.logging)

    async def _scheme() -> bool:
        ok = True
        async with create_es_client(settings) as es:
            engine = SyncEngine(settings, es)
            for relation in selected:
                try:
                    result = await engine.prepare(relation, provision=create)
                except (
                    RelationConfigError,
                    ElasticsearchError,
                    SourceQueryError,
                    FileNotFoundError,
                ) as e:
                    print_error(f"{relation.relation_id}: {e}")
                    ok = False
                    continue

                table = Table(title=relation.relation_id, border_style="cyan")
                table.add_column("Property")
                table.add_column("Value")
                table.add_row("Key columns", ", ".join(result.relation.key_columns))
                table.add_row("Primary key", ", ".join(result.primary_key) or "[dim]none[/dim]")
                table.add_row(
                    "Mapping",
                    json.dumps(result.properties, indent=2) if result.properties else "[dim]scheme disabled[/dim]",
                )
                console.print(table)
        return ok

    if not asyncio.run(_scheme()):
        raise typer.Exit(1)


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(config_file: Optional[Path] = CONFIG_OPTION) -> None:
    """Show the checkpoint of every relation."""
    settings = _load(config_file, validate=False)
    store = CheckpointStore(settings.sync.checkpoint_dir)
    records = store.list()

    if not records and not settings.relations:
        print_info("No checkpoints found. Run a sync first.")
        raise typer.Exit(0)

    print_checkpoints(records, known=[r.relation_id for r in settings.relations])


# =============================================================================
# RESET Command
# =============================================================================
@app.command()
def reset(
    relation: str = typer.Argument(..., help="Table name or relation id."),
    config_file: Optional[Path] = CONFIG_OPTION,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Delete a checkpoint so the next pass re-syncs the whole table."""
    settings = _load(config_file, validate=False)
    configured = settings.get_relation(relation)
    relation_id = configured.relation_id if configured else relation

    if not yes:
        typer.confirm(f"Reset checkpoint of {relation_id}?", abort=True)

    if CheckpointStore(settings.sync.checkpoint_dir).delete(relation_id):
        print_success(f"Checkpoint of {relation_id} deleted, next pass is a full sync.")
    else:
        print_info(f"No checkpoint for {relation_id}.")


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    config_file: Optional[Path] = CONFIG_OPTION,
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a default config file.",
    ),
    output: Path = typer.Option(
        Path("es-sync.json"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = _load(config_file, validate=False)
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("Source", str(settings.source.path or "[dim]not set[/dim]"))
        table.add_row("Elasticsearch", settings.elasticsearch.url)
        table.add_row("Page Limit", f"{settings.sync.page_limit} rows")
        table.add_row("Checkpoints", str(settings.sync.checkpoint_dir))
        table.add_row("Schedule", settings.sync.cron or f"every {settings.sync.interval_seconds}s")
        for relation in settings.relations:
            table.add_row(
                "Relation",
                f"{relation.table} → {relation.use_index} by {relation.increment_column}",
            )

        console.print(table)
        return

    console.print("Use --show to view config or --init to create a config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _load(
    config_file: Path | None,
    validate: bool = True,
    source: Path | None = None,
    es_url: str | None = None,
    page_limit: int | None = None,
) -> Settings:
    """Build settings from config file and CLI overrides."""
    try:
        settings = load_settings(config_file)
    except (ValueError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if source:
        settings.source.path = source
    if es_url:
        settings.elasticsearch.url = es_url.rstrip("/")
    if page_limit:
        settings.sync.page_limit = page_limit

    if validate:
        errors = settings.validate_settings()
        if errors:
            for err in errors:
                print_error(err)
            print_info("Use --help for configuration options.")
            raise typer.Exit(1)
    return settings


def _select_relations(settings: Settings, names: list[str] | None) -> list[Relation]:
    if not names:
        return list(settings.relations)

    selected = []
    for name in names:
        relation = settings.get_relation(name)
        if relation is None:
            print_error(f"Unknown relation: {name}")
            raise typer.Exit(1)
        selected.append(relation)
    return selected


if __name__ == "__main__":
    app()
