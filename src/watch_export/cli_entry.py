"""Click CLI wiring and entry points for watch_export."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, cast

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from src.config_loader import ConfigError, load_config
from src.datatypes import AppConfig, FailurePolicy

from .errors import BatchFailedError, describe_cause_chain
from .history_io import read_watch_events, write_simkl_csv
from .models import BatchResult, WatchEvent
from .processor import HistoryProcessor, NullProgressObserver, ProgressObserver
from .progress import RichProgressObserver
from .providers import build_provider_chain, describe_limit, provider_status

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def configure_logging(level: str, console: Optional[Console] = None) -> None:
    """Route the root logger through a :class:`RichHandler` at *level*."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
                markup=False,
            )
        ],
        force=True,
    )
    # httpx logs every request at INFO; keep that out of normal runs.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, logging.getLogger().level))


async def run_enrichment(
    config: AppConfig,
    events: Iterable[WatchEvent],
    *,
    concurrency: Optional[int] = None,
    failure_policy: Optional[FailurePolicy] = None,
    observer: Optional[ProgressObserver] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BatchResult:
    """Build the provider chain from *config* and enrich *events* with it."""

    chain = build_provider_chain(config, transport=transport)
    async with chain:
        processor = HistoryProcessor(
            chain,
            concurrency=concurrency or config.processor.concurrency,
            max_attempts=config.processor.max_attempts,
            failure_policy=failure_policy or config.processor.failure_policy,
            observer=observer,
        )
        return await processor.process(events)


def _load_app_config(ctx: click.Context) -> AppConfig:
    params = cast(Dict[str, Any], ctx.ensure_object(dict))
    try:
        config = load_config(params.get("config_path"))
    except ConfigError as exc:
        raise click.ClickException(f"Config error: {exc}") from exc
    level = params.get("log_level") or config.cli.log_level
    configure_logging(level, params.get("console"))
    return config


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to a TOML configuration file. Built-in defaults are used when omitted.",
)
@click.option(
    "--log-level",
    "log_level",
    default=None,
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Override [cli].log_level from the config file.",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Enrich scraped watch history with catalogue identifiers."""

    params_map = cast(Dict[str, Any], ctx.ensure_object(dict))
    params_map.update(
        {
            "config_path": config_path,
            "log_level": log_level.lower() if log_level else None,
            "console": Console(stderr=True),
        }
    )
    ctx.obj = params_map


@main.command("enrich")
@click.argument("events_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    "output_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="CSV destination. Overrides [paths].output.",
)
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Maximum lookups in flight.")
@click.option(
    "--all-or-nothing/--partial",
    "all_or_nothing",
    default=None,
    help="Abort the whole batch on the first unresolved title, or keep going (default from config).",
)
@click.option("--allow-partial", is_flag=True, help="Exit 0 even when some titles could not be resolved.")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar.")
@click.pass_context
def enrich_command(
    ctx: click.Context,
    events_path: Path,
    output_path: Optional[Path],
    concurrency: Optional[int],
    all_or_nothing: Optional[bool],
    allow_partial: bool,
    no_progress: bool,
) -> None:
    """Resolve metadata for EVENTS_PATH and write a Simkl import CSV."""

    config = _load_app_config(ctx)
    console = cast(Console, ctx.obj["console"])
    try:
        events = read_watch_events(events_path)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"Unable to read watch history: {exc}") from exc

    policy: Optional[FailurePolicy] = None
    if all_or_nothing is not None:
        policy = FailurePolicy.ALL_OR_NOTHING if all_or_nothing else FailurePolicy.PARTIAL
    observer: ProgressObserver
    if config.cli.progress and not no_progress:
        observer = RichProgressObserver(console)
    else:
        observer = NullProgressObserver()

    try:
        result = asyncio.run(
            run_enrichment(
                config,
                events,
                concurrency=concurrency,
                failure_policy=policy,
                observer=observer,
            )
        )
    except BatchFailedError as exc:
        chain_lines = "\n  ".join(describe_cause_chain(exc))
        raise click.ClickException(f"Batch failed on {exc.title!r}; no CSV written.\n  {chain_lines}") from exc

    output = output_path or Path(config.paths.output)
    try:
        written = write_simkl_csv(result.records, output)
    except OSError as exc:
        raise click.ClickException(f"Unable to write {output}: {exc}") from exc

    for failure in result.failures:
        console.print(f"[red]Unresolved:[/] {escape(failure.title)}")
        for line in describe_cause_chain(failure.error)[1:]:
            console.print(f"  [dim]{escape(line)}[/]")
    click.echo(f"Wrote {written} records to {output}")
    if result.failures:
        click.echo(f"{len(result.failures)} titles could not be resolved")
        if not allow_partial:
            raise click.exceptions.Exit(1)


@main.command("providers")
@click.pass_context
def providers_command(ctx: click.Context) -> None:
    """Show the provider order, which providers are enabled and their rate limits."""

    config = _load_app_config(ctx)
    for position, status in enumerate(provider_status(config), start=1):
        state = "enabled" if status.enabled else f"disabled (missing {', '.join(status.missing)})"
        click.echo(f"{position}. {status.key:<6} {state:<40} {describe_limit(status.rate_limit)}")


__all__ = ["configure_logging", "main", "run_enrichment"]
