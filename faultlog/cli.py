"""Click CLI for faultlog.

Commands:
- logs: List stored entries
- search: Search entries by message or error type
- stats: Entry count per level
- record: Append an entry
- clear: Remove every entry
- probe: Request a URL under a retry policy, recording retries and failures
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import httpx
from rich.console import Console
from rich.table import Table

from faultlog import __version__
from faultlog.client.http import fetch_with_retry, retry_logger
from faultlog.config import DiagnosticsSettings
from faultlog.diagnostics import DiagnosticLog, GlobalFaultTap, LogLevel
from faultlog.diagnostics.sinks import LEVEL_STYLES
from faultlog.utils.errors import FaultlogError
from faultlog.utils.retry import POLICIES

console = Console()
logger = logging.getLogger(__name__)

LEVEL_NAMES = [level.value for level in LogLevel]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Loggers that report every request at INFO
HTTP_LOGGERS = ("httpx", "httpcore")


def configure_logging(settings: DiagnosticsSettings, debug: bool = False) -> None:
    """Send stdlib logging to stderr at settings.log_level.

    With debug, everything including HTTP request logs goes through at DEBUG.
    """
    level = LogLevel.DEBUG if debug else LogLevel.parse(settings.log_level)
    logging.basicConfig(level=level.severity, format=LOG_FORMAT, datefmt="%H:%M:%S")

    http_level = logging.DEBUG if debug else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)


def print_entries(entries, title: str) -> None:
    """Render entries as a table."""
    if not entries:
        console.print("[yellow]No log entries found[/]")
        return

    table = Table(title=f"{title} ({len(entries)})")
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Type")
    table.add_column("Message")

    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{LEVEL_STYLES[entry.level]}]{entry.level.value}[/]",
            entry.error_type,
            entry.message,
        )

    console.print(table)


def parse_context(pairs: Tuple[str, ...]) -> Optional[dict]:
    """Parse key=value pairs."""
    if not pairs:
        return None
    context = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--context")
        context[key] = value
    return context


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="FAULTLOG_STORAGE_DIR",
    help="Directory holding persisted logs",
)
@click.option(
    "--max-logs",
    type=click.IntRange(min=1),
    envvar="FAULTLOG_MAX_LOGS",
    help="Store capacity",
)
@click.option(
    "--dev",
    is_flag=True,
    help="Echo new entries to the console",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx, storage_dir: Optional[Path], max_logs: Optional[int], dev: bool, debug: bool):
    """faultlog - inspect the diagnostic log store."""
    ctx.ensure_object(dict)

    overrides = {}
    if storage_dir is not None:
        overrides["storage_dir"] = storage_dir
    if max_logs is not None:
        overrides["max_logs"] = max_logs
    if dev:
        overrides["dev_mode"] = True
    settings = DiagnosticsSettings(**overrides)

    configure_logging(settings, debug=debug)

    log = DiagnosticLog.from_settings(settings)
    ctx.obj["settings"] = settings
    ctx.obj["log"] = log

    if ctx.obj.get("install_fault_tap"):
        GlobalFaultTap(log, dev_mode=settings.dev_mode).install()


@cli.command()
@click.option("--level", type=click.Choice(LEVEL_NAMES, case_sensitive=False), help="Exact level")
@click.option("--min-level", type=click.Choice(LEVEL_NAMES, case_sensitive=False), help="Lowest level")
@click.option("--limit", type=click.IntRange(min=1), help="Most recent N entries")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def logs(ctx, level: Optional[str], min_level: Optional[str], limit: Optional[int], as_json: bool):
    """List stored entries."""
    log: DiagnosticLog = ctx.obj["log"]
    entries = log.get_logs(level=level, limit=limit, min_level=min_level)

    if as_json:
        click.echo("[" + ",".join(e.to_json() for e in entries) + "]")
        return

    print_entries(entries, "Log entries")


@cli.command()
@click.argument("query")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def search(ctx, query: str, as_json: bool):
    """Search entries by message or error type."""
    log: DiagnosticLog = ctx.obj["log"]
    entries = log.search_logs(query)

    if as_json:
        click.echo("[" + ",".join(e.to_json() for e in entries) + "]")
        return

    print_entries(entries, f"Matches for '{query}'")


@cli.command()
@click.pass_context
def stats(ctx):
    """Entry count per level."""
    log: DiagnosticLog = ctx.obj["log"]
    counts = log.count_by_level()

    table = Table(title=f"Log entries ({len(log)}/{log.max_logs})")
    table.add_column("Level")
    table.add_column("Count", justify="right")
    for level, count in counts.items():
        table.add_row(f"[{LEVEL_STYLES[level]}]{level.value}[/]", str(count))

    console.print(table)


@cli.command()
@click.argument("message")
@click.option(
    "--level",
    type=click.Choice(LEVEL_NAMES, case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option("--context", "context_pairs", multiple=True, help="key=value (repeatable)")
@click.pass_context
def record(ctx, message: str, level: str, context_pairs: Tuple[str, ...]):
    """Append an entry."""
    log: DiagnosticLog = ctx.obj["log"]
    entry = log.log(message, level=LogLevel.parse(level), context=parse_context(context_pairs))
    console.print(f"[green]Recorded[/] {entry.id}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, yes: bool):
    """Remove every entry."""
    log: DiagnosticLog = ctx.obj["log"]
    if not yes and not click.confirm(f"Delete {len(log)} log entries?"):
        console.print("Aborted")
        return

    log.clear_logs()
    console.print("[green]Log store cleared[/]")


@cli.command()
@click.argument("url")
@click.option("--method", default="GET", show_default=True, help="HTTP method")
@click.option(
    "--policy",
    type=click.Choice(sorted(POLICIES)),
    default="query",
    show_default=True,
    help="Retry policy",
)
@click.option("--timeout", type=float, default=10.0, show_default=True, help="Per-attempt timeout")
@click.pass_context
def probe(ctx, url: str, method: str, policy: str, timeout: float):
    """Request URL under a retry policy, recording retries and failures."""
    log: DiagnosticLog = ctx.obj["log"]
    method = method.upper()

    async def _probe() -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await fetch_with_retry(
                client,
                method,
                url,
                policy=policy,
                on_retry=retry_logger(log, f"{method} {url}", url=url, policy=policy),
            )

    try:
        response = asyncio.run(_probe())
    except FaultlogError as e:
        log.error(f"{method} {url} failed", e, {"url": url, "policy": policy})
        console.print(f"[red]FAILED[/] - {e}")
        sys.exit(1)

    if response.is_client_error:
        log.warn(f"{method} {url} rejected", response, {"url": url, "policy": policy})
        console.print(f"[yellow]{response.status_code}[/] {response.reason_phrase}")
        sys.exit(1)

    console.print(f"[green]{response.status_code}[/] {response.reason_phrase}")


def main():
    """Main entry point."""
    cli(obj={"install_fault_tap": True})


if __name__ == "__main__":
    main()
