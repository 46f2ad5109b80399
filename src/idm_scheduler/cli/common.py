"""Common CLI helpers.

Provides:
- `run_async_command`: unified async execution with error handling
- `scheduler_session`: a started ApiScheduler bound to the configured org
- Shared argument/option aliases and rendering helpers
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from idm_scheduler.api import ApiScheduler, HttpTransport, SchedulerState, SchedulerStatus
from idm_scheduler.api.scheduling import SchedulerMetrics
from idm_scheduler.config import Settings, get_settings

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from a synchronous CLI command.

    Exceptions are printed in red and turned into exit code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


def build_transport(settings: Settings) -> HttpTransport:
    """Create the HTTP transport, validating connection settings."""
    if not settings.api.base_url:
        console.print("[red]Error:[/red] IDM_API__BASE_URL not set in environment")
        raise typer.Exit(1)
    if not settings.api.api_token:
        console.print("[red]Error:[/red] IDM_API__API_TOKEN not set in environment")
        raise typer.Exit(1)
    return HttpTransport(settings.api)


@asynccontextmanager
async def scheduler_session() -> AsyncIterator[ApiScheduler]:
    """A started scheduler; stopped and the transport closed on exit."""
    settings = get_settings()
    transport = build_transport(settings)
    scheduler = ApiScheduler(transport, settings=settings)
    await scheduler.start()
    try:
        yield scheduler
    finally:
        await scheduler.stop()
        await transport.close()


# -----------------------------------------------------------------------------
# Argument/Option Aliases
# -----------------------------------------------------------------------------

GroupIdArgument = Annotated[
    str,
    typer.Argument(help="Group id (e.g., 00g1abcd2EFGH3ijk4x7)"),
]

DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="List what would change without calling the API",
    ),
]


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


def format_time_remaining(seconds: float) -> str:
    """Format seconds as human-readable time."""
    seconds = int(seconds)
    if seconds <= 0:
        return "Now"
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def status_style(status: SchedulerStatus) -> str:
    """Rich markup for a scheduler status."""
    match status:
        case SchedulerStatus.IDLE:
            return "[green]idle[/green]"
        case SchedulerStatus.PROCESSING:
            return "[cyan]processing[/cyan]"
        case SchedulerStatus.THROTTLED:
            return "[yellow]throttled[/yellow]"
        case SchedulerStatus.COOLDOWN:
            return "[bold red]cooldown[/bold red]"
        case SchedulerStatus.PAUSED:
            return "[magenta]paused[/magenta]"
        case _:
            return str(status)


def render_state(
    state: SchedulerState,
    metrics: SchedulerMetrics | None = None,
    now: datetime | None = None,
) -> Table:
    """Table view of a scheduler snapshot."""
    now = now or datetime.now(UTC)
    table = Table(title="Scheduler Status", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Status", status_style(state.status))
    table.add_row("Queue length", str(state.queue_length))
    table.add_row("Active requests", str(state.active_requests))

    info = state.rate_limit_info
    if info is not None:
        table.add_row(
            "Quota",
            f"{info.remaining}/{info.limit} ({info.remaining_percent:.1f}%) on {info.endpoint}",
        )
        resets_in = format_time_remaining(info.seconds_until_reset(now))
        table.add_row("Resets at", f"{info.reset_at:%H:%M:%S UTC} (remaining: {resets_in})")
    else:
        table.add_row("Quota", "[dim]unknown[/dim]")

    if state.cooldown_ends_at is not None:
        ends_in = format_time_remaining((state.cooldown_ends_at - now).total_seconds())
        table.add_row(
            "Cooldown ends",
            f"{state.cooldown_ends_at:%H:%M:%S UTC} (remaining: {ends_in})",
        )

    table.add_row("Processed", str(state.total_processed))
    table.add_row("Errors", str(state.error_count))
    if state.last_error:
        table.add_row("Last error", f"[red]{state.last_error}[/red]")

    if metrics is not None:
        table.add_row("Success rate", f"{metrics.success_rate:.1f}%")
        table.add_row("Avg wait", f"{metrics.average_wait_seconds:.2f}s")
        table.add_row("Cache hits", str(metrics.cache_hits))
    return table
