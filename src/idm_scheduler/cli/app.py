"""Main CLI application for the IDM request scheduler."""

from pathlib import Path
from typing import Annotated

import typer

from idm_scheduler import __version__
from idm_scheduler.api import RequestPriority
from idm_scheduler.cli import groups as groups_cmd
from idm_scheduler.cli.common import console, render_state, run_async_command, scheduler_session
from idm_scheduler.config import get_settings
from idm_scheduler.logging import setup_logging

app = typer.Typer(
    name="idmsched",
    help="Rate-limit-aware bulk operations against an identity-management API.",
    add_completion=False,
)

QUOTA_CHECK_ENDPOINT = "/api/v1/users/me"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"idmsched version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress non-error output (WARNING level)."),
    ] = False,
) -> None:
    """IDM Scheduler - bulk identity operations within API rate limits."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


@app.command()
def status() -> None:
    """Query the API and show the scheduler's live state and quota."""

    async def _status() -> None:
        async with scheduler_session() as scheduler:
            await scheduler.submit(
                QUOTA_CHECK_ENDPOINT, priority=RequestPriority.HIGH, origin="status"
            )
            state = scheduler.get_state()
            metrics = scheduler.get_metrics()
        console.print(render_state(state, metrics))

    run_async_command(_status(), error_prefix="Status check failed")


app.command("members")(groups_cmd.members)
app.command("remove-deprovisioned")(groups_cmd.remove_deprovisioned)


if __name__ == "__main__":
    app()
