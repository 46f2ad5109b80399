"""Group membership commands."""

from typing import Any

import typer
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from idm_scheduler.api import (
    BulkMutationExecutor,
    CursorPaginator,
    MutationRequest,
    ProgressTracker,
    RequestPriority,
)
from idm_scheduler.api.operations import ProgressUpdate
from idm_scheduler.cli.common import (
    DryRunOption,
    GroupIdArgument,
    console,
    run_async_command,
    scheduler_session,
)

MEMBER_PREVIEW_ROWS = 20


def _member_row(user: dict[str, Any]) -> tuple[str, str, str, str]:
    profile = user.get("profile") or {}
    name = f"{profile.get('firstName', '')} {profile.get('lastName', '')}".strip()
    return (
        str(user.get("id", "")),
        str(profile.get("login", "")),
        name,
        str(user.get("status", "")),
    )


def _members_table(title: str, users: list[dict[str, Any]]) -> Table:
    table = Table(title=title)
    table.add_column("Id", style="cyan")
    table.add_column("Login")
    table.add_column("Name")
    table.add_column("Status")
    for user in users[:MEMBER_PREVIEW_ROWS]:
        table.add_row(*_member_row(user))
    return table


def members(group_id: GroupIdArgument) -> None:
    """List the members of a group.

    Examples:
        idmsched members 00g1abcd2EFGH3ijk4x7
    """

    async def _list() -> None:
        async with scheduler_session() as scheduler:
            paginator = CursorPaginator(
                scheduler, priority=RequestPriority.HIGH, origin="members"
            )
            users = await paginator.fetch_all(
                f"/api/v1/groups/{group_id}/users",
                on_progress=lambda loaded, page: console.print(
                    f"  [dim]page {page}: {loaded} loaded[/dim]"
                ),
            )

        console.print(f"Found [bold]{len(users)}[/bold] member(s)")
        if users:
            console.print(_members_table(f"Members of {group_id}", users))
            if len(users) > MEMBER_PREVIEW_ROWS:
                console.print(f"  ... and {len(users) - MEMBER_PREVIEW_ROWS} more")

    run_async_command(_list(), error_prefix="Failed to list members")


def remove_deprovisioned(group_id: GroupIdArgument, dry_run: DryRunOption = False) -> None:
    """Remove DEPROVISIONED users from a group.

    Stops at the first 403. Removed users are recorded for undo.

    Examples:
        idmsched remove-deprovisioned 00g1abcd2EFGH3ijk4x7 --dry-run
    """

    async def _remove() -> bool:
        async with scheduler_session() as scheduler:
            group = await scheduler.submit(
                f"/api/v1/groups/{group_id}",
                priority=RequestPriority.HIGH,
                origin="remove-deprovisioned",
            )
            group_data = group.data if isinstance(group.data, dict) else {}
            if group_data.get("type") == "APP_GROUP":
                console.print("[red]Error:[/red] Cannot modify APP_GROUP membership")
                raise typer.Exit(1)
            group_name = (group_data.get("profile") or {}).get("name", "Unknown Group")

            paginator = CursorPaginator(scheduler, origin="remove-deprovisioned")
            users = await paginator.fetch_all(f"/api/v1/groups/{group_id}/users")
            targets = [u for u in users if u.get("status") == "DEPROVISIONED"]
            console.print(
                f"Found [bold]{len(targets)}[/bold] deprovisioned user(s) in {group_name}"
            )

            if not targets:
                console.print("[green]No deprovisioned users to remove[/green]")
                return True

            if dry_run:
                console.print(_members_table("Would remove", targets))
                console.print("[yellow]Dry run: no changes made[/yellow]")
                return True

            mutations = [
                MutationRequest(
                    item_id=u["id"],
                    endpoint=f"/api/v1/groups/{group_id}/users/{u['id']}",
                    method="DELETE",
                    label=(u.get("profile") or {}).get("login"),
                    data={"userId": u["id"], "groupId": group_id},
                )
                for u in targets
            ]

            executor = BulkMutationExecutor(scheduler, origin="remove-deprovisioned")
            tracker = ProgressTracker(total=len(mutations), name="remove deprovisioned")

            with Progress(
                TextColumn("[bold]Removing[/bold]"),
                BarColumn(bar_width=40),
                MofNCompleteColumn(),
                TextColumn("{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("", total=len(mutations))

                def on_progress(update: ProgressUpdate) -> None:
                    progress.update(
                        task,
                        completed=update.processed,
                        description=update.current_item or "",
                    )

                tracker.on_progress(on_progress)
                result = await executor.execute(
                    mutations,
                    action_type="BULK_REMOVE_USERS_FROM_GROUP",
                    description=(
                        f"Removed {len(targets)} deprovisioned user(s) from {group_name}"
                    ),
                    metadata={"groupId": group_id, "groupName": group_name},
                    progress=tracker,
                )

        for item_id, error in result.errors:
            console.print(f"  [red]Failed:[/red] {item_id} - {error}")
        console.print(
            f"Complete: [green]{result.succeeded} removed[/green], "
            f"[red]{result.failed} failed[/red], {result.not_attempted} not attempted"
        )
        if result.stopped_reason:
            console.print(f"[yellow]Stopped:[/yellow] {result.stopped_reason}")
        if result.action_id:
            console.print(f"  Undo action: {result.action_id}")
        return not result.was_stopped

    if not run_async_command(_remove(), error_prefix="Bulk removal failed"):
        raise typer.Exit(1)
