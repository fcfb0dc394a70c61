"""Activity log CLI commands.

- logs list: show recent entries
- logs flush: empty the log
- logs delete: delete entries by ID
"""

from __future__ import annotations

import json
from typing import List, Optional

import typer
from typer import Context, Typer

from crmsync.activity.levels import get_level_severity, is_valid_level
from crmsync.cli.app import app, get_state

logs_app = Typer(help="Activity log")
app.add_typer(logs_app, name="logs")


@logs_app.command(name="list")
def logs_list(
    ctx: Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
    level: Optional[str] = typer.Option(None, "--level", "-l", help="info|notice|warning|error"),
    user: Optional[int] = typer.Option(None, "--user", help="Only entries about this user ID"),
    show_context: bool = typer.Option(False, "--context", help="Print each entry's context"),
):
    """Show the newest activity log entries."""
    if level is not None and not is_valid_level(level):
        typer.echo(f"❌ Unknown level: {level}", err=True)
        raise typer.Exit(1)

    storage = get_state(ctx).activity_logger().storage
    entries = storage.list_entries(
        limit=limit,
        level=get_level_severity(level) if level else None,
        user_id=user,
    )
    if not entries:
        typer.echo("No log entries.")
        return

    for entry in entries:
        typer.echo(
            f"{entry.log_id}\t{entry.timestamp:%Y-%m-%d %H:%M:%S}\t{entry.level_name}\t"
            f"user={entry.user_id}\t{entry.source}\t{entry.message}"
        )
        if show_context and entry.context:
            typer.echo(f"\t{json.dumps(entry.context, default=str)}")
    typer.echo(f"📊 {len(entries)} of {storage.count()} entries", err=True)


@logs_app.command(name="flush")
def logs_flush(
    ctx: Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every activity log entry."""
    if not yes:
        typer.confirm("Delete all activity log entries?", abort=True)
    deleted = get_state(ctx).activity_logger().flush()
    typer.echo(f"🗑️  Deleted {deleted} entries")


@logs_app.command(name="delete")
def logs_delete(
    ctx: Context,
    log_ids: List[int] = typer.Argument(..., help="Log IDs to delete"),
):
    """Delete activity log entries by ID."""
    deleted = get_state(ctx).activity_logger().delete(log_ids)
    typer.echo(f"🗑️  Deleted {deleted} entries")
