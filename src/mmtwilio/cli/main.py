"""Click CLI group: serve, migrate, migrate-legacy and command."""

from __future__ import annotations

import asyncio
import sys

import click

from mmtwilio.commands.service import CommandArgs
from mmtwilio.config import get_settings
from mmtwilio.db.migrations.runner import run_migrations
from mmtwilio.errors import MMTwilioError
from mmtwilio.logging import configure_logging
from mmtwilio.runtime import build_runtime


@click.group()
def cli() -> None:
    """Mattermost to Twilio Conversations relay."""


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host (default: BIND_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: BIND_PORT).")
@click.option("--reload", "auto_reload", is_flag=True, help="Reload on source changes.")
def serve(host: str | None, port: int | None, auto_reload: bool) -> None:
    """Run the HTTP server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mmtwilio.main:app",
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        reload=auto_reload,
        log_config=None,
    )


@cli.command()
def migrate() -> None:
    """Apply pending database schema migrations."""
    applied = run_migrations()
    if applied:
        for name in applied:
            click.echo(f"applied {name}")
    else:
        click.echo("schema up to date")


@cli.command("migrate-legacy")
def migrate_legacy() -> None:
    """Rewrite legacy binding records into the dual-keyed layout."""
    settings = get_settings()
    configure_logging(settings.log_level)
    run_migrations()
    store = build_runtime(settings).store
    if store.legacy_migrated():
        click.echo("legacy bindings already migrated")
        return
    try:
        migrated = store.migrate_legacy()
    except MMTwilioError as exc:
        click.echo(f"migration failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"migrated {migrated} legacy bindings")


@cli.command()
@click.argument("text", nargs=-1, required=True)
@click.option("--channel-id", type=str, required=True, help="Channel the command runs in.")
@click.option("--team-id", type=str, default="", help="Team of the channel.")
def command(text: tuple[str, ...], channel_id: str, team_id: str) -> None:
    """Run an operator command, e.g. ``mmtwilio command channel status --channel-id ...``."""
    settings = get_settings()
    configure_logging(settings.log_level)
    run_migrations()
    runtime = build_runtime(settings)

    async def _run() -> str:
        snapshot = await runtime.snapshots.reload(settings, runtime.host)
        args = CommandArgs(
            command="/twilio " + " ".join(text),
            channel_id=channel_id,
            team_id=team_id,
        )
        response = await runtime.commands.execute(snapshot, args)
        return response.text

    try:
        output = asyncio.run(_run())
    except MMTwilioError as exc:
        click.echo(f"error: {exc}", err=True)
        sys.exit(1)
    click.echo(output)
