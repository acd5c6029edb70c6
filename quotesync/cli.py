# quotesync/cli.py
import json

import click
from flask.cli import with_appcontext

from quotesync import get_sync


@click.group("sync")
def sync_cli() -> None:
    """Offline quote queue commands."""


@sync_cli.command("status")
@with_appcontext
def status_command() -> None:
    sync = get_sync()
    state = sync.monitor.current()
    click.echo(f"online: {'yes' if state.online else 'no'}")
    click.echo(f"pending: {sync.store.count()}")


@sync_cli.command("pending")
@with_appcontext
def pending_command() -> None:
    for entry in get_sync().engine.pending():
        customer = (entry.payload.get("customer_info") or {}).get("name", "")
        click.echo(
            f"{entry.id}\t{entry.queued_at}\tattempts={entry.attempts}\t{customer}"
        )


@sync_cli.command("drain")
@click.option("--force", is_flag=True, help="Treat the device as online for this run")
@with_appcontext
def drain_command(force: bool) -> None:
    """Replay queued quotes against the backend now."""
    sync = get_sync()
    if force and not sync.monitor.current().online:
        sync.monitor.publish(True, True)
        sync.monitor.flush(timeout=5)
        sync.engine.wait_idle(timeout=60)
    report = sync.engine.on_reconnect()
    click.echo(json.dumps(report.to_dict(), indent=2))
