"""Sync CLI commands: status, now, retry."""

import click
from rich.console import Console

from cli.utils import format_time, get_components, run_async

console = Console()

_STATE_STYLE = {"online": "green", "offline": "yellow", "degraded": "red"}


@click.group()
def sync():
    """Remote sync of learned patterns."""
    pass


@sync.command("status")
def sync_status():
    """Show sync state, pending mutations and last error."""
    engine = get_components()["engine"]
    st = engine.get_sync_status()
    style = _STATE_STYLE.get(st.state.value, "white")

    if engine.remote is None:
        console.print("Sync: [dim]not configured[/] (local only)")
    else:
        console.print(f"Sync: [{style}]{st.state.value}[/]")
    console.print(f"Pending mutations: {st.pending_count}")
    console.print(f"Last successful sync: {format_time(st.last_successful_sync)}")
    if st.last_error:
        console.print(f"Last error: {st.last_error}")
    if st.needs_attention:
        console.print("[red]Needs attention:[/] run [bold]sync retry[/] once the remote is back.")


@sync.command("now")
def sync_now():
    """Push pending mutations and pull remote changes once."""
    engine = get_components()["engine"]
    if engine.remote is None:
        console.print("[yellow]Sync is not configured.[/] Set sync.remote_url in config.yaml.")
        return

    async def _run():
        try:
            return await engine.sync_now()
        finally:
            await engine.close()

    result = run_async(_run())
    drained = result["drain"]
    console.print(f"Pushed {drained['pushed']}, failed {drained['failed']}")
    if result["pull"] is not None:
        pulled = result["pull"]
        console.print(
            f"Pulled: {pulled['created']} new, {pulled['updated']} updated, "
            f"{pulled['deleted']} deleted"
        )
    st = engine.get_sync_status()
    console.print(f"State: {st.state.value}, pending {st.pending_count}")


@sync.command("retry")
def sync_retry():
    """Re-queue mutations that ran out of retries."""
    engine = get_components()["engine"]
    count = engine.retry_abandoned_sync()
    console.print(f"Re-queued {count} mutation(s).")
