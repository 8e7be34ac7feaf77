"""Learning CLI commands: submit, apply, pause/resume, replay, reset, status, profile."""

import click
from rich.console import Console
from rich.table import Table

from cli.utils import format_time, get_components

console = Console()

MODES = ["raw", "cleanup", "email", "messaging"]


@click.command()
@click.argument("original")
@click.argument("edited")
@click.option("--mode", "-m", type=click.Choice(MODES), default="cleanup")
@click.option("--context", "source_context", default=None, help="Source app or context")
@click.option("--opt-out", is_flag=True, help="Archive only; never learn from this edit")
def submit(original: str, edited: str, mode: str, source_context: str | None, opt_out: bool):
    """Record a finalized edit of refined text."""
    engine = get_components()["engine"]
    event_id = engine.submit_edit(original, edited, mode, source_context, opted_out=opt_out)
    console.print(f"Recorded edit [dim]{event_id}[/]")
    if engine.is_paused():
        console.print("[yellow]Learning is paused; the edit was archived only.[/]")


@click.command()
@click.argument("text")
@click.option("--mode", "-m", type=click.Choice(MODES), default="cleanup")
@click.option("--context", "source_context", default=None)
@click.option("--explain", is_flag=True, help="Show which patterns and styles fired")
def apply(text: str, mode: str, source_context: str | None, explain: bool):
    """Apply learned patterns to TEXT and print the result."""
    engine = get_components(with_remote=False)["engine"]
    result = engine.apply_with_details(text, mode, source_context)
    click.echo(result.text)
    if explain:
        for pid in result.applied_pattern_ids:
            p = engine.store.get(pid)
            if p:
                console.print(f"[dim]pattern {pid}: {p.from_surface} → {p.to_surface}[/]")
        for style in result.applied_styles:
            console.print(f"[dim]style: {style}[/]")


@click.command()
def pause():
    """Pause learning. Edits are still archived for later replay."""
    get_components(with_remote=False)["engine"].pause_learning()
    console.print("[yellow]Learning paused.[/]")


@click.command()
def resume():
    """Resume learning."""
    get_components(with_remote=False)["engine"].resume_learning()
    console.print("[green]Learning resumed.[/] Run [bold]replay[/] to learn from paused edits.")


@click.command()
@click.option("--include-opted-out", is_flag=True, help="Also learn from opted-out edits")
def replay(include_opted_out: bool):
    """Learn from edits archived while learning was paused."""
    engine = get_components()["engine"]
    if engine.is_paused():
        console.print("[yellow]Learning is paused; resume first.[/]")
        return
    count = engine.replay_paused_events(include_opted_out=include_opted_out)
    console.print(f"Replayed {count} archived edit(s).")


@click.command()
@click.confirmation_option(prompt="Forget all learned patterns, A/B history and style profile?")
def reset():
    """Reset all learning."""
    engine = get_components()["engine"]
    result = engine.reset_all_learning()
    console.print(f"[green]Reset.[/] {result['patterns_deleted']} pattern(s) forgotten.")


@click.command()
@click.option("--dismiss-notice", is_flag=True, help="Dismiss the data-reset notice")
def status(dismiss_notice: bool):
    """Show learning statistics."""
    engine = get_components(with_remote=False)["engine"]
    stats = engine.stats()
    patterns = stats["patterns"]
    events = stats["events"]
    ab = stats["ab"]

    console.print(f"Learning: {'[yellow]paused[/]' if stats['paused'] else '[green]active[/]'}")
    console.print(
        f"Patterns: {patterns['total']} ({patterns['eligible']} active, "
        f"{patterns['disabled']} disabled)"
    )
    for kind, count in sorted(patterns["by_kind"].items()):
        console.print(f"  {kind}: {count}")
    console.print(
        f"Edits archived: {events['total']} "
        f"({events['opted_out']} opted out, {events['total'] - events['processed']} unprocessed)"
    )
    console.print(
        f"A/B tests: {ab['issued']} issued, {ab['decided']} decided "
        f"(A {ab['chose_a']} / B {ab['chose_b']}), state {ab['state']}"
    )
    quality = stats["quality"]
    console.print(f"Learning quality: {quality['level']} ({quality['sessions']} sessions)")

    notice = engine.learning_reset_notice()
    if notice and dismiss_notice:
        engine.acknowledge_reset_notice()
        console.print("Data reset notice dismissed.")
    elif notice:
        console.print(f"[yellow]Data reset notice:[/] store rebuilt at {notice.get('reset_at')}")


@click.group()
def profile():
    """Stylistic preference profile."""
    pass


@profile.command("show")
def profile_show():
    """Show learned style weights."""
    engine = get_components(with_remote=False)["engine"]
    prof = engine.get_profile()
    if not prof.style_weights:
        console.print("No style preferences learned yet.")
        return

    threshold = engine.config.profile.style_threshold
    min_samples = engine.config.profile.min_samples
    table = Table(title="Style Preferences")
    table.add_column("Dimension")
    table.add_column("Weight", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Applied")
    for name, weight in sorted(prof.style_weights.items()):
        samples = prof.sample_counts.get(name, 0)
        strong = abs(weight) >= threshold and samples >= min_samples
        table.add_row(name, f"{weight:+.2f}", str(samples), "yes" if strong else "")
    console.print(table)
    console.print(f"[dim]Last computed: {format_time(prof.last_computed_at)}[/]")


@profile.command("rebuild")
def profile_rebuild():
    """Recompute the profile from archived edits and A/B choices."""
    engine = get_components(with_remote=False)["engine"]
    prof = engine.rebuild_profile()
    console.print(f"Rebuilt {len(prof.style_weights)} style dimension(s).")

