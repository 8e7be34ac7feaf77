"""Pattern CLI commands: list, disable, enable, delete."""

import click
from rich.console import Console
from rich.table import Table

from cli.utils import format_time, get_components

console = Console()


@click.group()
def patterns():
    """Learned correction patterns."""
    pass


@patterns.command("list")
@click.option("--mode", "-m", default=None, help="Only patterns usable in this refinement mode")
@click.option(
    "--kind",
    "-k",
    type=click.Choice(["token-substitution", "phrase-rule", "stylistic-rule"]),
    default=None,
)
@click.option("--eligible", is_flag=True, help="Only patterns currently applied")
@click.option("--hide-disabled", is_flag=True, help="Hide patterns you turned off")
@click.option("--search", "-s", default=None, help="Substring of either side")
@click.option("--limit", "-n", default=None, type=int)
def patterns_list(mode, kind, eligible, hide_disabled, search, limit):
    """List patterns, highest confidence first."""
    from learning.models import PatternFilter

    engine = get_components(with_remote=False)["engine"]
    found = engine.list_patterns(
        PatternFilter(
            mode=mode,
            kind=kind,
            include_disabled=not hide_disabled,
            eligible_only=eligible,
            search=search,
            limit=limit,
        )
    )
    if not found:
        console.print("No patterns learned yet.")
        return

    now = engine.clock()
    table = Table(title="Learned Patterns")
    table.add_column("ID", style="dim")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Mode", width=10)
    table.add_column("Seen", justify="right", width=5)
    table.add_column("Conf", justify="right", width=5)
    table.add_column("Status", width=9)
    table.add_column("Last applied", width=16)

    for p in found:
        if p.is_user_disabled:
            status = "[red]disabled[/]"
        elif engine.policy.is_eligible(p, now):
            status = "[green]active[/]"
        else:
            status = "learning"
        table.add_row(
            p.id,
            p.from_surface[:40],
            p.to_surface[:40],
            p.scoped_mode or "all",
            str(p.occurrence_count),
            f"{p.confidence_score:.2f}",
            status,
            format_time(p.last_applied_at),
        )
    console.print(table)


@patterns.command("disable")
@click.argument("pattern_id")
def patterns_disable(pattern_id: str):
    """Stop applying a pattern (it stays stored)."""
    from learning.errors import PatternNotFoundError

    engine = get_components()["engine"]
    try:
        p = engine.disable_pattern(pattern_id)
    except PatternNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)
    console.print(f"Disabled: {p.from_surface} → {p.to_surface}")


@patterns.command("enable")
@click.argument("pattern_id")
def patterns_enable(pattern_id: str):
    """Re-enable a disabled pattern."""
    from learning.errors import PatternNotFoundError

    engine = get_components()["engine"]
    try:
        p = engine.enable_pattern(pattern_id)
    except PatternNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)
    console.print(f"Enabled: {p.from_surface} → {p.to_surface}")


@patterns.command("delete")
@click.argument("pattern_id")
@click.confirmation_option(prompt="Delete this pattern?")
def patterns_delete(pattern_id: str):
    """Forget a pattern entirely."""
    from learning.errors import PatternNotFoundError

    engine = get_components()["engine"]
    try:
        engine.delete_pattern(pattern_id)
    except PatternNotFoundError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)
    console.print(f"[green]Deleted[/] {pattern_id}")
