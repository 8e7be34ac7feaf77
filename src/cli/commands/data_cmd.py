"""Backup CLI commands: export and import learning snapshots."""

from pathlib import Path

import click
from rich.console import Console

from cli.utils import get_components

console = Console()


@click.group()
def data():
    """Export or import learning data."""
    pass


@data.command("export")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None,
              help="Write to file instead of stdout")
@click.option("--include-disabled", is_flag=True, help="Also export disabled patterns")
def data_export(output: Path | None, include_disabled: bool):
    """Export patterns, A/B summary and style weights as JSON."""
    engine = get_components(with_remote=False)["engine"]
    payload = engine.export_learning_data(include_disabled=include_disabled)
    if output is None:
        click.echo(payload)
        return
    output = output.expanduser()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(payload)
    console.print(f"[green]Exported[/] to {output}")


@data.command("import")
@click.argument("snapshot_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def data_import(snapshot_file: Path):
    """Merge an exported snapshot into local learning data."""
    from learning.errors import InvalidSnapshotError

    engine = get_components()["engine"]
    try:
        stats = engine.import_learning_data(snapshot_file.read_text())
    except InvalidSnapshotError as e:
        console.print(f"[red]Invalid snapshot:[/] {e}")
        raise SystemExit(1)
    console.print(
        f"[green]Imported.[/] {stats['created']} new, {stats['updated']} updated, "
        f"{stats['unchanged']} unchanged, {stats['deleted']} deleted"
    )
