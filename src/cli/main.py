"""CLI entry point for the learning engine."""

import sys
from pathlib import Path

import click

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.commands import (  # noqa: E402
    apply,
    data,
    patterns,
    pause,
    profile,
    replay,
    reset,
    resume,
    status,
    submit,
    sync,
)
from cli.config import load_config_model  # noqa: E402
from cli.logging_config import setup_logging  # noqa: E402


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def cli(verbose: bool, json_logs: bool):
    """Scribe learning engine - inspect and control what has been learned."""
    try:
        config = load_config_model()
        level = "DEBUG" if verbose else config.logging.level
        setup_logging(
            json_mode=json_logs or config.logging.json_format,
            level=level,
            log_file=config.paths.log_file,
            file_level=config.logging.file_level,
        )
    except (ValueError, OSError):
        # get_components reports config errors with a readable message
        setup_logging(json_mode=json_logs, level="DEBUG" if verbose else "WARNING")


for command in (submit, apply, pause, resume, reset, replay, status):
    cli.add_command(command)
cli.add_command(patterns)
cli.add_command(profile)
cli.add_command(data)
cli.add_command(sync)


if __name__ == "__main__":
    cli()
