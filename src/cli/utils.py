"""Shared CLI utilities."""

import asyncio
import sys

import structlog
from rich.console import Console

console = Console()
logger = structlog.get_logger()


def get_components(with_remote: bool = True):
    """Initialize the learning engine from config.

    Args:
        with_remote: If False, never build the HTTP remote (offline commands).
    """
    from cli.config import load_config_model
    from learning.engine import LearningEngine

    try:
        config_model = load_config_model()
    except ValueError as e:
        console.print(f"[red]Config error:[/] {e}")
        sys.exit(1)

    if not with_remote:
        config_model = config_model.model_copy(
            update={"sync": config_model.sync.model_copy(update={"enabled": False})}
        )

    engine = LearningEngine(config_model)
    notice = engine.learning_reset_notice()
    if notice:
        console.print(
            "[yellow]Local learning data was unreadable and has been reset.[/] "
            f"The old file was kept at {notice.get('moved_to')}."
        )

    return {
        "config_model": config_model,
        "engine": engine,
    }


def run_async(coro):
    """Run a coroutine from a synchronous click command."""
    return asyncio.run(coro)


def format_time(value) -> str:
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M")
