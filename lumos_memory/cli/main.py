"""Lumos Memory CLI — Entry point.

Usage:
    lumos-memory memories list --agent <agent_id>
    lumos-memory memories search <text> --agent <agent_id>
    lumos-memory memories show <memory_id>
    lumos-memory memories forget <memory_id>
    lumos-memory memories prune
    lumos-memory memories stats --agent <agent_id>
"""

from __future__ import annotations

import typer
from rich.console import Console

from lumos_memory.cli.commands import memories
from lumos_memory.logging import configure_logging

app = typer.Typer(
    name="lumos-memory",
    help="Lumos Memory — inspect and maintain persistent agent memory.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.add_typer(memories.app, name="memories")


@app.callback()
def main_callback(
    log_level: str = typer.Option("warning", "--log-level", help="Log level."),
    log_format: str = typer.Option("console", "--log-format", help="console or json."),
) -> None:
    configure_logging(level=log_level, format=log_format)


if __name__ == "__main__":
    app()
