"""CLI — Memory inspection and maintenance commands."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from lumos_memory.config import Settings
from lumos_memory.exceptions import LumosError
from lumos_memory.logging import bind_memory_context
from lumos_memory.memory.models import Importance, MemoryEntry, MemoryType, QueryOptions
from lumos_memory.memory.store import MemoryStore

app = typer.Typer(help="List, search, forget, and prune agent memories.")
console = Console()

T = TypeVar("T")

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]
DbOption = Annotated[
    Path | None, typer.Option("--db", help="SQLite database path (overrides config).")
]


def _load_settings(config: Path | None, db: Path | None) -> Settings:
    settings = Settings.load(config_file=config)
    if db is not None:
        settings.store.db_path = db.expanduser()
    return settings


def _run(settings: Settings, fn: Callable[[MemoryStore], Awaitable[T]]) -> T:
    async def _main() -> T:
        async with MemoryStore.from_config(settings.store) as store:
            return await fn(store)

    try:
        return asyncio.run(_main())
    except LumosError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)


def _render(entries: list[MemoryEntry], title: str) -> None:
    if not entries:
        console.print("[yellow]No memories found.[/yellow]")
        return
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Importance")
    table.add_column("User")
    table.add_column("Created")
    table.add_column("Content")
    for e in entries:
        content = e.content if len(e.content) <= 60 else e.content[:57] + "..."
        table.add_row(
            e.id,
            e.type.value,
            e.importance.name.lower(),
            e.user_id or "-",
            e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "-",
            content,
        )
    console.print(table)


@app.command("list")
def list_memories(
    agent: str = typer.Option(..., "--agent", "-a", help="Agent ID."),
    user: str | None = typer.Option(None, "--user", "-u", help="Restrict to one user."),
    memory_type: list[str] = typer.Option([], "--type", "-t", help="Filter by type (repeatable)."),
    min_importance: str | None = typer.Option(None, "--min-importance", help="low|medium|high|critical"),
    limit: int = typer.Option(20, help="Maximum number of memories to show."),
    include_expired: bool = typer.Option(False, "--include-expired", help="Show expired memories too."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """List an agent's memories, most important and newest first."""
    settings = _load_settings(config, db)
    bind_memory_context(agent_id=agent, user_id=user)

    try:
        options = QueryOptions(
            limit=limit,
            include_expired=include_expired,
            types=tuple(MemoryType.parse(t) for t in memory_type),
            min_importance=Importance.parse(min_importance) if min_importance else None,
        )
    except LumosError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)

    entries = _run(settings, lambda store: store.query(agent, user, options))
    if as_json:
        typer.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return
    _render(entries, f"Memories — {agent}")


@app.command("search")
def search(
    text: str = typer.Argument(help="Text the memory content must contain."),
    agent: str = typer.Option(..., "--agent", "-a", help="Agent ID."),
    limit: int = typer.Option(10, help="Maximum number of memories to show."),
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """Search an agent's memories (all users) by content."""
    settings = _load_settings(config, db)
    bind_memory_context(agent_id=agent)
    entries = _run(
        settings, lambda store: store.search_similar(agent, text, QueryOptions(limit=limit))
    )
    _render(entries, f"Matches for '{text}'")


@app.command("show")
def show(
    memory_id: str = typer.Argument(help="Memory ID."),
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """Print one memory as JSON (counts as an access)."""
    settings = _load_settings(config, db)
    entry = _run(settings, lambda store: store.get_by_id(memory_id))
    if entry is None:
        console.print(f"[red]Memory not found: {memory_id}[/red]")
        raise typer.Exit(1)
    console.print(Syntax(json.dumps(entry.to_dict(), indent=2), "json"))


@app.command("forget")
def forget(
    memory_id: str = typer.Argument(help="Memory ID."),
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """Delete one memory."""
    settings = _load_settings(config, db)
    deleted = _run(settings, lambda store: store.delete(memory_id))
    if not deleted:
        console.print(f"[red]Memory not found: {memory_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Forgot memory {memory_id}[/green]")


@app.command("prune")
def prune(
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """Delete every expired memory."""
    settings = _load_settings(config, db)
    removed = _run(settings, lambda store: store.prune())
    console.print(f"[green]Pruned {removed} expired memories.[/green]")


@app.command("stats")
def stats(
    agent: str = typer.Option(..., "--agent", "-a", help="Agent ID."),
    config: ConfigOption = None,
    db: DbOption = None,
) -> None:
    """Show memory counts for an agent."""
    settings = _load_settings(config, db)
    data: dict[str, Any] = _run(settings, lambda store: store.stats(agent))

    table = Table(title=f"Memory stats — {agent}")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key in ("total", "expired", "users", "sessions"):
        table.add_row(key, str(data[key]))
    for memory_type, count in data["by_type"].items():
        table.add_row(f"type:{memory_type}", str(count))
    console.print(table)
