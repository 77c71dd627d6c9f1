"""Lorekeeper CLI - manage memories and run memory-aware generation.

This module provides a command-line interface for the memory engine. It
includes commands for memory management, context inspection, character chat,
scene continuation and plot suggestions.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from lorekeeper.context.templates import load_default_templates
from lorekeeper.core.config import EngineConfig, load_config
from lorekeeper.core.exceptions import LorekeeperError
from lorekeeper.core.types import (
    Character,
    MemoryEntry,
    MemoryTag,
    Region,
    Scene,
    TimelineEvent,
    World,
)
from lorekeeper.engine import MemoryEngine
from lorekeeper.llm.client import OllamaClient
from lorekeeper.memory.cache import TTLMemoryCache
from lorekeeper.memory.store import EntitySummaryStore
from lorekeeper.storage.repositories import (
    SQLiteInteractionLog,
    SQLiteNarrativeStore,
    SQLiteTagStore,
    SQLiteTemplateStore,
)
from lorekeeper.storage.sqlite import SQLiteStorage

# Initialize Typer app and Rich console
app = typer.Typer(
    name="lorekeeper",
    help="Lorekeeper - memory and context engine for creative-writing universes",
    add_completion=False,
)
console = Console()

_state: dict[str, str | None] = {"db": None, "model": None, "ollama_url": None}


@dataclass
class System:
    """Components wired together for one CLI invocation."""

    config: EngineConfig
    sqlite: SQLiteStorage
    store: EntitySummaryStore
    narrative: SQLiteNarrativeStore
    tags: SQLiteTagStore
    templates: SQLiteTemplateStore
    llm: OllamaClient
    engine: MemoryEngine


async def initialize_system(config: EngineConfig | None = None) -> System:
    """Initialize storage, collaborators and the memory engine."""
    config = config or load_config(
        db_path=Path(_state["db"]) if _state["db"] else None,
        model=_state["model"],
        ollama_url=_state["ollama_url"],
    )

    sqlite = SQLiteStorage(config.db_path)
    await sqlite.initialize()

    store = EntitySummaryStore(sqlite, cache=TTLMemoryCache(default_ttl=config.cache_ttl_seconds))
    narrative = SQLiteNarrativeStore(sqlite)
    tags = SQLiteTagStore(sqlite)
    templates = SQLiteTemplateStore(sqlite)
    llm = OllamaClient(
        base_url=config.ollama_url,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )

    engine = MemoryEngine(
        store=store,
        narrative=narrative,
        tags=tags,
        templates=templates,
        generator=llm,
        interaction_log=SQLiteInteractionLog(sqlite),
        config=config,
    )
    return System(config, sqlite, store, narrative, tags, templates, llm, engine)


def run(coro) -> None:
    """Run a command coroutine, reporting engine errors without a traceback."""
    try:
        asyncio.run(coro)
    except LorekeeperError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def memories_table(entries: list[MemoryEntry], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("v", justify="right")
    table.add_column("Kind", style="yellow")
    table.add_column("Text", style="green")
    table.add_column("Tags", style="blue")
    table.add_column("Rel.", justify="right", style="magenta")
    table.add_column("Flags")

    for entry in entries:
        flags = []
        if entry.is_current:
            flags.append("current")
        if entry.used_recently:
            flags.append("active")
        if not entry.editable:
            flags.append("locked")
        text = entry.text if len(entry.text) <= 60 else entry.text[:57] + "..."
        table.add_row(
            entry.id,
            str(entry.version),
            entry.memory_kind,
            text,
            ", ".join(entry.tags),
            f"{entry.relevance_score:.2f}",
            " ".join(flags),
        )
    return table


async def _require_generator(system: System) -> None:
    if not await system.llm.health_check():
        console.print(
            "[red]Error: Cannot connect to Ollama.[/red]\n"
            f"Please ensure Ollama is running at {system.config.ollama_url}"
        )
        raise typer.Exit(1)


@app.callback()
def main(
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    model: Optional[str] = typer.Option(None, "--model", help="Generation model"),
    ollama_url: Optional[str] = typer.Option(None, "--ollama-url", help="Ollama API URL"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
):
    """Global options shared by every command."""
    _state["db"] = str(db) if db else None
    _state["model"] = model
    _state["ollama_url"] = ollama_url
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command()
def init():
    """Create the database and install the default prompt templates."""
    run(_init())


async def _init():
    system = await initialize_system()
    console.print(f"[green]Database ready at {system.config.db_path}[/green]")
    if await system.sqlite.count("context_templates") == 0:
        await _install_templates(system)


@app.command("seed-templates")
def seed_templates():
    """Reinstall the bundled prompt templates as the active ones."""
    run(_seed_templates())


async def _seed_templates():
    system = await initialize_system()
    await _install_templates(system)


async def _install_templates(system: System) -> None:
    templates = load_default_templates()
    for template in templates:
        await system.templates.save_template(template)
    console.print(f"[green]Default templates installed ({len(templates)}).[/green]")


@app.command()
def load(path: Path = typer.Argument(..., exists=True, help="JSON file with universe records")):
    """Load worlds, characters, scenes, regions, timeline events and tags from JSON."""
    run(_load(path))


async def _load(path: Path):
    data = json.loads(path.read_text())
    system = await initialize_system()

    record_types = {
        "worlds": World,
        "characters": Character,
        "scenes": Scene,
        "regions": Region,
        "timeline_events": TimelineEvent,
    }
    counts = {}
    for section, model in record_types.items():
        for item in data.get(section, []):
            await system.narrative.save(model(**item))
        counts[section] = len(data.get(section, []))

    for item in data.get("tags", []):
        await system.tags.save_tag(MemoryTag(**item))
    counts["tags"] = len(data.get("tags", []))

    summary = ", ".join(f"{count} {section.replace('_', ' ')}" for section, count in counts.items())
    console.print(f"[green]Loaded {summary}.[/green]")


@app.command()
def remember(
    entity_type: str = typer.Argument(..., help="character, region, world, timeline_event or scene"),
    entity_id: str = typer.Argument(..., help="Entity ID"),
    text: str = typer.Argument(..., help="Memory text"),
    kind: str = typer.Option("hard", "--kind", "-k", help="hard, soft or ephemeral"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag name (repeatable)"),
):
    """Create a new current memory for an entity."""
    run(_remember(entity_type, entity_id, text, kind, tag))


async def _remember(entity_type: str, entity_id: str, text: str, kind: str, tags: list[str]):
    system = await initialize_system()
    entry = await system.engine.create_memory(entity_type, entity_id, text, kind, tags)
    console.print(
        f"[green]Stored {entry.id}[/green] for {entry.key} (version {entry.version})"
    )


@app.command()
def memories(
    entity_type: str = typer.Argument(..., help="Entity type"),
    entity_id: str = typer.Argument(..., help="Entity ID"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Only this memory kind"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Only memories with this tag"),
    min_relevance: Optional[float] = typer.Option(None, "--min-relevance", help="Relevance floor"),
    active: Optional[bool] = typer.Option(None, "--active/--inactive", help="Filter on used_recently"),
    all_versions: bool = typer.Option(False, "--all", help="Include superseded versions"),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Rank against this text"),
    limit: int = typer.Option(5, "--limit", "-n", help="Results when ranking"),
):
    """Query an entity's memories."""
    run(_memories(entity_type, entity_id, kind, tag, min_relevance, active, all_versions, context, limit))


async def _memories(
    entity_type: str,
    entity_id: str,
    kind: str | None,
    tags: list[str],
    min_relevance: float | None,
    active: bool | None,
    all_versions: bool,
    context: str | None,
    limit: int,
):
    system = await initialize_system()
    if context:
        entries = await system.engine.get_relevant_memories(entity_type, entity_id, context, limit)
        title = f"Memories of {entity_type}:{entity_id} ranked against '{context}'"
    else:
        entries = await system.engine.query_memories(
            entity_type,
            entity_id,
            {
                "kind": kind,
                "tags": tags or None,
                "min_relevance": min_relevance,
                "used_recently": active,
                "current_only": not all_versions,
            },
        )
        title = f"Memories of {entity_type}:{entity_id}"

    if not entries:
        console.print("[yellow]No memories found.[/yellow]")
        return
    console.print(memories_table(entries, title))


@app.command()
def history(
    entity_type: str = typer.Argument(..., help="Entity type"),
    entity_id: str = typer.Argument(..., help="Entity ID"),
):
    """Show every version of an entity's memory, oldest first."""
    run(_history(entity_type, entity_id))


async def _history(entity_type: str, entity_id: str):
    system = await initialize_system()
    entries = await system.engine.get_memory_history(entity_type, entity_id)
    if not entries:
        console.print("[yellow]No memories found.[/yellow]")
        return
    console.print(memories_table(entries, f"History of {entity_type}:{entity_id}"))


@app.command("update-memory")
def update_memory(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    text: Optional[str] = typer.Option(None, "--text", help="New text"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="New memory kind"),
    tag: Optional[list[str]] = typer.Option(None, "--tag", "-t", help="Replace tags"),
    editable: Optional[bool] = typer.Option(None, "--editable/--locked", help="Editable flag"),
    active: Optional[bool] = typer.Option(None, "--active/--inactive", help="used_recently flag"),
):
    """Edit a memory in place. Version and current state do not change."""
    update = {"text": text, "kind": kind, "tags": tag or None, "editable": editable, "used_recently": active}
    run(_update_memory(memory_id, {name: value for name, value in update.items() if value is not None}))


async def _update_memory(memory_id: str, update: dict[str, object]):
    system = await initialize_system()
    entry = await system.engine.update_memory(memory_id, update)
    console.print(memories_table([entry], "Updated memory"))


@app.command()
def context(
    world_id: str = typer.Argument(..., help="World ID"),
    character_id: Optional[str] = typer.Option(None, "--character", help="Character ID"),
    scene_id: Optional[str] = typer.Option(None, "--scene", help="Scene ID"),
):
    """Show the context bundle a generation request would use."""
    run(_context(world_id, character_id, scene_id))


async def _context(world_id: str, character_id: str | None, scene_id: str | None):
    system = await initialize_system()
    bundle = await system.engine.build_context(world_id, character_id, scene_id)

    for title, body in (
        ("World", bundle.world_context),
        ("Character", bundle.character_context),
        ("Scene", bundle.scene_context),
        ("Active memories", bundle.memory_context),
    ):
        console.print(Panel(body or "[dim](empty)[/dim]", title=title, border_style="cyan"))

    if bundle.relevant_tags:
        console.print("[dim]Tags:[/dim] " + ", ".join(
            f"[{tag.color}]{tag.name}[/{tag.color}] ({tag.category})" for tag in bundle.relevant_tags
        ))


@app.command()
def chat(
    character_id: str = typer.Argument(..., help="Character to talk to"),
    world_id: str = typer.Argument(..., help="World the character lives in"),
    situation: Optional[str] = typer.Option(None, "--situation", help="Current situation"),
):
    """Start an interactive chat with a character."""
    asyncio.run(_chat(character_id, world_id, situation))


async def _chat(character_id: str, world_id: str, situation: str | None):
    console.print(Panel.fit(
        "[bold cyan]Lorekeeper Character Chat[/bold cyan]\n"
        "Type 'exit', 'quit' or 'bye' to end the conversation.",
        border_style="cyan",
    ))

    with console.status("[bold green]Initializing..."):
        try:
            system = await initialize_system()
        except LorekeeperError as e:
            console.print(f"[red]Error initializing system: {e}[/red]")
            raise typer.Exit(1)
        await _require_generator(system)

    while True:
        try:
            user_input = Prompt.ask("\n[bold blue]You[/bold blue]")
            if user_input.lower().strip() in ["exit", "quit", "bye", "q"]:
                console.print("\n[cyan]Goodbye! The story remembers.[/cyan]")
                break
            if not user_input.strip():
                continue

            with console.status("[bold green]Thinking..."):
                response = await system.engine.chat_with_character(
                    character_id, user_input, world_id, scene_context=situation
                )

            console.print(f"\n[bold green]{response.character_name}[/bold green]")
            console.print(Markdown(response.text))
            console.print(
                f"[dim italic]emotion: {response.detected_emotion} | "
                f"memories used: {len(response.memories_used)} | "
                f"learned: {len(response.metadata.get('learned_memories', []))}[/dim italic]"
            )
        except KeyboardInterrupt:
            console.print("\n\n[yellow]Interrupted. Use 'exit' to quit properly.[/yellow]")
        except LorekeeperError as e:
            console.print(f"\n[red]Error: {e}[/red]")


@app.command("continue-scene")
def continue_scene(
    scene_id: str = typer.Argument(..., help="Scene ID"),
    world_id: str = typer.Argument(..., help="World ID"),
    dialogue: str = typer.Option("", "--dialogue", "-d", help="Previous dialogue"),
):
    """Continue a scene from its previous dialogue."""
    run(_continue_scene(scene_id, world_id, dialogue))


async def _continue_scene(scene_id: str, world_id: str, dialogue: str):
    system = await initialize_system()
    await _require_generator(system)
    with console.status("[bold green]Writing..."):
        response = await system.engine.continue_scene(scene_id, dialogue, world_id)

    console.print(Markdown(response.text))
    for title, lines in (
        ("Scene suggestions", response.scene_suggestions),
        ("Character actions", response.character_actions),
        ("Plot developments", response.plot_developments),
    ):
        if lines:
            console.print(Panel("\n".join(f"- {line}" for line in lines), title=title, border_style="cyan"))


@app.command()
def plot(world_id: str = typer.Argument(..., help="World ID")):
    """Suggest plot developments for a world."""
    run(_plot(world_id))


async def _plot(world_id: str):
    system = await initialize_system()
    await _require_generator(system)
    with console.status("[bold green]Plotting..."):
        response = await system.engine.generate_plot_suggestions(world_id)

    console.print(Markdown(response.text))
    if response.suggested_actions:
        console.print(Panel(
            "\n".join(f"- {line}" for line in response.suggested_actions),
            title="Suggested actions",
            border_style="cyan",
        ))


@app.command()
def stats(
    entity_type: str = typer.Argument(..., help="Entity type"),
    entity_id: str = typer.Argument(..., help="Entity ID"),
):
    """Show memory statistics for an entity."""
    run(_stats(entity_type, entity_id))


async def _stats(entity_type: str, entity_id: str):
    system = await initialize_system()
    analytics = await system.engine.get_memory_analytics(entity_type, entity_id)

    table = Table(title=f"Memory statistics for {entity_type}:{entity_id}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total versions", str(analytics.total_memories))
    table.add_row("Current", str(analytics.current_memories))
    table.add_row("Hard", str(analytics.hard_memories))
    table.add_row("Soft", str(analytics.soft_memories))
    table.add_row("Ephemeral", str(analytics.ephemeral_memories))
    table.add_row("Average relevance", f"{analytics.avg_relevance:.2f}")
    table.add_row(
        "Last updated",
        analytics.last_updated.isoformat() if analytics.last_updated else "never",
    )
    console.print(table)


if __name__ == "__main__":
    app()
