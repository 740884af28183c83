"""ccmemory CLI application - main entry point."""

from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ccmemory.memory.relationships import ExtractedBy
from ccmemory.memory.schema import MemoryInput, Sector, Tier
from ccmemory.search.service import SearchOptions

from .config import config_app
from .helpers import console, exit_on_error, format_timestamp, memory_table, preview, resolve_project

app = typer.Typer(
    name="ccmemory",
    help="Long-lived memory store for coding agents",
    no_args_is_help=True,
)


def _system():
    from ccmemory.system import get_memory_system

    return get_memory_system()


@app.callback()
def main(
    db: Optional[Path] = typer.Option(None, "--db", envvar="CCMEMORY_DB", help="Database file (overrides config)"),
):
    """Store, search and age memories for coding agents."""
    if db is not None:
        from ccmemory.config import load_config
        from ccmemory.system import configure_memory_system

        configure_memory_system(load_config().model_copy(update={"db_path": db}))


@app.command("add")
def add(
    content: str = typer.Argument(..., help="Memory content"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id (default: current directory)"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session the memory was captured in"),
    sector: Optional[Sector] = typer.Option(None, "--sector", help="Override the classified sector"),
    tier: Optional[Tier] = typer.Option(None, "--tier", help="Override the tier"),
    importance: Optional[float] = typer.Option(None, "--importance", min=0.0, max=1.0),
    summary: Optional[str] = typer.Option(None, "--summary"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Related file (repeatable)"),
):
    """Add a memory.

    Examples:
        ccmemory add "Use pnpm, not npm, in this repo"
        ccmemory add "GET /api/v2/users replaces /api/users" --tag api --session abc123
    """
    with exit_on_error():
        memory = _system().remember(
            MemoryInput(
                content=content,
                summary=summary,
                sector=sector,
                tier=tier,
                importance=importance,
                tags=tags or [],
                files=files or [],
            ),
            project_id=resolve_project(project),
            session_id=session,
        )

    console.print(f"[green]✓ Stored memory[/green] {memory.id}")
    console.print(f"  sector={memory.sector.value} tier={memory.tier.value} salience={memory.salience:.2f}")


@app.command("show")
def show(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    deleted: bool = typer.Option(False, "--deleted", help="Show soft-deleted memories too"),
):
    """Show a memory with its relationships and session."""
    system = _system()

    with exit_on_error():
        memory = system.store.get(memory_id, include_deleted=deleted)

    lines = [
        f"[bold]ID:[/bold] {memory.id}",
        f"[bold]Project:[/bold] {escape(memory.project_id)}",
        f"[bold]Sector:[/bold] {memory.sector.value}   [bold]Tier:[/bold] {memory.tier.value}",
        f"[bold]Salience:[/bold] {memory.salience:.3f}   [bold]Importance:[/bold] {memory.importance:.2f}",
        f"[bold]Accessed:[/bold] {memory.access_count} times, last {format_timestamp(memory.last_accessed)}",
        f"[bold]Created:[/bold] {format_timestamp(memory.created_at)}",
    ]
    if memory.tags:
        lines.append(f"[bold]Tags:[/bold] {escape(', '.join(memory.tags))}")
    if memory.concepts:
        lines.append(f"[bold]Concepts:[/bold] {escape(', '.join(memory.concepts))}")
    if memory.is_deleted:
        lines.append(f"[red]Deleted {format_timestamp(memory.deleted_at)}[/red]")

    if memory.is_superseded:
        lines.append(f"[yellow]Superseded {format_timestamp(memory.valid_until)}[/yellow]")
        newer = system.graph.get_superseding_memory(memory.id)
        if newer is not None:
            lines.append(f"[yellow]  by {newer.id}: {preview(newer.content)}[/yellow]")

    context = system.search.get_session_context(memory.id)
    if context is not None:
        lines.append(
            f"[bold]Session:[/bold] {escape(context.session.id)} ({context.usage_type.value}, "
            f"{context.memories_in_session} memories)"
        )

    console.print(Panel("\n".join(lines), title="Memory"))
    console.print(Text(memory.content))

    relationships = system.graph.get_relationships(memory.id)
    if relationships:
        table = Table(title="Relationships")
        table.add_column("Type", style="green")
        table.add_column("Source", style="cyan")
        table.add_column("Target", style="cyan")
        table.add_column("Confidence", justify="right")
        for rel in relationships:
            table.add_row(
                rel.relationship_type.value,
                rel.source_memory_id,
                rel.target_memory_id,
                f"{rel.confidence:.2f}",
            )
        console.print(table)


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Search query"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id (default: current directory)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of results"),
    sector: Optional[Sector] = typer.Option(None, "--sector"),
    tier: Optional[Tier] = typer.Option(None, "--tier"),
    min_salience: float = typer.Option(0.0, "--min-salience"),
    mode: str = typer.Option("hybrid", "--mode", help="hybrid, semantic or keyword"),
    include_superseded: bool = typer.Option(False, "--include-superseded", help="Include outdated memories"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Restrict to a session's memories"),
    all_projects: bool = typer.Option(False, "--all-projects", help="Search every project"),
):
    """Search memories.

    Examples:
        ccmemory search "api endpoint"
        ccmemory search "deploy" --sector procedural --limit 5
    """
    system = _system()

    with exit_on_error():
        options = SearchOptions(
            limit=limit or system.config.search_limit,
            sector=sector,
            tier=tier,
            min_salience=min_salience,
            include_superseded=include_superseded,
            session_id=session,
            mode=mode,
        )
        results = system.search.search(query, None if all_projects else resolve_project(project), options)

    if not results:
        console.print("[yellow]No memories found[/yellow]")
        return

    table = Table(title=f"Results for '{escape(query)}' ({len(results)} found)")
    table.add_column("Score", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Sector", style="green")
    table.add_column("Match", style="dim")
    table.add_column("Content")

    for result in results:
        content = preview(result.memory.content)
        if result.is_superseded:
            content = f"[dim]{content}[/dim] [yellow](superseded)[/yellow]"
        table.add_row(
            f"{result.score:.3f}",
            result.memory.id,
            result.memory.sector.value,
            result.match_type,
            content,
        )

    console.print(table)


@app.command("timeline")
def timeline(
    memory_id: str = typer.Argument(..., help="Anchor memory ID"),
    before: Optional[int] = typer.Option(None, "--before", "-b", min=0, help="Memories before the anchor"),
    after: Optional[int] = typer.Option(None, "--after", "-a", min=0, help="Memories after the anchor"),
):
    """Show the memories created around an anchor memory."""
    system = _system()
    depth = system.config.timeline_depth

    with exit_on_error():
        result = system.search.timeline(
            memory_id,
            depth_before=depth if before is None else before,
            depth_after=depth if after is None else after,
        )

    scope = f"session {result.session_id}" if result.session_id else f"project {result.anchor.project_id}"
    console.print(memory_table(result.memories, f"Timeline ({escape(scope)})", highlight_id=result.anchor.id))


@app.command("reinforce")
def reinforce(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    amount: float = typer.Option(0.1, "--amount", help="Fraction of the gap to 1.0 to close"),
):
    """Increase a memory's salience."""
    with exit_on_error():
        memory = _system().store.reinforce(memory_id, amount)
    console.print(f"[green]✓ Salience now {memory.salience:.3f}[/green]")


@app.command("deemphasize")
def deemphasize(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    amount: float = typer.Option(0.2, "--amount", help="Fraction of the distance to the floor to remove"),
):
    """Decrease a memory's salience."""
    with exit_on_error():
        memory = _system().store.deemphasize(memory_id, amount)
    console.print(f"[green]✓ Salience now {memory.salience:.3f}[/green]")


@app.command("delete")
def delete(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    hard: bool = typer.Option(False, "--hard", help="Remove permanently with relationships and vectors"),
):
    """Delete a memory (soft by default, restorable)."""
    with exit_on_error():
        _system().store.delete(memory_id, hard=hard)
    console.print(f"[green]✓ {'Permanently deleted' if hard else 'Deleted'}[/green] {memory_id}")


@app.command("restore")
def restore(memory_id: str = typer.Argument(..., help="Memory ID")):
    """Restore a soft-deleted memory."""
    with exit_on_error():
        _system().store.restore(memory_id)
    console.print(f"[green]✓ Restored[/green] {memory_id}")


@app.command("supersede")
def supersede(
    old_id: str = typer.Argument(..., help="Outdated memory ID"),
    new_id: str = typer.Argument(..., help="Replacement memory ID"),
):
    """Mark a memory as replaced by a newer one."""
    with exit_on_error():
        relationship = _system().graph.supersede(old_id, new_id)

    if relationship is None:
        console.print(f"[yellow]{old_id} is already superseded by {new_id}[/yellow]")
        return
    console.print(f"[green]✓ {old_id} superseded by[/green] {new_id}")


@app.command("link")
def link(
    source_id: str = typer.Argument(..., help="Source memory ID"),
    target_id: str = typer.Argument(..., help="Target memory ID"),
    relationship_type: str = typer.Argument(..., help="RELATED_TO, BUILDS_ON, CONTRADICTS, ..."),
    confidence: float = typer.Option(1.0, "--confidence", min=0.0, max=1.0),
):
    """Create a relationship between two memories."""
    with exit_on_error():
        relationship = _system().graph.create_relationship(
            source_id,
            target_id,
            relationship_type,
            extracted_by=ExtractedBy.USER,
            confidence=confidence,
        )
    console.print(f"[green]✓ Created {relationship.relationship_type.value}[/green] {relationship.id}")


@app.command("related")
def related(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    relationship_type: Optional[str] = typer.Option(None, "--type", help="Only this relationship type"),
):
    """List memories connected to a memory by active relationships."""
    with exit_on_error():
        memories = _system().graph.get_related_memories(memory_id, relationship_type)

    if not memories:
        console.print("[yellow]No related memories[/yellow]")
        return
    console.print(memory_table(memories, f"Related to {escape(memory_id)}"))


@app.command("decay")
def decay():
    """Run one decay pass over the least recently updated memories."""
    with exit_on_error():
        count = _system().decay.run_once()
    console.print(f"[green]✓ Decayed {count} memories[/green]")


@app.command("session-end")
def session_end(
    session_id: str = typer.Argument(..., help="Session ID"),
    summary: Optional[str] = typer.Option(None, "--summary", help="Session summary"),
):
    """End a session and promote its salient memories to project tier."""
    with exit_on_error():
        result = _system().sessions.end_session(session_id, summary)

    console.print(f"[green]✓ Session {escape(session_id)} ended[/green]")
    console.print(f"  Promoted {result.promoted_count} memories to project tier")


@app.command("session-promote")
def session_promote(
    session_id: str = typer.Argument(..., help="Session ID"),
    min_usage: int = typer.Option(2, "--min-usage", min=1, help="Minimum number of ways a memory was used"),
):
    """Promote a session's repeatedly used memories to project tier."""
    with exit_on_error():
        promoted = _system().sessions.promote_session_memories(session_id, min_usage)

    console.print(f"[green]✓ Promoted {len(promoted)} memories to project tier[/green]")


app.add_typer(config_app, name="config")
