"""Shared helpers for CLI commands."""

import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ccmemory.exceptions import CCMemoryError
from ccmemory.memory.schema import Memory

console = Console()

PREVIEW_CHARS = 80


def resolve_project(project: Optional[str]) -> str:
    """Project id from the option, $CCMEMORY_PROJECT, or the current directory."""
    if project:
        return project
    return os.environ.get("CCMEMORY_PROJECT") or str(Path.cwd())


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Print domain and validation errors in red and exit with status 1."""
    try:
        yield
    except (CCMemoryError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    """Single-line, truncated and markup-escaped text for tables."""
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return escape(text)


def memory_table(memories: List[Memory], title: str, highlight_id: Optional[str] = None) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Sector", style="green")
    table.add_column("Tier", style="dim")
    table.add_column("Salience", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Content")

    for memory in memories:
        content = preview(memory.content)
        if memory.is_superseded:
            content = f"[dim strike]{content}[/dim strike]"
        row_style = "bold" if memory.id == highlight_id else None
        table.add_row(
            memory.id,
            memory.sector.value,
            memory.tier.value,
            f"{memory.salience:.2f}",
            format_timestamp(memory.created_at),
            content,
            style=row_style,
        )

    return table
