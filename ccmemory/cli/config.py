"""Configuration management CLI commands."""

import typer
from rich.console import Console
from rich.table import Table

console = Console()

config_app = typer.Typer(help="Manage ccmemory configuration")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from ccmemory.config import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"[cyan]Configuration file:[/cyan] [dim]{config_path}[/dim]")
    if not config_path.exists():
        console.print("[dim]No configuration file, using defaults[/dim]")
    console.print(f"[bold]Database:[/bold] {config.resolved_db_path()}\n")

    table = Table(show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for key, value in config.model_dump(exclude={"db_path"}).items():
        table.add_row(key, str(value))

    console.print(table)


@config_app.command("path")
def config_path():
    """Print the configuration file path."""
    from ccmemory.config import get_config_path

    print(get_config_path())
