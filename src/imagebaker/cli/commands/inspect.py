"""`imagebaker inspect` command implementation."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ...workspace import Workspace

console = Console()


def inspect(workspace_path: Path = typer.Argument(..., help="Workspace directory to inspect.")) -> None:
    """Display the steps and images recorded by a previous build."""
    try:
        metadata = Workspace(root=workspace_path).load_metadata()
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc

    console.print(f"[bold]Workspace:[/bold] {metadata.get('workspace')}")
    console.print(f"[bold]Config:[/bold] {metadata.get('config_name')}")
    console.print(f"[bold]Duration:[/bold] {metadata.get('duration_seconds', 0):.2f}s")

    step_table = Table(title="Steps", show_header=True, header_style="bold green")
    step_table.add_column("Step")
    step_table.add_column("Status")
    step_table.add_column("Duration (s)")
    step_table.add_column("Detail")
    for step in metadata.get("steps", []):
        step_table.add_row(
            step.get("name", "?"),
            step.get("status", "?"),
            f"{step.get('duration_seconds', 0):.2f}",
            step.get("detail") or "",
        )
    console.print(step_table)

    artifact = metadata.get("artifact")
    if artifact:
        image_table = Table(title="Images", show_header=True, header_style="bold blue")
        image_table.add_column("Region")
        image_table.add_column("Image")
        for region, image_id in sorted(artifact.get("images", {}).items()):
            image_table.add_row(region, image_id)
        console.print(image_table)
    else:
        console.print("[yellow]No image was produced.[/yellow]")

    if metadata.get("cleanup_failures"):
        console.print(f"[red]Cleanup failed for:[/red] {', '.join(metadata['cleanup_failures'])}")
    if metadata.get("error"):
        console.print(f"[bold red]Error:[/bold red] {metadata['error']}")
