"""`imagebaker destroy` command implementation."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ...artifact import Artifact
from ...config.loader import DEFAULT_CONFIG_PATH, load_config
from ...errors import ArtifactDestroyError, ConfigValidationError
from ...logging_utils import configure_logging
from ...services.http_control_plane import build_client
from ...workspace import Workspace

console = Console()


def destroy(
    workspace_path: Path = typer.Argument(..., help="Workspace of the build whose images should be deleted."),
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Build configuration providing access settings.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Delete every image recorded in a build workspace."""
    configure_logging(level=log_level)
    try:
        metadata = Workspace(root=workspace_path).load_metadata()
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc

    recorded = metadata.get("artifact") or {}
    images: dict[str, str] = recorded.get("images") or {}
    if not images:
        console.print("[yellow]No images recorded in this workspace.[/yellow]")
        return

    listing = ", ".join(f"{region}:{image_id}" for region, image_id in sorted(images.items()))
    if not yes and not typer.confirm(f"Delete {listing}?"):
        raise typer.Abort()

    cfg = load_config(config)
    try:
        client = build_client(cfg.access)
    except ConfigValidationError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    artifact = Artifact(images=images, client=client, state_data=recorded.get("state_data") or {})
    try:
        artifact.destroy()
    except ArtifactDestroyError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc
    finally:
        client.close()
    console.print(f"[bold green]Deleted[/bold green] {listing}")
