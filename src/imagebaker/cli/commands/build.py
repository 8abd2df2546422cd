"""`imagebaker build` command implementation."""
from __future__ import annotations

import signal
import time
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ...builder import Builder
from ...config.loader import DEFAULT_CONFIG_PATH, load_config
from ...errors import ImageBakerError
from ...logging_utils import configure_logging
from ...pipeline.context import BuildContext
from ...workspace import Workspace

console = Console()


def build(
    config: Path = typer.Argument(
        DEFAULT_CONFIG_PATH,
        help="Path to the build configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    workspace_dir: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Directory for build records and keys. Defaults to ./build/<name>/<timestamp>.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Keep the temporary private key in the workspace."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Build a machine image from the given configuration."""
    configure_logging(level=log_level)

    try:
        cfg = load_config(config)
    except ValidationError as exc:
        console.print(f"[bold red]Configuration is invalid[/bold red] ({exc.error_count()} error(s))")
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "<root>"
            console.print(f"  [red]{location}[/red]: {error['msg']}")
        raise typer.Exit(code=1) from exc
    if debug:
        cfg.debug = True

    workspace = Workspace.create(
        root=workspace_dir
        if workspace_dir is not None
        else Path("build") / cfg.name / time.strftime("%Y%m%d-%H%M%S")
    )
    configure_logging(level=log_level, log_file=workspace.log_path)
    builder = Builder(cfg, workspace=workspace)
    try:
        builder.prepare()
    except ImageBakerError as exc:
        console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    ctx = BuildContext(timeout=cfg.build_timeout_seconds)
    previous = {
        sig: signal.signal(sig, lambda signum, _frame: ctx.cancel(f"Interrupted by signal {signum}"))
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    start = time.perf_counter()
    console.log("Starting build", cfg.name, "→", workspace.root)
    try:
        result = builder.run(ctx)
        duration = time.perf_counter() - start
        workspace.save_metadata(
            "metadata.json",
            {
                "config_path": str(config),
                "config_name": cfg.name,
                "region": cfg.access.region,
                "workspace": str(workspace.root),
                "steps": [step.model_dump() for step in result.report.step_results],
                "cleanup_failures": result.report.cleanup_failures,
                "artifact": result.artifact.to_dict() if result.artifact is not None else None,
                "error": str(result.error) if result.error is not None else None,
                "duration_seconds": duration,
            },
        )
    except ImageBakerError as exc:
        console.print(f"[bold red]Build failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        builder.close()

    table = Table(title="Steps", show_header=True, header_style="bold magenta")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Duration (s)")
    for step in result.report.step_results:
        table.add_row(step.name, step.status, f"{step.duration_seconds:.2f}")
    console.print(table)

    if result.artifact is not None:
        images = Table(title="Images", show_header=True, header_style="bold blue")
        images.add_column("Region")
        images.add_column("Image")
        for region, image_id in sorted(result.artifact.images.items()):
            images.add_row(region, image_id)
        console.print(images)

    if result.error is not None:
        console.print(f"[bold red]Build finished with error[/bold red] after {duration:.2f}s: {result.error}")
        raise typer.Exit(code=1)
    if result.artifact is None:
        console.print(f"[yellow]Build finished in {duration:.2f}s without creating an image[/yellow]")
        return
    console.print(f"[bold green]Build finished[/bold green] in {duration:.2f}s: {result.artifact.id()}")
