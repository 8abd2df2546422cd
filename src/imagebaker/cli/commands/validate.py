"""`imagebaker validate` command implementation."""
from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from ...config.loader import DEFAULT_CONFIG_PATH, load_config

console = Console()


def validate(
    config: Path = typer.Argument(DEFAULT_CONFIG_PATH, help="Path to the build configuration file."),
) -> None:
    """Validate a build configuration and print it resolved."""
    try:
        cfg = load_config(config)
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ValidationError as exc:
        console.print(f"[bold red]Configuration is invalid[/bold red] ({exc.error_count()} error(s))")
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "<root>"
            console.print(f"  [red]{location}[/red]: {error['msg']}")
        raise typer.Exit(code=1) from exc

    console.print(f"[bold green]Configuration {cfg.name} is valid[/bold green]")
    console.print_json(data=cfg.model_dump(mode="json", exclude={"access": {"secret_id", "secret_key"}}))
