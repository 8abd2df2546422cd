"""Command-line interface bootstrap for imagebaker."""
from __future__ import annotations

import typer

from .commands.build import build
from .commands.destroy import destroy
from .commands.inspect import inspect
from .commands.validate import validate

app = typer.Typer(help="Build machine images on transient cloud infrastructure")

app.command()(build)
app.command()(validate)
app.command()(inspect)
app.command()(destroy)

__all__ = ["app"]
