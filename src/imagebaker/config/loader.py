"""Utilities for loading imagebaker configuration."""
from __future__ import annotations

from pathlib import Path

import yaml

from .models import BuildConfig

DEFAULT_CONFIG_PATH = Path("config/imagebaker.yaml")


def load_config(config_path: Path | None = None) -> BuildConfig:
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise FileNotFoundError(msg)

    payload = yaml.safe_load(path.read_text()) or {}
    return BuildConfig.model_validate(payload)
