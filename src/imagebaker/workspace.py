"""Workspace management utilities."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class Workspace:
    """Local directory holding the records of a single build."""

    root: Path

    @classmethod
    def create(cls, *, root: Path) -> "Workspace":
        root.mkdir(parents=True, exist_ok=True)
        (root / "keys").mkdir(parents=True, exist_ok=True)
        (root / "logs").mkdir(parents=True, exist_ok=True)
        return cls(root=root)

    @property
    def keys_dir(self) -> Path:
        return self.root / "keys"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def log_path(self) -> Path:
        return self.logs_dir / "build.log"

    @property
    def metadata_path(self) -> Path:
        return self.root / "metadata.json"

    def write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False))

    def save_metadata(self, filename: str, payload: Any) -> Path:
        path = self.root / filename
        self.write_json(path, payload)
        return path

    def load_metadata(self, filename: str = "metadata.json") -> dict[str, Any]:
        path = self.root / filename
        if not path.exists():
            msg = f"{filename} not found under {self.root}"
            raise FileNotFoundError(msg)
        return json.loads(path.read_text())
