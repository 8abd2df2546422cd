from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError
from typer.testing import CliRunner

from imagebaker.cli import app
from imagebaker.logging_utils import SecretFilter, configure_logging, register_secret
from imagebaker.workspace import Workspace

REPO_ROOT = Path(__file__).resolve().parents[1]

runner = CliRunner()


def test_validate_accepts_sample_config() -> None:
    result = runner.invoke(app, ["validate", str(REPO_ROOT / "config" / "imagebaker.yaml")])

    assert result.exit_code == 0
    assert "is valid" in result.stdout


def test_validate_reports_errors(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("access:\n  region: ap-guangzhou\n")

    result = runner.invoke(app, ["validate", str(path)])

    assert result.exit_code == 1
    assert "run" in result.stdout


def test_inspect_shows_recorded_build(tmp_path) -> None:
    workspace = Workspace.create(root=tmp_path)
    workspace.save_metadata(
        "metadata.json",
        {
            "workspace": str(tmp_path),
            "config_name": "base-image",
            "duration_seconds": 12.5,
            "steps": [{"name": "CreateImage", "status": "completed", "duration_seconds": 10.0, "detail": None}],
            "artifact": {"images": {"ap-guangzhou": "img-0001"}},
            "cleanup_failures": [],
            "error": None,
        },
    )

    result = runner.invoke(app, ["inspect", str(tmp_path)])

    assert result.exit_code == 0
    assert "img-0001" in result.stdout
    assert "CreateImage" in result.stdout


def test_destroy_without_images_is_a_no_op(tmp_path) -> None:
    Workspace.create(root=tmp_path).save_metadata("metadata.json", {"artifact": None})

    result = runner.invoke(app, ["destroy", str(tmp_path), "--config", str(REPO_ROOT / "config" / "imagebaker.yaml")])

    assert result.exit_code == 0
    assert "No images recorded" in result.stdout


def test_secret_filter_redacts_registered_values() -> None:
    register_secret("AKIDsupersecret")
    record = logging.LogRecord("imagebaker", logging.INFO, __file__, 1, "using %s", ("AKIDsupersecret",), None)

    SecretFilter().filter(record)

    assert record.getMessage() == "using <sensitive>"


def test_build_reports_invalid_config_without_traceback(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("access:\n  region: ap-guangzhou\n")

    result = runner.invoke(app, ["build", str(path), "--workspace", str(tmp_path / "ws")])

    assert result.exit_code == 1
    assert "Configuration is invalid" in result.stdout
    assert not isinstance(result.exception, ValidationError)


def test_build_log_is_written_to_workspace(tmp_path) -> None:
    workspace = Workspace.create(root=tmp_path)
    register_secret("secret-in-log")
    try:
        configure_logging("INFO", log_file=workspace.log_path)
        logging.getLogger("imagebaker.builder").info("using key %s", "secret-in-log")
    finally:
        configure_logging("INFO")

    text = workspace.log_path.read_text()
    assert "imagebaker.builder: using key <sensitive>" in text
    assert "secret-in-log" not in text
