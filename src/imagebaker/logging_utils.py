"""Logging helpers for imagebaker."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from rich.logging import RichHandler

_SECRETS: set[str] = set()


def register_secret(value: str | None) -> None:
    """Redact ``value`` from every log record emitted from now on."""
    if value and len(value) >= 4:
        _SECRETS.add(value)


class SecretFilter(logging.Filter):
    """Replace registered secrets in log messages with a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not _SECRETS:
            return True
        message = record.getMessage()
        redacted = message
        for secret in _SECRETS:
            redacted = redacted.replace(secret, "<sensitive>")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(
    level: str | Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
    log_file: Path | None = None,
) -> None:
    """Configure root logging with Rich formatting and secret redaction.

    With ``log_file`` the same records are also written to that file.
    """
    handlers: list[logging.Handler] = [RichHandler(rich_tracebacks=True, markup=False)]
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)
    for handler in handlers:
        handler.addFilter(SecretFilter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
