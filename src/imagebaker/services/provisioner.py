"""Provisioning actions executed against the running build instance."""
from __future__ import annotations

import logging
import socket
import subprocess
import time
from dataclasses import dataclass
from typing import Protocol

from ..config.models import ProvisionSettings
from ..errors import BuildCancelledError, ProvisionError
from ..pipeline.context import BuildContext


@dataclass(slots=True)
class RemoteTarget:
    """Where and as whom provisioning commands connect."""

    host: str
    port: int
    username: str
    key_path: str | None = None


class Provisioner(Protocol):
    def provision(self, ctx: BuildContext, target: RemoteTarget | None) -> None:
        """Run the provisioning action; raise ``ProvisionError`` on failure."""

    def run_command(self, ctx: BuildContext, target: RemoteTarget, command: str) -> str:
        """Run a single command on the instance and return its stdout."""


class ShellProvisioner:
    """Run configured shell commands on the instance through an ssh command template."""

    def __init__(self, settings: ProvisionSettings, poll_interval: float = 0.5) -> None:
        self.settings = settings
        self.poll_interval = poll_interval
        self.logger = logging.getLogger("imagebaker.provisioner")

    def provision(self, ctx: BuildContext, target: RemoteTarget | None) -> None:
        if not self.settings.commands:
            self.logger.info("No provisioning commands configured")
            return
        if target is None:
            raise ProvisionError("Provisioning commands require an ssh communicator")
        for index, command in enumerate(self.settings.commands, start=1):
            self.logger.info("Provisioning command %d/%d: %s", index, len(self.settings.commands), command)
            output = self.run_command(ctx, target, command)
            for line in output.splitlines():
                self.logger.info("    %s", line)

    def build_command(self, target: RemoteTarget, command: str) -> list[str]:
        return [
            arg.format(
                KEY_PATH=target.key_path or "",
                PORT=target.port,
                USER=target.username,
                HOST=target.host,
                COMMAND=command,
            )
            for arg in self.settings.ssh_command
        ]

    def run_command(self, ctx: BuildContext, target: RemoteTarget, command: str) -> str:
        argv = self.build_command(target, command)
        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as exc:
            raise ProvisionError(f"Provisioning binary not found: {argv[0]}") from exc

        started = time.monotonic()
        while True:
            try:
                stdout, stderr = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if ctx.cancelled:
                    process.kill()
                    process.communicate()
                    raise BuildCancelledError(ctx.reason or "Build cancelled during provisioning") from None
                if time.monotonic() - started > self.settings.timeout_seconds:
                    process.kill()
                    process.communicate()
                    raise ProvisionError(
                        f"Provisioning command timed out after {self.settings.timeout_seconds}s: {command}"
                    ) from None

        if process.returncode != 0:
            raise ProvisionError(
                f"Provisioning command failed with exit code {process.returncode}: {stderr.strip() or command}"
            )
        return stdout


def tcp_reachable(host: str, port: int, timeout: float = 5.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
