"""Steps that reach into the running instance."""
from __future__ import annotations

from typing import Callable

from ..config.models import CommunicatorSettings, PollingSettings
from ..errors import ImageBakerError, PreconditionError
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.polling import wait_until
from ..pipeline.state import StateBag
from ..pipeline.step import BuildStep, StepAction
from ..services.provisioner import Provisioner, RemoteTarget, tcp_reachable


def remote_target(state: StateBag, communicator: CommunicatorSettings) -> RemoteTarget | None:
    if communicator.type == "none":
        return None
    return RemoteTarget(
        host=state.require(keys.INSTANCE_HOST),
        port=communicator.ssh_port,
        username=communicator.ssh_username,
        key_path=state.get(keys.PRIVATE_KEY_PATH),
    )


class ConnectStep(BuildStep):
    """Wait until the instance accepts connections on the communicator port."""

    name = "Connect"

    def __init__(
        self,
        communicator: CommunicatorSettings,
        polling: PollingSettings | None = None,
        probe: Callable[[str, int], bool] = tcp_reachable,
    ) -> None:
        self.communicator = communicator
        self.polling = polling or PollingSettings()
        self.probe = probe

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if self.communicator.type == "none":
            return StepAction.CONTINUE

        host, present = state.get_ok(keys.INSTANCE_HOST)
        if not present or not host:
            return self.halt(state, PreconditionError("Instance has no reachable address; check associate_public_ip_address"))

        port = self.communicator.ssh_port
        self.logger.info("Waiting for SSH to become available on %s:%d", host, port)
        try:
            wait_until(
                ctx,
                lambda: self.probe(host, port),
                interval=self.polling.interval_seconds,
                timeout=self.communicator.ssh_timeout_seconds,
                description=f"SSH on {host}:{port}",
            )
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to connect to instance")

        self.logger.info("Connected to %s:%d", host, port)
        return StepAction.CONTINUE


class ProvisionStep(BuildStep):
    """Run the opaque provisioning action once the instance is reachable."""

    name = "Provision"

    def __init__(self, provisioner: Provisioner, communicator: CommunicatorSettings) -> None:
        self.provisioner = provisioner
        self.communicator = communicator

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        try:
            ctx.check()
            self.provisioner.provision(ctx, remote_target(state, self.communicator))
        except ImageBakerError as exc:
            return self.halt(state, exc, "Provisioning failed")
        return StepAction.CONTINUE


class CleanupTempKeysStep(BuildStep):
    """Remove the temporary public key from the instance before it is imaged."""

    name = "CleanupTempKeys"

    def __init__(self, provisioner: Provisioner, communicator: CommunicatorSettings) -> None:
        self.provisioner = provisioner
        self.communicator = communicator

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if not self.communicator.uses_temporary_key:
            return StepAction.CONTINUE
        key_pair = state.get(keys.KEY_PAIR)
        if key_pair is None:
            return StepAction.CONTINUE

        target = remote_target(state, self.communicator)
        if target is None:
            return StepAction.CONTINUE
        command = (
            f"sed -i.bak '/{key_pair.name}/d' ~/.ssh/authorized_keys; "
            "rm -f ~/.ssh/authorized_keys.bak"
        )
        self.logger.info("Trying to remove ephemeral key %s from authorized_keys", key_pair.name)
        try:
            ctx.check()
            self.provisioner.run_command(ctx, target, command)
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to remove temporary key from instance")
        return StepAction.CONTINUE
