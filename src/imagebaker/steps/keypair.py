"""Login key management for the build instance."""
from __future__ import annotations

import os
import uuid
from pathlib import Path

from ..config.models import CommunicatorSettings, PollingSettings
from ..errors import ConfigValidationError, ImageBakerError
from ..logging_utils import register_secret
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.polling import retry_call, wait_until
from ..pipeline.state import StateBag
from ..pipeline.step import BuildStep, StepAction, best_effort
from ..services.control_plane import ControlPlaneClient, InstanceState, KeyPairInfo


class ConfigKeyPairStep(BuildStep):
    """Use the caller's key pair, or create a temporary one owned by this build."""

    name = "ConfigKeyPair"

    def __init__(
        self,
        communicator: CommunicatorSettings,
        key_dir: Path,
        *,
        debug: bool = False,
        polling: PollingSettings | None = None,
    ) -> None:
        self.communicator = communicator
        self.key_dir = key_dir
        self.debug = debug
        self.polling = polling or PollingSettings()
        self.created_key: KeyPairInfo | None = None
        self.key_path: Path | None = None

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if self.communicator.type == "none":
            return StepAction.CONTINUE

        if not self.communicator.uses_temporary_key:
            return self._use_existing_key(state)

        client: ControlPlaneClient = state.require(keys.CLIENT)
        key_name = self.communicator.temporary_key_pair_name or f"imagebaker_{uuid.uuid4().hex[:12]}"
        self.logger.info("Creating temporary key pair %s", key_name)
        try:
            ctx.check()
            self.created_key = client.create_key_pair(key_name)
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to create key pair")

        state.put(keys.KEY_PAIR, self.created_key)
        if not self.created_key.private_key:
            return self.halt(
                state,
                ConfigValidationError(f"Key pair {self.created_key.key_id} was created without a private key"),
            )
        register_secret(self.created_key.private_key)

        self.key_dir.mkdir(parents=True, exist_ok=True)
        self.key_path = self.key_dir / f"{key_name}.pem"
        self.key_path.write_text(self.created_key.private_key)
        os.chmod(self.key_path, 0o600)
        state.put(keys.PRIVATE_KEY_PATH, str(self.key_path))
        if self.debug:
            self.logger.info("Saving temporary private key for debug purposes: %s", self.key_path)
        return StepAction.CONTINUE

    def _use_existing_key(self, state: StateBag) -> StepAction:
        key_file = Path(self.communicator.ssh_private_key_file or "")
        key_name = self.communicator.ssh_key_pair_name or ""
        self.logger.info("Using existing key pair %s", key_name)
        try:
            private_key = key_file.read_text()
        except OSError as exc:
            return self.halt(
                state,
                ConfigValidationError(f"Cannot read ssh_private_key_file {key_file}: {exc}"),
            )
        register_secret(private_key)
        state.put(keys.KEY_PAIR, KeyPairInfo(key_id=key_name, name=key_name, private_key=private_key))
        state.put(keys.PRIVATE_KEY_PATH, str(key_file))
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if self.key_path is not None and not self.debug:
            key_path = self.key_path
            if best_effort(self.logger, f"remove private key file {key_path}", lambda: key_path.unlink(missing_ok=True)):
                self.key_path = None

        if self.created_key is None:
            return
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return
        key_id = self.created_key.key_id
        self.logger.info("Deleting temporary key pair %s", key_id)
        deleted = best_effort(
            self.logger,
            f"delete key pair {key_id}",
            lambda: retry_call(
                BuildContext(),
                lambda: client.delete_key_pair(key_id),
                attempts=self.polling.cleanup_attempts,
                interval=self.polling.cleanup_interval_seconds,
                description=f"delete key pair {key_id}",
            ),
        )
        if deleted:
            self.created_key = None


class DetachTempKeyPairStep(BuildStep):
    """Detach the temporary key pair from the instance so it can be deleted later.

    The control plane refuses to delete a key pair still bound to an instance,
    and detaching stops the instance, so this runs as an ordinary step after
    provisioning rather than inside another step's cleanup.
    """

    name = "DetachTempKeyPair"

    def __init__(self, communicator: CommunicatorSettings, polling: PollingSettings | None = None) -> None:
        self.communicator = communicator
        self.polling = polling or PollingSettings()

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if not self.communicator.uses_temporary_key:
            return StepAction.CONTINUE
        key_pair, present = state.get_ok(keys.KEY_PAIR)
        if not present or key_pair is None:
            return StepAction.CONTINUE

        client: ControlPlaneClient = state.require(keys.CLIENT)
        instance = state.require(keys.INSTANCE)
        self.logger.info("Detaching key pair %s from instance %s", key_pair.key_id, instance.instance_id)
        try:
            ctx.check()
            client.disassociate_key_pair(instance.instance_id, key_pair.key_id)
            wait_until(
                ctx,
                lambda: self._detached(client, instance.instance_id, key_pair.key_id),
                interval=self.polling.interval_seconds,
                timeout=self.polling.instance_timeout_seconds,
                description=f"key pair {key_pair.key_id} to detach from {instance.instance_id}",
            )
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to detach key pair from instance")

        self.logger.info("Detached key pair %s", key_pair.key_id)
        return StepAction.CONTINUE

    @staticmethod
    def _detached(client: ControlPlaneClient, instance_id: str, key_id: str) -> bool:
        info = client.describe_instance(instance_id)
        if info is None:
            return False
        return key_id not in info.key_ids and info.state in (InstanceState.RUNNING, InstanceState.STOPPED)
