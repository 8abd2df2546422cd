"""Launch of the transient build instance."""
from __future__ import annotations

import base64
from pathlib import Path

from ..config.models import PollingSettings, RunSettings
from ..errors import ConfigValidationError, ImageBakerError, RemoteCallError
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.polling import retry_call, wait_until
from ..pipeline.state import StateBag
from ..pipeline.step import BuildStep, StepAction, best_effort
from ..services.control_plane import (
    ControlPlaneClient,
    DataDisk,
    InstanceInfo,
    InstanceRequest,
    InstanceState,
)


class RunInstanceStep(BuildStep):
    """Create the build instance and wait until it is running.

    The instance id is kept as soon as the create call returns, so a timeout or
    cancellation while polling still leaves cleanup something to terminate.
    """

    name = "RunInstance"

    def __init__(self, settings: RunSettings, polling: PollingSettings | None = None) -> None:
        self.settings = settings
        self.polling = polling or PollingSettings()
        self.instance_id: str | None = None

    def _user_data(self) -> str | None:
        if self.settings.user_data_file:
            raw = Path(self.settings.user_data_file).read_bytes()
        elif self.settings.user_data:
            raw = self.settings.user_data.encode()
        else:
            return None
        return base64.b64encode(raw).decode()

    def _build_request(self, state: StateBag) -> InstanceRequest:
        key_pair = state.get(keys.KEY_PAIR)
        return InstanceRequest(
            image_id=state.require(keys.SOURCE_IMAGE).image_id,
            instance_type=self.settings.instance_type,
            zone=self.settings.zone,
            instance_name=self.settings.instance_name,
            vpc_id=state.require(keys.VPC_ID),
            subnet_id=state.require(keys.SUBNET_ID),
            security_group_id=state.require(keys.SECURITY_GROUP_ID),
            key_ids=[key_pair.key_id] if key_pair is not None else [],
            disk_type=self.settings.disk_type,
            disk_size=self.settings.disk_size,
            data_disks=[
                DataDisk(disk_type=disk.disk_type, disk_size=disk.disk_size, snapshot_id=disk.snapshot_id)
                for disk in self.settings.data_disks
            ],
            host_name=self.settings.host_name,
            user_data=self._user_data(),
            charge_type=self.settings.instance_charge_type,
            internet_charge_type=self.settings.internet_charge_type,
            internet_max_bandwidth_out=self.settings.internet_max_bandwidth_out,
            associate_public_ip_address=self.settings.associate_public_ip_address,
            bandwidth_package_id=self.settings.bandwidth_package_id,
            role_name=self.settings.role_name,
            cdc_id=self.settings.cdc_id,
            tags=self.settings.run_tags,
        )

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        client: ControlPlaneClient = state.require(keys.CLIENT)
        try:
            request = self._build_request(state)
        except OSError as exc:
            return self.halt(state, ConfigValidationError(f"Cannot read user_data_file: {exc}"))

        self.logger.info("Creating instance %s (%s)", request.instance_name, request.instance_type)
        try:
            ctx.check()
            self.instance_id = client.run_instance(request)
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to run instance")

        instance_id = self.instance_id
        state.put(keys.INSTANCE, InstanceInfo(instance_id=instance_id, state=InstanceState.PENDING))
        self.logger.info("Waiting for instance %s to become running", instance_id)
        try:
            instance = wait_until(
                ctx,
                lambda: self._running(client, instance_id),
                interval=self.polling.interval_seconds,
                timeout=self.polling.instance_timeout_seconds,
                description=f"instance {instance_id} to become running",
            )
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to wait for instance ready")

        state.put(keys.INSTANCE, instance)
        host = instance.public_ip if self.settings.associate_public_ip_address else instance.private_ip
        if host:
            state.put(keys.INSTANCE_HOST, host)
        self.logger.info("Instance %s is running (host %s)", instance_id, host or "unknown")
        return StepAction.CONTINUE

    @staticmethod
    def _running(client: ControlPlaneClient, instance_id: str) -> InstanceInfo | None:
        info = client.describe_instance(instance_id)
        if info is None:
            return None
        if info.state is InstanceState.FAILED:
            raise RemoteCallError(f"Instance {instance_id} failed to launch")
        if info.state is InstanceState.RUNNING:
            return info
        return None

    def cleanup(self, state: StateBag) -> None:
        if not self.instance_id:
            return
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return

        instance_id = self.instance_id
        self.logger.info("Terminating instance %s", instance_id)
        terminated = best_effort(
            self.logger,
            f"terminate instance {instance_id}",
            lambda: retry_call(
                BuildContext(),
                lambda: client.terminate_instance(instance_id),
                attempts=self.polling.cleanup_attempts,
                interval=self.polling.cleanup_interval_seconds,
                description=f"terminate instance {instance_id}",
            ),
        )
        if terminated:
            self.instance_id = None
