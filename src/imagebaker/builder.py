"""Builder wiring configuration, client, steps and runner into one build."""
from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .artifact import Artifact, assemble_artifact
from .config.models import BuildConfig
from .errors import ConfigValidationError
from .logging_utils import register_secret
from .pipeline import keys
from .pipeline.context import BuildContext
from .pipeline.runner import RunReport, StepRunner
from .pipeline.state import StateBag
from .pipeline.step import BuildStep
from .services.control_plane import ControlPlaneClient
from .services.http_control_plane import HttpControlPlaneClient, build_client
from .services.provisioner import Provisioner, ShellProvisioner, tcp_reachable
from .steps import (
    CheckSourceImageStep,
    CleanupTempKeysStep,
    ConfigKeyPairStep,
    ConfigSecurityGroupStep,
    ConfigSubnetStep,
    ConfigVpcStep,
    ConnectStep,
    CopyImageStep,
    CreateImageStep,
    DetachTempKeyPairStep,
    PreValidateStep,
    ProvisionStep,
    RunInstanceStep,
    ShareImageStep,
)
from .workspace import Workspace


@dataclass(slots=True)
class BuildResult:
    """Outcome of a build.

    Exactly one of: an artifact, an error, neither (image creation skipped), or
    an artifact together with a partial-propagation error.
    """

    artifact: Artifact | None
    error: Exception | None
    report: RunReport


class Builder:
    """Build a machine image on transient infrastructure."""

    def __init__(
        self,
        config: BuildConfig,
        *,
        client: ControlPlaneClient | None = None,
        provisioner: Provisioner | None = None,
        workspace: Workspace | None = None,
        connect_probe: Callable[[str, int], bool] = tcp_reachable,
    ) -> None:
        self.config = config
        self.client = client
        self.provisioner = provisioner or ShellProvisioner(config.provision)
        self.workspace = workspace
        self.connect_probe = connect_probe
        self.logger = logging.getLogger("imagebaker.builder")
        self._owned_client: HttpControlPlaneClient | None = None

    def prepare(self) -> BuildConfig:
        """Re-validate the configuration and register its secrets for log redaction."""
        try:
            self.config = BuildConfig.model_validate(self.config.model_dump())
        except ValidationError as exc:
            raise ConfigValidationError(str(exc)) from exc
        secret_id, secret_key = self.config.access.resolve_credentials()
        register_secret(secret_id)
        register_secret(secret_key)
        return self.config

    def steps(self) -> list[BuildStep]:
        cfg = self.config
        workspace = self._workspace()
        return [
            PreValidateStep(cfg.image.image_name, skip_create_image=cfg.image.skip_create_image),
            CheckSourceImageStep(cfg.run.source_image_id),
            ConfigKeyPairStep(cfg.communicator, workspace.keys_dir, debug=cfg.debug, polling=cfg.polling),
            ConfigVpcStep(cfg.run.vpc_id, cfg.run.vpc_name, cfg.run.cidr_block, polling=cfg.polling),
            ConfigSubnetStep(
                cfg.run.subnet_id,
                cfg.run.subnet_name,
                cfg.run.subnet_cidr_block,
                cfg.run.zone,
                polling=cfg.polling,
                cdc_id=cfg.run.cdc_id,
            ),
            ConfigSecurityGroupStep(cfg.run.security_group_id, cfg.run.security_group_name, polling=cfg.polling),
            RunInstanceStep(cfg.run, polling=cfg.polling),
            ConnectStep(cfg.communicator, polling=cfg.polling, probe=self.connect_probe),
            ProvisionStep(self.provisioner, cfg.communicator),
            CleanupTempKeysStep(self.provisioner, cfg.communicator),
            # The key pair cannot be deleted while still bound to the instance.
            DetachTempKeyPairStep(cfg.communicator, polling=cfg.polling),
            CreateImageStep(cfg.image, polling=cfg.polling),
            ShareImageStep(cfg.image.image_share_accounts),
            CopyImageStep(
                cfg.image.image_copy_regions,
                cfg.access.region,
                skip_create_image=cfg.image.skip_create_image,
                image_name=cfg.image.image_name,
                polling=cfg.polling,
            ),
        ]

    def run(self, ctx: BuildContext | None = None) -> BuildResult:
        ctx = ctx or BuildContext(timeout=self.config.build_timeout_seconds)
        if self.client is None:
            self._owned_client = build_client(self.config.access)
            self.client = self._owned_client
        client = self.client

        state = StateBag()
        state.put(keys.CONFIG, self.config)
        state.put(keys.CLIENT, client)
        state.put(keys.GENERATED_DATA, {})

        runner = StepRunner(self.steps())
        report = runner.run(ctx, state)
        for name in report.cleanup_failures:
            self.logger.warning("Cleanup of step %s did not complete; check for leftover resources", name)

        artifact, error = assemble_artifact(state, client)
        return BuildResult(artifact=artifact, error=error, report=report)

    def close(self) -> None:
        """Close the control-plane client this builder created; a caller-supplied client is left open."""
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None
            self.client = None

    def _workspace(self) -> Workspace:
        if self.workspace is None:
            self.workspace = Workspace.create(root=Path(tempfile.mkdtemp(prefix="imagebaker-")))
        return self.workspace
