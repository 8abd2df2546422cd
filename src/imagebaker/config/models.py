"""Pydantic models representing the imagebaker build configuration."""
from __future__ import annotations

import ipaddress
import os
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

REGION_PATTERN = re.compile(r"^[a-z]{2,}(-[a-z0-9]+)+$")


class AccessSettings(BaseModel):
    """Where and as whom the control plane is called."""

    region: str = Field(..., description="Region in which the build instance and image are created.")
    endpoint: str = Field(
        default="https://cvm.api.example.com",
        description="Base URL of the action-style control-plane API.",
    )
    secret_id: str | None = Field(default=None, description="Access key id. Prefer secret_id_env.", repr=False)
    secret_key: str | None = Field(default=None, description="Access key secret. Prefer secret_key_env.", repr=False)
    secret_id_env: str = Field(default="IMAGEBAKER_SECRET_ID", description="Environment variable holding the key id.")
    secret_key_env: str = Field(
        default="IMAGEBAKER_SECRET_KEY",
        description="Environment variable holding the key secret.",
    )
    request_timeout_seconds: float = Field(default=60.0, gt=0, description="Timeout for a single API request.")
    skip_region_validation: bool = Field(
        default=False,
        description="Do not check region names against the expected format.",
    )

    def resolve_credentials(self) -> tuple[str | None, str | None]:
        return (
            self.secret_id or os.environ.get(self.secret_id_env),
            self.secret_key or os.environ.get(self.secret_key_env),
        )


class ImageSettings(BaseModel):
    image_name: str | None = Field(default=None, max_length=60, description="Name of the image to create.")
    image_description: str | None = Field(default=None, max_length=256)
    force_poweroff: bool = Field(default=False, description="Force the instance off before imaging.")
    sysprep: bool = Field(default=False, description="Run sysprep before imaging (Windows images).")
    skip_create_image: bool = Field(
        default=False,
        description="Provision and tear down without producing an image.",
    )
    image_copy_regions: list[str] = Field(
        default_factory=list,
        description="Additional regions the finished image is copied to.",
    )
    image_share_accounts: list[str] = Field(
        default_factory=list,
        description="Account ids the finished image is shared with.",
    )


class DataDiskSettings(BaseModel):
    disk_type: str = "CLOUD_PREMIUM"
    disk_size: int = Field(default=50, ge=10)
    snapshot_id: str | None = None


class RunSettings(BaseModel):
    """Parameters of the transient infrastructure."""

    source_image_id: str = Field(..., description="Image the build instance boots from.")
    instance_type: str = Field(..., description="Instance type of the build instance.")
    zone: str = Field(..., description="Availability zone for the subnet and instance.")
    instance_name: str = Field(default="imagebaker")
    instance_charge_type: str = Field(default="POSTPAID_BY_HOUR")
    disk_type: str = Field(default="CLOUD_PREMIUM")
    disk_size: int = Field(default=50, ge=10)
    data_disks: list[DataDiskSettings] = Field(default_factory=list)
    vpc_id: str | None = Field(default=None, description="Existing network to reuse instead of creating one.")
    vpc_name: str = Field(default="imagebaker_vpc")
    cidr_block: str = Field(default="10.0.0.0/16")
    subnet_id: str | None = Field(default=None, description="Existing subnet to reuse instead of creating one.")
    subnet_name: str = Field(default="imagebaker_subnet")
    subnet_cidr_block: str = Field(default="10.0.8.0/24")
    security_group_id: str | None = Field(default=None, description="Existing security group to reuse.")
    security_group_name: str = Field(default="imagebaker_sg")
    user_data: str | None = None
    user_data_file: str | None = None
    host_name: str | None = None
    internet_charge_type: str | None = None
    internet_max_bandwidth_out: int = Field(default=0, ge=0)
    bandwidth_package_id: str | None = None
    associate_public_ip_address: bool = False
    role_name: str | None = None
    cdc_id: str | None = Field(default=None, description="Dedicated cluster hosting the subnet and instance.")
    run_tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("cidr_block", "subnet_cidr_block")
    @classmethod
    def validate_cidr(cls, value: str) -> str:
        try:
            ipaddress.ip_network(value, strict=True)
        except ValueError as exc:
            msg = f"Invalid CIDR block {value!r}: {exc}"
            raise ValueError(msg) from exc
        return value

    @model_validator(mode="after")
    def check_network_consistency(self) -> "RunSettings":
        if self.subnet_id and not self.vpc_id:
            raise ValueError("vpc_id must be specified when subnet_id is set")
        if self.vpc_id and not self.subnet_id:
            raise ValueError("subnet_id must be specified when vpc_id is set")
        if self.user_data and self.user_data_file:
            raise ValueError("Only one of user_data or user_data_file can be specified")
        if not self.vpc_id:
            network = ipaddress.ip_network(self.cidr_block)
            subnet = ipaddress.ip_network(self.subnet_cidr_block)
            if subnet.version != network.version or not subnet.subnet_of(network):  # type: ignore[arg-type]
                raise ValueError(f"subnet_cidr_block {subnet} is not inside cidr_block {network}")
        if self.associate_public_ip_address and self.internet_max_bandwidth_out == 0:
            self.internet_max_bandwidth_out = 1
        return self


class CommunicatorSettings(BaseModel):
    type: Literal["ssh", "none"] = Field(default="ssh", description="How the provisioner reaches the instance.")
    ssh_username: str = Field(default="root")
    ssh_port: int = Field(default=22, ge=1, le=65535)
    ssh_private_key_file: str | None = Field(
        default=None,
        description="Private key matching ssh_key_pair_name. Without it a temporary key pair is created.",
    )
    ssh_key_pair_name: str | None = None
    temporary_key_pair_name: str | None = Field(
        default=None,
        description="Name of the temporary key pair. Generated when omitted.",
    )
    ssh_timeout_seconds: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def check_key_settings(self) -> "CommunicatorSettings":
        if self.ssh_private_key_file and not self.ssh_key_pair_name:
            raise ValueError("ssh_key_pair_name must be specified when ssh_private_key_file is set")
        if self.ssh_key_pair_name and not self.ssh_private_key_file:
            raise ValueError("ssh_private_key_file must be specified when ssh_key_pair_name is set")
        return self

    @property
    def uses_temporary_key(self) -> bool:
        return self.type == "ssh" and not self.ssh_private_key_file


class ProvisionSettings(BaseModel):
    commands: list[str] = Field(
        default_factory=list,
        description="Shell commands executed in order on the build instance.",
    )
    ssh_command: list[str] = Field(
        default_factory=lambda: [
            "ssh",
            "-i",
            "{KEY_PATH}",
            "-p",
            "{PORT}",
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "{USER}@{HOST}",
            "{COMMAND}",
        ],
        description="Command template used to run one command remotely. "
        "Supports placeholders {KEY_PATH}, {PORT}, {USER}, {HOST}, {COMMAND}.",
    )
    timeout_seconds: int = Field(default=1800, ge=1, description="Timeout for a single provisioning command.")


class PollingSettings(BaseModel):
    interval_seconds: float = Field(default=5.0, gt=0)
    instance_timeout_seconds: float = Field(default=1800.0, gt=0)
    image_timeout_seconds: float = Field(default=3600.0, gt=0)
    copy_timeout_seconds: float = Field(default=3600.0, gt=0)
    copy_workers: int = Field(default=4, ge=1)
    cleanup_attempts: int = Field(default=6, ge=1)
    cleanup_interval_seconds: float = Field(default=5.0, ge=0)


class BuildConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(default="imagebaker", description="Build name used for generated resource names.")
    description: str = Field(default="")
    access: AccessSettings
    image: ImageSettings = Field(default_factory=ImageSettings)
    run: RunSettings
    communicator: CommunicatorSettings = Field(default_factory=CommunicatorSettings)
    provision: ProvisionSettings = Field(default_factory=ProvisionSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    debug: bool = Field(default=False, description="Keep the temporary private key in the workspace.")
    build_timeout_seconds: float | None = Field(default=None, gt=0, description="Overall build deadline.")

    extras: dict[str, Any] = Field(default_factory=dict, description="Additional configuration data.")

    @model_validator(mode="after")
    def check_image_settings(self) -> "BuildConfig":
        if not self.image.skip_create_image and not self.image.image_name:
            raise ValueError("image.image_name is required unless image.skip_create_image is set")
        if self.communicator.type == "none" and self.provision.commands:
            raise ValueError("provision.commands require communicator.type 'ssh'")
        if not self.access.skip_region_validation:
            for region in [self.access.region, *self.image.image_copy_regions]:
                if not REGION_PATTERN.match(region):
                    raise ValueError(f"Invalid region name {region!r}")
        return self
