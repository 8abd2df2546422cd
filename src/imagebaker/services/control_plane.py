"""Capability interface and resource models for the remote control plane."""
from __future__ import annotations

from enum import Enum
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class ImageState(str, Enum):
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"


class InstanceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATING = "terminating"
    FAILED = "failed"


class ImageInfo(BaseModel):
    image_id: str
    name: str
    state: ImageState
    region: str


class InstanceInfo(BaseModel):
    instance_id: str
    state: InstanceState
    public_ip: str | None = None
    private_ip: str | None = None
    key_ids: list[str] = Field(default_factory=list)


class KeyPairInfo(BaseModel):
    key_id: str
    name: str
    private_key: str | None = Field(default=None, repr=False)
    public_key: str | None = None


class VpcInfo(BaseModel):
    vpc_id: str
    name: str
    cidr_block: str


class SubnetInfo(BaseModel):
    subnet_id: str
    vpc_id: str
    name: str
    cidr_block: str
    zone: str


class SecurityGroupInfo(BaseModel):
    security_group_id: str
    name: str


class DataDisk(BaseModel):
    disk_type: str
    disk_size: int
    snapshot_id: str | None = None


class InstanceRequest(BaseModel):
    """Parameters for launching the transient build instance."""

    image_id: str
    instance_type: str
    zone: str
    instance_name: str
    vpc_id: str
    subnet_id: str
    security_group_id: str
    key_ids: list[str] = Field(default_factory=list)
    password: str | None = Field(default=None, repr=False)
    disk_type: str = "CLOUD_PREMIUM"
    disk_size: int = 50
    data_disks: list[DataDisk] = Field(default_factory=list)
    host_name: str | None = None
    user_data: str | None = None
    charge_type: str = "POSTPAID_BY_HOUR"
    internet_charge_type: str | None = None
    internet_max_bandwidth_out: int = 0
    associate_public_ip_address: bool = False
    bandwidth_package_id: str | None = None
    role_name: str | None = None
    cdc_id: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)


class IngressRule(BaseModel):
    protocol: str = "ALL"
    port: str = "ALL"
    cidr_block: str = "0.0.0.0/0"
    action: Literal["ACCEPT", "DROP"] = "ACCEPT"


@runtime_checkable
class ControlPlaneClient(Protocol):
    """Create/describe/delete verbs used by the build steps.

    Every call is a synchronous request/response; state transitions such as
    "instance is running" happen asynchronously and are observed by polling
    the matching ``describe_*`` verb. Failures raise ``RemoteCallError``.
    """

    region: str

    def describe_images(
        self,
        *,
        region: str | None = None,
        image_ids: list[str] | None = None,
        image_name: str | None = None,
    ) -> list[ImageInfo]: ...

    def create_image(
        self,
        *,
        instance_id: str,
        image_name: str,
        description: str | None = None,
        force_poweroff: bool = False,
        sysprep: bool = False,
    ) -> str: ...

    def delete_image(self, image_id: str, *, region: str | None = None) -> None: ...

    def copy_image(self, image_id: str, *, destination_region: str, image_name: str | None = None) -> str: ...

    def modify_image_sharing(
        self, image_id: str, accounts: list[str], *, permission: Literal["SHARE", "CANCEL"]
    ) -> None: ...

    def create_key_pair(self, name: str) -> KeyPairInfo: ...

    def delete_key_pair(self, key_id: str) -> None: ...

    def disassociate_key_pair(self, instance_id: str, key_id: str) -> None: ...

    def describe_vpc(self, vpc_id: str) -> VpcInfo | None: ...

    def create_vpc(self, name: str, cidr_block: str) -> str: ...

    def delete_vpc(self, vpc_id: str) -> None: ...

    def describe_subnet(self, subnet_id: str) -> SubnetInfo | None: ...

    def create_subnet(
        self, *, vpc_id: str, name: str, cidr_block: str, zone: str, cdc_id: str | None = None
    ) -> str: ...

    def delete_subnet(self, subnet_id: str) -> None: ...

    def describe_security_group(self, security_group_id: str) -> SecurityGroupInfo | None: ...

    def create_security_group(self, name: str, description: str) -> str: ...

    def authorize_security_group_ingress(self, security_group_id: str, rules: list[IngressRule]) -> None: ...

    def delete_security_group(self, security_group_id: str) -> None: ...

    def run_instance(self, request: InstanceRequest) -> str: ...

    def describe_instance(self, instance_id: str) -> InstanceInfo | None: ...

    def terminate_instance(self, instance_id: str) -> None: ...
