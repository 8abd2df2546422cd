"""Action-style JSON control-plane client built on httpx."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Literal

import httpx

from ..config.models import AccessSettings
from ..errors import ConfigValidationError, RemoteCallError
from .control_plane import (
    ImageInfo,
    ImageState,
    IngressRule,
    InstanceInfo,
    InstanceRequest,
    InstanceState,
    KeyPairInfo,
    SecurityGroupInfo,
    SubnetInfo,
    VpcInfo,
)

RETRYABLE_CODES = frozenset(
    {
        "InternalError",
        "RequestLimitExceeded",
        "ResourceBusy",
        "ResourceInUse",
        "ServiceUnavailable",
    }
)

_IMAGE_STATES = {
    "NORMAL": ImageState.READY,
    "USING": ImageState.READY,
    "CREATEFAILED": ImageState.FAILED,
    "IMPORTFAILED": ImageState.FAILED,
}

_INSTANCE_STATES = {
    "PENDING": InstanceState.PENDING,
    "STARTING": InstanceState.PENDING,
    "REBOOTING": InstanceState.PENDING,
    "RUNNING": InstanceState.RUNNING,
    "STOPPING": InstanceState.STOPPED,
    "STOPPED": InstanceState.STOPPED,
    "SHUTDOWN": InstanceState.TERMINATING,
    "TERMINATING": InstanceState.TERMINATING,
    "LAUNCH_FAILED": InstanceState.FAILED,
}


class HttpControlPlaneClient:
    """Client for an action-style control-plane endpoint.

    Each verb is a single ``POST`` whose JSON body names the action and the
    target region. Responses are wrapped in a ``Response`` object that either
    carries the result fields or an ``Error`` with ``Code`` and ``Message``.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        region: str,
        secret_id: str,
        secret_key: str,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self.secret_id = secret_id
        self._secret_key = secret_key
        self.logger = logging.getLogger("imagebaker.client")
        self._http = httpx.Client(timeout=timeout_seconds, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "HttpControlPlaneClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _sign(self, timestamp: str, body: bytes) -> str:
        message = timestamp.encode() + b"\n" + body
        return hmac.new(self._secret_key.encode(), message, hashlib.sha256).hexdigest()

    def call(self, action: str, params: dict[str, Any] | None = None, *, region: str | None = None) -> dict[str, Any]:
        payload = {"Action": action, "Region": region or self.region, **(params or {})}
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        timestamp = str(int(time.time()))
        headers = {
            "Content-Type": "application/json",
            "X-Timestamp": timestamp,
            "Authorization": f"HMAC-SHA256 Credential={self.secret_id}, Signature={self._sign(timestamp, body)}",
        }

        self.logger.debug("Calling %s in %s", action, payload["Region"])
        try:
            response = self._http.post(self.endpoint + "/", content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteCallError(f"{action} request failed: {exc}", retryable=True) from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise RemoteCallError(
                f"{action} returned HTTP {response.status_code}: {response.text.strip()}",
                code=f"HTTP{response.status_code}",
                retryable=True,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteCallError(f"{action} returned a non-JSON body", retryable=False) from exc

        result = data.get("Response") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            raise RemoteCallError(f"Unexpected response format for {action}")

        error = result.get("Error")
        if error:
            code = str(error.get("Code", "Unknown"))
            raise RemoteCallError(
                str(error.get("Message", "")),
                code=code,
                retryable=code.split(".")[0] in RETRYABLE_CODES,
            )
        if response.is_error:
            raise RemoteCallError(f"{action} returned HTTP {response.status_code}", code=f"HTTP{response.status_code}")
        return result

    # -- images ------------------------------------------------------------

    def describe_images(
        self,
        *,
        region: str | None = None,
        image_ids: list[str] | None = None,
        image_name: str | None = None,
    ) -> list[ImageInfo]:
        params: dict[str, Any] = {}
        if image_ids:
            params["ImageIds"] = image_ids
        if image_name:
            params["Filters"] = [{"Name": "image-name", "Values": [image_name]}]
        result = self.call("DescribeImages", params, region=region)
        target_region = region or self.region
        return [
            ImageInfo(
                image_id=item["ImageId"],
                name=item.get("ImageName", ""),
                state=_IMAGE_STATES.get(str(item.get("ImageState", "")).upper(), ImageState.CREATING),
                region=item.get("Region") or target_region,
            )
            for item in result.get("ImageSet") or []
        ]

    def create_image(
        self,
        *,
        instance_id: str,
        image_name: str,
        description: str | None = None,
        force_poweroff: bool = False,
        sysprep: bool = False,
    ) -> str:
        params: dict[str, Any] = {
            "InstanceId": instance_id,
            "ImageName": image_name,
            "ForcePoweroff": "TRUE" if force_poweroff else "FALSE",
            "Sysprep": "TRUE" if sysprep else "FALSE",
        }
        if description:
            params["ImageDescription"] = description
        result = self.call("CreateImage", params)
        return str(result.get("ImageId", ""))

    def delete_image(self, image_id: str, *, region: str | None = None) -> None:
        self.call("DeleteImages", {"ImageIds": [image_id]}, region=region)

    def copy_image(self, image_id: str, *, destination_region: str, image_name: str | None = None) -> str:
        params: dict[str, Any] = {"ImageIds": [image_id], "DestinationRegions": [destination_region]}
        if image_name:
            params["ImageName"] = image_name
        result = self.call("SyncImages", params)
        for item in result.get("ImageSet") or []:
            if item.get("Region") == destination_region:
                return str(item["ImageId"])
        raise RemoteCallError(f"SyncImages returned no image for region {destination_region}")

    def modify_image_sharing(
        self, image_id: str, accounts: list[str], *, permission: Literal["SHARE", "CANCEL"]
    ) -> None:
        self.call(
            "ModifyImageSharePermission",
            {"ImageId": image_id, "AccountIds": accounts, "Permission": permission},
        )

    # -- key pairs ---------------------------------------------------------

    def create_key_pair(self, name: str) -> KeyPairInfo:
        result = self.call("CreateKeyPair", {"KeyName": name, "ProjectId": 0})
        key = result.get("KeyPair") or {}
        return KeyPairInfo(
            key_id=key["KeyId"],
            name=key.get("KeyName", name),
            private_key=key.get("PrivateKey"),
            public_key=key.get("PublicKey"),
        )

    def delete_key_pair(self, key_id: str) -> None:
        self.call("DeleteKeyPairs", {"KeyIds": [key_id]})

    def disassociate_key_pair(self, instance_id: str, key_id: str) -> None:
        self.call(
            "DisassociateInstancesKeyPairs",
            {"InstanceIds": [instance_id], "KeyIds": [key_id], "ForceStop": True},
        )

    # -- networking --------------------------------------------------------

    def describe_vpc(self, vpc_id: str) -> VpcInfo | None:
        result = self.call("DescribeVpcs", {"VpcIds": [vpc_id]})
        for item in result.get("VpcSet") or []:
            return VpcInfo(vpc_id=item["VpcId"], name=item.get("VpcName", ""), cidr_block=item.get("CidrBlock", ""))
        return None

    def create_vpc(self, name: str, cidr_block: str) -> str:
        result = self.call("CreateVpc", {"VpcName": name, "CidrBlock": cidr_block})
        return str(result["Vpc"]["VpcId"])

    def delete_vpc(self, vpc_id: str) -> None:
        self.call("DeleteVpc", {"VpcId": vpc_id})

    def describe_subnet(self, subnet_id: str) -> SubnetInfo | None:
        result = self.call("DescribeSubnets", {"SubnetIds": [subnet_id]})
        for item in result.get("SubnetSet") or []:
            return SubnetInfo(
                subnet_id=item["SubnetId"],
                vpc_id=item.get("VpcId", ""),
                name=item.get("SubnetName", ""),
                cidr_block=item.get("CidrBlock", ""),
                zone=item.get("Zone", ""),
            )
        return None

    def create_subnet(self, *, vpc_id: str, name: str, cidr_block: str, zone: str, cdc_id: str | None = None) -> str:
        params: dict[str, Any] = {"VpcId": vpc_id, "SubnetName": name, "CidrBlock": cidr_block, "Zone": zone}
        if cdc_id:
            params["CdcId"] = cdc_id
        result = self.call("CreateSubnet", params)
        return str(result["Subnet"]["SubnetId"])

    def delete_subnet(self, subnet_id: str) -> None:
        self.call("DeleteSubnet", {"SubnetId": subnet_id})

    def describe_security_group(self, security_group_id: str) -> SecurityGroupInfo | None:
        result = self.call("DescribeSecurityGroups", {"SecurityGroupIds": [security_group_id]})
        for item in result.get("SecurityGroupSet") or []:
            return SecurityGroupInfo(
                security_group_id=item["SecurityGroupId"],
                name=item.get("SecurityGroupName", ""),
            )
        return None

    def create_security_group(self, name: str, description: str) -> str:
        result = self.call("CreateSecurityGroup", {"GroupName": name, "GroupDescription": description})
        return str(result["SecurityGroup"]["SecurityGroupId"])

    def authorize_security_group_ingress(self, security_group_id: str, rules: list[IngressRule]) -> None:
        self.call(
            "CreateSecurityGroupPolicies",
            {
                "SecurityGroupId": security_group_id,
                "SecurityGroupPolicySet": {
                    "Ingress": [
                        {
                            "Protocol": rule.protocol,
                            "Port": rule.port,
                            "CidrBlock": rule.cidr_block,
                            "Action": rule.action,
                        }
                        for rule in rules
                    ]
                },
            },
        )

    def delete_security_group(self, security_group_id: str) -> None:
        self.call("DeleteSecurityGroup", {"SecurityGroupId": security_group_id})

    # -- instances ---------------------------------------------------------

    def run_instance(self, request: InstanceRequest) -> str:
        params: dict[str, Any] = {
            "ImageId": request.image_id,
            "InstanceType": request.instance_type,
            "InstanceName": request.instance_name,
            "InstanceChargeType": request.charge_type,
            "InstanceCount": 1,
            "Placement": {"Zone": request.zone},
            "VirtualPrivateCloud": {"VpcId": request.vpc_id, "SubnetId": request.subnet_id},
            "SecurityGroupIds": [request.security_group_id],
            "SystemDisk": {"DiskType": request.disk_type, "DiskSize": request.disk_size},
            "InternetAccessible": {
                "PublicIpAssigned": request.associate_public_ip_address,
                "InternetMaxBandwidthOut": request.internet_max_bandwidth_out,
            },
        }
        if request.internet_charge_type:
            params["InternetAccessible"]["InternetChargeType"] = request.internet_charge_type
        if request.bandwidth_package_id:
            params["InternetAccessible"]["BandwidthPackageId"] = request.bandwidth_package_id
        if request.key_ids:
            params["LoginSettings"] = {"KeyIds": request.key_ids}
        elif request.password:
            params["LoginSettings"] = {"Password": request.password}
        if request.data_disks:
            params["DataDisks"] = [
                {"DiskType": disk.disk_type, "DiskSize": disk.disk_size, "SnapshotId": disk.snapshot_id}
                for disk in request.data_disks
            ]
        if request.host_name:
            params["HostName"] = request.host_name
        if request.user_data:
            params["UserData"] = request.user_data
        if request.role_name:
            params["CamRoleName"] = request.role_name
        if request.cdc_id:
            params["DedicatedClusterId"] = request.cdc_id
        if request.tags:
            params["TagSpecification"] = [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": key, "Value": value} for key, value in request.tags.items()],
                }
            ]

        result = self.call("RunInstances", params)
        instance_ids = result.get("InstanceIdSet") or []
        if not instance_ids:
            raise RemoteCallError("RunInstances returned no instance id")
        return str(instance_ids[0])

    def describe_instance(self, instance_id: str) -> InstanceInfo | None:
        result = self.call("DescribeInstances", {"InstanceIds": [instance_id]})
        for item in result.get("InstanceSet") or []:
            public_ips = item.get("PublicIpAddresses") or []
            private_ips = item.get("PrivateIpAddresses") or []
            login = item.get("LoginSettings") or {}
            return InstanceInfo(
                instance_id=item["InstanceId"],
                state=_INSTANCE_STATES.get(str(item.get("InstanceState", "")).upper(), InstanceState.PENDING),
                public_ip=public_ips[0] if public_ips else None,
                private_ip=private_ips[0] if private_ips else None,
                key_ids=list(login.get("KeyIds") or []),
            )
        return None

    def terminate_instance(self, instance_id: str) -> None:
        self.call("TerminateInstances", {"InstanceIds": [instance_id]})


def build_client(access: AccessSettings, *, transport: httpx.BaseTransport | None = None) -> HttpControlPlaneClient:
    """Create a client from validated access settings, resolving secrets from the environment."""
    secret_id, secret_key = access.resolve_credentials()
    if not secret_id or not secret_key:
        raise ConfigValidationError(
            "Access credentials missing. Set the environment variables "
            f"{access.secret_id_env} and {access.secret_key_env}."
        )
    return HttpControlPlaneClient(
        endpoint=access.endpoint,
        region=access.region,
        secret_id=secret_id,
        secret_key=secret_key,
        timeout_seconds=access.request_timeout_seconds,
        transport=transport,
    )
