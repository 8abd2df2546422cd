from __future__ import annotations

import json

import httpx
import pytest

from imagebaker.config.models import AccessSettings
from imagebaker.errors import ConfigValidationError, RemoteCallError
from imagebaker.services.control_plane import ControlPlaneClient, ImageState, InstanceRequest, InstanceState
from imagebaker.services.http_control_plane import HttpControlPlaneClient, build_client


def _client(handler) -> HttpControlPlaneClient:
    return HttpControlPlaneClient(
        endpoint="https://cvm.test",
        region="ap-guangzhou",
        secret_id="AKIDtest",
        secret_key="secret-test",
        transport=httpx.MockTransport(handler),
    )


def _respond(payload: dict, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"Response": payload})

    return handler


def test_client_satisfies_protocol() -> None:
    assert isinstance(_client(_respond({})), ControlPlaneClient)


def test_request_carries_action_region_and_signature() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Response": {"ImageSet": []}})

    _client(handler).describe_images(region="ap-shanghai", image_name="baked")

    body = json.loads(seen[0].content)
    assert body["Action"] == "DescribeImages"
    assert body["Region"] == "ap-shanghai"
    assert body["Filters"] == [{"Name": "image-name", "Values": ["baked"]}]
    assert seen[0].headers["Authorization"].startswith("HMAC-SHA256 Credential=AKIDtest")
    assert "secret-test" not in seen[0].headers["Authorization"]


def test_image_states_are_normalised() -> None:
    client = _client(
        _respond(
            {
                "ImageSet": [
                    {"ImageId": "img-1", "ImageName": "a", "ImageState": "NORMAL"},
                    {"ImageId": "img-2", "ImageName": "b", "ImageState": "CREATING"},
                    {"ImageId": "img-3", "ImageName": "c", "ImageState": "CREATEFAILED"},
                ]
            }
        )
    )

    states = [image.state for image in client.describe_images(image_ids=["img-1", "img-2", "img-3"])]

    assert states == [ImageState.READY, ImageState.CREATING, ImageState.FAILED]


def test_instance_description() -> None:
    client = _client(
        _respond(
            {
                "InstanceSet": [
                    {
                        "InstanceId": "ins-1",
                        "InstanceState": "RUNNING",
                        "PublicIpAddresses": ["203.0.113.5"],
                        "PrivateIpAddresses": ["10.0.8.5"],
                        "LoginSettings": {"KeyIds": ["skey-1"]},
                    }
                ]
            }
        )
    )

    info = client.describe_instance("ins-1")

    assert info.state is InstanceState.RUNNING
    assert info.public_ip == "203.0.113.5"
    assert info.key_ids == ["skey-1"]


def test_missing_instance_returns_none() -> None:
    assert _client(_respond({"InstanceSet": []})).describe_instance("ins-gone") is None


@pytest.mark.parametrize(
    ("code", "retryable"),
    [
        ("ResourceBusy", True),
        ("RequestLimitExceeded", True),
        ("InternalError.Unknown", True),
        ("InvalidParameterValue", False),
        ("AuthFailure.SignatureFailure", False),
    ],
)
def test_error_codes_map_to_retryable_flag(code: str, retryable: bool) -> None:
    client = _client(_respond({"Error": {"Code": code, "Message": "nope"}}))

    with pytest.raises(RemoteCallError) as excinfo:
        client.delete_vpc("vpc-1")

    assert excinfo.value.code == code
    assert excinfo.value.retryable is retryable
    assert excinfo.value.kind == "remote-call"


def test_server_errors_are_retryable() -> None:
    client = _client(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(RemoteCallError) as excinfo:
        client.terminate_instance("ins-1")

    assert excinfo.value.retryable is True


def test_transport_errors_are_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteCallError) as excinfo:
        _client(handler).delete_key_pair("skey-1")

    assert excinfo.value.retryable is True


def test_copy_image_picks_destination_region() -> None:
    client = _client(
        _respond({"ImageSet": [{"ImageId": "img-x", "Region": "ap-beijing"}, {"ImageId": "img-y", "Region": "ap-shanghai"}]})
    )

    assert client.copy_image("img-1", destination_region="ap-shanghai") == "img-y"


def test_build_client_requires_credentials(monkeypatch) -> None:
    monkeypatch.delenv("IMAGEBAKER_SECRET_ID", raising=False)
    monkeypatch.delenv("IMAGEBAKER_SECRET_KEY", raising=False)

    with pytest.raises(ConfigValidationError):
        build_client(AccessSettings(region="ap-guangzhou"))


def test_build_client_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("IMAGEBAKER_SECRET_ID", "AKIDenv")
    monkeypatch.setenv("IMAGEBAKER_SECRET_KEY", "secret-env")

    client = build_client(AccessSettings(region="ap-guangzhou"))

    assert client.secret_id == "AKIDenv"
    assert client.region == "ap-guangzhou"
    client.close()


def test_dedicated_cluster_is_sent_for_subnet_and_instance() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if body["Action"] == "CreateSubnet":
            return httpx.Response(200, json={"Response": {"Subnet": {"SubnetId": "subnet-1"}}})
        return httpx.Response(200, json={"Response": {"InstanceIdSet": ["ins-1"]}})

    client = _client(handler)
    client.create_subnet(vpc_id="vpc-1", name="s", cidr_block="10.0.8.0/24", zone="ap-guangzhou-4", cdc_id="cluster-1")
    client.run_instance(
        InstanceRequest(
            image_id="img-1",
            instance_type="S5.MEDIUM2",
            zone="ap-guangzhou-4",
            instance_name="imagebaker",
            vpc_id="vpc-1",
            subnet_id="subnet-1",
            security_group_id="sg-1",
            cdc_id="cluster-1",
        )
    )

    assert bodies[0]["CdcId"] == "cluster-1"
    assert bodies[1]["DedicatedClusterId"] == "cluster-1"
