from pathlib import Path

import pytest
from pydantic import ValidationError

from imagebaker.config.loader import DEFAULT_CONFIG_PATH, load_config
from imagebaker.config.models import BuildConfig

from conftest import make_config

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_config_loader_default() -> None:
    cfg = load_config(REPO_ROOT / DEFAULT_CONFIG_PATH)
    assert cfg.name == "base-image"
    assert cfg.access.region == "ap-guangzhou"
    assert cfg.image.image_name == "base-image-v1"
    assert cfg.image.image_copy_regions == ["ap-shanghai", "ap-beijing"]
    assert cfg.communicator.type == "ssh"
    assert cfg.communicator.uses_temporary_key is True
    assert cfg.provision.commands
    assert cfg.run.internet_max_bandwidth_out == 1


def test_config_loader_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_config_loader_rejects_missing_image_name(tmp_path) -> None:
    path = tmp_path / "build.yaml"
    path.write_text(
        "access:\n  region: ap-guangzhou\n"
        "run:\n  source_image_id: img-1\n  instance_type: S5.MEDIUM2\n  zone: ap-guangzhou-4\n"
    )
    with pytest.raises(ValidationError) as excinfo:
        load_config(path)
    assert "image_name is required" in str(excinfo.value)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"run": {"subnet_id": "subnet-1"}}, "vpc_id must be specified"),
        ({"run": {"vpc_id": "vpc-1"}}, "subnet_id must be specified"),
        ({"run": {"user_data": "x", "user_data_file": "init.sh"}}, "Only one of user_data"),
        ({"run": {"subnet_cidr_block": "192.168.0.0/24"}}, "is not inside"),
        ({"run": {"cidr_block": "10.0.0.0/33"}}, "Invalid CIDR"),
        ({"communicator": {"ssh_key_pair_name": "skey-1"}}, "ssh_private_key_file must be specified"),
        ({"provision": {"commands": ["true"]}}, "require communicator.type 'ssh'"),
        ({"access": {"region": "Guangzhou"}}, "Invalid region name"),
    ],
)
def test_conflicting_settings_are_rejected(overrides, message) -> None:
    with pytest.raises(ValidationError) as excinfo:
        make_config(**overrides)
    assert message in str(excinfo.value)


def test_region_validation_can_be_skipped() -> None:
    cfg = make_config(access={"region": "Custom_Region", "skip_region_validation": True})
    assert cfg.access.region == "Custom_Region"


def test_secrets_are_hidden_from_repr() -> None:
    cfg = make_config()
    assert "secret-test" not in repr(cfg)
    assert isinstance(cfg, BuildConfig)
