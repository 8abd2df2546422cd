from __future__ import annotations

from typing import Any

import pytest

from fakes import FakeControlPlane

from imagebaker.config.models import BuildConfig, PollingSettings
from imagebaker.pipeline import keys
from imagebaker.pipeline.context import BuildContext
from imagebaker.pipeline.state import StateBag


@pytest.fixture
def client() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def polling() -> PollingSettings:
    return PollingSettings(
        interval_seconds=0.01,
        instance_timeout_seconds=2,
        image_timeout_seconds=2,
        copy_timeout_seconds=2,
        cleanup_attempts=2,
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def ctx() -> BuildContext:
    return BuildContext()


@pytest.fixture
def state(client: FakeControlPlane) -> StateBag:
    bag = StateBag()
    bag.put(keys.CLIENT, client)
    bag.put(keys.GENERATED_DATA, {})
    return bag


def make_config(**overrides: Any) -> BuildConfig:
    payload: dict[str, Any] = {
        "name": "test-build",
        "access": {"region": "ap-guangzhou", "secret_id": "AKIDtest", "secret_key": "secret-test"},
        "image": {"image_name": "baked-image"},
        "run": {
            "source_image_id": "img-source01",
            "instance_type": "S5.MEDIUM2",
            "zone": "ap-guangzhou-4",
        },
        "communicator": {"type": "none"},
        "polling": {
            "interval_seconds": 0.01,
            "instance_timeout_seconds": 2,
            "image_timeout_seconds": 2,
            "copy_timeout_seconds": 2,
            "cleanup_attempts": 2,
            "cleanup_interval_seconds": 0,
        },
    }
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(payload.get(section), dict):
            payload[section] = {**payload[section], **values}
        else:
            payload[section] = values
    return BuildConfig.model_validate(payload)


@pytest.fixture
def build_config() -> BuildConfig:
    return make_config()
