from __future__ import annotations

import base64

import pytest

from fakes import transient_error

from imagebaker.config.models import RunSettings
from imagebaker.pipeline import keys
from imagebaker.pipeline.context import BuildContext
from imagebaker.pipeline.step import StepAction
from imagebaker.services.control_plane import ImageInfo, ImageState, InstanceState, KeyPairInfo
from imagebaker.steps import RunInstanceStep


@pytest.fixture
def launch_state(state):
    state.put(
        keys.SOURCE_IMAGE,
        ImageInfo(image_id="img-source01", name="centos-base", state=ImageState.READY, region="ap-guangzhou"),
    )
    state.put(keys.VPC_ID, "vpc-1")
    state.put(keys.SUBNET_ID, "subnet-1")
    state.put(keys.SECURITY_GROUP_ID, "sg-1")
    state.put(keys.KEY_PAIR, KeyPairInfo(key_id="skey-1", name="temp"))
    return state


def _settings(**overrides) -> RunSettings:
    values = {"source_image_id": "img-source01", "instance_type": "S5.MEDIUM2", "zone": "ap-guangzhou-4"}
    values.update(overrides)
    return RunSettings(**values)


def test_instance_launch_waits_until_running(client, launch_state, ctx, polling) -> None:
    client.instance_pending_polls = 3
    step = RunInstanceStep(_settings(associate_public_ip_address=True), polling=polling)

    assert step.run(ctx, launch_state) is StepAction.CONTINUE

    instance = launch_state.require(keys.INSTANCE)
    assert instance.state is InstanceState.RUNNING
    assert instance.key_ids == ["skey-1"]
    assert launch_state.get(keys.INSTANCE_HOST) == "203.0.113.10"
    assert client.verbs().count("describe_instance") == 4


def test_private_address_used_without_public_ip(client, launch_state, ctx, polling) -> None:
    step = RunInstanceStep(_settings(), polling=polling)

    step.run(ctx, launch_state)

    assert launch_state.get(keys.INSTANCE_HOST) == "10.0.8.10"


def test_timeout_halts_and_cleanup_terminates_instance(client, launch_state, ctx, polling) -> None:
    client.instance_pending_polls = 10_000
    polling.instance_timeout_seconds = 0.05
    step = RunInstanceStep(_settings(), polling=polling)

    assert step.run(ctx, launch_state) is StepAction.HALT
    assert launch_state.get(keys.ERROR).kind == "timeout"

    instance_id = launch_state.require(keys.INSTANCE).instance_id
    step.cleanup(launch_state)
    assert ("terminate_instance", instance_id) in client.calls
    assert client.instances == {}


def test_cancel_while_polling_halts_and_cleanup_terminates_instance(client, launch_state, polling) -> None:
    ctx = BuildContext()
    client.instance_pending_polls = 10_000
    polling.interval_seconds = 0.05

    def cancel_on_second_poll(call_number: int) -> None:
        if call_number == 2:
            ctx.cancel("user interrupt")

    client.on_describe_instance = cancel_on_second_poll
    step = RunInstanceStep(_settings(), polling=polling)

    assert step.run(ctx, launch_state) is StepAction.HALT
    assert launch_state.get(keys.ERROR).kind == "cancellation"
    # Polling stopped right after the cancel instead of running to the timeout.
    assert client.verbs().count("describe_instance") == 2

    step.cleanup(launch_state)
    assert "terminate_instance" in client.verbs()
    assert client.instances == {}


def test_failed_launch_state_halts(client, launch_state, ctx, polling) -> None:
    step = RunInstanceStep(_settings(), polling=polling)
    original = client.describe_instance

    def failing_describe(instance_id):
        info = original(instance_id)
        return info.model_copy(update={"state": InstanceState.FAILED})

    client.describe_instance = failing_describe

    assert step.run(ctx, launch_state) is StepAction.HALT
    assert "failed to launch" in str(launch_state.get(keys.ERROR))


def test_create_failure_leaves_nothing_to_clean(client, launch_state, ctx, polling) -> None:
    client.fail_on["run_instance"] = transient_error("quota")
    step = RunInstanceStep(_settings(), polling=polling)

    assert step.run(ctx, launch_state) is StepAction.HALT
    step.cleanup(launch_state)

    assert "terminate_instance" not in client.verbs()


def test_user_data_file_is_base64_encoded(client, launch_state, ctx, polling, tmp_path) -> None:
    script = tmp_path / "init.sh"
    script.write_text("#!/bin/sh\necho hi\n")
    captured = []
    original = client.run_instance

    def capture(request):
        captured.append(request)
        return original(request)

    client.run_instance = capture
    step = RunInstanceStep(_settings(user_data_file=str(script)), polling=polling)

    step.run(ctx, launch_state)

    assert base64.b64decode(captured[0].user_data).decode() == "#!/bin/sh\necho hi\n"
    assert captured[0].security_group_id == "sg-1"
