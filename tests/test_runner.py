from __future__ import annotations

import pytest

from imagebaker.errors import PreconditionError, StepError
from imagebaker.pipeline import keys
from imagebaker.pipeline.context import BuildContext
from imagebaker.pipeline.runner import StepRunner
from imagebaker.pipeline.state import StateBag
from imagebaker.pipeline.step import BuildStep, StepAction


class ScriptedStep(BuildStep):
    def __init__(self, name: str, journal: list[str], action: StepAction = StepAction.CONTINUE) -> None:
        self.name = name
        self.journal = journal
        self.action = action

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        self.journal.append(f"run:{self.name}")
        if self.action is StepAction.HALT:
            return self.halt(state, PreconditionError(f"{self.name} refused"))
        return self.action

    def cleanup(self, state: StateBag) -> None:
        self.journal.append(f"cleanup:{self.name}")


class ExplodingCleanupStep(ScriptedStep):
    def cleanup(self, state: StateBag) -> None:
        super().cleanup(state)
        raise RuntimeError("cleanup exploded")


class CancellingStep(ScriptedStep):
    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        self.journal.append(f"run:{self.name}")
        ctx.cancel("user interrupt")
        return StepAction.CONTINUE


class CrashingStep(ScriptedStep):
    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        self.journal.append(f"run:{self.name}")
        raise KeyError("missing")


def _names(n: int) -> list[str]:
    return [f"s{i}" for i in range(1, n + 1)]


@pytest.mark.parametrize("halt_at", [1, 2, 3, 4])
def test_halt_stops_pipeline_and_cleans_up_started_steps_in_reverse(halt_at: int) -> None:
    journal: list[str] = []
    steps = [
        ScriptedStep(name, journal, StepAction.HALT if index == halt_at else StepAction.CONTINUE)
        for index, name in enumerate(_names(4), start=1)
    ]
    state = StateBag()

    report = StepRunner(steps).run(BuildContext(), state)

    started = _names(halt_at)
    assert journal == [f"run:{name}" for name in started] + [f"cleanup:{name}" for name in reversed(started)]
    assert state.get(keys.HALTED) is True
    assert isinstance(state.get(keys.ERROR), StepError)
    assert state.get(keys.ERROR).kind == "precondition"
    assert report.halted is True
    assert [result.status for result in report.step_results][-1] == "halted"


def test_complete_run_cleans_up_all_steps_in_reverse() -> None:
    journal: list[str] = []
    steps = [ScriptedStep(name, journal) for name in _names(5)]
    state = StateBag()

    report = StepRunner(steps).run(BuildContext(), state)

    assert journal == [f"run:{n}" for n in _names(5)] + [f"cleanup:{n}" for n in reversed(_names(5))]
    assert keys.ERROR not in state
    assert keys.HALTED not in state
    assert all(result.status == "completed" for result in report.step_results)


def test_cleanup_exception_does_not_block_remaining_cleanups() -> None:
    journal: list[str] = []
    steps = [
        ScriptedStep("s1", journal),
        ExplodingCleanupStep("s2", journal),
        ScriptedStep("s3", journal, StepAction.HALT),
    ]
    state = StateBag()

    report = StepRunner(steps).run(BuildContext(), state)

    assert journal[-3:] == ["cleanup:s3", "cleanup:s2", "cleanup:s1"]
    assert report.cleanup_failures == ["s2"]
    # The primary error is untouched by the cleanup failure.
    assert "s3 refused" in str(state.get(keys.ERROR))


def test_cancellation_between_steps_stops_like_halt() -> None:
    journal: list[str] = []
    steps = [
        ScriptedStep("s1", journal),
        CancellingStep("s2", journal),
        ScriptedStep("s3", journal),
    ]
    state = StateBag()

    report = StepRunner(steps).run(BuildContext(), state)

    assert "run:s3" not in journal
    assert "cleanup:s3" not in journal
    assert journal[-2:] == ["cleanup:s2", "cleanup:s1"]
    assert state.get(keys.CANCELLED) is True
    assert report.cancelled is True
    assert report.halted is True
    assert state.get(keys.HALTED) is True
    error = state.get(keys.ERROR)
    assert error.kind == "cancellation"
    assert error.step == "s2"
    assert "Cancelled before s3" in str(error)


def test_already_cancelled_context_runs_nothing() -> None:
    journal: list[str] = []
    ctx = BuildContext()
    ctx.cancel()
    state = StateBag()

    StepRunner([ScriptedStep("s1", journal)]).run(ctx, state)

    assert journal == []
    assert state.get(keys.ERROR).kind == "cancellation"
    assert state.get(keys.ERROR).step == "pipeline"


def test_unexpected_exception_is_recorded_and_cleanup_still_runs() -> None:
    journal: list[str] = []
    steps = [ScriptedStep("s1", journal), CrashingStep("s2", journal), ScriptedStep("s3", journal)]
    state = StateBag()

    report = StepRunner(steps).run(BuildContext(), state)

    assert journal == ["run:s1", "run:s2", "cleanup:s2", "cleanup:s1"]
    error = state.get(keys.ERROR)
    assert isinstance(error, StepError)
    assert error.kind == "internal"
    assert report.step_results[-1].status == "failed"


def test_keyboard_interrupt_still_triggers_cleanup() -> None:
    journal: list[str] = []

    class InterruptedStep(ScriptedStep):
        def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
            self.journal.append(f"run:{self.name}")
            raise KeyboardInterrupt

    class InterruptAwareStep(ScriptedStep):
        def cleanup(self, state: StateBag) -> None:
            self.journal.append(f"cleanup:{self.name}:interrupted={keys.was_interrupted(state)}")

    steps = [InterruptAwareStep("s1", journal), InterruptedStep("s2", journal)]
    state = StateBag()

    with pytest.raises(KeyboardInterrupt):
        StepRunner(steps).run(BuildContext(), state)

    assert journal == ["run:s1", "run:s2", "cleanup:s2", "cleanup:s1:interrupted=True"]
    assert state.get(keys.CANCELLED) is True
