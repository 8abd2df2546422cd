"""Pipeline runner executing build steps and their reverse-order cleanup."""
from __future__ import annotations

import logging
import time
from typing import Iterable, List

from pydantic import BaseModel, Field

from ..errors import BuildCancelledError, StepError
from . import keys
from .context import BuildContext
from .state import StateBag
from .step import BuildStep, StepAction


class StepResult(BaseModel):
    name: str
    status: str
    duration_seconds: float
    detail: str | None = None


class RunReport(BaseModel):
    step_results: List[StepResult] = Field(default_factory=list)
    cleanup_failures: List[str] = Field(default_factory=list)
    halted: bool = False
    cancelled: bool = False


class StepRunner:
    """Runs steps strictly one at a time, then cleans up every started step in reverse."""

    def __init__(self, steps: Iterable[BuildStep]) -> None:
        self.steps = list(steps)
        self.logger = logging.getLogger("imagebaker.pipeline")

    def run(self, ctx: BuildContext, state: StateBag) -> RunReport:
        report = RunReport()
        ran: list[BuildStep] = []

        try:
            for step in self.steps:
                if ctx.cancelled:
                    self._mark_cancelled(ctx, state, report, ran[-1].name if ran else "pipeline", step.name)
                    break

                ran.append(step)
                start = time.perf_counter()
                self.logger.debug("Running step %s", step.name)
                try:
                    action = step.run(ctx, state)
                except Exception as exc:  # noqa: BLE001
                    duration = time.perf_counter() - start
                    self.logger.exception("Unexpected failure in step %s", step.name)
                    if keys.ERROR not in state:
                        state.put(keys.ERROR, StepError(step=step.name, message="Unexpected error", cause=exc))
                    state.put(keys.HALTED, True)
                    report.halted = True
                    report.step_results.append(
                        StepResult(name=step.name, status="failed", duration_seconds=duration, detail=str(exc))
                    )
                    break
                except BaseException:
                    self.logger.warning("Build interrupted during step %s", step.name)
                    state.put(keys.CANCELLED, True)
                    report.cancelled = True
                    raise

                duration = time.perf_counter() - start
                if action is StepAction.HALT:
                    error = state.get(keys.ERROR)
                    state.put(keys.HALTED, True)
                    report.halted = True
                    status = "cancelled" if ctx.cancelled else "halted"
                    if ctx.cancelled:
                        state.put(keys.CANCELLED, True)
                        report.cancelled = True
                    report.step_results.append(
                        StepResult(
                            name=step.name,
                            status=status,
                            duration_seconds=duration,
                            detail=str(error) if error is not None else None,
                        )
                    )
                    break

                report.step_results.append(
                    StepResult(name=step.name, status="completed", duration_seconds=duration)
                )
        finally:
            self._cleanup(ran, state, report)

        return report

    def _mark_cancelled(
        self, ctx: BuildContext, state: StateBag, report: RunReport, last_step: str, next_step: str
    ) -> None:
        self.logger.warning("Build cancelled before step %s", next_step)
        state.put(keys.HALTED, True)
        state.put(keys.CANCELLED, True)
        report.halted = True
        report.cancelled = True
        if keys.ERROR not in state:
            state.put(
                keys.ERROR,
                StepError(
                    step=last_step,
                    message=f"Cancelled before {next_step}",
                    cause=BuildCancelledError(ctx.reason or "Build cancelled"),
                ),
            )

    def _cleanup(self, ran: list[BuildStep], state: StateBag, report: RunReport) -> None:
        for step in reversed(ran):
            try:
                self.logger.debug("Cleaning up step %s", step.name)
                step.cleanup(state)
            except Exception:  # noqa: BLE001
                self.logger.exception("Cleanup of step %s failed", step.name)
                report.cleanup_failures.append(step.name)
