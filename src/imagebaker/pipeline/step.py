"""Step abstraction shared by every unit of build work."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from ..errors import StepError
from . import keys
from .context import BuildContext
from .state import StateBag


class StepAction(str, Enum):
    CONTINUE = "continue"
    HALT = "halt"


class BuildStep(ABC):
    """A unit of pipeline work paired with a best-effort compensating cleanup."""

    name: str

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"imagebaker.steps.{self.name}")

    @abstractmethod
    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:  # pragma: no cover - runtime behaviour
        """Perform the step, record results in ``state`` and report how to proceed."""

    def cleanup(self, state: StateBag) -> None:
        """Undo whatever ``run`` created. Must be idempotent and must not raise."""

    def halt(self, state: StateBag, exc: Exception, message: str = "") -> StepAction:
        return halt(state, self.name, exc, message)


def best_effort(logger: logging.Logger, description: str, func: Callable[[], object]) -> bool:
    """Run a cleanup action, logging instead of raising on failure."""
    try:
        func()
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to %s: %s", description, exc)
        return False
    return True


def halt(state: StateBag, step: str, exc: Exception, message: str = "") -> StepAction:
    """Record ``exc`` as the terminal build error and return ``HALT``."""
    error = exc if isinstance(exc, StepError) else StepError(step=step, message=message, cause=exc)
    state.put(keys.ERROR, error)
    logging.getLogger(f"imagebaker.steps.{step}").error("%s", error.message)
    return StepAction.HALT
