"""Pipeline package exports."""
from .context import BuildContext
from .runner import RunReport, StepResult, StepRunner
from .state import StateBag, StateKey
from .step import BuildStep, StepAction, best_effort, halt

__all__ = [
    "BuildContext",
    "BuildStep",
    "RunReport",
    "StateBag",
    "StateKey",
    "StepAction",
    "StepResult",
    "StepRunner",
    "best_effort",
    "halt",
]
