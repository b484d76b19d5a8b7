"""
Runtime - per-task execution: context, interpreter, guards, recovery
"""

from .context import ExecutionContext
from .classifier import ErrorChecker
from .interpreter import StepInterpreter
from .guard import GuardEvaluator, GuardPassed, GuardRejected
from .recovery import (
    RecoveryDecision,
    RecoveryStateMachine,
    StepResult,
    StepStatus,
    Transition,
    decide,
)
from .task_runner import TaskOutcome, TaskRunner

__all__ = [
    "ExecutionContext",
    "ErrorChecker",
    "StepInterpreter",
    "GuardEvaluator",
    "GuardPassed",
    "GuardRejected",
    "RecoveryDecision",
    "RecoveryStateMachine",
    "StepResult",
    "StepStatus",
    "Transition",
    "decide",
    "TaskOutcome",
    "TaskRunner",
]
