"""
Run Report - the externally observable result of one run

Every task in the entry closure gets a TaskReport with its terminal state,
its output (when Succeeded), the failure that ended it, and every recovery
decision or AI remediation that was tried along the way.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import GuardSymbiError, StepFailure
from .models import TaskState


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class FailureInfo:
    """Why a task did not succeed."""
    kind: str
    message: str
    step: Optional[str] = None
    operation: Optional[str] = None

    @classmethod
    def from_error(cls, error: GuardSymbiError, step: Optional[str] = None) -> "FailureInfo":
        if isinstance(error, StepFailure):
            return cls(
                kind=error.kind.value if error.kind else "RuntimeError",
                message=error.message,
                step=step,
                operation=error.operation if error.module else None,
            )
        return cls(kind=type(error).__name__, message=error.message, step=step)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "step": self.step,
            "operation": self.operation,
        }


@dataclass
class RecoveryAttempt:
    """
    One entry of a task's recovery path.

    `action` is the onError action (retry/exit/ai_fix/continue) or the guard
    else action (suggest_fix/explain_error) that was taken; `decision` is
    what the state machine did next.
    """
    step: str
    attempt: int
    action: Optional[str]
    decision: str
    kind: Optional[str] = None
    mcp_request_id: Optional[str] = None
    mcp_status: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "attempt": self.attempt,
            "kind": self.kind,
            "action": self.action,
            "decision": self.decision,
            "mcp_request_id": self.mcp_request_id,
            "mcp_status": self.mcp_status,
            "message": self.message,
        }


@dataclass
class TaskReport:
    name: str
    state: TaskState
    output: Any = None
    failure: Optional[FailureInfo] = None
    recovery: List[RecoveryAttempt] = field(default_factory=list)
    attempts: int = 0
    degraded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "output": self.output,
            "failure": self.failure.to_dict() if self.failure else None,
            "recovery": [attempt.to_dict() for attempt in self.recovery],
            "attempts": self.attempts,
            "degraded": self.degraded,
        }


@dataclass
class RunReport:
    run_id: str
    entry: str
    status: RunStatus
    tasks: Dict[str, TaskReport] = field(default_factory=dict)
    output: Any = None
    mcp_calls: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def state_of(self, task: str) -> TaskState:
        return self.tasks[task].state

    def states(self) -> Dict[str, TaskState]:
        return {name: report.state for name, report in self.tasks.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "entry": self.entry,
            "status": self.status.value,
            "output": self.output,
            "tasks": {name: report.to_dict() for name, report in self.tasks.items()},
            "mcp_calls": list(self.mcp_calls),
            "events": list(self.events),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False, default=str)
