"""
Task Runner - executes one task's steps strictly in declaration order
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..config import EngineConfig
from ..errors import GuardFailure, StepFailure
from ..execution_log import ExecutionLog
from ..models import TaskState
from ..modules import OperationRegistry
from ..report import FailureInfo, RecoveryAttempt, TaskReport
from .context import ExecutionContext
from .guard import GuardEvaluator
from .interpreter import StepInterpreter
from .recovery import RecoveryStateMachine, StepStatus

if TYPE_CHECKING:
    from ..task_graph.dag import TaskNode

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """Terminal result of one task run, handed back to the scheduler."""
    name: str
    state: TaskState
    output: Any = None
    failure: Optional[FailureInfo] = None
    recovery: List[RecoveryAttempt] = field(default_factory=list)
    attempts: int = 0
    degraded: bool = False
    # onError `continue`: dependents still run, with a degraded context
    continue_dependents: bool = False

    def to_report(self) -> TaskReport:
        return TaskReport(
            name=self.name,
            state=self.state,
            output=self.output if self.state == TaskState.SUCCEEDED else None,
            failure=self.failure,
            recovery=list(self.recovery),
            attempts=self.attempts,
            degraded=self.degraded,
        )


class TaskRunner:
    """
    Runs a single task inside its own ExecutionContext.

    For each step: the guard (if any) is checked once, then the operation
    (if any) goes through the recovery state machine. The first step that
    does not succeed ends the task.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        config: Optional[EngineConfig] = None,
        interpreter: Optional[StepInterpreter] = None,
    ):
        self.config = config or EngineConfig()
        self.interpreter = interpreter or StepInterpreter(registry, self.config)
        self.guards = GuardEvaluator(self.interpreter, self.config)
        self.recovery = RecoveryStateMachine(self.interpreter, self.config)

    async def run(
        self,
        node: "TaskNode",
        inputs: Dict[str, Any],
        log: ExecutionLog,
        gateway=None,
        degraded: bool = False,
        missing_inputs: Optional[List[str]] = None,
    ) -> TaskOutcome:
        """
        Args:
            node: Task to run
            inputs: Upstream task name -> output value
            log: The run's execution log
            gateway: The run's MCP gateway (may be None)
            degraded: A dependency failed with `continue`; its input is None
            missing_inputs: Names of the inputs that are missing because of that
        """
        context = ExecutionContext(
            run_id=log.run_id,
            task=node.name,
            log=log,
            gateway=gateway,
            ai_enabled=node.ai_enabled,
        )
        context.degraded = degraded
        context.missing_inputs = list(missing_inputs or [])

        outcome = TaskOutcome(name=node.name, state=TaskState.FAILED, degraded=degraded)

        for ref in node.decl.inputs:
            context.bind(ref.name, inputs.get(ref.task))

        for step in node.decl.steps:
            if step.guard is not None:
                try:
                    await self.guards.check(step.guard, context, step.name, outcome.recovery)
                except GuardFailure as e:
                    outcome.failure = FailureInfo.from_error(e, step.name)
                    return outcome

            if step.operation is None:
                continue

            result = await self.recovery.run_step(step, context)
            outcome.attempts += result.attempts
            outcome.recovery.extend(result.recovery)

            if result.status == StepStatus.SUCCEEDED:
                continue

            outcome.failure = FailureInfo.from_error(result.failure, step.name)
            if result.status == StepStatus.ABORTED:
                outcome.state = TaskState.ABORTED
            elif result.status == StepStatus.CONTINUED:
                outcome.continue_dependents = True
            return outcome

        try:
            outcome.output = context.output(node.decl.output)
        except StepFailure as e:
            outcome.failure = FailureInfo.from_error(e)
            logger.warning(f"[{node.name}] declared output '{node.decl.output}' was never bound")
            return outcome

        outcome.state = TaskState.SUCCEEDED
        return outcome
