"""
Error Recovery State Machine - onError semantics for one step

Per attempt: Attempting -> {Succeeded, Faulted}. On Faulted the failure is
classified and `decide()` picks the next transition from the step's handler
(or the configured default policy for that failure kind):

    retry     -> Attempting, while attempts remain
    ai_fix    -> MCP fix, bind the corrected value, Attempting (same budget)
    exit      -> task Aborted
    continue  -> task Failed, dependents still run (degraded)
    (none)    -> task Failed

An unset attempt bound means a single attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, FrozenSet, List, Optional

from ..config import EngineConfig
from ..errors import ErrorKind, MCPGatewayError, StepFailure
from ..execution_log import EventKind
from ..models import ErrorHandlerDecl, RecoveryAction, RecoveryActionDecl, StepDecl
from ..report import RecoveryAttempt
from .classifier import ErrorChecker
from .context import ExecutionContext
from .interpreter import StepInterpreter

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    CONTINUED = "continued"


class Transition(str, Enum):
    RETRY = "retry"
    ABORT = "abort"
    CONTINUE = "continue"
    FAIL = "fail"


@dataclass(frozen=True)
class RecoveryDecision:
    transition: Transition
    action: Optional[RecoveryActionDecl] = None
    apply_fix: bool = False
    reason: str = ""


@dataclass
class StepResult:
    status: StepStatus
    value: Any = None
    failure: Optional[StepFailure] = None
    attempts: int = 0
    recovery: List[RecoveryAttempt] = field(default_factory=list)


def decide(
    kind: ErrorKind,
    handler: Optional[ErrorHandlerDecl],
    attempt: int,
    max_attempts: int,
    ai_fixable: FrozenSet[ErrorKind],
) -> RecoveryDecision:
    """
    Total function over (failure kind, policy, attempt count).

    Actions are considered in declaration order. Retry-type actions are
    skipped once the attempt budget is spent; ai_fix is also skipped for
    kinds that are not AI-fixable.
    """
    if handler is None or not handler.actions:
        return RecoveryDecision(Transition.FAIL, reason="no handler")

    budget_left = attempt < max_attempts
    for action in handler.actions:
        if action.action == RecoveryAction.AI_FIX:
            if kind not in ai_fixable:
                continue
            if budget_left:
                return RecoveryDecision(Transition.RETRY, action, apply_fix=True, reason="ai fix")
        elif action.action == RecoveryAction.RETRY:
            if budget_left:
                return RecoveryDecision(Transition.RETRY, action, reason="retry")
        elif action.action == RecoveryAction.EXIT:
            return RecoveryDecision(Transition.ABORT, action, reason="exit")
        elif action.action == RecoveryAction.CONTINUE:
            return RecoveryDecision(Transition.CONTINUE, action, reason="continue")

    reason = "attempts exhausted" if not budget_left else "no applicable action"
    return RecoveryDecision(Transition.FAIL, reason=reason)


_FINAL_STATUS = {
    Transition.ABORT: StepStatus.ABORTED,
    Transition.CONTINUE: StepStatus.CONTINUED,
    Transition.FAIL: StepStatus.FAILED,
}


class RecoveryStateMachine:
    """
    Drives one step through its attempts.

    Example:
        machine = RecoveryStateMachine(interpreter, config)
        result = await machine.run_step(step, context)
        if result.status != StepStatus.SUCCEEDED:
            ...
    """

    def __init__(
        self,
        interpreter: StepInterpreter,
        config: Optional[EngineConfig] = None,
        checker: Optional[ErrorChecker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.interpreter = interpreter
        self.config = config or interpreter.config
        self.checker = checker or interpreter.checker
        self._sleep = sleep

    def policy_for(self, step: StepDecl, kind: ErrorKind) -> Optional[ErrorHandlerDecl]:
        """The step's own handler wins; otherwise the configured default for the kind."""
        if step.on_error is not None and step.on_error.actions:
            return step.on_error
        return self.config.default_policies.get(kind)

    def max_attempts_for(self, handler: Optional[ErrorHandlerDecl]) -> int:
        if handler is not None and handler.max_attempts is not None:
            return handler.max_attempts
        return self.config.default_max_attempts

    async def run_step(self, step: StepDecl, context: ExecutionContext) -> StepResult:
        result = StepResult(status=StepStatus.FAILED)
        attempt = 0

        while True:
            attempt += 1
            result.attempts = attempt
            context.log.emit(EventKind.STEP_ATTEMPT, context.task, step.name, attempt=attempt)

            try:
                value = await self.interpreter.run(step, context)
            except StepFailure as failure:
                kind = self.checker.classify(failure)
                failure.with_kind(kind)
                context.error = failure
                context.log.emit(
                    EventKind.STEP_FAULTED, context.task, step.name,
                    attempt=attempt, failure_kind=kind.value, message=failure.message,
                )

                handler = self.policy_for(step, kind)
                max_attempts = self.max_attempts_for(handler)
                decision = decide(kind, handler, attempt, max_attempts, self.checker.ai_fixable)

                record = RecoveryAttempt(
                    step=step.name,
                    attempt=attempt,
                    action=decision.action.action.value if decision.action else None,
                    decision=decision.transition.value,
                    kind=kind.value,
                    message=failure.message,
                )
                result.recovery.append(record)
                context.log.emit(
                    EventKind.RECOVERY_DECISION, context.task, step.name,
                    attempt=attempt, max_attempts=max_attempts,
                    action=record.action, decision=record.decision, reason=decision.reason,
                )

                if decision.transition != Transition.RETRY:
                    result.status = _FINAL_STATUS[decision.transition]
                    result.failure = failure
                    logger.info(
                        f"[{context.task}/{step.name}] {kind.value} after {attempt} attempt(s): "
                        f"{decision.transition.value} ({decision.reason})"
                    )
                    return result

                if decision.apply_fix:
                    await self._apply_fix(step, failure, decision.action, context, record)

                delay = self._delay(handler, attempt)
                if delay > 0:
                    await self._sleep(delay)
                continue

            context.error = None
            context.log.emit(EventKind.STEP_SUCCEEDED, context.task, step.name, attempt=attempt)
            result.status = StepStatus.SUCCEEDED
            result.value = value
            return result

    @staticmethod
    def _delay(handler: Optional[ErrorHandlerDecl], attempt: int) -> float:
        if handler is None or handler.backoff is None:
            return 0.0
        return handler.backoff.delay_for(attempt)

    async def _apply_fix(
        self,
        step: StepDecl,
        failure: StepFailure,
        action: RecoveryActionDecl,
        context: ExecutionContext,
        record: RecoveryAttempt,
    ) -> None:
        """
        Ask the collaborator for a fix and bind the corrected value.

        A failed fix call is only logged; the retry it was attached to still
        happens and consumes the same attempt budget.
        """
        if context.gateway is None:
            logger.warning(f"[{context.task}/{step.name}] ai_fix skipped: no MCP gateway")
            record.mcp_status = "skipped"
            return

        try:
            response = await context.gateway.fix(
                action.message or failure.message,
                context.snapshot(),
                timeout=self.config.mcp_timeout,
                log=context.log,
                task=context.task,
                step=step.name,
            )
        except MCPGatewayError as e:
            logger.warning(f"[{context.task}/{step.name}] ai_fix failed: {e.message}")
            record.mcp_request_id = e.request_id
            record.mcp_status = "failed"
            return

        record.mcp_request_id = response.id
        record.mcp_status = response.status.value
        if not response.ok or response.value is None:
            return

        target = action.target or fix_target(step)
        if target is None:
            logger.warning(f"[{context.task}/{step.name}] ai_fix returned a value but no binding target")
            return
        context.bind(target, response.value, step.name)


def fix_target(step: StepDecl) -> Optional[str]:
    """First plain context reference among the operation's arguments."""
    if step.operation is None:
        return None
    for arg in step.operation.args:
        if arg.ref is not None and "." not in arg.ref:
            return arg.ref
    return None
