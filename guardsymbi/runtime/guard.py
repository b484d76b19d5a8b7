"""
Guard Evaluator - `guard [let x =] <expr> else { ... }`

Evaluation yields a tagged outcome; only GuardPassed materializes a binding.
A rejected guard runs its else block once and ends the task as Failed; it is
never retried or re-evaluated.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from ..config import EngineConfig
from ..errors import GuardFailure, MCPGatewayError, StepFailure
from ..execution_log import EventKind
from ..mcp.types import MCPRequestKind
from ..models import GuardActionKind, GuardClause
from ..report import RecoveryAttempt
from .context import ExecutionContext
from .interpreter import StepInterpreter

logger = logging.getLogger(__name__)

_REQUEST_KINDS = {
    GuardActionKind.SUGGEST_FIX: MCPRequestKind.SUGGEST_FIX,
    GuardActionKind.EXPLAIN_ERROR: MCPRequestKind.EXPLAIN_ERROR,
}


@dataclass(frozen=True)
class GuardPassed:
    value: Any
    binding: Optional[str] = None


@dataclass(frozen=True)
class GuardRejected:
    reason: str
    failure: Optional[StepFailure] = None


GuardOutcome = Union[GuardPassed, GuardRejected]


class GuardEvaluator:
    """
    Example:
        evaluator = GuardEvaluator(interpreter)
        await evaluator.check(step.guard, context, step.name)   # raises GuardFailure
    """

    def __init__(self, interpreter: StepInterpreter, config: Optional[EngineConfig] = None):
        self.interpreter = interpreter
        self.config = config or interpreter.config

    async def evaluate(self, guard: GuardClause, context: ExecutionContext, step: str) -> GuardOutcome:
        """Evaluate the expression; reads context but never binds into it."""
        if guard.call is not None:
            try:
                value = await self.interpreter.call(guard.call, context, step)
            except StepFailure as e:
                return GuardRejected(e.message, e)
            if not value:
                return GuardRejected(f"{guard.call.qualified_name} returned {value!r}")
            return GuardPassed(value, guard.binding)

        try:
            value = context.lookup(guard.ref)
        except StepFailure as e:
            return GuardRejected(e.message, e)
        if not value:
            return GuardRejected(f"'{guard.ref}' is {value!r}")
        return GuardPassed(value, guard.binding)

    async def check(
        self,
        guard: GuardClause,
        context: ExecutionContext,
        step: str,
        recovery: Optional[List[RecoveryAttempt]] = None,
    ) -> Any:
        """
        Evaluate the guard and apply its outcome.

        Returns:
            The guarded value when the guard passes

        Raises:
            GuardFailure: The guard was rejected (after its else block ran)
        """
        outcome = await self.evaluate(guard, context, step)

        if isinstance(outcome, GuardPassed):
            if outcome.binding:
                context.bind(outcome.binding, outcome.value, step)
            context.log.emit(EventKind.GUARD_PASSED, context.task, step, binding=outcome.binding)
            return outcome.value

        context.log.emit(EventKind.GUARD_FAILED, context.task, step, reason=outcome.reason)
        if outcome.failure is not None:
            context.error = outcome.failure
        await self._run_else(guard, context, step, outcome, recovery)
        raise GuardFailure(context.task, step, outcome.reason)

    async def _run_else(
        self,
        guard: GuardClause,
        context: ExecutionContext,
        step: str,
        outcome: GuardRejected,
        recovery: Optional[List[RecoveryAttempt]],
    ) -> None:
        for action in guard.else_actions:
            if action.kind == GuardActionKind.RETURN:
                break

            attempt = RecoveryAttempt(
                step=step,
                attempt=1,
                action=action.kind.value,
                decision="fail",
                kind="GuardFailure",
                message=action.message or outcome.reason,
            )
            if recovery is not None:
                recovery.append(attempt)

            if context.gateway is None:
                logger.warning(f"[{context.task}/{step}] {action.kind.value} skipped: no MCP gateway")
                attempt.mcp_status = "skipped"
                continue

            try:
                response = await context.gateway.request(
                    _REQUEST_KINDS[action.kind],
                    attempt.message,
                    context.snapshot(),
                    timeout=self.config.mcp_timeout,
                    log=context.log,
                    task=context.task,
                    step=step,
                )
            except MCPGatewayError as e:
                # The guard failure stands either way
                logger.warning(f"[{context.task}/{step}] {action.kind.value} failed: {e.message}")
                attempt.mcp_request_id = e.request_id
                attempt.mcp_status = "failed"
                continue

            attempt.mcp_request_id = response.id
            attempt.mcp_status = response.status.value
            if response.explanation:
                logger.info(f"[{context.task}/{step}] {action.kind.value}: {response.explanation}")
