"""
Step Interpreter - executes one operation call against an ExecutionContext

Operations are looked up in the OperationRegistry; the reserved `AI` module
is served by the MCP gateway. Every fault comes back as a classified
StepFailure, never as a raw exception.
"""

import asyncio
import inspect
import logging
from typing import Any, List, Optional

from ..config import EngineConfig
from ..errors import (
    ErrorKind,
    MCPGatewayError,
    MCPTimeoutError,
    StepFailure,
    StepTimeoutError,
)
from ..mcp.types import MCPRequestKind, MCPResponse
from ..models import Argument, OperationRef, StepDecl
from ..models.declarations import normalize_name
from ..modules import OperationRegistry, OperationResult, OperationSpec
from .classifier import ErrorChecker
from .context import ExecutionContext

logger = logging.getLogger(__name__)

_AI_KINDS = {
    "fix": MCPRequestKind.FIX,
    "suggestfix": MCPRequestKind.SUGGEST_FIX,
    "optimize": MCPRequestKind.OPTIMIZE,
    "explainerror": MCPRequestKind.EXPLAIN_ERROR,
}


class StepInterpreter:
    """
    Dispatches operation calls.

    Example:
        interpreter = StepInterpreter(registry, config)
        value = await interpreter.run(step, context)   # binds step.bind on success
    """

    def __init__(
        self,
        registry: OperationRegistry,
        config: Optional[EngineConfig] = None,
        checker: Optional[ErrorChecker] = None,
    ):
        self.registry = registry
        self.config = config or EngineConfig()
        self.checker = checker or ErrorChecker(self.config.ai_fixable_kinds)

    async def run(self, step: StepDecl, context: ExecutionContext) -> Any:
        """
        Execute the step's operation and bind its result.

        Raises:
            StepFailure: The operation faulted (kind is always set)
        """
        value = await self.call(step.operation, context, step.name, step.timeout)
        if step.bind:
            context.bind(step.bind, value, step.name)
        return value

    async def call(
        self,
        operation: OperationRef,
        context: ExecutionContext,
        step: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Execute one operation call without binding its result.

        Args:
            operation: Module.function plus arguments
            context: Scope the arguments are resolved against
            step: Owning step name (for logs)
            timeout: Per-call deadline; falls back to the configured default

        Raises:
            StepFailure: The operation faulted (kind is always set)
        """
        module, function = operation.module, operation.function
        args = self.resolve_args(operation, context)

        if operation.is_ai:
            return await self._call_ai(operation, args, context, step, timeout)

        spec = self.registry.get(module, function)
        if spec is None:
            raise StepFailure(
                f"Operation '{operation.qualified_name}' is not registered",
                kind=ErrorKind.RESOLUTION_ERROR,
                module=module,
                function=function,
            )
        self._check_arity(spec, args)

        timeout = timeout or self.config.step_timeout
        logger.debug(f"[{context.task}/{step}] calling {spec.qualified_name} with {len(args)} arg(s)")
        try:
            if timeout:
                result = await asyncio.wait_for(self._invoke(spec, args), timeout=timeout)
            else:
                result = await self._invoke(spec, args)
        except asyncio.TimeoutError as e:
            if timeout:
                raise StepTimeoutError(timeout, module, function) from e
            raise self.checker.wrap(e, module, function) from e
        except Exception as e:
            raise self.checker.wrap(e, module, function) from e

        if isinstance(result, OperationResult):
            if not result.success:
                raise StepFailure(
                    result.error or f"{spec.qualified_name} reported a failure",
                    kind=result.kind or ErrorKind.RUNTIME_ERROR,
                    module=module,
                    function=function,
                    payload=result.payload,
                )
            return result.value
        return result

    def resolve_args(self, operation: OperationRef, context: ExecutionContext) -> List[Any]:
        """Literal arguments pass through; references are looked up in context."""
        values = []
        for arg in operation.args:
            try:
                values.append(self._resolve(arg, context))
            except StepFailure as e:
                raise self.checker.wrap(e, operation.module, operation.function)
        return values

    @staticmethod
    def _resolve(arg: Argument, context: ExecutionContext) -> Any:
        if arg.ref is not None:
            return context.lookup(arg.ref)
        return arg.value

    @staticmethod
    def _check_arity(spec: OperationSpec, args: List[Any]) -> None:
        try:
            signature = inspect.signature(spec.func)
        except (TypeError, ValueError):
            # Builtins without an introspectable signature
            return
        try:
            signature.bind(*args)
        except TypeError as e:
            raise StepFailure(
                f"{spec.qualified_name} cannot take {len(args)} argument(s): {e}",
                kind=ErrorKind.RESOLUTION_ERROR,
                module=spec.module,
                function=spec.function,
            ) from e

    @staticmethod
    async def _invoke(spec: OperationSpec, args: List[Any]) -> Any:
        """
        Call the operation; sync callables run in a worker thread.

        A worker thread cannot be interrupted, so a sync operation keeps
        running after a step timeout or run cancellation even though its
        result is discarded. Operations doing cancellable I/O should be async.
        """
        if spec.is_async:
            return await spec.func(*args)
        result = await asyncio.to_thread(spec.func, *args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _call_ai(
        self,
        operation: OperationRef,
        args: List[Any],
        context: ExecutionContext,
        step: Optional[str],
        timeout: Optional[float],
    ) -> Any:
        module, function = operation.module, operation.function
        kind = _AI_KINDS.get(normalize_name(function))
        if kind is None:
            raise StepFailure(
                f"Unknown AI operation '{operation.qualified_name}'",
                kind=ErrorKind.RESOLUTION_ERROR,
                module=module,
                function=function,
            )
        if context.gateway is None:
            raise StepFailure(
                f"{operation.qualified_name} needs an MCP gateway but none is configured",
                kind=ErrorKind.RESOLUTION_ERROR,
                module=module,
                function=function,
            )

        try:
            response = await context.gateway.request(
                kind,
                _describe_call(operation, args),
                context.snapshot(),
                timeout=timeout or self.config.mcp_timeout,
                log=context.log,
                task=context.task,
                step=step,
            )
        except MCPTimeoutError as e:
            raise StepTimeoutError(e.timeout, module, function) from e
        except MCPGatewayError as e:
            raise StepFailure(
                e.message, kind=ErrorKind.IO_ERROR, module=module, function=function, original=e
            ) from e

        return _ai_value(kind, response, args, module, function)


def _ai_value(
    kind: MCPRequestKind,
    response: MCPResponse,
    args: List[Any],
    module: str,
    function: str,
) -> Any:
    if not response.ok:
        raise StepFailure(
            response.explanation or f"{module}.{function} was rejected by the collaborator",
            kind=ErrorKind.RUNTIME_ERROR,
            module=module,
            function=function,
            payload=response.value,
        )
    if kind in (MCPRequestKind.SUGGEST_FIX, MCPRequestKind.EXPLAIN_ERROR):
        return response.explanation
    # fix/optimize without a value leave the input unchanged
    if response.value is None:
        return args[0] if args else None
    return response.value


def _describe_call(operation: OperationRef, args: List[Any]) -> str:
    """Message sent with AI step calls: the literal text argument, or the call itself."""
    for arg in operation.args:
        if arg.ref is None and isinstance(arg.value, str):
            return arg.value
    rendered = ", ".join(f"${arg.ref}" if arg.ref else repr(arg.value) for arg in operation.args)
    return f"{operation.qualified_name}({rendered})"
