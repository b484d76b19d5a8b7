"""
Exceptions - GuardSymbi error taxonomy

Build-time errors are fatal to the whole run and surface directly to the
caller. Runtime errors are contained at the task boundary and end up in the
run report.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Classification tag attached to every StepFailure."""
    PARSE_ERROR = "ParseError"
    VALIDATION_ERROR = "ValidationError"
    IO_ERROR = "IOError"
    TIMEOUT_ERROR = "TimeoutError"
    RESOLUTION_ERROR = "ResolutionError"
    RUNTIME_ERROR = "RuntimeError"


class GuardSymbiError(Exception):
    """Base error for the engine."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Human readable message
            code: Stable error code
            details: Extra structured details
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert the error to a dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Build-time errors
# =============================================================================

class BuildError(GuardSymbiError):
    """Raised while validating declarations or building the graph."""
    pass


class DeclarationError(BuildError):
    """The declaration tree does not match the expected shape."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(
            message=message,
            code="DECLARATION_ERROR",
            details={"source": source} if source else {}
        )


class UnknownTaskReference(BuildError):
    """A task input names a task that is absent from the module set."""

    def __init__(self, task: str, reference: str):
        super().__init__(
            message=f"Task '{task}' references unknown task '{reference}'",
            code="UNKNOWN_TASK_REFERENCE",
            details={"task": task, "reference": reference}
        )
        self.task = task
        self.reference = reference


class CyclicDependency(BuildError):
    """The declared inputs form a cycle."""

    def __init__(self, cycle: List[str]):
        path = " -> ".join(cycle + cycle[:1])
        super().__init__(
            message=f"Cyclic dependency between tasks: {path}",
            code="CYCLIC_DEPENDENCY",
            details={"cycle": list(cycle)}
        )
        self.cycle = list(cycle)


class DuplicateTaskName(BuildError):
    """A task name is declared twice in one namespace."""

    def __init__(self, task: str, modules: List[str]):
        super().__init__(
            message=f"Task '{task}' is declared more than once (modules: {', '.join(modules)})",
            code="DUPLICATE_TASK_NAME",
            details={"task": task, "modules": list(modules)}
        )
        self.task = task


class MissingCapability(BuildError):
    """A task calls AI operations without the @mcp/@ai annotation."""

    def __init__(self, task: str, step: str, operation: str):
        super().__init__(
            message=f"Task '{task}' step '{step}' calls '{operation}' but is not annotated with @mcp or @ai",
            code="MISSING_CAPABILITY",
            details={"task": task, "step": step, "operation": operation}
        )


class EntryTaskMissing(BuildError):
    """No entry task was given and no run directive was declared."""

    def __init__(self, entry: Optional[str] = None):
        message = (
            f"Entry task '{entry}' is not declared"
            if entry else "No run directive selects an entry task"
        )
        super().__init__(
            message=message,
            code="ENTRY_TASK_MISSING",
            details={"entry": entry} if entry else {}
        )


# =============================================================================
# Runtime errors
# =============================================================================

class StepFailure(GuardSymbiError):
    """
    Structured failure of one step operation.

    Operations may raise this directly to pick the failure kind; any other
    exception escaping an operation is wrapped into one by the interpreter.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        module: Optional[str] = None,
        function: Optional[str] = None,
        original: Optional[BaseException] = None,
        payload: Any = None,
    ):
        super().__init__(
            message=message,
            code="STEP_FAILURE",
            details={
                "kind": kind.value if kind else None,
                "module": module,
                "function": function,
            }
        )
        self.kind = kind
        self.module = module
        self.function = function
        self.original = original
        self.payload = payload

    @property
    def operation(self) -> str:
        return f"{self.module}.{self.function}"

    def with_kind(self, kind: ErrorKind) -> "StepFailure":
        self.kind = kind
        self.details["kind"] = kind.value
        return self

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["original"] = repr(self.original) if self.original is not None else None
        return data


class StepTimeoutError(StepFailure):
    """A Step or MCP call exceeded its deadline."""

    def __init__(
        self,
        timeout: float,
        module: Optional[str] = None,
        function: Optional[str] = None,
    ):
        super().__init__(
            message=f"Call exceeded its deadline of {timeout}s",
            kind=ErrorKind.TIMEOUT_ERROR,
            module=module,
            function=function,
        )
        self.timeout = timeout


class GuardFailure(GuardSymbiError):
    """A guard precondition failed; terminates the owning task."""

    def __init__(self, task: str, step: str, reason: str):
        super().__init__(
            message=f"Guard failed in task '{task}' step '{step}': {reason}",
            code="GUARD_FAILURE",
            details={"task": task, "step": step, "reason": reason}
        )


class AbortedDependency(GuardSymbiError):
    """A required upstream task did not succeed."""

    def __init__(self, task: str, dependency: str, dependency_state: str):
        super().__init__(
            message=f"Task '{task}' aborted: dependency '{dependency}' ended {dependency_state}",
            code="ABORTED_DEPENDENCY",
            details={"task": task, "dependency": dependency, "state": dependency_state}
        )


class RunCancelled(GuardSymbiError):
    """The whole run was cancelled by an operator or a run deadline."""

    def __init__(self, run_id: str, reason: str = "cancelled"):
        super().__init__(
            message=f"Run '{run_id}' {reason}",
            code="RUN_CANCELLED",
            details={"run_id": run_id, "reason": reason}
        )


# =============================================================================
# MCP errors
# =============================================================================

class MCPGatewayError(GuardSymbiError):
    """The assistance collaborator could not serve a request."""

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="MCP_GATEWAY_ERROR",
            details={"request_id": request_id, "kind": kind}
        )
        self.request_id = request_id


class MCPTimeoutError(MCPGatewayError):
    """An MCP call exceeded the caller's timeout."""

    def __init__(self, request_id: str, timeout: float, kind: Optional[str] = None):
        super().__init__(
            message=f"MCP request {request_id} timed out after {timeout}s",
            request_id=request_id,
            kind=kind
        )
        self.code = "MCP_TIMEOUT"
        self.timeout = timeout


class CircuitOpenError(MCPGatewayError):
    """The circuit in front of the collaborator is open."""

    def __init__(self, key: str):
        super().__init__(message=f"Circuit is OPEN for: {key}", kind=key)
        self.code = "CIRCUIT_OPEN"
