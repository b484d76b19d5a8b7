"""
Per-task execution scope.
"""

import copy
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import ErrorKind, StepFailure
from ..execution_log import EventKind, ExecutionLog

if TYPE_CHECKING:
    from ..mcp.gateway import MCPGateway


_MISSING = object()


class ExecutionContext:
    """
    Mutable variable scope owned by exactly one running task.

    Holds the bound names, the failure currently being recovered from (if
    any), and references to the run's shared execution log and MCP gateway.
    Never shared between tasks.
    """

    def __init__(
        self,
        run_id: str,
        task: str,
        log: ExecutionLog,
        gateway: Optional["MCPGateway"] = None,
        variables: Optional[Dict[str, Any]] = None,
        ai_enabled: bool = False,
    ):
        self.run_id = run_id
        self.task = task
        self.log = log
        self.gateway = gateway
        self.ai_enabled = ai_enabled
        self.variables: Dict[str, Any] = dict(variables or {})
        self.error: Optional[StepFailure] = None
        self.degraded = False
        self.missing_inputs: List[str] = []
        self.last_bound: Optional[str] = None

    def bind(self, name: str, value: Any, step: Optional[str] = None) -> None:
        """Bind a name; later bindings shadow earlier ones."""
        self.variables[name] = value
        self.last_bound = name
        self.log.emit(EventKind.CONTEXT_BOUND, self.task, step, name=name)

    def has(self, name: str) -> bool:
        return name in self.variables

    def lookup(self, reference: str) -> Any:
        """
        Resolve `name` or a dotted path `name.key.attr`.

        Raises:
            StepFailure: ResolutionError when the name or a path segment is missing
        """
        head, *path = reference.split(".")
        if head not in self.variables:
            raise StepFailure(
                f"Name '{head}' is not bound in task '{self.task}'",
                kind=ErrorKind.RESOLUTION_ERROR,
            )
        value = self.variables[head]
        for segment in path:
            value = _child(value, segment)
            if value is _MISSING:
                raise StepFailure(
                    f"'{reference}' cannot be resolved: no '{segment}'",
                    kind=ErrorKind.RESOLUTION_ERROR,
                )
        return value

    def snapshot(self) -> Dict[str, Any]:
        """Ordered copy of the bindings, safe to hand to a collaborator."""
        result: Dict[str, Any] = {}
        for name, value in self.variables.items():
            try:
                result[name] = copy.deepcopy(value)
            except Exception:
                result[name] = repr(value)
        return result

    def output(self, name: Optional[str]) -> Any:
        """Declared output binding, or the last bound value when none is declared."""
        key = name or self.last_bound
        if key is None:
            return None
        return self.lookup(key)


def _child(value: Any, segment: str) -> Any:
    if isinstance(value, dict):
        return value.get(segment, _MISSING)
    if isinstance(value, (list, tuple)) and segment.isdigit():
        index = int(segment)
        return value[index] if index < len(value) else _MISSING
    return getattr(value, segment, _MISSING)
