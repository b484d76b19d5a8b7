"""
Operation Registry for step execution.
Maps (module, function) names to the callables the Step Interpreter dispatches to.
"""

import importlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..errors import ErrorKind
from ..models.declarations import AI_MODULE

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    Tagged result an operation may return instead of raising.

    Example:
        def parse(text):
            try:
                return OperationResult.ok(json.loads(text))
            except json.JSONDecodeError as e:
                return OperationResult.failure(str(e), ErrorKind.PARSE_ERROR)
    """
    success: bool
    value: Any = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    payload: Any = None

    @classmethod
    def ok(cls, value: Any) -> "OperationResult":
        return cls(success=True, value=value)

    @classmethod
    def failure(
        cls,
        error: str,
        kind: Optional[ErrorKind] = None,
        payload: Any = None,
    ) -> "OperationResult":
        return cls(success=False, error=error, kind=kind, payload=payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "value": self.value,
            "error": self.error,
            "kind": self.kind.value if self.kind else None,
        }


@dataclass
class OperationSpec:
    """Registration record for one operation."""
    module: str
    function: str
    func: Callable[..., Any]
    is_async: bool = False
    description: str = ""
    tags: List[str] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.function}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.qualified_name,
            "async": self.is_async,
            "description": self.description,
            "tags": list(self.tags),
        }


class OperationRegistry:
    """
    Central registry of external module operations.

    The `AI` module name is reserved: calls to it are served by the MCP
    gateway, never by a registered callable.

    Example:
        registry = OperationRegistry()

        @registry.operation("JSON", "parse")
        def parse(text):
            return json.loads(text)

        registry.register_module("File", {"read": read_file})
        spec = registry.get("JSON", "parse")
    """

    def __init__(self):
        self._operations: Dict[Tuple[str, str], OperationSpec] = {}

    def register(
        self,
        module: str,
        function: str,
        func: Callable[..., Any],
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> OperationSpec:
        """
        Register one callable.

        Args:
            module: Module name as written in task declarations
            function: Function name within the module
            func: Sync or async callable
            description: Optional description (defaults to the first docstring line)
            tags: Optional tags for listing

        Raises:
            ValueError: If the module name is reserved
        """
        if module == AI_MODULE:
            raise ValueError(f"Module name '{AI_MODULE}' is reserved for MCP operations")
        if not callable(func):
            raise TypeError(f"Operation {module}.{function} is not callable")

        key = (module, function)
        if key in self._operations:
            logger.warning(f"Operation '{module}.{function}' is already registered, overwriting")

        doc = inspect.getdoc(func) or ""
        spec = OperationSpec(
            module=module,
            function=function,
            func=func,
            is_async=inspect.iscoroutinefunction(func),
            description=description if description is not None else doc.split("\n", 1)[0],
            tags=list(tags or []),
        )
        self._operations[key] = spec
        logger.debug(f"Registered operation: {spec.qualified_name}")
        return spec

    def register_module(self, module: str, functions: Mapping[str, Callable[..., Any]]) -> None:
        """Register every function of a module at once."""
        for function, func in functions.items():
            self.register(module, function, func)
        logger.info(f"Registered module '{module}' ({len(functions)} operations)")

    def operation(
        self,
        module: str,
        function: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of register(); the function name defaults to the callable's name."""
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(module, function or func.__name__, func, description)
            return func
        return decorator

    def get(self, module: str, function: str) -> Optional[OperationSpec]:
        return self._operations.get((module, function))

    def unregister(self, module: str, function: str) -> bool:
        """
        Returns:
            True if the operation was removed, False if it was not registered
        """
        if self._operations.pop((module, function), None) is None:
            return False
        logger.info(f"Unregistered operation: {module}.{function}")
        return True

    def __contains__(self, qualified_name: str) -> bool:
        module, _, function = qualified_name.partition(".")
        return (module, function) in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def modules(self) -> List[str]:
        return sorted({module for module, _ in self._operations})

    def list_operations(self, module: Optional[str] = None) -> List[OperationSpec]:
        return [
            spec for key, spec in sorted(self._operations.items())
            if module is None or key[0] == module
        ]


def import_operations(registry: OperationRegistry, dotted_path: str) -> None:
    """
    Import a Python module and let it register its operations.

    The module must expose `register_operations(registry)`.
    """
    target = importlib.import_module(dotted_path)
    hook = getattr(target, "register_operations", None)
    if hook is None:
        raise ImportError(f"'{dotted_path}' has no register_operations(registry) function")
    before = len(registry)
    hook(registry)
    logger.info(f"Loaded {len(registry) - before} operation(s) from {dotted_path}")
