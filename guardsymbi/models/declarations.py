"""
Declaration models for parsed GuardSymbi modules.

The parser is an external collaborator; it hands the engine a plain tree of
mappings and lists. These models validate that tree once and are immutable
afterwards, so a graph can be built from them any number of times.
"""

import re
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AI_MODULE = "AI"

_VERSION_RE = re.compile(r"^(\d+(?:\.\d+)*)(?:-([0-9A-Za-z.]+))?$")


def normalize_name(name: str) -> str:
    """'AI.suggestFix', 'suggest_fix' and 'suggestfix' all normalize to 'suggestfix'."""
    name = name.strip().lower()
    if name.startswith("ai."):
        name = name[3:]
    return name.replace("_", "").replace("-", "")


class _Declaration(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class Argument(_Declaration):
    """
    One argument of an operation call.

    Either a literal value or a reference to a name bound in the
    ExecutionContext. Shorthand forms accepted from the parser:
    bare scalars are literals, strings starting with '$' are references.
    """
    ref: Optional[str] = None
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, Argument):
            return data
        if isinstance(data, dict) and data and set(data) <= {"ref", "value"}:
            return data
        if isinstance(data, str) and data.startswith("$") and len(data) > 1:
            return {"ref": data[1:]}
        return {"value": data}

    @property
    def root_name(self) -> Optional[str]:
        """Context variable the reference starts from."""
        if self.ref is None:
            return None
        return self.ref.split(".", 1)[0]


class OperationRef(_Declaration):
    """A call into an external module: Module.function(args...)"""
    module: str
    function: str
    args: List[Argument] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _split_call(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = {"call": data}
        if isinstance(data, dict) and "call" in data:
            data = dict(data)
            call = data.pop("call")
            module, sep, function = str(call).partition(".")
            if not sep or not module or not function:
                raise ValueError(f"Operation call must look like 'Module.function', got '{call}'")
            data["module"] = module
            data["function"] = function
        return data

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.function}"

    @property
    def is_ai(self) -> bool:
        return self.module == AI_MODULE


class GuardActionKind(str, Enum):
    """Remediation actions allowed in a guard's else block."""
    SUGGEST_FIX = "suggest_fix"
    EXPLAIN_ERROR = "explain_error"
    RETURN = "return"


_GUARD_ACTION_ALIASES = {
    "suggestfix": GuardActionKind.SUGGEST_FIX,
    "explainerror": GuardActionKind.EXPLAIN_ERROR,
    "return": GuardActionKind.RETURN,
}


class GuardAction(_Declaration):
    kind: GuardActionKind
    message: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = {"kind": data}
        elif isinstance(data, dict) and len(data) == 1 and "kind" not in data:
            ((key, message),) = data.items()
            data = {"kind": key, "message": message or ""}
        if isinstance(data, dict) and isinstance(data.get("kind"), str):
            kind = _GUARD_ACTION_ALIASES.get(normalize_name(data["kind"]))
            if kind is None:
                raise ValueError(f"Unknown guard action '{data['kind']}'")
            data = {**data, "kind": kind}
        return data


class GuardClause(_Declaration):
    """
    guard [let <binding> =] <expr> else { ... }

    The expression is either an operation call (`call`) or a context
    reference (`ref`). The else block always ends the task as Failed.
    """
    call: Optional[OperationRef] = None
    ref: Optional[str] = None
    binding: Optional[str] = Field(default=None, alias="let")
    else_actions: List[GuardAction] = Field(default_factory=list, alias="else")

    @model_validator(mode="after")
    def _check_expression(self) -> "GuardClause":
        if (self.call is None) == (self.ref is None):
            raise ValueError("A guard needs exactly one of 'call' or 'ref'")
        return self


class RecoveryAction(str, Enum):
    """Closed onError vocabulary."""
    RETRY = "retry"
    EXIT = "exit"
    AI_FIX = "ai_fix"
    CONTINUE = "continue"


_RECOVERY_ALIASES = {
    "retry": RecoveryAction.RETRY,
    "exit": RecoveryAction.EXIT,
    "aifix": RecoveryAction.AI_FIX,
    "fix": RecoveryAction.AI_FIX,
    "continue": RecoveryAction.CONTINUE,
}


class RecoveryActionDecl(_Declaration):
    action: RecoveryAction
    message: str = ""
    # Context name that receives the corrected value of an ai_fix
    target: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = {"action": data}
        elif isinstance(data, dict) and len(data) == 1 and "action" not in data:
            ((key, message),) = data.items()
            data = {"action": key, "message": message or ""}
        if isinstance(data, dict) and isinstance(data.get("action"), str):
            action = _RECOVERY_ALIASES.get(normalize_name(data["action"]))
            if action is None:
                raise ValueError(f"Unknown onError action '{data['action']}'")
            data = {**data, "action": action}
        return data


class BackoffPolicy(_Declaration):
    initial_delay: float = Field(default=0.0, ge=0)
    multiplier: float = Field(default=1.0, ge=1)
    max_delay: Optional[float] = Field(default=None, ge=0)

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1 = first retry)."""
        delay = self.initial_delay * (self.multiplier ** max(retry_number - 1, 0))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class ErrorHandlerDecl(_Declaration):
    """onError { ... } block of a step."""
    actions: List[RecoveryActionDecl] = Field(default_factory=list)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[BackoffPolicy] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, (list, str)):
            data = {"actions": [data] if isinstance(data, str) else data}
        return data

    def has(self, action: RecoveryAction) -> bool:
        return any(a.action == action for a in self.actions)


class StepDecl(_Declaration):
    name: Optional[str] = None
    operation: Optional[OperationRef] = None
    bind: Optional[str] = Field(default=None, alias="let")
    guard: Optional[GuardClause] = None
    on_error: Optional[ErrorHandlerDecl] = Field(default=None, alias="onError")
    timeout: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_body(self) -> "StepDecl":
        if self.operation is None and self.guard is None:
            raise ValueError("A step needs an operation, a guard, or both")
        return self

    def ai_operations(self) -> List[OperationRef]:
        calls = [self.operation] if self.operation else []
        if self.guard and self.guard.call:
            calls.append(self.guard.call)
        return [call for call in calls if call.is_ai]


class InputRef(_Declaration):
    """A declared input: binds `task`'s output under `name`."""
    name: str
    task: str

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            task = _strip_output(data)
            return {"name": task, "task": task}
        if isinstance(data, dict) and "task" in data:
            task = _strip_output(str(data["task"]))
            return {"name": data.get("name") or task, "task": task}
        return data


def _strip_output(reference: str) -> str:
    if reference.endswith(".output"):
        return reference[: -len(".output")]
    return reference


class TaskDecl(_Declaration):
    name: str
    inputs: List[InputRef] = Field(default_factory=list)
    steps: List[StepDecl] = Field(min_length=1)
    output: Optional[str] = None
    annotations: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "input" in data:
            single = data.pop("input")
            if single is not None:
                if isinstance(single, str):
                    single = {"name": "input", "task": single}
                data["inputs"] = [single] + list(data.get("inputs") or [])
        steps = []
        for index, step in enumerate(data.get("steps") or [], start=1):
            if isinstance(step, dict) and not step.get("name"):
                step = {**step, "name": f"step{index}"}
            elif isinstance(step, StepDecl) and not step.name:
                step = step.model_copy(update={"name": f"step{index}"})
            steps.append(step)
        data["steps"] = steps
        return data

    @field_validator("annotations", mode="before")
    @classmethod
    def _normalize_annotations(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        normalized = []
        for item in value or []:
            name = str(item).lstrip("@").lower()
            if name not in ("mcp", "ai"):
                raise ValueError(f"Unknown task annotation '@{name}'")
            if name not in normalized:
                normalized.append(name)
        return tuple(normalized)

    @property
    def ai_enabled(self) -> bool:
        return bool(self.annotations)

    @property
    def dependency_names(self) -> List[str]:
        names: List[str] = []
        for ref in self.inputs:
            if ref.task not in names:
                names.append(ref.task)
        return names


class ModuleDecl(_Declaration):
    name: str
    version: str = "0.0.0"
    imports: List[str] = Field(default_factory=list)
    tasks: List[TaskDecl] = Field(default_factory=list)
    run: Optional[str] = None

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _VERSION_RE.match(value):
            raise ValueError(f"Version '{value}' is not a dotted numeric version")
        return value

    @field_validator("imports")
    @classmethod
    def _unique_imports(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for name in value:
            if name not in seen:
                seen.append(name)
        return seen

    @property
    def version_key(self) -> Tuple[Any, ...]:
        """Comparable precedence key: 1.2 == 1.2.0 and 2.0.0-beta < 2.0.0."""
        match = _VERSION_RE.match(self.version)
        numbers = [int(part) for part in match.group(1).split(".")]
        while len(numbers) > 1 and numbers[-1] == 0:
            numbers.pop()
        pre = match.group(2)
        if not pre:
            return (tuple(numbers), 1, ())
        # numeric identifiers compare as integers and sort below alphanumeric ones
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in pre.split(".")
        )
        return (tuple(numbers), 0, identifiers)

