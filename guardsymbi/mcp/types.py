import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class MCPRequestKind(str, Enum):
    FIX = "fix"                     # repair a failed operation's input/state
    SUGGEST_FIX = "suggestFix"      # advisory text, from guard else-branches
    OPTIMIZE = "optimize"           # transform a valid value (@ai tasks)
    EXPLAIN_ERROR = "explainError"  # human-readable diagnostic


class MCPStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class MCPRequest(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: MCPRequestKind
    message: str = ""

    # Ordered snapshot of the ExecutionContext bindings
    context: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-safe wire form; unserializable context values become strings."""
        return json.loads(json.dumps(
            {
                "id": self.id,
                "kind": self.kind.value,
                "message": self.message,
                "context": self.context,
            },
            default=str,
        ))


class MCPResponse(BaseModel):
    id: str
    status: MCPStatus
    value: Any = None
    explanation: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == MCPStatus.OK


class MCPCallStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class MCPCallRecord:
    """One correlated call, kept for the run report."""
    request_id: str
    kind: MCPRequestKind
    task: Optional[str] = None
    step: Optional[str] = None
    status: Optional[MCPCallStatus] = None
    explanation: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    elapsed_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "kind": self.kind.value,
            "task": self.task,
            "step": self.step,
            "status": self.status.value if self.status else None,
            "explanation": self.explanation,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
