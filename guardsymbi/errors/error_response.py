"""
ErrorResponse - error body returned by the HTTP API
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4

from .exceptions import BuildError, GuardSymbiError, RunCancelled


class ErrorType(str, Enum):
    """Error category"""
    BUILD = "build"
    RUNTIME = "runtime"
    NOT_FOUND = "not_found"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    """Error severity"""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ErrorResponse:
    """Standard error response"""
    error_code: str
    message: str
    error_type: ErrorType = ErrorType.SYSTEM
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    trace_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "type": self.error_type.value,
                "severity": self.severity.value,
                "message": self.message,
                "details": self.details,
                "traceId": self.trace_id,
                "timestamp": self.timestamp.isoformat()
            }
        }

    @classmethod
    def from_exception(cls, exception: Exception, trace_id: Optional[str] = None):
        """Build an ErrorResponse from any exception."""
        if isinstance(exception, GuardSymbiError):
            error_type = ErrorType.BUILD if isinstance(exception, BuildError) else ErrorType.RUNTIME
            return cls(
                error_code=exception.code,
                message=exception.message,
                error_type=error_type,
                severity=ErrorSeverity.WARNING if isinstance(exception, RunCancelled) else ErrorSeverity.ERROR,
                details=exception.details,
                trace_id=trace_id or str(uuid4())
            )

        return cls(
            error_code="INTERNAL_ERROR",
            message=str(exception),
            error_type=ErrorType.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            trace_id=trace_id or str(uuid4())
        )

    @classmethod
    def not_found(cls, resource: str, resource_id: str):
        return cls(
            error_code=f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} '{resource_id}' not found",
            error_type=ErrorType.NOT_FOUND,
            severity=ErrorSeverity.WARNING,
            details={"resource": resource, "id": resource_id}
        )
