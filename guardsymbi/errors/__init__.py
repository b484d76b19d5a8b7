"""
Errors - error taxonomy and API error bodies
"""

from .exceptions import (
    ErrorKind,
    GuardSymbiError,
    BuildError,
    DeclarationError,
    UnknownTaskReference,
    CyclicDependency,
    DuplicateTaskName,
    MissingCapability,
    EntryTaskMissing,
    StepFailure,
    StepTimeoutError,
    GuardFailure,
    AbortedDependency,
    RunCancelled,
    MCPGatewayError,
    MCPTimeoutError,
    CircuitOpenError,
)

from .error_response import ErrorResponse, ErrorType, ErrorSeverity

__all__ = [
    # Exceptions
    "ErrorKind",
    "GuardSymbiError",
    "BuildError",
    "DeclarationError",
    "UnknownTaskReference",
    "CyclicDependency",
    "DuplicateTaskName",
    "MissingCapability",
    "EntryTaskMissing",
    "StepFailure",
    "StepTimeoutError",
    "GuardFailure",
    "AbortedDependency",
    "RunCancelled",
    "MCPGatewayError",
    "MCPTimeoutError",
    "CircuitOpenError",

    # Response
    "ErrorResponse",
    "ErrorType",
    "ErrorSeverity",
]
