from .declarations import (
    AI_MODULE,
    Argument,
    OperationRef,
    GuardActionKind,
    GuardAction,
    GuardClause,
    RecoveryAction,
    RecoveryActionDecl,
    BackoffPolicy,
    ErrorHandlerDecl,
    StepDecl,
    InputRef,
    TaskDecl,
    ModuleDecl,
)
from .state import TaskState

__all__ = [
    "AI_MODULE",
    "Argument",
    "OperationRef",
    "GuardActionKind",
    "GuardAction",
    "GuardClause",
    "RecoveryAction",
    "RecoveryActionDecl",
    "BackoffPolicy",
    "ErrorHandlerDecl",
    "StepDecl",
    "InputRef",
    "TaskDecl",
    "ModuleDecl",
    "TaskState",
]
