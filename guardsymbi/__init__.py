"""
GuardSymbi - execution engine for guarded, self-healing task graphs
"""

from .config import EngineConfig, setup_logging
from .engine import Engine
from .errors import (
    ErrorKind,
    GuardSymbiError,
    BuildError,
    StepFailure,
)
from .execution_log import EventKind, ExecutionEvent, ExecutionLog
from .loader import load_modules, parse_modules
from .mcp import CallbackMCPTransport, HttpMCPTransport, MCPGateway
from .models import ModuleDecl, TaskState
from .modules import OperationRegistry, OperationResult
from .report import RunReport, RunStatus, TaskReport

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "setup_logging",
    "Engine",
    "ErrorKind",
    "GuardSymbiError",
    "BuildError",
    "StepFailure",
    "EventKind",
    "ExecutionEvent",
    "ExecutionLog",
    "load_modules",
    "parse_modules",
    "CallbackMCPTransport",
    "HttpMCPTransport",
    "MCPGateway",
    "ModuleDecl",
    "TaskState",
    "OperationRegistry",
    "OperationResult",
    "RunReport",
    "RunStatus",
    "TaskReport",
]
