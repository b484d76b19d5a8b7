"""
EngineConfig - runtime settings for the engine

Values come from GUARDSYMBI_* environment variables (a .env file is loaded
by the CLI before this is read).
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from .errors import ErrorKind
from .models import ErrorHandlerDecl

ENV_PREFIX = "GUARDSYMBI_"

DEFAULT_AI_FIXABLE = frozenset({ErrorKind.PARSE_ERROR, ErrorKind.VALIDATION_ERROR})


@dataclass
class EngineConfig:
    # Scheduler
    max_parallel: int = 5
    run_timeout: Optional[float] = None

    # Step interpreter
    step_timeout: Optional[float] = None

    # Recovery
    default_max_attempts: int = 1
    ai_fixable_kinds: FrozenSet[ErrorKind] = DEFAULT_AI_FIXABLE
    default_policies: Dict[ErrorKind, ErrorHandlerDecl] = field(default_factory=dict)

    # MCP
    mcp_timeout: float = 30.0
    mcp_url: Optional[str] = None
    mcp_api_key: Optional[str] = None
    mcp_failure_threshold: int = 3

    # Event store
    redis_url: Optional[str] = None

    log_level: str = "INFO"

    def __post_init__(self):
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        if self.default_max_attempts < 1:
            raise ValueError("default_max_attempts must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """
        Build a config from the environment.

        Recognised variables (all prefixed with GUARDSYMBI_):
            MAX_PARALLEL, STEP_TIMEOUT, MCP_TIMEOUT, RUN_TIMEOUT,
            DEFAULT_MAX_ATTEMPTS, AI_FIXABLE_KINDS (comma separated kinds),
            DEFAULT_POLICIES ("IOError=retry;ParseError=ai_fix,retry"),
            MCP_URL, MCP_API_KEY, MCP_FAILURE_THRESHOLD, REDIS_URL, LOG_LEVEL
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else default

        return cls(
            max_parallel=int(get("MAX_PARALLEL", "5")),
            step_timeout=_optional_float(get("STEP_TIMEOUT")),
            mcp_timeout=float(get("MCP_TIMEOUT", "30")),
            run_timeout=_optional_float(get("RUN_TIMEOUT")),
            default_max_attempts=int(get("DEFAULT_MAX_ATTEMPTS", "1")),
            ai_fixable_kinds=parse_kinds(get("AI_FIXABLE_KINDS", "ParseError,ValidationError")),
            default_policies=parse_policies(get("DEFAULT_POLICIES", "")),
            mcp_url=get("MCP_URL"),
            mcp_api_key=get("MCP_API_KEY"),
            mcp_failure_threshold=int(get("MCP_FAILURE_THRESHOLD", "3")),
            redis_url=get("REDIS_URL"),
            log_level=get("LOG_LEVEL", "INFO").upper(),
        )


def _optional_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value is not None else None


def parse_kinds(value: str) -> FrozenSet[ErrorKind]:
    """'ParseError, ValidationError' -> {ErrorKind.PARSE_ERROR, ErrorKind.VALIDATION_ERROR}"""
    return frozenset(ErrorKind(item.strip()) for item in value.split(",") if item.strip())


def parse_policies(value: str) -> Dict[ErrorKind, ErrorHandlerDecl]:
    """'IOError=retry;ParseError=ai_fix,retry' -> {kind: ErrorHandlerDecl}"""
    policies: Dict[ErrorKind, ErrorHandlerDecl] = {}
    for entry in value.split(";"):
        if not entry.strip():
            continue
        kind, sep, actions = entry.partition("=")
        if not sep:
            raise ValueError(f"Default policy '{entry}' must look like Kind=action[,action]")
        policies[ErrorKind(kind.strip())] = ErrorHandlerDecl.model_validate(
            [action.strip() for action in actions.split(",") if action.strip()]
        )
    return policies


def setup_logging(level: str = "INFO") -> None:
    """Console logging for the CLI and the API server."""
    root = logging.getLogger("guardsymbi")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s %(message)s"))
        root.addHandler(handler)
