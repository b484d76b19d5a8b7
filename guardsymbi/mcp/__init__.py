"""
MCP - client side of the AI-assistance collaborator contract
"""

from .types import (
    MCPRequestKind,
    MCPStatus,
    MCPRequest,
    MCPResponse,
    MCPCallStatus,
    MCPCallRecord,
)
from .transport import MCPTransport, CallbackMCPTransport, HttpMCPTransport
from .circuit_breaker import CircuitBreaker, CircuitConfig, CircuitState
from .gateway import MCPGateway

__all__ = [
    "MCPRequestKind",
    "MCPStatus",
    "MCPRequest",
    "MCPResponse",
    "MCPCallStatus",
    "MCPCallRecord",
    "MCPTransport",
    "CallbackMCPTransport",
    "HttpMCPTransport",
    "CircuitBreaker",
    "CircuitConfig",
    "CircuitState",
    "MCPGateway",
]
