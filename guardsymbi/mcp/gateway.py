"""
MCP Gateway - bridge between the engine and the assistance collaborator

Every call gets a fresh correlation id and a caller-specified timeout. The
gateway never re-issues a request on its own; retrying is the owning state
machine's decision. Response payloads are handed back uninterpreted.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional

from ..errors import MCPGatewayError, MCPTimeoutError
from ..execution_log import EventKind, ExecutionLog
from .circuit_breaker import CircuitBreaker
from .transport import MCPTransport
from .types import (
    MCPCallRecord,
    MCPCallStatus,
    MCPRequest,
    MCPRequestKind,
    MCPResponse,
)

logger = logging.getLogger(__name__)

CIRCUIT_KEY = "mcp"


class MCPGateway:
    """
    Correlated request/response client with per-call timeouts.

    Example:
        gateway = MCPGateway(HttpMCPTransport("https://mcp.example/v1"), default_timeout=20)
        response = await gateway.fix("JSON parse failed", context.snapshot())
        if response.ok and response.value is not None:
            context.bind("raw", response.value)
    """

    def __init__(
        self,
        transport: MCPTransport,
        default_timeout: float = 30.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        cancel_timeout: float = 5.0,
        history_limit: int = 1000,
    ):
        """
        Args:
            transport: How requests reach the collaborator
            default_timeout: Timeout (seconds) for calls that do not pass one
            circuit_breaker: Optional breaker that fails fast while the collaborator is down
            cancel_timeout: Upper bound (seconds) on telling the collaborator to drop a request
            history_limit: Number of call records kept for reports
        """
        self.transport = transport
        self.default_timeout = default_timeout
        self.circuit_breaker = circuit_breaker
        self.cancel_timeout = cancel_timeout

        self._pending: Dict[str, asyncio.Task] = {}
        self.history: Deque[MCPCallRecord] = deque(maxlen=history_limit)

    async def request(
        self,
        kind: MCPRequestKind,
        message: str,
        context: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        log: Optional[ExecutionLog] = None,
        task: Optional[str] = None,
        step: Optional[str] = None,
    ) -> MCPResponse:
        """
        Issue one correlated request.

        Args:
            kind: fix | suggestFix | optimize | explainError
            message: Free-text message for the collaborator
            context: Snapshot of the caller's bindings
            timeout: Per-call timeout in seconds
            log: Execution log receiving request/response events
            task: Owning task (for the log and history)
            step: Owning step (for the log and history)

        Returns:
            The collaborator's response; `status` may be error

        Raises:
            MCPTimeoutError: The call exceeded its timeout
            MCPGatewayError: Transport failure, open circuit or protocol violation
        """
        request = MCPRequest(kind=kind, message=message, context=dict(context or {}))

        timeout = timeout if timeout is not None else self.default_timeout
        record = MCPCallRecord(request_id=request.id, kind=kind, task=task, step=step)
        self.history.append(record)
        self._emit(log, EventKind.MCP_REQUEST, task, step, request_id=request.id, request_kind=kind.value)

        started = time.monotonic()
        pending = asyncio.ensure_future(self._send(request))
        self._pending[request.id] = pending
        try:
            response = await asyncio.wait_for(pending, timeout=timeout)
        except asyncio.TimeoutError:
            self._finish(record, started, MCPCallStatus.TIMEOUT, error=f"timeout after {timeout}s")
            if self.circuit_breaker:
                self.circuit_breaker.record_failure(CIRCUIT_KEY)
            self._emit(log, EventKind.MCP_FAILED, task, step, request_id=request.id, reason="timeout")
            await self._cancel_remote(request.id)
            raise MCPTimeoutError(request.id, timeout, kind.value)
        except asyncio.CancelledError:
            self._finish(record, started, MCPCallStatus.CANCELLED)
            self._emit(log, EventKind.MCP_FAILED, task, step, request_id=request.id, reason="cancelled")
            await self._cancel_remote(request.id)
            raise
        except MCPGatewayError as e:
            self._finish(record, started, MCPCallStatus.FAILED, error=e.message)
            self._emit(log, EventKind.MCP_FAILED, task, step, request_id=request.id, reason=e.message)
            raise
        except Exception as e:
            self._finish(record, started, MCPCallStatus.FAILED, error=str(e))
            self._emit(log, EventKind.MCP_FAILED, task, step, request_id=request.id, reason=str(e))
            raise MCPGatewayError(str(e), request_id=request.id, kind=kind.value) from e
        finally:
            self._pending.pop(request.id, None)

        if response.id != request.id:
            self._finish(record, started, MCPCallStatus.FAILED, error="mismatched correlation id")
            self._emit(log, EventKind.MCP_FAILED, task, step, request_id=request.id, reason="mismatched id")
            raise MCPGatewayError(
                f"Response id {response.id} does not match request {request.id}",
                request_id=request.id,
                kind=kind.value,
            )

        status = MCPCallStatus.OK if response.ok else MCPCallStatus.ERROR
        self._finish(record, started, status, explanation=response.explanation)
        self._emit(
            log, EventKind.MCP_RESPONSE, task, step,
            request_id=request.id, status=response.status.value,
        )
        return response

    async def _send(self, request: MCPRequest) -> MCPResponse:
        if self.circuit_breaker:
            return await self.circuit_breaker.call(CIRCUIT_KEY, self.transport.send, request)
        return await self.transport.send(request)

    async def _cancel_remote(self, request_id: str) -> None:
        """Tell the collaborator to drop a request, without waiting on it indefinitely."""
        try:
            await asyncio.wait_for(self.transport.cancel(request_id), timeout=self.cancel_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Cancel of MCP request {request_id} timed out after {self.cancel_timeout}s")
        except Exception as e:
            logger.warning(f"Cancel of MCP request {request_id} failed: {e}")

    # Convenience wrappers, one per request kind

    async def fix(self, message: str, context: Optional[Mapping[str, Any]] = None, **kwargs) -> MCPResponse:
        return await self.request(MCPRequestKind.FIX, message, context, **kwargs)

    async def suggest_fix(self, message: str, context: Optional[Mapping[str, Any]] = None, **kwargs) -> MCPResponse:
        return await self.request(MCPRequestKind.SUGGEST_FIX, message, context, **kwargs)

    async def optimize(self, message: str, context: Optional[Mapping[str, Any]] = None, **kwargs) -> MCPResponse:
        return await self.request(MCPRequestKind.OPTIMIZE, message, context, **kwargs)

    async def explain_error(self, message: str, context: Optional[Mapping[str, Any]] = None, **kwargs) -> MCPResponse:
        return await self.request(MCPRequestKind.EXPLAIN_ERROR, message, context, **kwargs)

    def cancel_all(self) -> int:
        """Cancel every outstanding request; returns how many were cancelled."""
        pending = list(self._pending.values())
        for future in pending:
            future.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} outstanding MCP request(s)")
        return len(pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def calls(self, kind: Optional[MCPRequestKind] = None, task: Optional[str] = None) -> List[MCPCallRecord]:
        return [
            record for record in self.history
            if (kind is None or record.kind == kind) and (task is None or record.task == task)
        ]

    def status(self) -> Dict[str, Any]:
        return {
            "transport": self.transport.name,
            "pending": self.pending_count,
            "calls": len(self.history),
            "circuit": self.circuit_breaker.get_summary() if self.circuit_breaker else None,
        }

    async def close(self) -> None:
        self.cancel_all()
        await self.transport.close()

    @staticmethod
    def _finish(
        record: MCPCallRecord,
        started: float,
        status: MCPCallStatus,
        error: Optional[str] = None,
        explanation: Optional[str] = None,
    ) -> None:
        record.status = status
        record.error = error
        record.explanation = explanation
        record.elapsed_ms = (time.monotonic() - started) * 1000

    @staticmethod
    def _emit(log: Optional[ExecutionLog], kind: EventKind, task, step, **detail) -> None:
        if log is not None:
            log.emit(kind, task, step, **detail)
