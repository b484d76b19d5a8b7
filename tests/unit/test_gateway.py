"""
MCP Gateway Unit Tests
"""

import asyncio

import pytest

from guardsymbi.errors import MCPGatewayError, MCPTimeoutError
from guardsymbi.execution_log import EventKind
from guardsymbi.mcp import (
    CallbackMCPTransport,
    HttpMCPTransport,
    MCPCallStatus,
    MCPGateway,
    MCPRequest,
    MCPRequestKind,
    MCPResponse,
    MCPStatus,
)


class TestMCPGateway:

    @pytest.mark.asyncio
    async def test_ok_response(self, gateway, assistant, log):
        assistant.responses["fix"] = {"status": "ok", "value": "[1, 2]"}

        response = await gateway.fix("parse failed", {"raw": "[1, 2"}, log=log, task="load", step="parse")

        assert response.ok
        assert response.value == "[1, 2]"
        assert response.id == assistant.requests[0].id
        assert assistant.requests[0].context == {"raw": "[1, 2"}

        record = gateway.history[0]
        assert record.status == MCPCallStatus.OK
        assert record.task == "load"
        assert log.count(EventKind.MCP_REQUEST) == 1
        assert log.count(EventKind.MCP_RESPONSE) == 1
        request_event = next(event for event in log.events if event.kind == EventKind.MCP_REQUEST)
        assert request_event.detail == {"request_id": response.id, "request_kind": "fix"}

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self, gateway, assistant):
        assistant.responses["explainError"] = {"status": "error", "explanation": "unknown"}

        response = await gateway.explain_error("why?")

        assert response.status == MCPStatus.ERROR
        assert gateway.history[0].status == MCPCallStatus.ERROR

    @pytest.mark.asyncio
    async def test_fresh_correlation_ids(self, gateway, assistant):
        await gateway.optimize("a")
        await gateway.optimize("b")

        ids = [request.id for request in assistant.requests]
        assert len(set(ids)) == 2

    @pytest.mark.asyncio
    async def test_timeout_cancels_request(self, assistant, log):
        async def hang(request):
            await asyncio.sleep(5)

        assistant.responses["fix"] = hang
        transport = CallbackMCPTransport(assistant)
        gateway = MCPGateway(transport, default_timeout=5)

        with pytest.raises(MCPTimeoutError) as exc_info:
            await gateway.fix("slow", timeout=0.05, log=log)

        request_id = assistant.requests[0].id
        assert exc_info.value.request_id == request_id
        assert transport.cancelled == [request_id]
        assert gateway.history[0].status == MCPCallStatus.TIMEOUT
        assert gateway.pending_count == 0
        assert log.count(EventKind.MCP_FAILED) == 1

    @pytest.mark.asyncio
    async def test_gateway_never_retries(self, assistant):
        calls = []

        def failing(request):
            calls.append(request.id)
            raise ConnectionError("refused")

        gateway = MCPGateway(CallbackMCPTransport(failing), default_timeout=1)

        with pytest.raises(MCPGatewayError):
            await gateway.fix("x")
        assert len(calls) == 1
        assert gateway.history[0].status == MCPCallStatus.FAILED

    @pytest.mark.asyncio
    async def test_mismatched_correlation_id(self):
        def wrong_id(request):
            return MCPResponse(id="someone-else", status=MCPStatus.OK)

        gateway = MCPGateway(CallbackMCPTransport(wrong_id), default_timeout=1)

        with pytest.raises(MCPGatewayError):
            await gateway.suggest_fix("x")

    @pytest.mark.asyncio
    async def test_invalid_handler_result(self):
        gateway = MCPGateway(CallbackMCPTransport(lambda request: 42), default_timeout=1)
        with pytest.raises(MCPGatewayError):
            await gateway.fix("x")

    @pytest.mark.asyncio
    async def test_cancelling_the_caller_cancels_the_request(self, assistant):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(5)

        assistant.responses["optimize"] = hang
        transport = CallbackMCPTransport(assistant)
        gateway = MCPGateway(transport, default_timeout=5)

        caller = asyncio.ensure_future(gateway.optimize("x"))
        await started.wait()
        caller.cancel()

        with pytest.raises(asyncio.CancelledError):
            await caller

        assert transport.cancelled == [assistant.requests[0].id]
        assert gateway.history[0].status == MCPCallStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_all(self, assistant):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(5)

        assistant.responses["fix"] = hang
        gateway = MCPGateway(CallbackMCPTransport(assistant), default_timeout=5)

        caller = asyncio.ensure_future(gateway.fix("x"))
        await started.wait()

        assert gateway.cancel_all() == 1
        with pytest.raises((asyncio.CancelledError, MCPGatewayError)):
            await caller

    @pytest.mark.asyncio
    async def test_calls_filter(self, gateway):
        await gateway.fix("a", task="load")
        await gateway.suggest_fix("b", task="validate")

        assert len(gateway.calls(kind=MCPRequestKind.FIX)) == 1
        assert len(gateway.calls(task="validate")) == 1
        assert gateway.status()["calls"] == 2

    @pytest.mark.asyncio
    async def test_hanging_cancel_is_bounded(self, assistant):
        class StuckCancelTransport(CallbackMCPTransport):
            async def cancel(self, request_id):
                await asyncio.sleep(5)

        async def hang(request):
            await asyncio.sleep(5)

        assistant.responses["fix"] = hang
        gateway = MCPGateway(StuckCancelTransport(assistant), default_timeout=5, cancel_timeout=0.05)

        with pytest.raises(MCPTimeoutError):
            await asyncio.wait_for(gateway.fix("slow", timeout=0.05), timeout=1)

        assert gateway.history[0].status == MCPCallStatus.TIMEOUT
        assert gateway.pending_count == 0

    @pytest.mark.asyncio
    async def test_failing_cancel_does_not_mask_timeout(self, assistant):
        class BrokenCancelTransport(CallbackMCPTransport):
            async def cancel(self, request_id):
                raise ConnectionError("collaborator gone")

        async def hang(request):
            await asyncio.sleep(5)

        assistant.responses["fix"] = hang
        gateway = MCPGateway(BrokenCancelTransport(assistant), default_timeout=5)

        with pytest.raises(MCPTimeoutError):
            await gateway.fix("slow", timeout=0.05)

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, assistant):
        gateway = MCPGateway(CallbackMCPTransport(assistant), default_timeout=1, history_limit=2)

        await gateway.fix("a", task="first")
        await gateway.fix("b", task="second")
        await gateway.fix("c", task="third")

        assert len(gateway.history) == 2
        assert [record.task for record in gateway.history] == ["second", "third"]
        assert len(assistant.requests) == 3


class TestMCPRequest:

    def test_wire_form_is_json_safe(self):
        request = MCPRequest(kind=MCPRequestKind.FIX, message="m", context={"when": object()})
        wire = request.to_wire()

        assert wire["kind"] == "fix"
        assert isinstance(wire["context"]["when"], str)


class TestHttpMCPTransport:

    def test_https_accepted(self):
        transport = HttpMCPTransport("https://mcp.example.com/v1/")
        assert transport.base_url == "https://mcp.example.com/v1"

    def test_plain_http_allowed_on_loopback(self):
        HttpMCPTransport("http://127.0.0.1:9000")
        HttpMCPTransport("http://localhost:9000")

    def test_plain_http_rejected_across_network(self):
        with pytest.raises(ValueError):
            HttpMCPTransport("http://mcp.example.com")

    def test_unknown_scheme_rejected(self):
        with pytest.raises(ValueError):
            HttpMCPTransport("ftp://mcp.example.com")

    def test_bearer_token(self):
        transport = HttpMCPTransport("https://mcp.example.com", api_key="secret")
        assert transport._headers()["Authorization"] == "Bearer secret"

    def test_cancel_has_its_own_deadline(self):
        transport = HttpMCPTransport("https://mcp.example.com", cancel_timeout=2.5)

        assert transport.timeout.total is None
        assert transport.cancel_timeout.total == 2.5
