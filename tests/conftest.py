"""
Pytest Configuration and Fixtures

Shared fixtures: an operation registry with fake standard modules, a
scripted in-process MCP collaborator, and module builders.
"""

import inspect
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from guardsymbi.config import EngineConfig
from guardsymbi.engine import Engine
from guardsymbi.execution_log import ExecutionLog
from guardsymbi.mcp import CallbackMCPTransport, MCPGateway, MCPRequest
from guardsymbi.models import ModuleDecl
from guardsymbi.modules import OperationRegistry
from guardsymbi.runtime import ExecutionContext


class FakeAssistant:
    """
    Scripted MCP collaborator.

    `responses` maps a request kind ("fix", "suggestFix", ...) to a dict of
    wire fields, or to a (sync or async) callable taking the request and
    returning one.
    Unscripted kinds answer {"status": "ok"}.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses: Dict[str, Any] = dict(responses or {})
        self.requests: List[MCPRequest] = []

    async def __call__(self, request: MCPRequest) -> Dict[str, Any]:
        self.requests.append(request)
        response = self.responses.get(request.kind.value, {"status": "ok"})
        if callable(response):
            response = response(request)
        if inspect.isawaitable(response):
            response = await response
        return dict(response)

    def kinds(self) -> List[str]:
        return [request.kind.value for request in self.requests]

    def count(self, kind: str) -> int:
        return self.kinds().count(kind)


class Counter:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, fail_times: int, error: Exception, result: Any = "ok"):
        self.fail_times = fail_times
        self.error = error
        self.result = result
        self.calls = 0

    def __call__(self, *args):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error
        return self.result


@pytest.fixture
def config() -> EngineConfig:
    """Engine config with short MCP timeouts"""
    return EngineConfig(mcp_timeout=1.0)


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def gateway(assistant) -> MCPGateway:
    return MCPGateway(CallbackMCPTransport(assistant), default_timeout=1.0)


@pytest.fixture
def registry() -> OperationRegistry:
    """Registry with small fake File/JSON/DataValidator/PDF modules"""
    registry = OperationRegistry()
    files = {"input.json": '{"title": "Q3", "rows": [1, 2, 3]}'}

    def read(path):
        if path not in files:
            raise FileNotFoundError(path)
        return files[path]

    def check(data):
        if isinstance(data, dict) and "title" in data:
            return data
        return None

    async def render(data):
        return f"report-{data['title']}.pdf"

    registry.register_module("File", {"read": read})
    registry.register_module("JSON", {"parse": json.loads, "dump": json.dumps})
    registry.register_module("DataValidator", {"check": check})
    registry.register_module("PDF", {"render": render})
    registry.files = files
    return registry


@pytest.fixture
def log() -> ExecutionLog:
    return ExecutionLog("test-run")


@pytest.fixture
def make_context(log, gateway) -> Callable[..., ExecutionContext]:
    def factory(task: str = "task", variables: Optional[Dict[str, Any]] = None, with_gateway: bool = True):
        return ExecutionContext(
            run_id=log.run_id,
            task=task,
            log=log,
            gateway=gateway if with_gateway else None,
            variables=variables,
            ai_enabled=True,
        )
    return factory


@pytest.fixture
def engine(registry, gateway, config) -> Engine:
    return Engine(registry, gateway=gateway, config=config)


def make_module(tasks: List[Dict[str, Any]], name: str = "test", run: Optional[str] = None, **extra) -> ModuleDecl:
    """Build a validated module from plain task mappings"""
    data: Dict[str, Any] = {"name": name, "tasks": tasks, **extra}
    if run:
        data["run"] = run
    return ModuleDecl.model_validate(data)


def task(name: str, *steps: Dict[str, Any], **fields) -> Dict[str, Any]:
    """Task mapping shorthand: task("b", step, inputs=["a"])"""
    return {"name": name, "steps": list(steps), **fields}


def call(operation: str, *args: Any, **fields) -> Dict[str, Any]:
    """Step mapping shorthand: call("JSON.parse", "$raw", let="data")"""
    return {"operation": {"call": operation, "args": list(args)}, **fields}


PIPELINE = os.path.join(os.path.dirname(os.path.dirname(__file__)), "examples", "pipeline.yaml")
