"""
Engine - facade that builds graphs and runs them

Build-time errors (BuildError subclasses) are raised to the caller before
anything executes. Runtime failures never raise: they are reported per task
in the RunReport.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from .config import EngineConfig
from .errors import EntryTaskMissing
from .event_store import RedisEventSink
from .execution_log import EventKind, ExecutionLog
from .mcp import CircuitBreaker, CircuitConfig, HttpMCPTransport, MCPGateway
from .models import ModuleDecl, TaskState
from .modules import OperationRegistry
from .report import RunReport, RunStatus
from .runtime import TaskRunner
from .task_graph import DependencyGraph, GraphBuilder, TaskScheduler

logger = logging.getLogger(__name__)

MAX_KEPT_REPORTS = 100


class Engine:
    """
    Example:
        engine = Engine(registry, gateway=MCPGateway(CallbackMCPTransport(assistant)))
        report = await engine.run(load_modules("pipeline.yaml"))
        print(report.status, report.output)
    """

    def __init__(
        self,
        registry: Optional[OperationRegistry] = None,
        gateway: Optional[MCPGateway] = None,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[RedisEventSink] = None,
    ):
        self.registry = registry or OperationRegistry()
        self.config = config or EngineConfig()
        self.gateway = gateway
        self.event_sink = event_sink

        self.builder = GraphBuilder()
        self.runner = TaskRunner(self.registry, self.config)

        self._active: Dict[str, TaskScheduler] = {}
        self._reports: "OrderedDict[str, RunReport]" = OrderedDict()

    @classmethod
    def from_config(
        cls,
        registry: Optional[OperationRegistry] = None,
        config: Optional[EngineConfig] = None,
    ) -> "Engine":
        """Wire the HTTP MCP transport and the Redis sink from configuration."""
        config = config or EngineConfig.from_env()

        gateway = None
        if config.mcp_url:
            transport = HttpMCPTransport(config.mcp_url, api_key=config.mcp_api_key)
            breaker = CircuitBreaker(CircuitConfig(failure_threshold=config.mcp_failure_threshold))
            gateway = MCPGateway(transport, default_timeout=config.mcp_timeout, circuit_breaker=breaker)

        sink = RedisEventSink(config.redis_url) if config.redis_url else None
        return cls(registry, gateway=gateway, config=config, event_sink=sink)

    async def start(self) -> None:
        if self.event_sink is not None:
            await self.event_sink.connect()

    async def close(self) -> None:
        for run_id in list(self._active):
            self.cancel(run_id, "engine shutting down")
        if self.gateway is not None:
            await self.gateway.close()
        if self.event_sink is not None:
            await self.event_sink.close()

    def build(self, modules: Sequence[ModuleDecl]) -> DependencyGraph:
        """Validate declarations and build the dependency graph (no execution)."""
        return self.builder.build(modules)

    async def run(
        self,
        modules: Union[Sequence[ModuleDecl], DependencyGraph],
        entry: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> RunReport:
        """
        Execute the entry task and its dependencies.

        Args:
            modules: Module declarations, or a graph from build()
            entry: Entry task; defaults to the module set's `run` directive
            run_id: Caller-chosen id (generated when omitted)

        Raises:
            BuildError: Invalid declarations, unknown entry task, etc.
        """
        graph = modules if isinstance(modules, DependencyGraph) else self.build(modules)
        entry = entry or graph.run_target
        if entry is None:
            raise EntryTaskMissing()
        closure = graph.closure(entry)

        run_id = run_id or uuid4().hex[:12]
        if run_id in self._active:
            raise ValueError(f"Run '{run_id}' is already active")
        log = ExecutionLog(run_id)
        if self.event_sink is not None:
            self.event_sink.attach(log)

        scheduler = TaskScheduler(graph, self.runner, log, gateway=self.gateway, config=self.config)
        self._active[run_id] = scheduler
        started = time.time()
        log.emit(EventKind.RUN_STARTED, entry=entry, tasks=closure)

        timer = None
        if self.config.run_timeout:
            timer = asyncio.get_running_loop().call_later(
                self.config.run_timeout,
                scheduler.cancel,
                f"exceeded run timeout of {self.config.run_timeout}s",
            )

        try:
            outcomes = await scheduler.execute(entry)
        finally:
            if timer is not None:
                timer.cancel()
            self._active.pop(run_id, None)

        if scheduler.cancelled:
            status = RunStatus.CANCELLED
            log.emit(EventKind.RUN_CANCELLED)
        elif all(outcome.state == TaskState.SUCCEEDED for outcome in outcomes.values()):
            status = RunStatus.SUCCEEDED
        else:
            status = RunStatus.FAILED
        log.emit(EventKind.RUN_FINISHED, status=status.value)

        if self.event_sink is not None:
            self.event_sink.detach(log)

        report = RunReport(
            run_id=run_id,
            entry=entry,
            status=status,
            tasks={name: outcome.to_report() for name, outcome in outcomes.items()},
            output=outcomes[entry].output if status == RunStatus.SUCCEEDED else None,
            mcp_calls=self._mcp_calls(log),
            events=log.to_list(),
            elapsed_seconds=time.time() - started,
        )
        self._remember(report)
        logger.info(f"[{run_id}] Run of '{entry}' finished: {status.value}")
        return report

    def cancel(self, run_id: str, reason: str = "cancelled by operator") -> bool:
        """
        Run-wide cancellation.

        Returns:
            False if the run is unknown or already finished/cancelled
        """
        scheduler = self._active.get(run_id)
        if scheduler is None:
            return False
        return scheduler.cancel(reason)

    @property
    def active_runs(self) -> List[str]:
        return list(self._active)

    def get_report(self, run_id: str) -> Optional[RunReport]:
        return self._reports.get(run_id)

    def get_progress(self, run_id: str) -> Optional[Dict[str, Any]]:
        scheduler = self._active.get(run_id)
        return scheduler.get_progress() if scheduler else None

    def _mcp_calls(self, log: ExecutionLog) -> List[Dict[str, Any]]:
        if self.gateway is None:
            return []
        ids = {
            event.detail.get("request_id")
            for event in log.events
            if event.kind == EventKind.MCP_REQUEST
        }
        return [record.to_dict() for record in self.gateway.history if record.request_id in ids]

    def _remember(self, report: RunReport) -> None:
        self._reports[report.run_id] = report
        while len(self._reports) > MAX_KEPT_REPORTS:
            self._reports.popitem(last=False)
