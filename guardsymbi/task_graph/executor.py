"""
Task Scheduler for executing task graphs.
Handles parallel dispatch, dependency gating, failure propagation and cancellation.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from ..config import EngineConfig
from ..errors import AbortedDependency, GuardSymbiError, RunCancelled
from ..execution_log import EventKind, ExecutionLog
from ..models import TaskState
from ..report import FailureInfo
from ..runtime.task_runner import TaskOutcome, TaskRunner
from .dag import DependencyGraph, TaskNode

logger = logging.getLogger(__name__)

_ALLOWED = {
    TaskState.PENDING: {TaskState.READY, TaskState.ABORTED},
    TaskState.READY: {TaskState.RUNNING, TaskState.ABORTED},
    TaskState.RUNNING: {TaskState.SUCCEEDED, TaskState.FAILED, TaskState.ABORTED},
}

_STATE_EVENTS = {
    TaskState.READY: EventKind.TASK_READY,
    TaskState.RUNNING: EventKind.TASK_RUNNING,
    TaskState.SUCCEEDED: EventKind.TASK_SUCCEEDED,
    TaskState.FAILED: EventKind.TASK_FAILED,
    TaskState.ABORTED: EventKind.TASK_ABORTED,
}


class TaskScheduler:
    """
    Drives the entry task's dependency closure to terminal states.

    Ready-queue worklist: a task is dispatched once every dependency is
    terminal and none of them ended Failed/Aborted (unless it failed with
    `continue`, in which case the dependent runs degraded). Independent
    tasks run concurrently, bounded by `max_parallel`.

    Example:
        scheduler = TaskScheduler(graph, runner, log, gateway=gateway)
        outcomes = await scheduler.execute("report")
    """

    def __init__(
        self,
        graph: DependencyGraph,
        runner: TaskRunner,
        log: ExecutionLog,
        gateway=None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Args:
            graph: Validated dependency graph
            runner: Executes a single task
            log: The run's execution log
            gateway: The run's MCP gateway (may be None)
            config: Engine configuration
        """
        self.graph = graph
        self.runner = runner
        self.log = log
        self.gateway = gateway
        self.config = config or runner.config

        self._semaphore = asyncio.Semaphore(self.config.max_parallel)
        self._states: Dict[str, TaskState] = {}
        self._outcomes: Dict[str, TaskOutcome] = {}
        self._active: Dict[asyncio.Task, str] = {}
        self._cancelled: Optional[RunCancelled] = None
        self._start_time: Optional[float] = None

    @property
    def run_id(self) -> str:
        return self.log.run_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled is not None

    def state_of(self, name: str) -> Optional[TaskState]:
        return self._states.get(name)

    async def execute(self, entry: str) -> Dict[str, TaskOutcome]:
        """
        Run `entry` and its transitive dependencies.

        Returns:
            Task name -> TaskOutcome for every task of the closure, in topological order

        Raises:
            EntryTaskMissing: If `entry` is not in the graph
        """
        closure = self.graph.closure(entry)
        self._start_time = time.time()
        logger.info(f"[{self.run_id}] Executing '{entry}' ({len(closure)} task(s))")

        remaining: Dict[str, int] = {}
        ready: Deque[str] = deque()
        for name in closure:
            self._states[name] = TaskState.PENDING
            remaining[name] = len(set(self.graph.get_node(name).dependencies))
        for name in closure:
            if remaining[name] == 0:
                self._make_ready(name, ready)

        try:
            while (ready or self._active) and not self.cancelled:
                while ready and not self.cancelled:
                    name = ready.popleft()
                    task = asyncio.create_task(self._run_node(name), name=f"{self.run_id}:{name}")
                    self._active[task] = name

                if not self._active:
                    break

                done, _ = await asyncio.wait(list(self._active), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    name = self._active.pop(task)
                    if task.cancelled():
                        self._abort(name, self._cancelled or RunCancelled(self.run_id))
                        continue
                    self._finish(name, task.result())
                    self._release_dependents(name, remaining, ready)

        except asyncio.CancelledError:
            self.cancel("cancelled by caller")
            await self._drain()
            self._abort_remaining()
            raise

        if self.cancelled:
            await self._drain()
            self._abort_remaining()

        elapsed = time.time() - self._start_time
        counts = self._counts()
        logger.info(
            f"[{self.run_id}] Execution complete in {elapsed:.2f}s: "
            + ", ".join(f"{state}={count}" for state, count in counts.items())
        )
        return {name: self._outcomes[name] for name in closure}

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Run-wide cancellation: cancel every in-flight task (and with it any
        outstanding step or MCP call) and abort everything not yet terminal.

        Returns:
            False if the run was already cancelled
        """
        if self._cancelled is not None:
            return False
        self._cancelled = RunCancelled(self.run_id, reason)
        logger.warning(f"[{self.run_id}] Cancelling run: {reason} ({len(self._active)} task(s) in flight)")
        for task in self._active:
            task.cancel()
        return True

    def get_progress(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "states": {name: state.value for name, state in self._states.items()},
            "active": sorted(self._active.values()),
            "cancelled": self.cancelled,
            "elapsed_seconds": round(time.time() - self._start_time, 2) if self._start_time else 0,
        }

    async def _run_node(self, name: str) -> TaskOutcome:
        node = self.graph.get_node(name)
        async with self._semaphore:
            self._transition(name, TaskState.RUNNING)
            inputs, degraded, missing = self._collect_inputs(node)
            try:
                return await self.runner.run(
                    node, inputs, self.log,
                    gateway=self.gateway, degraded=degraded, missing_inputs=missing,
                )
            except Exception as e:
                # Contained at the task boundary
                logger.exception(f"[{self.run_id}] Task '{name}' crashed: {e}")
                return TaskOutcome(
                    name=name,
                    state=TaskState.FAILED,
                    failure=FailureInfo(kind="RuntimeError", message=str(e) or type(e).__name__),
                    degraded=degraded,
                )

    def _collect_inputs(self, node: TaskNode):
        inputs: Dict[str, Any] = {}
        missing: List[str] = []
        for dep in node.dependencies:
            outcome = self._outcomes[dep]
            if outcome.state == TaskState.SUCCEEDED:
                inputs[dep] = outcome.output
            else:
                inputs[dep] = None
                missing.extend(ref.name for ref in node.decl.inputs if ref.task == dep)
        return inputs, bool(missing), missing

    def _make_ready(self, name: str, ready: Deque[str]) -> None:
        node = self.graph.get_node(name)
        degraded = any(self._states[dep] != TaskState.SUCCEEDED for dep in node.dependencies)
        self._transition(name, TaskState.READY, degraded=degraded)
        ready.append(name)

    def _finish(self, name: str, outcome: TaskOutcome) -> None:
        self._outcomes[name] = outcome
        detail: Dict[str, Any] = {"attempts": outcome.attempts}
        if outcome.failure is not None:
            detail.update(failure_kind=outcome.failure.kind, message=outcome.failure.message)
        if outcome.continue_dependents:
            detail["continue"] = True
        self._transition(name, outcome.state, **detail)

    def _release_dependents(self, finished: str, remaining: Dict[str, int], ready: Deque[str]) -> None:
        """Worklist: wake dependents whose dependencies are now all terminal."""
        worklist = [finished]
        while worklist:
            name = worklist.pop(0)
            for dependent in self.graph.get_node(name).dependents:
                if dependent not in remaining:
                    continue
                remaining[dependent] -= 1
                if remaining[dependent] > 0:
                    continue

                blocker = self._blocking_dependency(dependent)
                if blocker is None:
                    self._make_ready(dependent, ready)
                else:
                    error = AbortedDependency(dependent, blocker, self._states[blocker].value)
                    self._abort(dependent, error)
                    worklist.append(dependent)

    def _blocking_dependency(self, name: str) -> Optional[str]:
        for dep in self.graph.get_node(name).dependencies:
            state = self._states[dep]
            if state == TaskState.SUCCEEDED:
                continue
            if state == TaskState.FAILED and self._outcomes[dep].continue_dependents:
                continue
            return dep
        return None

    def _abort(self, name: str, error: GuardSymbiError) -> None:
        outcome = self._outcomes.get(name) or TaskOutcome(name=name, state=TaskState.ABORTED)
        outcome.state = TaskState.ABORTED
        outcome.failure = FailureInfo.from_error(error)
        self._outcomes[name] = outcome
        self._transition(name, TaskState.ABORTED, failure_kind=outcome.failure.kind, message=error.message)

    def _abort_remaining(self) -> None:
        error = self._cancelled or RunCancelled(self.run_id)
        for name, state in list(self._states.items()):
            if not state.is_terminal:
                self._abort(name, error)

    async def _drain(self) -> None:
        """Wait for cancelled tasks to unwind."""
        if not self._active:
            return
        tasks = list(self._active)
        await asyncio.gather(*tasks, return_exceptions=True)
        for task in tasks:
            name = self._active.pop(task)
            if task.cancelled():
                self._abort(name, self._cancelled)
            else:
                self._finish(name, task.result())

    def _transition(self, name: str, new_state: TaskState, **detail: Any) -> None:
        """The only place a task's state changes; one event per transition."""
        current = self._states[name]
        if new_state not in _ALLOWED.get(current, set()):
            raise RuntimeError(f"Illegal transition for task '{name}': {current.value} -> {new_state.value}")
        self._states[name] = new_state
        self.log.emit(_STATE_EVENTS[new_state], name, **detail)

    def _counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for state in self._states.values():
            counts[state.value] = counts.get(state.value, 0) + 1
        return counts

