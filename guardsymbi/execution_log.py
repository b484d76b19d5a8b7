"""
Execution Log - ordered record of every state transition in a run

Each event is also mirrored to the `guardsymbi.execution` Python logger and
handed synchronously to subscribers (e.g. RedisEventSink).
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class EventKind(str, Enum):
    """Kinds of execution events"""
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"
    RUN_CANCELLED = "run_cancelled"

    TASK_READY = "task_ready"
    TASK_RUNNING = "task_running"
    TASK_SUCCEEDED = "task_succeeded"
    TASK_FAILED = "task_failed"
    TASK_ABORTED = "task_aborted"

    STEP_ATTEMPT = "step_attempt"
    STEP_SUCCEEDED = "step_succeeded"
    STEP_FAULTED = "step_faulted"
    RECOVERY_DECISION = "recovery_decision"

    GUARD_PASSED = "guard_passed"
    GUARD_FAILED = "guard_failed"

    MCP_REQUEST = "mcp_request"
    MCP_RESPONSE = "mcp_response"
    MCP_FAILED = "mcp_failed"

    CONTEXT_BOUND = "context_bound"


_WARNING_KINDS = {
    EventKind.STEP_FAULTED,
    EventKind.GUARD_FAILED,
    EventKind.MCP_FAILED,
    EventKind.TASK_FAILED,
    EventKind.TASK_ABORTED,
    EventKind.RUN_CANCELLED,
}


@dataclass
class ExecutionEvent:
    """One entry of the execution log"""
    seq: int
    run_id: str
    kind: EventKind
    task: Optional[str] = None
    step: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "run_id": self.run_id,
            "task": self.task,
            "step": self.step,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "detail": self.detail,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


EventSubscriber = Callable[[ExecutionEvent], None]


class ExecutionLog:
    """
    Append-only event sequence for one run.

    Responsibilities:
    - assign monotonically increasing sequence numbers
    - mirror events to the Python logger
    - fan events out to subscribers
    """

    def __init__(self, run_id: str, subscribers: Optional[List[EventSubscriber]] = None):
        self.run_id = run_id
        self._events: List[ExecutionEvent] = []
        self._subscribers: List[EventSubscriber] = list(subscribers or [])
        self._lock = threading.Lock()
        self._logger = logging.getLogger("guardsymbi.execution")

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(
        self,
        kind: EventKind,
        task: Optional[str] = None,
        step: Optional[str] = None,
        **detail: Any
    ) -> ExecutionEvent:
        """
        Record an event.

        Args:
            kind: Event kind
            task: Task name, if the event belongs to a task
            step: Step name, if the event belongs to a step
            **detail: Extra event data

        Returns:
            The recorded ExecutionEvent
        """
        with self._lock:
            event = ExecutionEvent(
                seq=len(self._events) + 1,
                run_id=self.run_id,
                kind=kind,
                task=task,
                step=step,
                detail=detail,
            )
            self._events.append(event)

        level = logging.WARNING if kind in _WARNING_KINDS else logging.DEBUG
        where = "/".join(part for part in (task, step) if part)
        self._logger.log(level, f"[{self.run_id}] {kind.value} {where} {detail or ''}".rstrip())

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                self._logger.error(f"Event subscriber failed: {e}")

        return event

    @property
    def events(self) -> List[ExecutionEvent]:
        with self._lock:
            return list(self._events)

    def for_task(self, task: str) -> List[ExecutionEvent]:
        return [event for event in self.events if event.task == task]

    def count(self, kind: EventKind, task: Optional[str] = None) -> int:
        return sum(
            1 for event in self.events
            if event.kind == kind and (task is None or event.task == task)
        )

    def to_list(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events]
