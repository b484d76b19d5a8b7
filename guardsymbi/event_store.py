"""
Event Store - persists execution events to Redis

Events are written to a per-run stream (`run:{run_id}:events`) for replay
and to the global `events:timeline` sorted set scored by milliseconds.
The execution log hands events over synchronously; a background pump
writes them so a slow Redis never stalls the run.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .execution_log import ExecutionEvent, ExecutionLog

logger = logging.getLogger(__name__)

TIMELINE_KEY = "events:timeline"
STREAM_TTL_SECONDS = 86400 * 7


def stream_key(run_id: str) -> str:
    return f"run:{run_id}:events"


class RedisEventSink:
    """
    Execution-log subscriber backed by redis-py's asyncio client.

    Example:
        sink = RedisEventSink("redis://localhost:6379/0")
        await sink.connect()
        sink.attach(log)
        ...
        await sink.flush()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        max_queue: int = 10000,
    ):
        """
        Args:
            url: Redis URL (ignored when a client is given)
            client: Pre-built client, e.g. a mock in tests
            max_queue: Events buffered before new ones are dropped
        """
        self.url = url or "redis://localhost:6379/0"
        self.client = client
        self._queue: "asyncio.Queue[ExecutionEvent]" = asyncio.Queue(maxsize=max_queue)
        self._pump_task: Optional[asyncio.Task] = None
        self.dropped = 0

    async def connect(self) -> None:
        if self.client is None:
            self.client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)
        await self.client.ping()
        logger.info(f"[EventStore] Connected to {self.url}")

    async def disconnect(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            logger.info("[EventStore] Disconnected")

    async def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.ping()
            return True
        except RedisError:
            return False

    def attach(self, log: ExecutionLog) -> None:
        """Subscribe to a run's execution log; must be called from the event loop."""
        log.subscribe(self._enqueue)
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    def detach(self, log: ExecutionLog) -> None:
        log.unsubscribe(self._enqueue)

    def _enqueue(self, event: ExecutionEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"[EventStore] Queue full, dropped event {event.run_id}#{event.seq}")

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.store(event)
            except RedisError as e:
                logger.error(f"[EventStore] Failed to store event {event.run_id}#{event.seq}: {e}")
            finally:
                self._queue.task_done()

    async def store(self, event: ExecutionEvent) -> str:
        """
        Write one event to the run stream and the global timeline.

        Returns:
            The Redis stream entry id
        """
        data = event.to_dict()
        await self.client.zadd(TIMELINE_KEY, {event.to_json(): time.time() * 1000})

        fields = {}
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                fields[key] = json.dumps(value, default=str)
            else:
                fields[key] = "" if value is None else str(value)

        key = stream_key(event.run_id)
        entry_id = await self.client.xadd(key, fields)
        await self.client.expire(key, STREAM_TTL_SECONDS)
        return entry_id

    async def get_run_events(self, run_id: str, since_id: str = "-") -> List[Dict[str, Any]]:
        """Replay a run's events from its stream."""
        entries = await self.client.xrange(stream_key(run_id), since_id, "+")
        result = []
        for entry_id, fields in entries:
            parsed: Dict[str, Any] = {"id": entry_id}
            for key, value in fields.items():
                if key == "detail":
                    parsed[key] = json.loads(value) if value else {}
                else:
                    parsed[key] = value
            result.append(parsed)
        return result

    async def flush(self) -> None:
        """Wait until every queued event has been written (or failed)."""
        if self._pump_task is not None and not self._pump_task.done():
            await self._queue.join()

    async def close(self) -> None:
        await self.flush()
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        await self.disconnect()
