"""
Circuit Breaker - fail fast while the assistance collaborator is down

Consecutive MCP failures open the circuit; while open, remediation calls
fail immediately with CircuitOpenError instead of waiting for a timeout.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Callable, Awaitable
from dataclasses import dataclass
from enum import Enum

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"        # normal operation
    OPEN = "open"            # blocked (failure threshold exceeded)
    HALF_OPEN = "half_open"  # probing


@dataclass
class CircuitStats:
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    total_calls: int = 0


@dataclass
class CircuitConfig:
    failure_threshold: int = 3      # consecutive failures before opening
    success_threshold: int = 2      # half-open successes needed to close
    timeout_seconds: float = 30     # how long the circuit stays open
    half_open_max_calls: int = 3    # trial calls allowed while half-open


class CircuitBreaker:
    """
    Circuit Breaker keyed by collaborator name.

    Responsibilities:
    - track call failures
    - block calls once the threshold is exceeded
    - allow trial calls after the open timeout
    """

    def __init__(self, config: Optional[CircuitConfig] = None):
        self._config = config or CircuitConfig()
        self._circuits: Dict[str, CircuitState] = {}
        self._stats: Dict[str, CircuitStats] = {}
        self._half_open_calls: Dict[str, int] = {}

    def get_state(self, key: str) -> CircuitState:
        if key not in self._circuits:
            self._circuits[key] = CircuitState.CLOSED
            self._stats.setdefault(key, CircuitStats())
        return self._circuits[key]

    def get_stats(self, key: str) -> CircuitStats:
        if key not in self._stats:
            self._stats[key] = CircuitStats()
        return self._stats[key]

    async def call(
        self,
        key: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Call `func` through the circuit.

        Raises:
            CircuitOpenError: When the circuit is OPEN, or HALF_OPEN with no trial calls left
        """
        state = self.get_state(key)
        stats = self.get_stats(key)

        if state == CircuitState.OPEN:
            if self._should_attempt_reset(key):
                self._transition_to_half_open(key)
                state = CircuitState.HALF_OPEN
            else:
                raise CircuitOpenError(key)

        if state == CircuitState.HALF_OPEN:
            if self._half_open_calls.get(key, 0) >= self._config.half_open_max_calls:
                raise CircuitOpenError(key)
            self._half_open_calls[key] = self._half_open_calls.get(key, 0) + 1

        stats.total_calls += 1
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure(key)
            raise
        self.record_success(key)
        return result

    def _should_attempt_reset(self, key: str) -> bool:
        stats = self._stats.get(key)
        if not stats or not stats.last_failure_time:
            return True

        timeout = timedelta(seconds=self._config.timeout_seconds)
        return datetime.now() - stats.last_failure_time > timeout

    def _transition_to_half_open(self, key: str) -> None:
        self._circuits[key] = CircuitState.HALF_OPEN
        self._half_open_calls[key] = 0
        self._stats[key].success_count = 0
        logger.info(f"[CircuitBreaker] {key}: OPEN -> HALF_OPEN")

    def record_success(self, key: str) -> None:
        stats = self.get_stats(key)
        stats.success_count += 1
        stats.last_success_time = datetime.now()

        state = self.get_state(key)
        if state == CircuitState.CLOSED:
            stats.failure_count = 0
        elif state == CircuitState.HALF_OPEN:
            if stats.success_count >= self._config.success_threshold:
                self._circuits[key] = CircuitState.CLOSED
                stats.failure_count = 0
                self._half_open_calls[key] = 0
                logger.info(f"[CircuitBreaker] {key}: HALF_OPEN -> CLOSED (recovered)")

    def record_failure(self, key: str) -> None:
        """Count a failure; also used by callers for timeouts they enforce themselves."""
        stats = self.get_stats(key)
        stats.failure_count += 1
        stats.last_failure_time = datetime.now()
        stats.success_count = 0

        state = self.get_state(key)
        if state == CircuitState.CLOSED:
            if stats.failure_count >= self._config.failure_threshold:
                self._circuits[key] = CircuitState.OPEN
                logger.warning(
                    f"[CircuitBreaker] {key}: CLOSED -> OPEN (failures: {stats.failure_count})"
                )
        elif state == CircuitState.HALF_OPEN:
            self._circuits[key] = CircuitState.OPEN
            self._half_open_calls[key] = 0
            logger.warning(f"[CircuitBreaker] {key}: HALF_OPEN -> OPEN (failed during trial call)")

    def reset(self, key: str) -> None:
        self._circuits[key] = CircuitState.CLOSED
        self._stats[key] = CircuitStats()
        self._half_open_calls.pop(key, None)
        logger.info(f"[CircuitBreaker] {key}: reset to CLOSED")

    def get_summary(self) -> Dict[str, Any]:
        return {
            key: {
                "state": state.value,
                "stats": {
                    "failure_count": self.get_stats(key).failure_count,
                    "success_count": self.get_stats(key).success_count,
                    "total_calls": self.get_stats(key).total_calls,
                }
            }
            for key, state in self._circuits.items()
        }
