"""
Circuit breaker guarding calls to upstream systems such as the shop API.

A breaker counts consecutive upstream failures. Once ``failure_threshold``
is reached it opens and rejects calls with ``CircuitBreakerOpenError``
until ``recovery_timeout`` has passed; the next call then probes the
upstream (half-open) and closes the breaker on success.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.errors import DashboardException
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(DashboardException):
    """Upstream calls are suspended."""

    status_code = 503

    def __init__(self, name: str, retry_in: float):
        super().__init__(
            "CIRCUIT_OPEN",
            f"{name} is temporarily unavailable",
            {"circuit": name, "retry_in_seconds": round(retry_in, 1)}
        )


def _always_failure(exc: Exception) -> bool:
    return True


class CircuitBreaker:
    """Consecutive-failure circuit breaker for async calls.

    ``counts_as_failure`` decides whether an exception reflects upstream
    health; exceptions it rejects propagate without touching the counters.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 name: str = "default",
                 counts_as_failure: Optional[Callable[[Exception], bool]] = None):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.counts_as_failure = counts_as_failure or _always_failure
        self.logger = get_logger(f"circuit_breaker.{name}")
        self.reset()

    def reset(self):
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._total_calls = 0
        self._total_failures = 0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _retry_in(self) -> float:
        return max(0.0, self._opened_at + self.recovery_timeout - time.time())

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open."""
        if self._state == CircuitBreakerState.OPEN:
            if self._retry_in() > 0:
                raise CircuitBreakerOpenError(self.name, self._retry_in())
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Probing upstream", circuit=self.name)

        self._total_calls += 1
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            if self.counts_as_failure(exc):
                self._on_failure(exc)
            raise

        self._on_success()
        return result

    def _on_success(self):
        if self._state == CircuitBreakerState.HALF_OPEN:
            self.logger.info("Upstream recovered, circuit closed", circuit=self.name)
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0

    def _on_failure(self, exc: Exception):
        self._consecutive_failures += 1
        self._total_failures += 1

        # A failed probe reopens immediately
        if self._state == CircuitBreakerState.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = time.time()
            self.logger.warning(
                "Circuit opened",
                circuit=self.name,
                consecutive_failures=self._consecutive_failures,
                threshold=self.failure_threshold,
                error=str(exc)
            )

    def is_open(self) -> bool:
        return self._state == CircuitBreakerState.OPEN

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "retry_in_seconds": round(self._retry_in(), 1) if self.is_open() else 0.0
        }


class CircuitBreakerManager:
    """Registry of named breakers, one per upstream."""

    def __init__(self):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}

    def get_circuit_breaker(self, name: str, **kwargs) -> CircuitBreaker:
        """Get the breaker registered under ``name``, creating it on first use."""
        if name not in self.circuit_breakers:
            self.circuit_breakers[name] = CircuitBreaker(name=name, **kwargs)
        return self.circuit_breakers[name]

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self.circuit_breakers.items()}


circuit_breaker_manager = CircuitBreakerManager()


def get_circuit_breaker(name: str, **kwargs) -> CircuitBreaker:
    return circuit_breaker_manager.get_circuit_breaker(name, **kwargs)
