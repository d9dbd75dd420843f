"""
Circuit Breaker Pattern Implementation

Protects Graph API lookups and the reply-pipeline hand-off so a slow or
failing upstream never stalls webhook acknowledgement.
"""
import asyncio
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar, ParamSpec
from dataclasses import dataclass

from inbox.core.logging import get_logger
from inbox.core.exceptions import CircuitBreakerOpenError

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3


@dataclass
class CircuitBreakerState:
    """State tracking for circuit breaker"""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0
    half_open_calls: int = 0


class CircuitBreaker:
    """
    Circuit breaker for external service protection.

    States:
    - CLOSED: Normal operation, tracking failures
    - OPEN: Service is failing, block all requests
    - HALF_OPEN: Testing if service recovered
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitBreakerState()
        # threading.Lock ולא asyncio.Lock: Celery יוצר event loop חדש בכל task
        self._lock = threading.Lock()

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create circuit breaker instance for a service"""
        if service_name not in cls._instances:
            with cls._instances_lock:
                if service_name not in cls._instances:
                    cls._instances[service_name] = cls(service_name, config)
        return cls._instances[service_name]

    @classmethod
    def all_instances(cls) -> list["CircuitBreaker"]:
        with cls._instances_lock:
            return list(cls._instances.values())

    @classmethod
    def reset_all(cls) -> None:
        """Reset all circuit breakers (for testing)"""
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_closed(self) -> bool:
        return self._state.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state.state == CircuitState.HALF_OPEN

    def snapshot(self) -> dict[str, Any]:
        """מצב נוכחי לתצוגה ב-admin debug"""
        with self._lock:
            return {
                "service": self.service_name,
                "state": self._state.state.value,
                "failure_count": self._state.failure_count,
                "success_count": self._state.success_count,
                "half_open_calls": self._state.half_open_calls,
                "retry_after_seconds": round(self._retry_after_unlocked(), 1),
            }

    def _should_attempt_reset(self) -> bool:
        if self._state.state != CircuitState.OPEN:
            return False
        return time.time() - self._state.last_failure_time >= self.config.timeout_seconds

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state (caller holds the lock)"""
        old_state = self._state.state
        self._state.state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._state.half_open_calls = 0
            self._state.success_count = 0

        if new_state == CircuitState.CLOSED:
            self._state.failure_count = 0
            self._state.success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value
            }
        )

    def record_success(self) -> None:
        with self._lock:
            if self._state.state == CircuitState.HALF_OPEN:
                self._state.success_count += 1
                if self._state.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state.state == CircuitState.CLOSED:
                self._state.failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._state.failure_count += 1
            self._state.last_failure_time = time.time()

            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._state.failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None
                }
            )

            if self._state.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state.failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def can_execute(self) -> bool:
        """Check if a request can be executed"""
        with self._lock:
            if self._state.state == CircuitState.CLOSED:
                return True

            if self._state.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._state.half_open_calls += 1
                    return True
                return False

            if self._state.half_open_calls < self.config.half_open_max_calls:
                self._state.half_open_calls += 1
                return True
            return False

    def _retry_after_unlocked(self) -> float:
        if self._state.state != CircuitState.OPEN:
            return 0.0
        remaining = self.config.timeout_seconds - (time.time() - self._state.last_failure_time)
        return max(0.0, remaining)

    def get_retry_after(self) -> float:
        """Get seconds until circuit might close"""
        with self._lock:
            return self._retry_after_unlocked()

    async def execute(
        self,
        func: Callable[P, Awaitable[T]] | Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Execute a function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


def get_graph_api_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for Instagram / Facebook Graph API lookups"""
    return CircuitBreaker.get_instance(
        "graph_api",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=60.0
        )
    )


def get_reply_pipeline_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the downstream reply pipeline"""
    return CircuitBreaker.get_instance(
        "reply_pipeline",
        CircuitBreakerConfig(
            failure_threshold=3,
            success_threshold=1,
            timeout_seconds=30.0
        )
    )
