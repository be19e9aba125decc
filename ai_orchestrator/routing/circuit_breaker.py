"""
AI Orchestrator - Circuit Breaker

Temporarily excludes a provider after repeated failures, independently of
whatever the selection strategy thinks of it.

States:
- CLOSED: Normal operation, provider may be selected
- OPEN: Provider excluded from availability

Transitions:
- CLOSED -> OPEN: consecutive failures reach failure_threshold
- OPEN -> CLOSED: lazily, on the first availability check after
  reset_timeout has elapsed since the last failure. There is no half-open
  probing; the normal health probe decides what happens next.
- any -> CLOSED: a recorded success resets everything
"""

import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Dict, Optional

from ..observability.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Provider excluded


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    enabled: bool = True

    # Consecutive failures that trip the breaker
    failure_threshold: int = 5

    # Time after the last failure before the breaker closes again
    reset_timeout_ms: float = 60000.0


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    Callers must go through CircuitBreakerRegistry or hold no other
    references; each breaker guards its own counters with a lock.
    """

    def __init__(
        self,
        provider_id: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.provider_id = provider_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.opened_count = 0

    @property
    def is_open(self) -> bool:
        """
        True while the provider must be skipped.

        Performs the lazy OPEN -> CLOSED transition once the reset timeout
        has elapsed.
        """
        if not self.config.enabled:
            return False

        with self._lock:
            if self.state == CircuitState.CLOSED:
                return False

            elapsed_ms = (self._clock() - (self.last_failure_time or 0.0)) * 1000
            if elapsed_ms >= self.config.reset_timeout_ms:
                self._reset()
                logger.info(
                    "Circuit breaker reset after timeout",
                    provider=self.provider_id,
                    elapsed_ms=round(elapsed_ms, 1),
                )
                return False

            return True

    def record_success(self):
        """A success fully closes the breaker."""
        with self._lock:
            self._reset()

    def record_failure(self, error: Optional[str] = None):
        """Record a failed attempt; may open the breaker."""
        if not self.config.enabled:
            return

        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if (
                self.state == CircuitState.CLOSED and
                self.failure_count >= self.config.failure_threshold
            ):
                self.state = CircuitState.OPEN
                self.opened_count += 1
                logger.warning(
                    "Circuit breaker opened",
                    provider=self.provider_id,
                    failure_count=self.failure_count,
                    last_error=error,
                )

    def _reset(self):
        """Close the breaker (must hold lock)."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None

    def get_status(self) -> Dict:
        """Get current circuit breaker status."""
        with self._lock:
            return {
                "provider": self.provider_id,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "last_failure_time": self.last_failure_time,
                "times_opened": self.opened_count,
            }

    def force_open(self):
        """Manually open the circuit (for testing or emergency)."""
        with self._lock:
            self.state = CircuitState.OPEN
            self.last_failure_time = self._clock()
            self.opened_count += 1

    def force_close(self):
        """Manually close the circuit."""
        with self._lock:
            self._reset()


class CircuitBreakerRegistry:
    """
    Circuit breakers for all providers of one dispatcher.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def get_breaker(self, provider_id: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a provider."""
        with self._lock:
            if provider_id not in self._breakers:
                self._breakers[provider_id] = CircuitBreaker(
                    provider_id, self.config, self._clock
                )
            return self._breakers[provider_id]

    def is_open(self, provider_id: str) -> bool:
        """Check if a provider is excluded by its breaker."""
        if not self.enabled:
            return False
        return self.get_breaker(provider_id).is_open

    def record_success(self, provider_id: str):
        self.get_breaker(provider_id).record_success()

    def record_failure(self, provider_id: str, error: Optional[str] = None):
        self.get_breaker(provider_id).record_failure(error)

    def remove(self, provider_id: str):
        """Drop breaker state for an unregistered provider."""
        with self._lock:
            self._breakers.pop(provider_id, None)

    def clear(self):
        with self._lock:
            self._breakers.clear()

    def get_all_status(self) -> Dict[str, Dict]:
        """Get status of all circuit breakers."""
        with self._lock:
            breakers = list(self._breakers.items())
        return {
            provider_id: breaker.get_status()
            for provider_id, breaker in breakers
        }
