"""
AI Orchestrator - Health Probing

Runs provider health probes under a deadline and tracks consecutive probe
failures per provider.

A provider is skipped without probing once its consecutive failure count
reaches max_consecutive_failures. The exclusion lifts when
recovery_timeout_ms has passed since the last failed probe, or earlier if a
background health check sees the provider healthy again.
"""

import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Callable, Dict, Optional

from ..core.errors import ProviderTimeoutError
from ..core.models import ProviderHealth
from ..core.timeouts import run_with_timeout
from ..observability.logging import get_logger
from ..observability.tracing import trace_provider_call

logger = get_logger(__name__)


@dataclass
class HealthCheckConfig:
    """Configuration for health probing."""
    # Deadline for a single probe
    timeout_ms: float = 5000.0

    # Consecutive probe failures before a provider is skipped
    max_consecutive_failures: int = 3

    # Healthy probes reporting more latency than this are not available
    latency_threshold_ms: float = 10000.0

    # Time after the last failed probe before a skipped provider is probed again
    recovery_timeout_ms: float = 60000.0


class HealthMonitor:
    """
    Probe runner and consecutive-failure bookkeeping for one dispatcher.
    """

    def __init__(
        self,
        config: Optional[HealthCheckConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or HealthCheckConfig()
        self._clock = clock
        self._lock = Lock()
        self._failures: Dict[str, int] = {}
        self._last_failure: Dict[str, float] = {}

    async def probe(self, provider) -> ProviderHealth:
        """
        Run one health probe. Never raises.

        Timeouts and exceptions become an unhealthy result. When the
        provider does not report latency, the measured round trip is used.
        """
        start = time.perf_counter()
        try:
            with trace_provider_call(provider.id, provider.metadata.model, "health_check"):
                health = await run_with_timeout(
                    provider.check_health(),
                    self.config.timeout_ms,
                    provider.id,
                    "health_check",
                )
        except ProviderTimeoutError as e:
            logger.debug("Health probe timed out", provider=provider.id, timeout_ms=e.timeout_ms)
            return ProviderHealth(healthy=False, error=str(e))
        except Exception as e:
            logger.debug("Health probe raised", provider=provider.id, error=str(e))
            return ProviderHealth(healthy=False, error=str(e))

        if health.latency is None:
            health = replace(health, latency=(time.perf_counter() - start) * 1000)
        return health

    def evaluate(self, provider_id: str, health: ProviderHealth) -> bool:
        """
        Update counters from a probe result.

        Returns True if the provider counts as available.
        """
        if not health.healthy:
            self.record_failure(provider_id)
            return False

        self.record_success(provider_id)

        if health.latency is not None and health.latency > self.config.latency_threshold_ms:
            logger.debug(
                "Provider over latency threshold",
                provider=provider_id,
                latency_ms=round(health.latency, 1),
                threshold_ms=self.config.latency_threshold_ms,
            )
            return False

        return True

    def should_skip(self, provider_id: str) -> bool:
        """True if the provider has failed too many probes recently."""
        with self._lock:
            failures = self._failures.get(provider_id, 0)
            if failures < self.config.max_consecutive_failures:
                return False

            elapsed_ms = (self._clock() - self._last_failure.get(provider_id, 0.0)) * 1000
            return elapsed_ms < self.config.recovery_timeout_ms

    def record_failure(self, provider_id: str):
        with self._lock:
            self._failures[provider_id] = self._failures.get(provider_id, 0) + 1
            self._last_failure[provider_id] = self._clock()

    def record_success(self, provider_id: str):
        with self._lock:
            self._failures[provider_id] = 0
            self._last_failure.pop(provider_id, None)

    def consecutive_failures(self, provider_id: str) -> int:
        with self._lock:
            return self._failures.get(provider_id, 0)

    def remove(self, provider_id: str):
        with self._lock:
            self._failures.pop(provider_id, None)
            self._last_failure.pop(provider_id, None)

    def clear(self):
        with self._lock:
            self._failures.clear()
            self._last_failure.clear()

    def get_status(self) -> Dict[str, int]:
        """Consecutive probe failures per provider."""
        with self._lock:
            return dict(self._failures)
