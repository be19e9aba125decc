"""
AI Orchestrator - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Manual clock for breaker / probe recovery tests
- Stub providers and dispatcher factories for unit tests
"""

import os
import logging
from typing import Optional

import pytest
from prometheus_client import CollectorRegistry

from ai_orchestrator.routing.circuit_breaker import CircuitBreakerConfig
from ai_orchestrator.routing.dispatcher import Dispatcher, DispatcherConfig, RetryConfig
from ai_orchestrator.routing.health import HealthCheckConfig
from ai_orchestrator.routing.strategies import RoundRobinStrategy
from ai_orchestrator.testing import StubProvider


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Clock
# ============================================================

class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float):
        self.now += ms / 1000


@pytest.fixture
def clock():
    return ManualClock()


# ============================================================
# Providers and dispatchers
# ============================================================

@pytest.fixture
def stub():
    """
    Factory for stub providers.

    Usage:
        def test_something(stub):
            a = stub("a", fail_times=1)
    """
    def _make(provider_id: str, **kwargs) -> StubProvider:
        return StubProvider(provider_id, **kwargs)
    return _make


@pytest.fixture
def fresh_registry():
    """A Prometheus registry per test; metric names can be re-registered."""
    return CollectorRegistry()


@pytest.fixture
def make_dispatcher(clock):
    """
    Factory for dispatchers with test-friendly defaults: no retry delay,
    manual clock, round-robin unless a strategy is given.
    """
    created = []

    def _make(
        *providers,
        strategy=None,
        max_retries: Optional[int] = None,
        failure_threshold: int = 5,
        reset_timeout_ms: float = 60000,
        breaker_enabled: bool = True,
        request_timeout_ms: float = 1000,
        health_timeout_ms: float = 500,
        max_consecutive_failures: int = 3,
        latency_threshold_ms: float = 10000,
        recovery_timeout_ms: float = 60000,
        default_options=None,
        **kwargs,
    ) -> Dispatcher:
        config = DispatcherConfig(
            request_timeout_ms=request_timeout_ms,
            retry=RetryConfig(max_retries=max_retries, delay_ms=0),
            circuit_breaker=CircuitBreakerConfig(
                enabled=breaker_enabled,
                failure_threshold=failure_threshold,
                reset_timeout_ms=reset_timeout_ms,
            ),
            health_check=HealthCheckConfig(
                timeout_ms=health_timeout_ms,
                max_consecutive_failures=max_consecutive_failures,
                latency_threshold_ms=latency_threshold_ms,
                recovery_timeout_ms=recovery_timeout_ms,
            ),
            default_options=default_options or {},
        )
        dispatcher = Dispatcher(strategy or RoundRobinStrategy(), config=config, clock=clock, **kwargs)
        for provider in providers:
            dispatcher.register_provider(provider)
        created.append(dispatcher)
        return dispatcher

    yield _make

    for dispatcher in created:
        dispatcher.dispose()


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield
