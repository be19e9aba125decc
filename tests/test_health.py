"""
AI Orchestrator - Health Probing Tests

Verifies:
- Probes never raise
- Consecutive-failure exclusion and recovery timeout
- Latency threshold
"""

from unittest.mock import AsyncMock

import pytest

from ai_orchestrator.core.models import ProviderHealth
from ai_orchestrator.routing.health import HealthCheckConfig, HealthMonitor
from ai_orchestrator.testing import StubProvider


@pytest.fixture
def monitor(clock):
    config = HealthCheckConfig(
        timeout_ms=50,
        max_consecutive_failures=2,
        latency_threshold_ms=1000,
        recovery_timeout_ms=5000,
    )
    return HealthMonitor(config, clock)


class TestProbe:
    """Test probe outcomes."""

    @pytest.mark.asyncio
    async def test_healthy(self, monitor):
        health = await monitor.probe(StubProvider("a", health_latency_ms=12))
        assert health.healthy is True
        assert health.latency == 12

    @pytest.mark.asyncio
    async def test_exception_becomes_unhealthy(self, monitor):
        health = await monitor.probe(StubProvider("a", health_error=ConnectionError("refused")))
        assert health.healthy is False
        assert "refused" in health.error

    @pytest.mark.asyncio
    async def test_timeout_becomes_unhealthy(self, monitor):
        health = await monitor.probe(StubProvider("a", health_delay_s=1.0))
        assert health.healthy is False
        assert "50ms" in health.error

    @pytest.mark.asyncio
    async def test_measured_latency_when_missing(self, monitor):
        health = await monitor.probe(StubProvider("a", health_latency_ms=None))
        assert health.latency is not None
        assert health.latency >= 0

    @pytest.mark.asyncio
    async def test_reported_health_left_untouched(self, monitor):
        shared = ProviderHealth(healthy=True)
        provider = StubProvider("a")
        provider.check_health = AsyncMock(return_value=shared)

        health = await monitor.probe(provider)

        assert health.latency is not None
        assert shared.latency is None


class TestExclusion:
    """Test consecutive-failure bookkeeping."""

    def test_skip_after_max_failures(self, monitor):
        unhealthy = ProviderHealth(healthy=False, error="down")

        assert monitor.evaluate("a", unhealthy) is False
        assert monitor.should_skip("a") is False

        monitor.evaluate("a", unhealthy)
        assert monitor.should_skip("a") is True
        assert monitor.consecutive_failures("a") == 2

    def test_recovery_timeout(self, monitor, clock):
        monitor.record_failure("a")
        monitor.record_failure("a")

        clock.advance_ms(4000)
        assert monitor.should_skip("a") is True

        clock.advance_ms(1000)
        assert monitor.should_skip("a") is False

    def test_success_resets(self, monitor):
        monitor.record_failure("a")
        monitor.record_failure("a")
        monitor.evaluate("a", ProviderHealth(healthy=True, latency=5))

        assert monitor.should_skip("a") is False
        assert monitor.consecutive_failures("a") == 0

    def test_latency_over_threshold(self, monitor):
        slow = ProviderHealth(healthy=True, latency=1500)

        assert monitor.evaluate("a", slow) is False
        # slow is not a failure
        assert monitor.consecutive_failures("a") == 0

    def test_remove(self, monitor):
        monitor.record_failure("a")
        monitor.remove("a")
        assert monitor.get_status() == {}
