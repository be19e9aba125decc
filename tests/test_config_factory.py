"""
AI Orchestrator - Configuration and Factory Tests

Verifies:
- Config validation errors surface as ConfigurationError
- Environment overrides
- Strategy options derived from provider configs
- create_orchestrator skipping disabled and broken providers
"""

import asyncio

import pytest

from ai_orchestrator.config import (
    OrchestratorConfig,
    ProviderConfig,
    StrategyConfig,
    is_valid_orchestrator_config,
)
from ai_orchestrator.core.errors import ConfigurationError
from ai_orchestrator.core.models import ChatMessage
from ai_orchestrator.factory import create_orchestrator, create_provider, create_strategy
from ai_orchestrator.routing.dispatcher import BackoffType
from ai_orchestrator.routing.strategies import (
    FallbackStrategy,
    PriorityStrategy,
    RoundRobinStrategy,
    StrategyType,
    WeightedStrategy,
)
from ai_orchestrator.testing import StubProvider


def stub_builder(config: ProviderConfig) -> StubProvider:
    return StubProvider(config.id, model=config.model or "stub-model")


def broken_builder(config: ProviderConfig) -> StubProvider:
    raise RuntimeError("missing credentials")


BUILDERS = {"stub": stub_builder, "broken": broken_builder}


# ============================================================
# Config validation
# ============================================================

class TestOrchestratorConfig:
    """Test config parsing."""

    def test_minimal_config(self):
        config = OrchestratorConfig.parse({"providers": [{"id": "a", "type": "stub"}]})

        assert config.strategy.type == StrategyType.ROUND_ROBIN
        assert config.request_timeout_ms == 30000
        assert config.max_retries is None
        assert config.enable_health_checks is False

    def test_no_providers(self):
        with pytest.raises(ConfigurationError) as exc_info:
            OrchestratorConfig.parse({"providers": []})

        errors = exc_info.value.error.details["errors"]
        assert errors[0]["loc"] == "providers"

    def test_duplicate_ids(self):
        with pytest.raises(ConfigurationError, match="Invalid orchestrator configuration"):
            OrchestratorConfig.parse({"providers": [
                {"id": "a", "type": "stub"},
                {"id": "a", "type": "stub"},
            ]})

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.parse({
                "providers": [{"id": "a", "type": "stub"}],
                "strategy": {"type": "random"},
            })

    def test_negative_weight(self):
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.parse({"providers": [{"id": "a", "type": "stub", "weight": -1}]})

    def test_strategy_aliases(self):
        assert StrategyConfig(type="round_robin").type == StrategyType.ROUND_ROBIN
        assert StrategyConfig(type="HealthAware").type == StrategyType.HEALTH_AWARE

    def test_inline_strategy_options(self):
        config = StrategyConfig.model_validate({
            "type": "weighted",
            "cost_aware": True,
            "options": {"weights": {"a": 2}},
        })
        assert config.all_options == {"cost_aware": True, "weights": {"a": 2}}

    def test_provider_extra_fields(self):
        provider = ProviderConfig(id="a", type=" OpenAI ", api_key="sk-1", organization="org-1")

        assert provider.type == "openai"
        assert provider.extra == {"organization": "org-1"}
        assert "sk-1" not in repr(provider)

    def test_is_valid(self):
        assert is_valid_orchestrator_config({"providers": [{"id": "a", "type": "stub"}]})
        assert not is_valid_orchestrator_config({"providers": []})
        assert not is_valid_orchestrator_config("nope")

    def test_to_dispatcher_config(self):
        config = OrchestratorConfig.parse({
            "providers": [{"id": "a", "type": "stub"}],
            "max_retries": 2,
            "retry_delay_ms": 10,
            "backoff": "exponential",
            "failure_threshold": 3,
            "default_options": {"temperature": 0},
        })

        runtime = config.to_dispatcher_config()
        assert runtime.retry.max_retries == 2
        assert runtime.retry.backoff == BackoffType.EXPONENTIAL
        assert runtime.circuit_breaker.failure_threshold == 3
        assert runtime.default_options == {"temperature": 0}


class TestEnvironmentConfig:
    """Test ORCHESTRATOR_* overrides."""

    PROVIDERS = [{"id": "a", "type": "stub"}]

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_STRATEGY", "priority")
        monkeypatch.setenv("ORCHESTRATOR_REQUEST_TIMEOUT_MS", "1500")
        monkeypatch.setenv("ORCHESTRATOR_MAX_RETRIES", "4")
        monkeypatch.setenv("ORCHESTRATOR_CIRCUIT_BREAKER_ENABLED", "false")
        monkeypatch.setenv("ORCHESTRATOR_HEALTH_CHECK_INTERVAL_MS", "30000")

        config = OrchestratorConfig.from_env(self.PROVIDERS)

        assert config.strategy.type == StrategyType.PRIORITY
        assert config.request_timeout_ms == 1500
        assert config.max_retries == 4
        assert config.circuit_breaker_enabled is False
        assert config.enable_health_checks is True
        assert config.health_check_interval_ms == 30000

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_MAX_RETRIES", "4")
        config = OrchestratorConfig.from_env(self.PROVIDERS, max_retries=1)
        assert config.max_retries == 1

    def test_bad_value(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_FAILURE_THRESHOLD", "lots")
        with pytest.raises(ConfigurationError, match="ORCHESTRATOR_FAILURE_THRESHOLD"):
            OrchestratorConfig.from_env(self.PROVIDERS)

    def test_bad_boolean(self, monkeypatch):
        monkeypatch.setenv("ORCHESTRATOR_CIRCUIT_BREAKER_ENABLED", "maybe")
        with pytest.raises(ConfigurationError):
            OrchestratorConfig.from_env(self.PROVIDERS)


# ============================================================
# Factory
# ============================================================

class TestCreateStrategy:
    """Test strategy construction from config."""

    PROVIDERS = [
        ProviderConfig(id="a", type="stub", priority=5, weight=1),
        ProviderConfig(id="b", type="stub", priority=1, weight=3),
        ProviderConfig(id="c", type="stub", enabled=False, priority=0),
    ]

    def test_priorities_from_providers(self):
        strategy = create_strategy({"type": "priority"}, self.PROVIDERS)

        assert isinstance(strategy, PriorityStrategy)
        assert strategy.get_priority("b") == 1
        assert strategy.get_priority("c") == 999

    def test_explicit_priorities_win(self):
        strategy = create_strategy({"type": "priority", "priorities": {"a": 0}}, self.PROVIDERS)
        assert strategy.get_priority("a") == 0
        assert strategy.get_priority("b") == 999

    def test_weights_from_providers(self):
        strategy = create_strategy({"type": "weighted"}, self.PROVIDERS)

        assert isinstance(strategy, WeightedStrategy)
        assert strategy.get_weight("b") == 3

    def test_fallback_order_from_providers(self):
        strategy = create_strategy({"type": "fallback"}, self.PROVIDERS)

        assert isinstance(strategy, FallbackStrategy)
        assert strategy.order == ["a", "b"]

    def test_round_robin(self):
        assert isinstance(create_strategy(StrategyConfig()), RoundRobinStrategy)

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            create_strategy({"type": "nope"})
        with pytest.raises(ConfigurationError):
            create_strategy({"type": "health-aware", "min_health_score": 2})


class TestCreateProvider:
    """Test provider construction."""

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unknown provider type") as exc_info:
            create_provider(ProviderConfig(id="a", type="mystery"), BUILDERS)
        assert exc_info.value.error.details["known_types"] == ["broken", "stub"]

    def test_disabled(self):
        with pytest.raises(ConfigurationError):
            create_provider(ProviderConfig(id="a", type="stub", enabled=False), BUILDERS)

    def test_id_mismatch(self):
        builders = {"stub": lambda config: StubProvider("other")}
        with pytest.raises(ConfigurationError, match="expected 'a'"):
            create_provider(ProviderConfig(id="a", type="stub"), builders)


class TestCreateOrchestrator:
    """Test full dispatcher construction."""

    def test_builds_dispatcher(self):
        dispatcher = create_orchestrator(
            {
                "providers": [
                    {"id": "a", "type": "stub"},
                    {"id": "b", "type": "stub", "enabled": False},
                    {"id": "c", "type": "broken"},
                ],
                "strategy": {"type": "fallback"},
            },
            BUILDERS,
        )
        try:
            assert [p.id for p in dispatcher.get_all_providers()] == ["a"]
            assert isinstance(dispatcher.strategy, FallbackStrategy)
        finally:
            dispatcher.dispose()

    def test_nothing_created(self):
        with pytest.raises(ConfigurationError, match="No providers could be created"):
            create_orchestrator(
                {"providers": [{"id": "c", "type": "broken"}]},
                BUILDERS,
            )

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            create_orchestrator({"providers": "a"}, BUILDERS)

    @pytest.mark.asyncio
    async def test_end_to_end_chat(self):
        config = OrchestratorConfig.parse({
            "providers": [{"id": "a", "type": "stub"}, {"id": "b", "type": "stub"}],
            "strategy": {"type": "priority"},
        })
        config.providers[1].priority = 1

        async with create_orchestrator(config, BUILDERS) as dispatcher:
            response = await dispatcher.chat([ChatMessage.user("hi")])

        assert response.content == "stub b: hi"

    @pytest.mark.asyncio
    async def test_starts_health_checks(self):
        dispatcher = create_orchestrator(
            {
                "providers": [{"id": "a", "type": "stub"}],
                "enable_health_checks": True,
                "health_check_interval_ms": 20,
            },
            BUILDERS,
        )
        try:
            assert dispatcher.health_checks_running is True
            await asyncio.sleep(0.1)
            assert dispatcher.get_provider("a").health_checks >= 1
        finally:
            dispatcher.dispose()
