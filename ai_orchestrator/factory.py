"""
AI Orchestrator - Factory

Builds a Dispatcher from an OrchestratorConfig.

Vendor adapters live outside this package, so providers are built by
caller-supplied builders keyed by provider type:

    def build_openai(config: ProviderConfig) -> AIService:
        return OpenAIAdapter(config.id, api_key=config.api_key, model=config.model)

    dispatcher = create_orchestrator(
        {"providers": [{"id": "main", "type": "openai", "api_key": "..."}],
         "strategy": {"type": "fallback"}},
        provider_builders={"openai": build_openai},
    )
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from prometheus_client import CollectorRegistry

from .config import OrchestratorConfig, ProviderConfig, StrategyConfig
from .core.errors import ConfigurationError, StrategyError
from .core.interfaces import AIService, SelectionStrategy
from .observability.logging import get_logger
from .observability.metrics import MetricsCollector
from .routing.dispatcher import Dispatcher
from .routing.strategies import StrategyType
from .routing.strategies import create_strategy as build_strategy

logger = get_logger(__name__)

ProviderBuilder = Callable[[ProviderConfig], AIService]

MIN_RECOMMENDED_HEALTH_INTERVAL_MS = 1000


def create_strategy(
    config: Union[StrategyConfig, Mapping[str, Any]],
    providers: Optional[List[ProviderConfig]] = None,
) -> SelectionStrategy:
    """
    Build a strategy from its config.

    Options missing from the strategy config are derived from the provider
    configs: priorities from ProviderConfig.priority, weights from
    ProviderConfig.weight and the fallback order from provider order.
    """
    if not isinstance(config, StrategyConfig):
        try:
            config = StrategyConfig.model_validate(dict(config))
        except ValueError as e:
            raise ConfigurationError(f"Invalid strategy configuration: {e}") from e

    options = config.all_options
    enabled = [p for p in (providers or []) if p.enabled]

    if config.type == StrategyType.PRIORITY and "priorities" not in options:
        options["priorities"] = {p.id: p.priority for p in enabled if p.priority is not None}
    elif config.type == StrategyType.WEIGHTED and "weights" not in options:
        options["weights"] = {p.id: p.weight for p in enabled if p.weight is not None}
    elif config.type == StrategyType.FALLBACK and "order" not in options:
        options["order"] = [p.id for p in enabled]

    try:
        return build_strategy(config.type, **options)
    except StrategyError as e:
        raise ConfigurationError(f"Failed to create strategy: {e}") from e


def create_provider(config: ProviderConfig, builders: Mapping[str, ProviderBuilder]) -> AIService:
    if not config.enabled:
        raise ConfigurationError(f"Provider {config.id} is disabled")

    builder = builders.get(config.type)
    if builder is None:
        raise ConfigurationError(
            f"Unknown provider type: {config.type}",
            details={"provider": config.id, "known_types": sorted(builders)},
        )

    provider = builder(config)
    if provider.id != config.id:
        raise ConfigurationError(
            f"Builder for {config.type} returned provider '{provider.id}', expected '{config.id}'"
        )
    return provider


def create_orchestrator(
    config: Union[OrchestratorConfig, Dict[str, Any]],
    provider_builders: Mapping[str, ProviderBuilder],
    metrics: Optional[MetricsCollector] = None,
    prometheus_registry: Optional[CollectorRegistry] = None,
) -> Dispatcher:
    """
    Build and populate a Dispatcher.

    Disabled providers are skipped. A provider whose builder fails is logged
    and skipped; ConfigurationError is raised if none could be created.
    Background health checks need a running event loop when enabled.
    """
    if not isinstance(config, OrchestratorConfig):
        config = OrchestratorConfig.parse(config)

    strategy = create_strategy(config.strategy, config.providers)
    dispatcher = Dispatcher(
        strategy,
        config=config.to_dispatcher_config(),
        metrics=metrics,
        prometheus_registry=prometheus_registry,
    )

    registered: List[str] = []
    for provider_config in config.providers:
        if not provider_config.enabled:
            logger.info("Skipping disabled provider", provider=provider_config.id)
            continue
        try:
            dispatcher.register_provider(create_provider(provider_config, provider_builders))
            registered.append(provider_config.id)
        except Exception as e:
            logger.warning(
                "Failed to create provider",
                provider=provider_config.id,
                provider_type=provider_config.type,
                error=str(e),
            )

    if not registered:
        dispatcher.dispose()
        raise ConfigurationError("No providers could be created. Check your configuration.")

    if config.enable_health_checks and config.health_check_interval_ms:
        if config.health_check_interval_ms < MIN_RECOMMENDED_HEALTH_INTERVAL_MS:
            logger.warning(
                "Health check interval is very low (< 1000ms). Consider using at least 1000ms.",
                interval_ms=config.health_check_interval_ms,
            )
        dispatcher.start_health_checks(config.health_check_interval_ms)

    return dispatcher
