"""
AI Orchestrator - Provider Routing and Dispatch

Send chat requests to a pool of interchangeable AI providers with health
checks, circuit breakers, pluggable selection strategies and retry across
providers.
"""

__version__ = "1.0.0"

from .core import (
    AIService,
    ChatChunk,
    ChatMessage,
    ChatResponse,
    ConfigurationError,
    CostPerToken,
    ExhaustedRetriesError,
    ImageGenerationOptions,
    ImageGenerationResponse,
    NoAvailableProvidersError,
    NoImageProvidersError,
    OrchestratorException,
    ProviderError,
    ProviderHealth,
    ProviderMetadata,
    ProviderTimeoutError,
    Role,
    SelectionContext,
    SelectionStrategy,
    Usage,
)
from .routing import (
    Dispatcher,
    DispatcherConfig,
    FallbackStrategy,
    HealthAwareStrategy,
    PriorityStrategy,
    RetryConfig,
    RoundRobinStrategy,
    StrategyType,
    WeightedStrategy,
)
from .observability import MetricsCollector, PrometheusExporter
from .config import OrchestratorConfig, ProviderConfig, StrategyConfig
from .factory import create_orchestrator, create_strategy

__all__ = [
    "__version__",
    "AIService",
    "ChatChunk",
    "ChatMessage",
    "ChatResponse",
    "ConfigurationError",
    "CostPerToken",
    "Dispatcher",
    "DispatcherConfig",
    "ExhaustedRetriesError",
    "FallbackStrategy",
    "HealthAwareStrategy",
    "ImageGenerationOptions",
    "ImageGenerationResponse",
    "MetricsCollector",
    "NoAvailableProvidersError",
    "NoImageProvidersError",
    "OrchestratorConfig",
    "OrchestratorException",
    "PriorityStrategy",
    "PrometheusExporter",
    "ProviderConfig",
    "ProviderError",
    "ProviderHealth",
    "ProviderMetadata",
    "ProviderTimeoutError",
    "RetryConfig",
    "Role",
    "RoundRobinStrategy",
    "SelectionContext",
    "SelectionStrategy",
    "StrategyConfig",
    "StrategyType",
    "Usage",
    "WeightedStrategy",
    "create_orchestrator",
    "create_strategy",
]
