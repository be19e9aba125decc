"""
AI Orchestrator - Routing Module

Provider selection and dispatch with:
- Circuit breakers
- Health probing
- Pluggable selection strategies
- Retry across providers
"""

from .dispatcher import (
    BackoffType,
    Dispatcher,
    DispatcherConfig,
    RetryConfig,
    calculate_backoff,
)
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .health import HealthCheckConfig, HealthMonitor
from .strategies import (
    FallbackStrategy,
    HealthAwareStrategy,
    PriorityStrategy,
    RoundRobinStrategy,
    StrategyType,
    WeightedStrategy,
    create_strategy,
    filter_attempted,
)

__all__ = [
    # Dispatcher
    "BackoffType",
    "Dispatcher",
    "DispatcherConfig",
    "RetryConfig",
    "calculate_backoff",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Health
    "HealthCheckConfig",
    "HealthMonitor",
    # Strategies
    "FallbackStrategy",
    "HealthAwareStrategy",
    "PriorityStrategy",
    "RoundRobinStrategy",
    "StrategyType",
    "WeightedStrategy",
    "create_strategy",
    "filter_attempted",
]
