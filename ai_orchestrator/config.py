"""
AI Orchestrator - Configuration

Declarative configuration validated with pydantic, plus environment
overrides for the runtime knobs.

Environment variables (all optional):
- ORCHESTRATOR_STRATEGY: strategy type (default round-robin)
- ORCHESTRATOR_REQUEST_TIMEOUT_MS: per-attempt deadline (default 30000)
- ORCHESTRATOR_MAX_RETRIES: attempts per call (default: one per provider)
- ORCHESTRATOR_RETRY_DELAY_MS: fixed pause between attempts (default 0)
- ORCHESTRATOR_BACKOFF: fixed | exponential
- ORCHESTRATOR_CIRCUIT_BREAKER_ENABLED: true | false
- ORCHESTRATOR_FAILURE_THRESHOLD: failures before a breaker opens (default 5)
- ORCHESTRATOR_RESET_TIMEOUT_MS: breaker reset timeout (default 60000)
- ORCHESTRATOR_HEALTH_CHECK_INTERVAL_MS: enables background health checks
"""

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .core.errors import ConfigurationError, StrategyError
from .routing.circuit_breaker import CircuitBreakerConfig
from .routing.dispatcher import BackoffType, DispatcherConfig, RetryConfig
from .routing.health import HealthCheckConfig
from .routing.strategies import StrategyType


class ProviderConfig(BaseModel):
    """
    One provider entry.

    Vendor-specific settings are accepted as extra fields and handed to the
    provider builder untouched.
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    api_key: Optional[str] = Field(default=None, repr=False)
    base_url: Optional[str] = None
    model: Optional[str] = None
    enabled: bool = True
    priority: Optional[int] = None
    weight: Optional[float] = Field(default=None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def normalize_type(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def extra(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class StrategyConfig(BaseModel):
    """
    Strategy type plus its options.

    Options may be nested under "options" or given inline:
        {"type": "weighted", "weights": {"a": 3}, "cost_aware": true}
    """
    model_config = ConfigDict(extra="allow")

    type: StrategyType = StrategyType.ROUND_ROBIN
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, value: Any) -> StrategyType:
        if isinstance(value, StrategyType):
            return value
        if not isinstance(value, str):
            raise ValueError("Strategy must have a type")
        try:
            return StrategyType.parse(value)
        except StrategyError as e:
            raise ValueError(str(e)) from e

    @property
    def all_options(self) -> Dict[str, Any]:
        return {**(self.model_extra or {}), **self.options}


class OrchestratorConfig(BaseModel):
    """Everything needed to build a Dispatcher."""

    providers: List[ProviderConfig] = Field(..., min_length=1)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    default_options: Dict[str, Any] = Field(default_factory=dict)

    request_timeout_ms: float = Field(default=30000, gt=0)
    max_retries: Optional[int] = Field(default=None, ge=1)
    retry_delay_ms: float = Field(default=0, ge=0)
    backoff: BackoffType = BackoffType.FIXED

    circuit_breaker_enabled: bool = True
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: float = Field(default=60000, ge=0)

    health_check_timeout_ms: float = Field(default=5000, gt=0)
    max_consecutive_failures: int = Field(default=3, ge=1)
    latency_threshold_ms: float = Field(default=10000, gt=0)
    recovery_timeout_ms: float = Field(default=60000, ge=0)

    enable_health_checks: bool = False
    health_check_interval_ms: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_unique_ids(self):
        seen = set()
        for provider in self.providers:
            if provider.id in seen:
                raise ValueError(f"Duplicate provider id: {provider.id}")
            seen.add(provider.id)
        return self

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        """Validate a plain dict, raising ConfigurationError on bad input."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid orchestrator configuration",
                details={"errors": [
                    {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]},
            ) from e

    @classmethod
    def from_env(cls, providers: List[Any], **overrides) -> "OrchestratorConfig":
        """
        Build a config from ORCHESTRATOR_* variables.

        Keyword overrides win over the environment.
        """
        data: Dict[str, Any] = {"providers": providers}

        strategy = os.getenv("ORCHESTRATOR_STRATEGY")
        if strategy:
            data["strategy"] = {"type": strategy}

        _set_from_env(data, "request_timeout_ms", "ORCHESTRATOR_REQUEST_TIMEOUT_MS", float)
        _set_from_env(data, "max_retries", "ORCHESTRATOR_MAX_RETRIES", int)
        _set_from_env(data, "retry_delay_ms", "ORCHESTRATOR_RETRY_DELAY_MS", float)
        _set_from_env(data, "backoff", "ORCHESTRATOR_BACKOFF", lambda v: v.strip().lower())
        _set_from_env(data, "circuit_breaker_enabled", "ORCHESTRATOR_CIRCUIT_BREAKER_ENABLED", _parse_bool)
        _set_from_env(data, "failure_threshold", "ORCHESTRATOR_FAILURE_THRESHOLD", int)
        _set_from_env(data, "reset_timeout_ms", "ORCHESTRATOR_RESET_TIMEOUT_MS", float)

        interval = os.getenv("ORCHESTRATOR_HEALTH_CHECK_INTERVAL_MS")
        if interval:
            data["health_check_interval_ms"] = _convert("ORCHESTRATOR_HEALTH_CHECK_INTERVAL_MS", interval, float)
            data["enable_health_checks"] = True

        data.update(overrides)
        return cls.parse(data)

    def to_dispatcher_config(self) -> DispatcherConfig:
        return DispatcherConfig(
            request_timeout_ms=self.request_timeout_ms,
            retry=RetryConfig(
                max_retries=self.max_retries,
                delay_ms=self.retry_delay_ms,
                backoff=self.backoff,
            ),
            circuit_breaker=CircuitBreakerConfig(
                enabled=self.circuit_breaker_enabled,
                failure_threshold=self.failure_threshold,
                reset_timeout_ms=self.reset_timeout_ms,
            ),
            health_check=HealthCheckConfig(
                timeout_ms=self.health_check_timeout_ms,
                max_consecutive_failures=self.max_consecutive_failures,
                latency_threshold_ms=self.latency_threshold_ms,
                recovery_timeout_ms=self.recovery_timeout_ms,
            ),
            default_options=dict(self.default_options),
        )


def is_valid_orchestrator_config(data: Any) -> bool:
    """True if data would pass OrchestratorConfig validation."""
    if isinstance(data, OrchestratorConfig):
        return True
    if not isinstance(data, dict):
        return False
    try:
        OrchestratorConfig.model_validate(data)
    except ValidationError:
        return False
    return True


# ============================================================
# Environment helpers
# ============================================================

def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value}")


def _convert(name: str, raw: str, convert):
    try:
        return convert(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            details={"variable": name},
        ) from e


def _set_from_env(data: Dict[str, Any], key: str, name: str, convert):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return
    data[key] = _convert(name, raw, convert)
