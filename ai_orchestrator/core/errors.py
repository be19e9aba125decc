"""
AI Orchestrator - Error Definitions

Error taxonomy for the dispatcher:

- ConfigurationError: invalid setup, fatal at construction
- ProviderError: a single provider call failed, retried on another provider
- ProviderTimeoutError: a provider call ran past its deadline (a ProviderError)
- NoAvailableProvidersError: nothing passed availability filtering, fatal per call
- ExhaustedRetriesError: every attempt failed, last failure attached as cause
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    CONFIGURATION = "configuration_error"
    ROUTING = "routing_error"


@dataclass
class ErrorDetails:
    """Structured error information."""
    code: str
    message: str
    type: ErrorType

    provider: Optional[str] = None
    operation: Optional[str] = None
    retryable: bool = False
    attempts: Optional[int] = None

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.operation:
            result["operation"] = self.operation
        if self.attempts is not None:
            result["attempts"] = self.attempts
        if self.details:
            result["details"] = self.details

        return {"error": result}


class OrchestratorException(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def retryable(self) -> bool:
        return self.error.retryable


# ============================================================
# Configuration
# ============================================================

class ConfigurationError(OrchestratorException):
    """Invalid orchestrator, strategy or provider configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorDetails(
                code="configuration_error",
                message=message,
                type=ErrorType.CONFIGURATION,
                retryable=False,
                details=details or {}
            )
        )


class StrategyError(OrchestratorException):
    """A selection strategy failed or was misconfigured."""

    def __init__(self, message: str, strategy: str = ""):
        super().__init__(
            ErrorDetails(
                code="strategy_error",
                message=message,
                type=ErrorType.ROUTING,
                retryable=False,
                details={"strategy": strategy} if strategy else {}
            )
        )


# ============================================================
# Provider errors (retryable on another provider)
# ============================================================

class ProviderError(OrchestratorException):
    """A single provider call failed."""

    def __init__(
        self,
        provider: str,
        message: str = "",
        operation: str = "chat",
        details: Optional[Dict[str, Any]] = None
    ):
        self.provider_id = provider
        super().__init__(
            ErrorDetails(
                code="provider_error",
                message=message or f"{provider} failed during {operation}",
                type=ErrorType.INFRA,
                provider=provider,
                operation=operation,
                retryable=True,
                details=details or {}
            )
        )

    @classmethod
    def wrap(cls, provider: str, error: BaseException, operation: str = "chat") -> "ProviderError":
        """Wrap an arbitrary adapter exception, keeping ProviderErrors as-is."""
        if isinstance(error, ProviderError):
            return error
        wrapped = cls(
            provider=provider,
            message=f"{provider} {operation} failed: {error}",
            operation=operation,
            details={"exception": type(error).__name__}
        )
        wrapped.__cause__ = error
        return wrapped


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the deadline."""

    def __init__(self, provider: str, timeout_ms: float, operation: str = "chat"):
        super().__init__(
            provider=provider,
            message=f"{provider} did not complete {operation} within {int(timeout_ms)}ms",
            operation=operation,
            details={"timeout_ms": timeout_ms}
        )
        self.error.code = "provider_timeout"
        self.timeout_ms = timeout_ms


# ============================================================
# Routing errors (fatal for the call)
# ============================================================

class NoAvailableProvidersError(OrchestratorException):
    """No provider passed availability filtering."""

    def __init__(
        self,
        message: str = "No available providers. All providers are unhealthy or unavailable.",
        registered: Optional[List[str]] = None,
        operation: str = "chat",
        code: str = "no_available_providers"
    ):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.ROUTING,
                operation=operation,
                retryable=False,
                details={"registered_providers": registered or []}
            )
        )


class NoImageProvidersError(NoAvailableProvidersError):
    """No registered provider supports image generation."""

    def __init__(self, registered: Optional[List[str]] = None):
        super().__init__(
            message="No providers with image generation support available",
            registered=registered,
            operation="generate_image",
            code="no_image_providers"
        )


class ExhaustedRetriesError(OrchestratorException):
    """
    Every attempt of a call failed.

    The most recent underlying error is chained as __cause__ and exposed as
    last_error; attempts keeps the full (provider_id, error) sequence.
    """

    def __init__(
        self,
        attempts: List[Tuple[str, BaseException]],
        max_attempts: int,
        operation: str = "chat"
    ):
        self.attempts = list(attempts)
        self.last_error: Optional[BaseException] = attempts[-1][1] if attempts else None
        last_provider = attempts[-1][0] if attempts else None

        if self.last_error is not None:
            message = (
                f"All {len(attempts)} attempt(s) failed; "
                f"last error from {last_provider}: {self.last_error}"
            )
        else:
            message = "Failed to get response from any provider"

        super().__init__(
            ErrorDetails(
                code="exhausted_retries",
                message=message,
                type=ErrorType.ROUTING,
                provider=last_provider,
                operation=operation,
                retryable=False,
                attempts=len(attempts),
                details={
                    "providers_tried": [provider_id for provider_id, _ in attempts],
                    "max_attempts": max_attempts,
                    "errors": [str(err) for _, err in attempts],
                }
            )
        )

    @property
    def providers_tried(self) -> List[str]:
        return [provider_id for provider_id, _ in self.attempts]
