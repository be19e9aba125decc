"""
AI Orchestrator - Core Module

Data model, capability interfaces and error taxonomy shared by every layer.
"""

from .models import (
    Capability,
    ChatChunk,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    CostPerToken,
    GeneratedImage,
    ImageGenerationOptions,
    ImageGenerationResponse,
    OPTION_RESPONSE_LANGUAGE,
    OPTION_TIMEOUT_MS,
    ProviderHealth,
    ProviderMetadata,
    Role,
    SelectionContext,
    Usage,
)
from .interfaces import (
    AIService,
    ImageCapableService,
    SelectionStrategy,
    supports_image_generation,
)
from .errors import (
    ConfigurationError,
    ErrorDetails,
    ErrorType,
    ExhaustedRetriesError,
    NoAvailableProvidersError,
    NoImageProvidersError,
    OrchestratorException,
    ProviderError,
    ProviderTimeoutError,
    StrategyError,
)
from .language import apply_response_language, resolve_language_name
from .timeouts import run_with_timeout

__all__ = [
    # Models
    "Capability",
    "ChatChunk",
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "CostPerToken",
    "GeneratedImage",
    "ImageGenerationOptions",
    "ImageGenerationResponse",
    "OPTION_RESPONSE_LANGUAGE",
    "OPTION_TIMEOUT_MS",
    "ProviderHealth",
    "ProviderMetadata",
    "Role",
    "SelectionContext",
    "Usage",
    # Interfaces
    "AIService",
    "ImageCapableService",
    "SelectionStrategy",
    "supports_image_generation",
    # Errors
    "ConfigurationError",
    "ErrorDetails",
    "ErrorType",
    "ExhaustedRetriesError",
    "NoAvailableProvidersError",
    "NoImageProvidersError",
    "OrchestratorException",
    "ProviderError",
    "ProviderTimeoutError",
    "StrategyError",
    # Helpers
    "apply_response_language",
    "resolve_language_name",
    "run_with_timeout",
]
