"""
AI Orchestrator - Capability Interfaces

Structural interfaces the dispatcher consumes. Provider adapters and
selection strategies do not inherit from anything in this package; any
object exposing the right attributes and coroutines qualifies.

An adapter is responsible for:
1. Converting the unified message format to its vendor format
2. Making the API call
3. Converting the vendor response back to ChatResponse / ChatChunk
4. Raising on failure (the dispatcher handles retry and fallback)
"""

from typing import Any, AsyncIterator, List, Optional, Protocol, runtime_checkable

from .models import (
    Capability,
    ChatChunk,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ImageGenerationOptions,
    ImageGenerationResponse,
    ProviderHealth,
    ProviderMetadata,
    SelectionContext,
)


@runtime_checkable
class AIService(Protocol):
    """A chat-capable provider endpoint."""

    id: str
    metadata: ProviderMetadata

    async def check_health(self) -> ProviderHealth:
        """Lightweight, read-only responsiveness check."""
        ...

    async def chat(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> ChatResponse:
        ...

    async def chat_stream(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Open a stream.

        Awaiting this coroutine returns the async iterator. Async generator
        functions are accepted too. Errors raised before the first chunk
        count as a failed attempt; later errors reach the caller.
        """
        ...


@runtime_checkable
class ImageCapableService(AIService, Protocol):
    """A provider that can also generate images."""

    async def generate_image(
        self,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
    ) -> ImageGenerationResponse:
        ...


@runtime_checkable
class SelectionStrategy(Protocol):
    """Policy for picking one provider among the available ones."""

    name: str

    async def select(
        self,
        providers: List[AIService],
        context: Optional[SelectionContext] = None,
    ) -> Optional[AIService]:
        ...

    def update(
        self,
        provider: AIService,
        success: bool,
        metadata: Optional[Any] = None,
    ) -> None:
        """Feedback after an attempt. Strategies without state ignore it."""
        ...


def supports_image_generation(provider: AIService) -> bool:
    """True if the provider declares image support and implements it."""
    return (
        provider.metadata.supports(Capability.IMAGE_GENERATION.value) and
        callable(getattr(provider, "generate_image", None))
    )
