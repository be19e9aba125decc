"""
AI Orchestrator - Stub Provider

Deterministic in-process provider used for tests and local experiments.
No network calls, no API keys required.

    provider = StubProvider("a", fail_times=1)
    await provider.chat([ChatMessage.user("hi")])   # raises
    await provider.chat([ChatMessage.user("hi")])   # "stub a: hi"
"""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

from .core.models import (
    Capability,
    ChatChunk,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    CostPerToken,
    GeneratedImage,
    ImageGenerationOptions,
    ImageGenerationResponse,
    ProviderHealth,
    ProviderMetadata,
    Usage,
)


class StubProviderError(Exception):
    """Raised by StubProvider when told to fail."""


class StubProvider:
    """
    Configurable fake provider.

    Args:
        provider_id: Registry id
        healthy: What check_health reports
        health_latency_ms: Latency reported by check_health
        health_error: Raise from check_health instead of answering
        health_delay_s: Sleep before answering check_health
        fail_times: Fail this many chat/stream/image calls, then succeed
        always_fail: Fail every call
        delay_s: Sleep before answering chat/stream/image calls
        content: Reply text (defaults to "stub <id>: <last user message>")
        usage: Usage reported on success
        cost_per_token: Pricing exposed in metadata
        supports_images: Declare and implement image generation
    """

    def __init__(
        self,
        provider_id: str,
        healthy: bool = True,
        health_latency_ms: Optional[float] = 10.0,
        health_error: Optional[Exception] = None,
        health_delay_s: float = 0.0,
        fail_times: int = 0,
        always_fail: bool = False,
        delay_s: float = 0.0,
        content: Optional[str] = None,
        usage: Optional[Usage] = None,
        model: str = "stub-model",
        cost_per_token: Optional[CostPerToken] = None,
        supports_images: bool = False,
        stream_chunks: Sequence[str] = ("stub", " stream"),
    ):
        self.id = provider_id
        capabilities = [Capability.CHAT.value, Capability.STREAMING.value]
        if supports_images:
            capabilities.append(Capability.IMAGE_GENERATION.value)
        self.metadata = ProviderMetadata(
            name=f"Stub {provider_id}",
            model=model,
            capabilities=capabilities,
            supports_image_generation=supports_images,
            cost_per_token=cost_per_token,
        )

        self.healthy = healthy
        self.health_latency_ms = health_latency_ms
        self.health_error = health_error
        self.health_delay_s = health_delay_s
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.delay_s = delay_s
        self.content = content
        self.usage = usage
        self.stream_chunks = list(stream_chunks)

        self.health_checks = 0
        self.chat_calls = 0
        self.stream_calls = 0
        self.image_calls = 0
        self.received_messages: List[List[ChatMessage]] = []
        self.received_options: List[ChatOptions] = []

    @property
    def total_calls(self) -> int:
        return self.chat_calls + self.stream_calls + self.image_calls

    def _maybe_fail(self, operation: str):
        if self.always_fail:
            raise StubProviderError(f"{self.id} {operation} failed")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise StubProviderError(f"{self.id} {operation} failed")

    async def check_health(self) -> ProviderHealth:
        self.health_checks += 1
        if self.health_delay_s:
            await asyncio.sleep(self.health_delay_s)
        if self.health_error is not None:
            raise self.health_error
        return ProviderHealth(
            healthy=self.healthy,
            latency=self.health_latency_ms,
            error=None if self.healthy else f"{self.id} unhealthy",
        )

    async def chat(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> ChatResponse:
        self.chat_calls += 1
        self.received_messages.append(list(messages))
        self.received_options.append(dict(options or {}))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        self._maybe_fail("chat")

        last_user = next((m.content for m in reversed(messages) if m.role.value == "user"), "")
        return ChatResponse(
            content=self.content if self.content is not None else f"stub {self.id}: {last_user}",
            usage=self.usage,
            model=self.metadata.model,
            finish_reason="stop",
        )

    async def chat_stream(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> AsyncIterator[ChatChunk]:
        self.stream_calls += 1
        self.received_messages.append(list(messages))
        self.received_options.append(dict(options or {}))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        self._maybe_fail("chat_stream")

        chunks = list(self.stream_chunks)

        async def iterate() -> AsyncIterator[ChatChunk]:
            for text in chunks:
                yield ChatChunk(content=text)
            yield ChatChunk(content="", done=True, finish_reason="stop", usage=self.usage)

        return iterate()

    async def generate_image(
        self,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
    ) -> ImageGenerationResponse:
        if not self.metadata.supports_image_generation:
            raise StubProviderError(f"{self.id} does not generate images")

        self.image_calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        self._maybe_fail("generate_image")

        count = options.n if options else 1
        return ImageGenerationResponse(
            images=[
                GeneratedImage(url=f"https://stub.invalid/{self.id}/{i}.png", revised_prompt=prompt)
                for i in range(count)
            ],
            model=self.metadata.model,
        )
