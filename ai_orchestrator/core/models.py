"""
AI Orchestrator - Core Data Models

Provider-agnostic data models shared by the dispatcher, the strategies and
the provider adapters that plug into it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# Per-call options are passed through to adapters untouched, apart from the
# keys the dispatcher consumes itself (see OPTION_* below).
ChatOptions = Dict[str, Any]

OPTION_TIMEOUT_MS = "timeout_ms"
OPTION_RESPONSE_LANGUAGE = "response_language"


# ============================================================
# Enums
# ============================================================

class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Capability(str, Enum):
    """Well-known provider capability flags."""
    CHAT = "chat"
    STREAMING = "streaming"
    VISION = "vision"
    IMAGE_GENERATION = "image-generation"


# ============================================================
# Messages
# ============================================================

@dataclass
class ChatMessage:
    """A single message in a conversation."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


# ============================================================
# Responses
# ============================================================

@dataclass
class Usage:
    """Token usage reported by a provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class ChatResponse:
    """Non-streaming chat completion result."""
    content: str
    usage: Optional[Usage] = None
    model: Optional[str] = None
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatChunk:
    """One element of a streamed chat completion."""
    content: str
    done: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None


# ============================================================
# Provider description
# ============================================================

@dataclass
class ProviderHealth:
    """Result of a provider health probe."""
    healthy: bool
    latency: Optional[float] = None  # milliseconds
    last_checked: float = field(default_factory=time.time)
    error: Optional[str] = None


@dataclass
class CostPerToken:
    """Price of a single prompt/completion token."""
    prompt: float = 0.0
    completion: float = 0.0

    @property
    def average(self) -> float:
        return (self.prompt + self.completion) / 2

    def calculate(self, usage: Usage) -> float:
        """Cost of a request with the given usage."""
        return (
            usage.prompt_tokens * self.prompt +
            usage.completion_tokens * self.completion
        )


@dataclass
class ProviderMetadata:
    """Static description of a provider instance."""
    name: str
    model: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    supports_image_generation: bool = False
    cost_per_token: Optional[CostPerToken] = None

    def supports(self, capability: str) -> bool:
        if capability == Capability.IMAGE_GENERATION.value:
            return self.supports_image_generation or capability in self.capabilities
        return capability in self.capabilities


# ============================================================
# Image generation
# ============================================================

@dataclass
class ImageGenerationOptions:
    """Options for image generation requests."""
    n: int = 1
    size: str = "1024x1024"
    quality: str = "standard"  # standard | hd
    style: Optional[str] = None  # vivid | natural
    response_format: str = "url"  # url | b64_json
    timeout_ms: Optional[int] = None


@dataclass
class GeneratedImage:
    """A single generated image."""
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


@dataclass
class ImageGenerationResponse:
    """Image generation result."""
    images: List[GeneratedImage] = field(default_factory=list)
    model: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# Selection
# ============================================================

@dataclass
class SelectionContext:
    """
    Per-call state handed to selection strategies.

    previous_attempts grows as providers fail within a single call.
    health carries the probe results of the availability pass that produced
    the provider list, keyed by provider id.
    """
    messages: List[ChatMessage] = field(default_factory=list)
    options: ChatOptions = field(default_factory=dict)
    previous_attempts: List[str] = field(default_factory=list)
    health: Dict[str, ProviderHealth] = field(default_factory=dict)
    operation: str = "chat"

    def mark_attempted(self, provider_id: str):
        if provider_id not in self.previous_attempts:
            self.previous_attempts.append(provider_id)

    def was_attempted(self, provider_id: str) -> bool:
        return provider_id in self.previous_attempts
