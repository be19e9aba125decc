"""
AI Orchestrator - Dispatcher

Routes chat, streaming and image requests across a pool of providers with:
- Health probing and circuit breakers deciding who is available
- A pluggable selection strategy deciding who answers
- Per-attempt timeouts and retry on a different provider
- Metrics, logs and spans for every attempt
"""

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry

from ..core.errors import (
    ConfigurationError,
    ExhaustedRetriesError,
    NoAvailableProvidersError,
    NoImageProvidersError,
    ProviderError,
)
from ..core.interfaces import AIService, SelectionStrategy, supports_image_generation
from ..core.language import apply_response_language, split_language_option
from ..core.models import (
    ChatChunk,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ImageGenerationOptions,
    ImageGenerationResponse,
    OPTION_TIMEOUT_MS,
    ProviderHealth,
    SelectionContext,
    Usage,
)
from ..core.timeouts import run_with_timeout
from ..observability.logging import LogContext, TimedOperation, get_logger
from ..observability.metrics import MetricsCollector, OrchestratorMetrics
from ..observability.prometheus import PrometheusExporter
from ..observability.tracing import trace_provider_call
from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .health import HealthCheckConfig, HealthMonitor

logger = get_logger(__name__)


# ============================================================
# Configuration
# ============================================================

class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass
class RetryConfig:
    """Retry behaviour of a single dispatcher call."""
    # None = one attempt per registered provider
    max_retries: Optional[int] = None

    # Pause before every attempt after the first
    delay_ms: float = 0.0
    backoff: BackoffType = BackoffType.FIXED

    # Exponential backoff: base * 2^(attempt-1), capped
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0


@dataclass
class DispatcherConfig:
    """Runtime configuration for a Dispatcher."""
    request_timeout_ms: float = 30000.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)

    # Merged underneath per-call options
    default_options: ChatOptions = field(default_factory=dict)


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Delay in ms before attempt number `attempt` (0 = first attempt).
    """
    if attempt <= 0:
        return 0.0
    if config.backoff == BackoffType.EXPONENTIAL:
        return min(config.base_delay_ms * (2 ** (attempt - 1)), config.max_delay_ms)
    return max(0.0, config.delay_ms)


async def _prime_stream(stream: AsyncIterator[ChatChunk]) -> AsyncIterator[ChatChunk]:
    """
    Pull the first chunk so errors raised before it count against the attempt.

    Returns an iterator that replays that chunk and then continues the stream.
    """
    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        return stream

    async def replay() -> AsyncIterator[ChatChunk]:
        yield first
        async for chunk in stream:
            yield chunk

    return replay()


def _image_usage(response: ImageGenerationResponse) -> Optional[Usage]:
    if not response.usage:
        return None
    return Usage(
        prompt_tokens=response.usage.get("prompt_tokens", 0),
        completion_tokens=response.usage.get("completion_tokens", 0),
        total_tokens=response.usage.get("total_tokens", 0),
    )


# ============================================================
# Dispatcher
# ============================================================

class Dispatcher:
    """
    Selection-and-dispatch engine over a registry of providers.

    The registry, breakers, probe counters, metrics and strategy state are
    shared by all concurrent calls; each call runs its own sequential retry
    loop.

        dispatcher = Dispatcher(RoundRobinStrategy())
        dispatcher.register_provider(provider_a)
        dispatcher.register_provider(provider_b)

        response = await dispatcher.chat([ChatMessage.user("Hello")])
    """

    def __init__(
        self,
        strategy: SelectionStrategy,
        config: Optional[DispatcherConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
        prometheus_registry: Optional[CollectorRegistry] = None,
    ):
        """
        Args:
            strategy: Selection policy
            config: Timeouts, retry, breaker and health configuration
            metrics: Collector to record into (a fresh one by default)
            clock: Monotonic clock in seconds, used by breakers and probes
            prometheus_registry: When given, metrics are also exported there
        """
        if not isinstance(strategy, SelectionStrategy):
            raise ConfigurationError(
                f"Strategy {type(strategy).__name__} does not implement select/update"
            )

        self.strategy = strategy
        self.config = config or DispatcherConfig()
        self.metrics = metrics or MetricsCollector()

        self._providers: Dict[str, AIService] = {}
        self._lock = Lock()
        self._breakers = CircuitBreakerRegistry(self.config.circuit_breaker, clock)
        self._health = HealthMonitor(self.config.health_check, clock)
        self._health_task: Optional[asyncio.Task] = None
        self._disposed = False

        self.exporter: Optional[PrometheusExporter] = None
        if prometheus_registry is not None:
            self.exporter = PrometheusExporter(prometheus_registry)
            self.exporter.attach(self.metrics)

    # ----------------------------------------------------------- registry

    def register_provider(self, provider: AIService, replace: bool = False):
        """
        Add a provider. Ids are unique; pass replace=True to swap an
        existing provider out.
        """
        if not isinstance(provider, AIService):
            raise ConfigurationError(
                f"{type(provider).__name__} is not a provider: "
                "needs id, metadata, check_health, chat and chat_stream"
            )
        if not provider.id:
            raise ConfigurationError("Provider id must be a non-empty string")

        with self._lock:
            if provider.id in self._providers and not replace:
                raise ConfigurationError(
                    f"Provider '{provider.id}' is already registered",
                    details={"provider": provider.id},
                )
            self._providers[provider.id] = provider

        self._sync_breaker_gauge(provider.id)
        logger.info(
            "Provider registered",
            provider=provider.id,
            provider_name=provider.metadata.name,
            model=provider.metadata.model,
        )

    def unregister_provider(self, provider_id: str) -> bool:
        """
        Remove a provider. Breaker and probe state go with it; metrics stay.

        Returns False if the id was not registered.
        """
        with self._lock:
            removed = self._providers.pop(provider_id, None)

        if removed is None:
            return False

        self._breakers.remove(provider_id)
        self._health.remove(provider_id)
        logger.info("Provider unregistered", provider=provider_id)
        return True

    def get_provider(self, provider_id: str) -> Optional[AIService]:
        with self._lock:
            return self._providers.get(provider_id)

    def get_all_providers(self) -> List[AIService]:
        """Registered providers in registration order."""
        with self._lock:
            return list(self._providers.values())

    # ----------------------------------------------------------- availability

    async def _probe_available(
        self,
        providers: List[AIService],
    ) -> Tuple[List[AIService], Dict[str, ProviderHealth]]:
        candidates = [
            p for p in providers
            if not self._breakers.is_open(p.id) and not self._health.should_skip(p.id)
        ]

        results = await asyncio.gather(
            *(self._health.probe(p) for p in candidates),
            return_exceptions=True,
        )

        available: List[AIService] = []
        health_map: Dict[str, ProviderHealth] = {}
        for provider, result in zip(candidates, results):
            if isinstance(result, BaseException):
                result = ProviderHealth(healthy=False, error=str(result))
            health_map[provider.id] = result
            self.metrics.record_health_check(provider, result)
            if self._health.evaluate(provider.id, result):
                available.append(provider)
            else:
                logger.debug(
                    "Provider unavailable",
                    provider=provider.id,
                    error=result.error,
                    consecutive_failures=self._health.consecutive_failures(provider.id),
                )

        return available, health_map

    async def get_available_providers(self) -> List[AIService]:
        """
        Providers that pass breaker, probe-failure and health filtering, in
        registration order. Probes run concurrently.
        """
        available, _ = await self._probe_available(self.get_all_providers())
        return available

    async def select_provider(
        self,
        context: Optional[SelectionContext] = None,
    ) -> Optional[AIService]:
        """Run availability and the strategy once, without calling anyone."""
        context = context or SelectionContext()
        available, health = await self._probe_available(self.get_all_providers())
        context.health = health
        if not available:
            return None
        return await self.strategy.select(available, context)

    # ----------------------------------------------------------- retry loop

    def _max_attempts(self, pool_size: int) -> int:
        if self.config.retry.max_retries is not None:
            return max(1, self.config.retry.max_retries)
        return max(1, pool_size)

    def _prepare(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions],
    ) -> Tuple[List[ChatMessage], ChatOptions, float]:
        merged: ChatOptions = {**self.config.default_options, **(options or {})}
        timeout_ms = merged.pop(OPTION_TIMEOUT_MS, None)
        if timeout_ms is None:
            timeout_ms = self.config.request_timeout_ms
        language, provider_options = split_language_option(merged)
        return apply_response_language(messages, language), provider_options, timeout_ms

    async def _dispatch(
        self,
        operation: str,
        context: SelectionContext,
        invoke: Callable[[AIService], Awaitable[Any]],
        timeout_ms: float,
        pool: Optional[Callable[[AIService], bool]] = None,
    ) -> Tuple[AIService, Any, float]:
        """
        Shared retry loop. Returns (provider, result, latency_ms) of the first
        successful attempt.
        """
        providers = self.get_all_providers()
        if pool is not None:
            providers = [p for p in providers if pool(p)]

        max_attempts = self._max_attempts(len(providers))
        failures: List[Tuple[str, BaseException]] = []

        for attempt in range(max_attempts):
            delay_ms = calculate_backoff(attempt, self.config.retry)
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

            selection_start = time.perf_counter()
            available, health = await self._probe_available(providers)
            context.health = health
            provider = await self.strategy.select(available, context) if available else None
            selection_ms = (time.perf_counter() - selection_start) * 1000

            if provider is None:
                if failures:
                    break
                logger.error(
                    "No available providers",
                    registered=[p.id for p in providers],
                )
                raise NoAvailableProvidersError(
                    registered=[p.id for p in providers],
                    operation=operation,
                )

            if context.was_attempted(provider.id):
                continue

            self.metrics.record_selection(provider, self.strategy.name, selection_ms)
            logger.debug(
                "Provider selected",
                provider=provider.id,
                attempt=attempt + 1,
                selection_ms=round(selection_ms, 2),
            )

            self.metrics.record_request_start(provider)
            attempt_token = self._bind_attempt_context(provider.id, attempt + 1)
            start = time.perf_counter()
            try:
                with trace_provider_call(
                    provider.id,
                    provider.metadata.model,
                    operation,
                    attributes={"ai.attempt": attempt + 1},
                ):
                    result = await run_with_timeout(invoke(provider), timeout_ms, provider.id, operation)
            except Exception as e:
                latency_ms = (time.perf_counter() - start) * 1000
                error = ProviderError.wrap(provider.id, e, operation)
                self._record_attempt_failure(provider, error, latency_ms, context)
                failures.append((provider.id, error))
                logger.warning(
                    "Provider attempt failed",
                    provider=provider.id,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    error=str(error),
                    latency_ms=round(latency_ms, 1),
                )
                continue
            finally:
                LogContext.restore(attempt_token)

            latency_ms = (time.perf_counter() - start) * 1000
            self._record_attempt_success(provider, result, latency_ms)
            return provider, result, latency_ms

        last_error = failures[-1][1] if failures else None
        logger.error(
            "All provider attempts failed",
            attempts=len(failures),
            providers_tried=[pid for pid, _ in failures],
        )
        raise ExhaustedRetriesError(failures, max_attempts, operation) from last_error

    def _record_attempt_success(self, provider: AIService, result: Any, latency_ms: float):
        response = result if isinstance(result, ChatResponse) else None
        usage = _image_usage(result) if isinstance(result, ImageGenerationResponse) else None
        self.strategy.update(provider, True, {"latency": latency_ms, "response": response})
        self._breakers.record_success(provider.id)
        self._health.record_success(provider.id)
        self._sync_breaker_gauge(provider.id)
        self.metrics.record_success(provider, response, latency_ms, usage=usage)

    def _record_attempt_failure(
        self,
        provider: AIService,
        error: ProviderError,
        latency_ms: float,
        context: SelectionContext,
    ):
        context.mark_attempted(provider.id)
        self.strategy.update(provider, False, {"error": error, "latency": latency_ms})
        self._breakers.record_failure(provider.id, str(error))
        self._sync_breaker_gauge(provider.id)
        self.metrics.record_failure(provider, error, latency_ms)

    def _sync_breaker_gauge(self, provider_id: str):
        if self.exporter is not None:
            state = self._breakers.get_breaker(provider_id).state
            self.exporter.set_circuit_breaker_state(provider_id, state.value)

    def _bind_attempt_context(self, provider_id: str, attempt: int):
        ctx = LogContext.get_current() or LogContext()
        return LogContext.set_current(ctx.bind(provider=provider_id, attempt=attempt))

    def _bind_log_context(self, operation: str):
        return LogContext.set_current(LogContext(
            request_id=f"req_{uuid.uuid4().hex[:24]}",
            operation=operation,
            strategy=self.strategy.name,
        ))

    # ----------------------------------------------------------- operations

    async def chat(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> ChatResponse:
        """
        Chat completion on the first provider that answers.

        Options consumed here and not passed on: timeout_ms (per-attempt
        deadline) and response_language (see core.language).

        Raises:
            NoAvailableProvidersError: nothing available before any attempt
            ExhaustedRetriesError: every attempt failed
        """
        prepared, provider_options, timeout_ms = self._prepare(messages, options)
        context = SelectionContext(messages=prepared, options=provider_options)

        token = self._bind_log_context("chat")
        try:
            _, response, _ = await self._dispatch(
                "chat",
                context,
                lambda provider: provider.chat(prepared, provider_options),
                timeout_ms,
            )
            return response
        finally:
            LogContext.restore(token)

    async def chat_stream(
        self,
        messages: List[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Open a streamed chat completion.

        Retry covers opening the stream and receiving its first chunk. After
        that the attempt counts as a success; later errors reach the caller.
        """
        prepared, provider_options, timeout_ms = self._prepare(messages, options)
        context = SelectionContext(
            messages=prepared,
            options={**provider_options, "stream": True},
        )

        async def open_stream(provider: AIService) -> AsyncIterator[ChatChunk]:
            stream = provider.chat_stream(prepared, provider_options)
            if inspect.isawaitable(stream):
                stream = await stream
            return await _prime_stream(stream)

        token = self._bind_log_context("chat_stream")
        try:
            _, stream, _ = await self._dispatch("chat_stream", context, open_stream, timeout_ms)
            return stream
        finally:
            LogContext.restore(token)

    async def generate_image(
        self,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
    ) -> ImageGenerationResponse:
        """
        Route an image request to providers that support image generation.

        Raises:
            NoImageProvidersError: no registered provider supports images
        """
        image_capable = [p for p in self.get_all_providers() if supports_image_generation(p)]
        if not image_capable:
            logger.error("No image-capable providers registered")
            raise NoImageProvidersError(registered=[p.id for p in self.get_all_providers()])

        timeout_ms = self.config.request_timeout_ms
        if options is not None and options.timeout_ms is not None:
            timeout_ms = options.timeout_ms

        context = SelectionContext(operation="generate_image")

        token = self._bind_log_context("generate_image")
        try:
            _, response, _ = await self._dispatch(
                "generate_image",
                context,
                lambda provider: provider.generate_image(prompt, options),
                timeout_ms,
                pool=supports_image_generation,
            )
            return response
        finally:
            LogContext.restore(token)

    # ----------------------------------------------------------- health checks

    async def check_all_health(self) -> Dict[str, ProviderHealth]:
        """
        Probe every registered provider concurrently, ignoring exclusions.

        Healthy probes reset probe-failure counters and close breakers;
        unhealthy ones count against both.
        """
        providers = self.get_all_providers()
        with TimedOperation("Health check", logger, extra={"providers": len(providers)}):
            results = await asyncio.gather(
                *(self._health.probe(p) for p in providers),
                return_exceptions=True,
            )

        report: Dict[str, ProviderHealth] = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                result = ProviderHealth(healthy=False, error=str(result))
            report[provider.id] = result
            self.metrics.record_health_check(provider, result)

            if result.healthy:
                self._health.record_success(provider.id)
                self._breakers.record_success(provider.id)
            else:
                self._health.record_failure(provider.id)
                self._breakers.record_failure(provider.id, result.error)
            self._sync_breaker_gauge(provider.id)

        return report

    async def _health_loop(self, interval_ms: float):
        while True:
            await asyncio.sleep(interval_ms / 1000)
            try:
                report = await self.check_all_health()
            except Exception:
                logger.exception("Background health check failed")
                continue
            logger.debug(
                "Background health check",
                healthy=[pid for pid, h in report.items() if h.healthy],
                unhealthy=[pid for pid, h in report.items() if not h.healthy],
            )

    def start_health_checks(self, interval_ms: float):
        """
        Run check_all_health every interval_ms on the running event loop.
        Restarts the loop if one is already running.
        """
        if interval_ms <= 0:
            raise ConfigurationError(f"Health check interval must be positive, got {interval_ms}")

        self.stop_health_checks()
        self._health_task = asyncio.get_running_loop().create_task(self._health_loop(interval_ms))
        logger.info("Health checks started", interval_ms=interval_ms)

    def stop_health_checks(self):
        if self._health_task is not None:
            self._health_task.cancel()
            self._health_task = None
            logger.info("Health checks stopped")

    @property
    def health_checks_running(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    # ----------------------------------------------------------- status

    def get_metrics(self) -> OrchestratorMetrics:
        return self.metrics.get_orchestrator_metrics()

    def get_status(self) -> Dict[str, Any]:
        return {
            "providers": [p.id for p in self.get_all_providers()],
            "strategy": self.strategy.name,
            "circuit_breakers": self._breakers.get_all_status(),
            "consecutive_probe_failures": self._health.get_status(),
            "health_checks_running": self.health_checks_running,
        }

    # ----------------------------------------------------------- lifecycle

    def dispose(self):
        """Stop health checks and drop providers. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True

        self.stop_health_checks()
        with self._lock:
            self._providers.clear()
        self._breakers.clear()
        self._health.clear()
        if self.exporter is not None:
            self.exporter.detach()
        logger.info("Dispatcher disposed")

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
