"""
AI Orchestrator - Metrics Collector

In-process bookkeeping of provider selections, request outcomes and health
samples. Pure state, no I/O. Exporters (see prometheus.py) subscribe with
on_event() and receive a MetricsEvent for every recorded fact.

Usage:
    collector = MetricsCollector()
    unsubscribe = collector.on_event(lambda event: print(event.type))

    collector.record_selection(provider, "round-robin", selection_time_ms=0.4)
    collector.record_request_start(provider)
    collector.record_success(provider, response, latency_ms=812.0)

    collector.get_orchestrator_metrics().error_rate
"""

import copy
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional

from ..core.models import ChatResponse, ProviderHealth, Usage
from .logging import get_logger

logger = get_logger(__name__)

HEALTH_HISTORY_SIZE = 100

# Weight of the newest sample in the latency moving average
LATENCY_EMA_ALPHA = 0.1


# ============================================================
# Data
# ============================================================

@dataclass
class TokenTotals:
    prompt: int = 0
    completion: int = 0
    total: int = 0

    def add(self, usage: Usage):
        self.prompt += usage.prompt_tokens
        self.completion += usage.completion_tokens
        self.total += usage.total_tokens


@dataclass
class HealthSample:
    timestamp: float
    healthy: bool
    latency: Optional[float] = None


@dataclass
class ProviderMetrics:
    """Cumulative metrics for one provider id."""
    provider_id: str
    provider_name: str
    model: Optional[str] = None

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0

    total_tokens: TokenTotals = field(default_factory=TokenTotals)
    total_cost: float = 0.0
    average_latency: float = 0.0  # ms, exponential moving average

    last_used: Optional[float] = None
    last_success: Optional[float] = None
    last_failure: Optional[float] = None

    health_history: Deque[HealthSample] = field(
        default_factory=lambda: deque(maxlen=HEALTH_HISTORY_SIZE)
    )

    @property
    def success_rate(self) -> float:
        finished = self.successful_requests + self.failed_requests
        return self.successful_requests / finished if finished else 1.0


@dataclass
class StrategyMetrics:
    total_selections: int = 0
    selections_by_provider: Dict[str, int] = field(default_factory=dict)
    selections_by_strategy: Dict[str, int] = field(default_factory=dict)
    average_selection_time: float = 0.0  # ms
    timed_selections: int = 0


@dataclass
class RequestHistoryEntry:
    timestamp: float
    provider_id: str
    success: bool
    latency: float
    tokens: Optional[TokenTotals] = None
    cost: Optional[float] = None


@dataclass
class OrchestratorMetrics:
    """Aggregate view derived from the request history."""
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_cost: float
    provider_metrics: Dict[str, ProviderMetrics]
    strategy_metrics: StrategyMetrics
    average_request_latency: float
    requests_per_minute: int
    error_rate: float


class MetricsEventType(str, Enum):
    PROVIDER_SELECTED = "provider_selected"
    REQUEST_STARTED = "request_started"
    REQUEST_SUCCESS = "request_success"
    REQUEST_FAILURE = "request_failure"
    HEALTH_CHECK = "health_check"


@dataclass
class MetricsEvent:
    """A single recorded fact, delivered to on_event subscribers."""
    type: MetricsEventType
    provider_id: str
    timestamp: float
    strategy: Optional[str] = None
    selection_time: Optional[float] = None
    latency: Optional[float] = None
    response: Optional[ChatResponse] = None
    usage: Optional[Usage] = None
    error: Optional[BaseException] = None
    health: Optional[ProviderHealth] = None
    cost: Optional[float] = None
    model: Optional[str] = None


MetricsCallback = Callable[[MetricsEvent], None]


# ============================================================
# Collector
# ============================================================

class MetricsCollector:
    """
    Thread-safe metrics store shared by all calls of one dispatcher.

    Provider metrics are keyed by provider id and survive unregistration.
    Subscribers are called outside the lock; an exception raised by a
    subscriber is logged and does not affect recording.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_history: Optional[int] = None,
    ):
        self._clock = clock
        self._lock = Lock()
        self._provider_metrics: Dict[str, ProviderMetrics] = {}
        self._strategy_metrics = StrategyMetrics()
        self._history: Deque[RequestHistoryEntry] = deque(maxlen=max_history)
        self._callbacks: List[MetricsCallback] = []

    # ---------------------------------------------------------- subscribers

    def on_event(self, callback: MetricsCallback) -> Callable[[], None]:
        """Subscribe to events. Returns a callable that unsubscribes."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, event: MetricsEvent):
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "Metrics subscriber raised",
                    event_type=event.type.value,
                    error=str(e),
                )

    # ---------------------------------------------------------- recording

    def _get_or_create(self, provider) -> ProviderMetrics:
        """Must hold lock."""
        metrics = self._provider_metrics.get(provider.id)
        if metrics is None:
            metrics = ProviderMetrics(
                provider_id=provider.id,
                provider_name=provider.metadata.name,
                model=provider.metadata.model,
            )
            self._provider_metrics[provider.id] = metrics
        return metrics

    def record_selection(
        self,
        provider,
        strategy: str,
        selection_time_ms: Optional[float] = None,
    ):
        with self._lock:
            self._get_or_create(provider)
            sm = self._strategy_metrics
            sm.total_selections += 1
            sm.selections_by_provider[provider.id] = sm.selections_by_provider.get(provider.id, 0) + 1
            sm.selections_by_strategy[strategy] = sm.selections_by_strategy.get(strategy, 0) + 1
            if selection_time_ms is not None:
                sm.timed_selections += 1
                sm.average_selection_time += (
                    (selection_time_ms - sm.average_selection_time) / sm.timed_selections
                )
            now = self._clock()

        self._emit(MetricsEvent(
            type=MetricsEventType.PROVIDER_SELECTED,
            provider_id=provider.id,
            timestamp=now,
            strategy=strategy,
            selection_time=selection_time_ms,
        ))

    def record_request_start(self, provider):
        with self._lock:
            metrics = self._get_or_create(provider)
            now = self._clock()
            metrics.total_requests += 1
            metrics.last_used = now

        self._emit(MetricsEvent(
            type=MetricsEventType.REQUEST_STARTED,
            provider_id=provider.id,
            timestamp=now,
        ))

    def record_success(
        self,
        provider,
        response: Optional[ChatResponse],
        latency_ms: float,
        usage: Optional[Usage] = None,
    ):
        """
        Record a successful attempt.

        usage overrides response.usage; streaming and image calls have no
        ChatResponse but may still report usage.
        """
        usage = usage or (response.usage if response is not None else None)
        cost_per_token = provider.metadata.cost_per_token
        cost = cost_per_token.calculate(usage) if (usage and cost_per_token) else None

        with self._lock:
            metrics = self._get_or_create(provider)
            now = self._clock()
            metrics.successful_requests += 1
            metrics.last_success = now

            if metrics.average_latency == 0:
                metrics.average_latency = latency_ms
            else:
                metrics.average_latency = (
                    metrics.average_latency * (1 - LATENCY_EMA_ALPHA) +
                    latency_ms * LATENCY_EMA_ALPHA
                )

            tokens = None
            if usage:
                metrics.total_tokens.add(usage)
                tokens = TokenTotals()
                tokens.add(usage)
            if cost is not None:
                metrics.total_cost += cost

            self._history.append(RequestHistoryEntry(
                timestamp=now,
                provider_id=provider.id,
                success=True,
                latency=latency_ms,
                tokens=tokens,
                cost=cost,
            ))

        self._emit(MetricsEvent(
            type=MetricsEventType.REQUEST_SUCCESS,
            provider_id=provider.id,
            timestamp=now,
            latency=latency_ms,
            response=response,
            usage=usage,
            cost=cost,
            model=(response.model if response is not None else None) or provider.metadata.model,
        ))

    def record_failure(
        self,
        provider,
        error: BaseException,
        latency_ms: Optional[float] = None,
    ):
        with self._lock:
            metrics = self._get_or_create(provider)
            now = self._clock()
            metrics.failed_requests += 1
            metrics.last_failure = now

            self._history.append(RequestHistoryEntry(
                timestamp=now,
                provider_id=provider.id,
                success=False,
                latency=latency_ms or 0.0,
            ))

        self._emit(MetricsEvent(
            type=MetricsEventType.REQUEST_FAILURE,
            provider_id=provider.id,
            timestamp=now,
            latency=latency_ms,
            error=error,
            model=provider.metadata.model,
        ))

    def record_health_check(self, provider, health: ProviderHealth):
        with self._lock:
            metrics = self._get_or_create(provider)
            now = self._clock()
            metrics.health_history.append(HealthSample(
                timestamp=now,
                healthy=health.healthy,
                latency=health.latency,
            ))

        self._emit(MetricsEvent(
            type=MetricsEventType.HEALTH_CHECK,
            provider_id=provider.id,
            timestamp=now,
            health=health,
            latency=health.latency,
        ))

    # ---------------------------------------------------------- reading

    def get_provider_metrics(self, provider_id: str) -> Optional[ProviderMetrics]:
        """Snapshot of one provider's metrics, or None if never seen."""
        with self._lock:
            metrics = self._provider_metrics.get(provider_id)
            return copy.deepcopy(metrics) if metrics else None

    def get_all_provider_metrics(self) -> Dict[str, ProviderMetrics]:
        with self._lock:
            return copy.deepcopy(self._provider_metrics)

    def get_strategy_metrics(self) -> StrategyMetrics:
        with self._lock:
            return copy.deepcopy(self._strategy_metrics)

    def get_orchestrator_metrics(self) -> OrchestratorMetrics:
        with self._lock:
            now = self._clock()
            history = list(self._history)
            provider_metrics = copy.deepcopy(self._provider_metrics)
            strategy_metrics = copy.deepcopy(self._strategy_metrics)

        total = len(history)
        successful = sum(1 for entry in history if entry.success)
        failed = total - successful
        total_latency = sum(entry.latency for entry in history)

        return OrchestratorMetrics(
            total_requests=total,
            successful_requests=successful,
            failed_requests=failed,
            total_cost=sum(m.total_cost for m in provider_metrics.values()),
            provider_metrics=provider_metrics,
            strategy_metrics=strategy_metrics,
            average_request_latency=total_latency / total if total else 0.0,
            requests_per_minute=sum(1 for entry in history if entry.timestamp > now - 60),
            error_rate=failed / total if total else 0.0,
        )

    def get_request_history(
        self,
        provider_id: Optional[str] = None,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[RequestHistoryEntry]:
        """
        Filtered request history, oldest first.

        limit keeps the most recent matching entries.
        """
        with self._lock:
            entries = list(self._history)

        if provider_id:
            entries = [e for e in entries if e.provider_id == provider_id]
        if start_time is not None:
            entries = [e for e in entries if e.timestamp >= start_time]
        if end_time is not None:
            entries = [e for e in entries if e.timestamp <= end_time]
        if limit:
            entries = entries[-limit:]

        return entries

    def reset(self):
        """Clear all recorded data. Subscribers stay registered."""
        with self._lock:
            self._provider_metrics.clear()
            self._strategy_metrics = StrategyMetrics()
            self._history.clear()
