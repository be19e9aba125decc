"""
AI Orchestrator - Selection Strategies

Policies for picking one provider out of the currently available ones:
- ROUND_ROBIN: Rotate through providers in order
- PRIORITY: Lowest configured priority number wins
- FALLBACK: First provider of a preferred order that is available
- WEIGHTED: Weighted random draw, optionally cost-aware
- HEALTH_AWARE: Highest success-rate x latency score wins

Every strategy first drops providers already attempted in the current call
and returns None when nothing remains. Strategies only see the list they are
handed; they never look providers up anywhere else.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.errors import StrategyError
from ..core.models import ProviderHealth, SelectionContext
from ..observability.logging import get_logger
from .health import HealthCheckConfig, HealthMonitor

logger = get_logger(__name__)

DEFAULT_PRIORITY = 999
DEFAULT_WEIGHT = 1.0

# Added to the average token cost so free providers do not divide by zero
COST_EPSILON = 0.0001


class StrategyType(str, Enum):
    ROUND_ROBIN = "round-robin"
    PRIORITY = "priority"
    FALLBACK = "fallback"
    WEIGHTED = "weighted"
    HEALTH_AWARE = "health-aware"

    @classmethod
    def parse(cls, value: str) -> "StrategyType":
        """Accepts "round-robin", "round_robin", "roundrobin" and friends."""
        normalized = value.strip().lower().replace("_", "-")
        for member in cls:
            if normalized in (member.value, member.value.replace("-", "")):
                return member
        raise StrategyError(f"Unknown strategy type: {value}", strategy=value)


def filter_attempted(providers: Sequence, context: Optional[SelectionContext]) -> List:
    """Drop providers already attempted in this call."""
    if context is None or not context.previous_attempts:
        return list(providers)
    attempted = set(context.previous_attempts)
    return [p for p in providers if p.id not in attempted]


class RoundRobinStrategy:
    """
    Cycles through the available providers.

    The cursor is shared by all calls. When the available list shrinks below
    the cursor, the cursor restarts at 0.
    """

    name = StrategyType.ROUND_ROBIN.value

    def __init__(self):
        self._index = 0
        self._lock = Lock()

    async def select(self, providers, context: Optional[SelectionContext] = None):
        available = filter_attempted(providers, context)
        if not available:
            return None

        with self._lock:
            if self._index >= len(available):
                self._index = 0
            selected = available[self._index]
            self._index = (self._index + 1) % len(available)

        return selected

    def update(self, provider, success: bool, metadata: Optional[Any] = None) -> None:
        pass

    def reset(self):
        with self._lock:
            self._index = 0


class PriorityStrategy:
    """Picks the provider with the lowest priority number (missing = 999)."""

    name = StrategyType.PRIORITY.value

    def __init__(self, priorities: Optional[Mapping[str, int]] = None):
        self._priorities: Dict[str, int] = dict(priorities or {})

    async def select(self, providers, context: Optional[SelectionContext] = None):
        available = filter_attempted(providers, context)
        if not available:
            return None

        # sorted() is stable: equal priorities keep availability order
        ranked = sorted(available, key=lambda p: self._priorities.get(p.id, DEFAULT_PRIORITY))
        return ranked[0]

    def update(self, provider, success: bool, metadata: Optional[Any] = None) -> None:
        pass

    def set_priority(self, provider_id: str, priority: int):
        self._priorities[provider_id] = priority

    def get_priority(self, provider_id: str) -> int:
        return self._priorities.get(provider_id, DEFAULT_PRIORITY)


class FallbackStrategy:
    """
    Walks a preferred order and returns the first available provider.

    With no order, or no listed provider available, the first available
    provider is returned.
    """

    name = StrategyType.FALLBACK.value

    def __init__(self, order: Optional[Sequence[str]] = None):
        self.order: List[str] = list(order or [])

    async def select(self, providers, context: Optional[SelectionContext] = None):
        available = filter_attempted(providers, context)
        if not available:
            return None

        by_id = {p.id: p for p in available}
        for provider_id in self.order:
            if provider_id in by_id:
                return by_id[provider_id]

        return available[0]

    def update(self, provider, success: bool, metadata: Optional[Any] = None) -> None:
        pass


class WeightedStrategy:
    """
    Weighted random selection.

    In cost-aware mode each weight is divided by the provider's average cost
    per token, so cheaper providers are drawn more often.
    """

    name = StrategyType.WEIGHTED.value

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        cost_aware: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self._weights: Dict[str, float] = dict(weights or {})
        self.cost_aware = cost_aware
        self._rng = rng or random.Random()
        self._lock = Lock()

    def effective_weight(self, provider) -> float:
        weight = self._weights.get(provider.id, DEFAULT_WEIGHT)
        cost = provider.metadata.cost_per_token
        if self.cost_aware and cost is not None:
            weight = weight / (cost.average + COST_EPSILON)
        return weight

    async def select(self, providers, context: Optional[SelectionContext] = None):
        available = filter_attempted(providers, context)
        if not available:
            return None

        weighted = [(p, self.effective_weight(p)) for p in available]
        total = sum(weight for _, weight in weighted)
        if total <= 0:
            return available[0]

        with self._lock:
            remaining = self._rng.random() * total

        for provider, weight in weighted:
            remaining -= weight
            if remaining <= 0:
                return provider

        # Float rounding can leave a sliver above zero
        return available[-1]

    def update(self, provider, success: bool, metadata: Optional[Any] = None) -> None:
        pass

    def set_weight(self, provider_id: str, weight: float):
        if weight < 0:
            raise StrategyError(f"Weight must be non-negative, got {weight}", strategy=self.name)
        self._weights[provider_id] = weight

    def get_weight(self, provider_id: str) -> float:
        return self._weights.get(provider_id, DEFAULT_WEIGHT)


@dataclass
class _ProviderStats:
    success_count: int = 0
    failure_count: int = 0
    avg_latency: Optional[float] = None


class HealthAwareStrategy:
    """
    Ranks providers by score = success_rate x latency_factor.

    success_rate and average latency come from update() feedback;
    latency_factor falls linearly from 1 at 1000ms to 0 at 5000ms.
    Providers whose latest probe was unhealthy are skipped for this
    selection only. Ties go to the lower probe latency when
    prefer_low_latency is set.

    By default the probe results cached by the dispatcher in
    context.health are used. probe_on_select=True probes the candidates
    again, concurrently, on every selection.
    """

    name = StrategyType.HEALTH_AWARE.value

    def __init__(
        self,
        prefer_low_latency: bool = True,
        min_health_score: float = 0.0,
        probe_on_select: bool = False,
        probe_timeout_ms: float = 5000.0,
    ):
        if not 0.0 <= min_health_score <= 1.0:
            raise StrategyError(
                f"min_health_score must be between 0 and 1, got {min_health_score}",
                strategy=self.name,
            )
        self.prefer_low_latency = prefer_low_latency
        self.min_health_score = min_health_score
        self.probe_on_select = probe_on_select
        self.probe_timeout_ms = probe_timeout_ms
        self._stats: Dict[str, _ProviderStats] = {}
        self._lock = Lock()

    async def _probe(self, providers) -> Dict[str, ProviderHealth]:
        monitor = HealthMonitor(HealthCheckConfig(timeout_ms=self.probe_timeout_ms))
        results = await asyncio.gather(*(monitor.probe(p) for p in providers))
        return {p.id: health for p, health in zip(providers, results)}

    def health_score(self, provider_id: str) -> float:
        with self._lock:
            stats = self._stats.get(provider_id)
            if stats is None:
                return 1.0
            return self._score(stats)

    @staticmethod
    def _score(stats: _ProviderStats) -> float:
        total = stats.success_count + stats.failure_count
        if total == 0:
            return 1.0

        success_rate = stats.success_count / total
        latency_factor = 1.0
        if stats.avg_latency is not None:
            latency_factor = max(0.0, 1 - (stats.avg_latency - 1000) / 4000)

        return success_rate * latency_factor

    async def select(self, providers, context: Optional[SelectionContext] = None):
        available = filter_attempted(providers, context)
        if not available:
            return None

        if self.probe_on_select:
            health = await self._probe(available)
        else:
            health = context.health if context is not None else {}

        candidates = []
        for provider in available:
            probe = health.get(provider.id)
            if probe is not None and not probe.healthy:
                continue

            score = self.health_score(provider.id)
            if score < self.min_health_score:
                continue

            latency = probe.latency if (probe and probe.latency is not None) else float("inf")
            candidates.append((provider, score, latency))

        if not candidates:
            logger.debug(
                "No provider passed health filtering",
                strategy=self.name,
                min_health_score=self.min_health_score,
            )
            return None

        if self.prefer_low_latency:
            candidates.sort(key=lambda c: (-c[1], c[2]))
        else:
            candidates.sort(key=lambda c: -c[1])

        return candidates[0][0]

    def update(self, provider, success: bool, metadata: Optional[Any] = None) -> None:
        latency = None
        if isinstance(metadata, Mapping):
            latency = metadata.get("latency")

        with self._lock:
            stats = self._stats.setdefault(provider.id, _ProviderStats())
            if success:
                stats.success_count += 1
                if isinstance(latency, (int, float)):
                    stats.avg_latency = (
                        float(latency) if stats.avg_latency is None
                        else (stats.avg_latency + latency) / 2
                    )
            else:
                stats.failure_count += 1


def create_strategy(strategy_type, **options):
    """
    Build a strategy from its type and keyword options.

        create_strategy("weighted", weights={"a": 3, "b": 1}, cost_aware=True)
    """
    if not isinstance(strategy_type, StrategyType):
        strategy_type = StrategyType.parse(str(strategy_type))

    builders = {
        StrategyType.ROUND_ROBIN: RoundRobinStrategy,
        StrategyType.PRIORITY: PriorityStrategy,
        StrategyType.FALLBACK: FallbackStrategy,
        StrategyType.WEIGHTED: WeightedStrategy,
        StrategyType.HEALTH_AWARE: HealthAwareStrategy,
    }

    try:
        return builders[strategy_type](**options)
    except TypeError as e:
        raise StrategyError(
            f"Invalid options for {strategy_type.value} strategy: {e}",
            strategy=strategy_type.value,
        ) from e

