"""
AI Orchestrator - Selection Strategy Tests

Verifies:
- Round-robin rotation and cursor reset
- Priority ordering with the 999 default
- Fallback order and first-available fallback
- Weighted draw ratios (seeded) and cost awareness
- Health-aware scoring, filtering and tie-breaks
- Attempted-list filtering shared by every strategy
- Strategy factory
"""

import random
from collections import Counter

import pytest

from ai_orchestrator.core.errors import StrategyError
from ai_orchestrator.core.models import CostPerToken, ProviderHealth, SelectionContext
from ai_orchestrator.routing.strategies import (
    FallbackStrategy,
    HealthAwareStrategy,
    PriorityStrategy,
    RoundRobinStrategy,
    StrategyType,
    WeightedStrategy,
    create_strategy,
    filter_attempted,
)
from ai_orchestrator.testing import StubProvider


@pytest.fixture
def providers():
    return [StubProvider("a"), StubProvider("b"), StubProvider("c")]


def ids(selected):
    return [p.id for p in selected]


# ============================================================
# Common behaviour
# ============================================================

class TestAttemptedFiltering:
    """Every strategy skips providers already attempted in the call."""

    def test_filter_attempted(self, providers):
        context = SelectionContext(previous_attempts=["a", "c"])
        assert ids(filter_attempted(providers, context)) == ["b"]

    def test_filter_without_context(self, providers):
        assert ids(filter_attempted(providers, None)) == ["a", "b", "c"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", [
        RoundRobinStrategy(),
        PriorityStrategy(),
        FallbackStrategy(),
        WeightedStrategy(rng=random.Random(1)),
        HealthAwareStrategy(),
    ], ids=lambda s: s.name)
    async def test_returns_none_when_all_attempted(self, strategy, providers):
        context = SelectionContext(previous_attempts=["a", "b", "c"])
        assert await strategy.select(providers, context) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", [
        RoundRobinStrategy(),
        PriorityStrategy(),
        FallbackStrategy(),
        WeightedStrategy(rng=random.Random(1)),
        HealthAwareStrategy(),
    ], ids=lambda s: s.name)
    async def test_returns_none_for_empty_list(self, strategy):
        assert await strategy.select([], SelectionContext()) is None


# ============================================================
# Round-robin
# ============================================================

class TestRoundRobinStrategy:
    """Test rotation."""

    @pytest.mark.asyncio
    async def test_rotates_in_order(self, providers):
        strategy = RoundRobinStrategy()
        picks = [(await strategy.select(providers)).id for _ in range(6)]
        assert picks == ["a", "b", "c", "a", "b", "c"]

    @pytest.mark.asyncio
    async def test_even_distribution(self, providers):
        """N providers, N+k selections: each picked (N+k)//N or one more times."""
        strategy = RoundRobinStrategy()
        n, k = len(providers), 5
        counts = Counter([(await strategy.select(providers)).id for _ in range(n + k)])

        base = (n + k) // n
        assert all(count in (base, base + 1) for count in counts.values())
        assert sum(counts.values()) == n + k

    @pytest.mark.asyncio
    async def test_cursor_resets_when_list_shrinks(self, providers):
        strategy = RoundRobinStrategy()
        await strategy.select(providers)
        await strategy.select(providers)
        # cursor is now 2; a list of two providers resets it
        selected = await strategy.select(providers[:2])
        assert selected.id == "a"

    @pytest.mark.asyncio
    async def test_skips_attempted(self, providers):
        strategy = RoundRobinStrategy()
        context = SelectionContext(previous_attempts=["a"])
        assert (await strategy.select(providers, context)).id == "b"


# ============================================================
# Priority
# ============================================================

class TestPriorityStrategy:
    """Test priority ordering."""

    @pytest.mark.asyncio
    async def test_lowest_number_wins(self, providers):
        strategy = PriorityStrategy({"a": 1, "b": 2, "c": 3})
        for _ in range(3):
            assert (await strategy.select(providers)).id == "a"

    @pytest.mark.asyncio
    async def test_next_priority_after_attempt(self, providers):
        strategy = PriorityStrategy({"a": 1, "b": 2, "c": 3})
        context = SelectionContext(previous_attempts=["a"])
        assert (await strategy.select(providers, context)).id == "b"

    @pytest.mark.asyncio
    async def test_missing_priority_sorts_last(self, providers):
        strategy = PriorityStrategy({"c": 500})
        assert (await strategy.select(providers)).id == "c"
        assert strategy.get_priority("a") == 999

    @pytest.mark.asyncio
    async def test_ties_keep_input_order(self, providers):
        strategy = PriorityStrategy({"b": 1, "c": 1})
        assert (await strategy.select(providers)).id == "b"

    @pytest.mark.asyncio
    async def test_set_priority(self, providers):
        strategy = PriorityStrategy({"a": 1, "b": 2})
        strategy.set_priority("b", 0)
        assert (await strategy.select(providers)).id == "b"


# ============================================================
# Fallback
# ============================================================

class TestFallbackStrategy:
    """Test preferred-order selection."""

    @pytest.mark.asyncio
    async def test_first_listed_available(self, providers):
        strategy = FallbackStrategy(["a", "b", "c"])
        assert (await strategy.select(providers[1:])).id == "b"

    @pytest.mark.asyncio
    async def test_no_order_returns_first_available(self, providers):
        strategy = FallbackStrategy()
        assert (await strategy.select(providers)).id == "a"

    @pytest.mark.asyncio
    async def test_unlisted_only_returns_first_available(self, providers):
        strategy = FallbackStrategy(["x", "y"])
        assert (await strategy.select(providers)).id == "a"

    @pytest.mark.asyncio
    async def test_order_wins_over_list_order(self, providers):
        strategy = FallbackStrategy(["c", "a"])
        assert (await strategy.select(providers)).id == "c"


# ============================================================
# Weighted
# ============================================================

class TestWeightedStrategy:
    """Test weighted random draws."""

    @pytest.mark.asyncio
    async def test_ratio_matches_weights(self):
        strategy = WeightedStrategy({"a": 0.9, "b": 0.1}, rng=random.Random(42))
        pool = [StubProvider("a"), StubProvider("b")]

        counts = Counter([(await strategy.select(pool)).id for _ in range(10000)])

        share = counts["a"] / 10000
        assert 0.88 <= share <= 0.92

    @pytest.mark.asyncio
    async def test_default_weight_is_one(self):
        strategy = WeightedStrategy(rng=random.Random(7))
        pool = [StubProvider("a"), StubProvider("b")]

        counts = Counter([(await strategy.select(pool)).id for _ in range(4000)])
        assert 0.45 <= counts["a"] / 4000 <= 0.55

    @pytest.mark.asyncio
    async def test_zero_total_returns_first(self, providers):
        strategy = WeightedStrategy({"a": 0, "b": 0, "c": 0}, rng=random.Random(1))
        assert (await strategy.select(providers)).id == "a"

    @pytest.mark.asyncio
    async def test_zero_weight_never_drawn(self):
        strategy = WeightedStrategy({"a": 0, "b": 1}, rng=random.Random(3))
        pool = [StubProvider("a"), StubProvider("b")]
        picks = {(await strategy.select(pool)).id for _ in range(500)}
        assert picks == {"b"}

    def test_cost_aware_weight(self):
        cheap = StubProvider("cheap", cost_per_token=CostPerToken(prompt=0.0001, completion=0.0003))
        strategy = WeightedStrategy(cost_aware=True)

        # 1.0 / (0.0002 + 0.0001)
        assert strategy.effective_weight(cheap) == pytest.approx(1 / 0.0003)

    @pytest.mark.asyncio
    async def test_cost_aware_prefers_cheaper(self):
        cheap = StubProvider("cheap", cost_per_token=CostPerToken(prompt=0.0, completion=0.0))
        pricey = StubProvider("pricey", cost_per_token=CostPerToken(prompt=0.01, completion=0.01))
        strategy = WeightedStrategy(cost_aware=True, rng=random.Random(11))

        counts = Counter([(await strategy.select([cheap, pricey])).id for _ in range(2000)])
        assert counts["cheap"] > counts["pricey"] * 10

    def test_set_weight(self):
        strategy = WeightedStrategy()
        strategy.set_weight("a", 3.0)
        assert strategy.get_weight("a") == 3.0
        assert strategy.get_weight("b") == 1.0

    def test_negative_weight_rejected(self):
        with pytest.raises(StrategyError):
            WeightedStrategy().set_weight("a", -1)


# ============================================================
# Health-aware
# ============================================================

class TestHealthAwareStrategy:
    """Test score = success_rate x latency_factor."""

    def test_score_without_data_is_one(self):
        assert HealthAwareStrategy().health_score("a") == 1.0

    def test_score_from_feedback(self):
        strategy = HealthAwareStrategy()
        a = StubProvider("a")
        strategy.update(a, True, {"latency": 3000})
        strategy.update(a, False)

        # success_rate 0.5, latency_factor 1 - (3000 - 1000) / 4000 = 0.5
        assert strategy.health_score("a") == pytest.approx(0.25)

    def test_latency_average_is_pairwise(self):
        strategy = HealthAwareStrategy()
        a = StubProvider("a")
        strategy.update(a, True, {"latency": 1000})
        strategy.update(a, True, {"latency": 5000})

        # avg (1000 + 5000) / 2 = 3000 -> factor 0.5
        assert strategy.health_score("a") == pytest.approx(0.5)

    def test_latency_factor_floors_at_zero(self):
        strategy = HealthAwareStrategy()
        a = StubProvider("a")
        strategy.update(a, True, {"latency": 20000})
        assert strategy.health_score("a") == 0.0

    @pytest.mark.asyncio
    async def test_prefers_higher_score(self, providers):
        strategy = HealthAwareStrategy()
        a, b, _ = providers
        strategy.update(a, False)
        strategy.update(b, True, {"latency": 100})

        assert (await strategy.select(providers)).id == "b"

    @pytest.mark.asyncio
    async def test_min_health_score_excludes(self, providers):
        strategy = HealthAwareStrategy(min_health_score=0.6)
        for p in providers:
            strategy.update(p, False)

        assert await strategy.select(providers) is None

    @pytest.mark.asyncio
    async def test_unhealthy_probe_excluded(self, providers):
        strategy = HealthAwareStrategy()
        context = SelectionContext(health={
            "a": ProviderHealth(healthy=False),
            "b": ProviderHealth(healthy=True, latency=50),
            "c": ProviderHealth(healthy=True, latency=20),
        })
        # equal scores, c has the lowest probe latency
        assert (await strategy.select(providers, context)).id == "c"

    @pytest.mark.asyncio
    async def test_ties_stable_without_latency_preference(self, providers):
        strategy = HealthAwareStrategy(prefer_low_latency=False)
        context = SelectionContext(health={
            "a": ProviderHealth(healthy=True, latency=900),
            "b": ProviderHealth(healthy=True, latency=10),
        })
        assert (await strategy.select(providers, context)).id == "a"

    @pytest.mark.asyncio
    async def test_probe_on_select(self):
        strategy = HealthAwareStrategy(probe_on_select=True, probe_timeout_ms=200)
        down = StubProvider("down", healthy=False)
        up = StubProvider("up")

        assert (await strategy.select([down, up])).id == "up"
        assert down.health_checks == 1
        assert up.health_checks == 1

    def test_invalid_min_score(self):
        with pytest.raises(StrategyError):
            HealthAwareStrategy(min_health_score=1.5)


# ============================================================
# Factory
# ============================================================

class TestCreateStrategy:
    """Test strategy factory."""

    @pytest.mark.parametrize("name,expected", [
        ("round-robin", RoundRobinStrategy),
        ("roundrobin", RoundRobinStrategy),
        ("round_robin", RoundRobinStrategy),
        ("priority", PriorityStrategy),
        ("fallback", FallbackStrategy),
        ("weighted", WeightedStrategy),
        ("health-aware", HealthAwareStrategy),
        ("healthaware", HealthAwareStrategy),
        ("Health-Aware", HealthAwareStrategy),
    ])
    def test_known_types(self, name, expected):
        assert isinstance(create_strategy(name), expected)

    def test_enum_type(self):
        strategy = create_strategy(StrategyType.PRIORITY, priorities={"a": 1})
        assert strategy.get_priority("a") == 1

    def test_unknown_type(self):
        with pytest.raises(StrategyError, match="Unknown strategy type"):
            create_strategy("random")

    def test_bad_options(self):
        with pytest.raises(StrategyError, match="Invalid options"):
            create_strategy("round-robin", weights={"a": 1})
