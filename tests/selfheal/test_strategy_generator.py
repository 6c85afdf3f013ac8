"""
Tests for strategy generation and ranking.
"""

import pytest

from selfheal.core.models import (
    ErrorClassification, HealingContext, HealingHistoryEntry, StrategyCandidate, StrategySource
)
from selfheal.services.strategy_generator import StrategyGenerator


@pytest.fixture
def ui_context():
    return HealingContext(test_type="ui", page_url="https://shop.example.com/cart", timestamp=1)


@pytest.fixture
def generator(pattern_store, mock_ai_integration):
    return StrategyGenerator(pattern_store, ai_integration=mock_ai_integration)


class TestGenerate:
    """Test candidate generation from the model and the pattern table."""

    @pytest.mark.asyncio
    async def test_ai_candidates_are_converted(self, generator, mock_ai_integration, ui_context):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "locator_healing", "description": "Try alternatives", "confidence": 85},
            {"name": "wait_healing", "confidence": "70"},
            {"description": "missing name"},
            "not a dict",
        ]

        candidates = await generator.generate(Exception("element not found"), ui_context)

        assert [c.name for c in candidates] == ["locator_healing", "wait_healing"]
        assert candidates[0].confidence == 85
        assert candidates[1].confidence == 70.0
        assert all(c.source == StrategySource.AI for c in candidates)

    @pytest.mark.asyncio
    async def test_ai_failure_yields_no_ai_candidates(self, generator, mock_ai_integration, ui_context):
        mock_ai_integration.generate_healing_strategies.side_effect = RuntimeError("model down")
        assert await generator.generate(Exception("timeout"), ui_context) == []

    @pytest.mark.asyncio
    async def test_ai_disabled(self, pattern_store, mock_ai_integration, ui_context):
        generator = StrategyGenerator(pattern_store, ai_integration=mock_ai_integration, enable_ai=False)
        assert await generator.generate(Exception("timeout"), ui_context) == []
        mock_ai_integration.generate_healing_strategies.assert_not_called()

    @pytest.mark.asyncio
    async def test_pattern_candidates_follow_ai_candidates(self, generator, mock_ai_integration, pattern_store, ui_context):
        mock_ai_integration.generate_healing_strategies.return_value = [{"strategy": "wait_healing"}]
        pattern_store.record_outcome("wait_failure", True, "learned wait")
        pattern_store.record_outcome("wait_failure", False)

        candidates = await generator.generate(Exception("Timeout exceeded"), ui_context)

        assert [c.name for c in candidates] == ["wait_healing", "wait_failure"]
        assert candidates[1].source == StrategySource.PATTERN
        assert candidates[1].confidence == 50.0

    @pytest.mark.asyncio
    async def test_no_deduplication(self, generator, mock_ai_integration, ui_context):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "locator_healing"}, {"strategy": "locator_healing"}
        ]
        candidates = await generator.generate(Exception("element not found"), ui_context)
        assert len(candidates) == 2


class TestPatternLookup:
    """Test the pattern table lookup keys."""

    def test_keys_for_ui_context_with_url(self, generator, ui_context):
        keys = generator.pattern_lookup_keys(ErrorClassification.LOCATOR_FAILURE, ui_context)
        assert keys == ["locator_failure", "ui_locator_failure", "shop.example.com_locator_failure"]

    def test_unparseable_url_uses_unknown_host(self, generator):
        context = HealingContext(test_type="api", page_url="not a url")
        keys = generator.pattern_lookup_keys(ErrorClassification.API_FAILURE, context)
        assert keys == ["api_failure", "api_api_failure", "unknown_api_failure"]

    def test_no_url_no_host_key(self, generator):
        context = HealingContext(test_type="mobile")
        assert generator.pattern_lookup_keys(ErrorClassification.WAIT_FAILURE, context) == ["wait_failure"]


class TestRanking:
    """Test scoring and ordering."""

    def test_score_formula_with_defaults(self, generator, ui_context):
        ranked = generator.rank_strategies([StrategyCandidate(name="locator_healing")], ui_context)
        # 50 + 0.5 * 30 + 0.3 * 20
        assert ranked[0].score == pytest.approx(71.0)

    def test_zero_confidence_is_not_defaulted(self, generator, ui_context):
        ranked = generator.rank_strategies([StrategyCandidate(name="locator_healing", confidence=0.0)], ui_context)
        # 0 + 0.5 * 30 + 0.3 * 20
        assert ranked[0].score == pytest.approx(21.0)

    def test_score_is_clamped(self, generator, ui_context):
        ranked = generator.rank_strategies([
            StrategyCandidate(name="a", confidence=100),
            StrategyCandidate(name="b", confidence=-100),
        ], ui_context)
        assert ranked[0].score == 100.0
        assert ranked[1].score == 0.0

    def test_historical_success_raises_score(self, generator, pattern_store, ui_context):
        pattern_store.bump_success_rate("wait_healing")
        ranked = generator.rank_strategies([
            StrategyCandidate(name="locator_healing", confidence=60),
            StrategyCandidate(name="wait_healing", confidence=60),
        ], ui_context)
        assert [s.name for s in ranked] == ["wait_healing", "locator_healing"]
        assert ranked[0].score - ranked[1].score == pytest.approx(7.5)

    def test_similar_context_bonus(self, generator, pattern_store, ui_context):
        pattern_store.append_history(HealingHistoryEntry(
            timestamp=1, error="x", success=True,
            context={"testType": "ui", "pageUrl": "https://shop.example.com/cart"}
        ))
        ranked = generator.rank_strategies([StrategyCandidate(name="x", confidence=50)], ui_context)
        # 50 + 15 + 0.8 * 20
        assert ranked[0].score == pytest.approx(81.0)

    def test_ties_keep_generation_order(self, generator, ui_context):
        candidates = [StrategyCandidate(name=name, confidence=60) for name in ("first", "second", "third")]
        ranked = generator.rank_strategies(candidates, ui_context)
        assert [s.name for s in ranked] == ["first", "second", "third"]

    def test_empty_list(self, generator, ui_context):
        assert generator.rank_strategies([], ui_context) == []
