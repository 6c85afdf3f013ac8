"""
Strategy Generator for Test Self-Healing System.

Produces candidate healing strategies for a failure by blending model
suggestions with the learned pattern table, then ranks them using
historical success rates and context similarity.
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.healing_utils import error_message, extract_hostname
from ..core.models import (
    ErrorClassification, HealingContext, RankedStrategy,
    StrategyCandidate, StrategySource
)
from ..crew_ai.ai_integration import AIIntegration
from .error_classifier import ErrorClassifier
from .pattern_store import PatternStore

logger = logging.getLogger(__name__)


class StrategyGenerator:
    """Generates and ranks candidate strategies for one error analysis."""

    HISTORY_WEIGHT = 30
    SIMILARITY_WEIGHT = 20
    SIMILAR_CONTEXT_SCORE = 0.8
    DISSIMILAR_CONTEXT_SCORE = 0.3
    DEFAULT_CONFIDENCE = 50

    def __init__(
        self,
        store: PatternStore,
        ai_integration: Optional[AIIntegration] = None,
        classifier: Optional[ErrorClassifier] = None,
        enable_ai: bool = True
    ):
        self.store = store
        self.ai_integration = ai_integration
        self.classifier = classifier or ErrorClassifier()
        self.enable_ai = enable_ai

    async def generate(
        self,
        error: Any,
        context: HealingContext,
        classification: Optional[ErrorClassification] = None
    ) -> List[StrategyCandidate]:
        """
        Produce candidates from the model and from learned patterns.

        Args:
            error: The failure being healed
            context: Context snapshot taken at failure time
            classification: Precomputed classification, derived if omitted

        Returns:
            Model candidates followed by pattern candidates, not de-duplicated
        """
        classification = classification or self.classifier.classify(error)
        candidates = await self._ai_candidates(error, context)
        candidates.extend(self.pattern_candidates(classification, context))
        logger.debug(
            f"Generated {len(candidates)} candidates for {classification.value}: "
            f"{[c.name for c in candidates]}"
        )
        return candidates

    async def _ai_candidates(self, error: Any, context: HealingContext) -> List[StrategyCandidate]:
        if not self.enable_ai or self.ai_integration is None:
            return []
        try:
            raw_strategies = await self.ai_integration.generate_healing_strategies(error, context)
        except Exception as e:
            logger.error(f"AI strategy generation failed for '{error_message(error)[:80]}': {e}")
            return []
        return [c for c in (self._to_candidate(raw) for raw in raw_strategies or []) if c is not None]

    @staticmethod
    def _to_candidate(raw: Dict[str, Any]) -> Optional[StrategyCandidate]:
        if not isinstance(raw, dict):
            return None
        name = raw.get("strategy") or raw.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        try:
            confidence = float(raw["confidence"]) if raw.get("confidence") is not None else None
        except (TypeError, ValueError):
            confidence = None
        implementation = raw.get("implementation")
        return StrategyCandidate(
            name=name.strip(),
            description=str(raw.get("description") or ""),
            implementation=implementation if isinstance(implementation, str) else None,
            confidence=confidence,
            source=StrategySource.AI
        )

    def pattern_lookup_keys(self, classification: ErrorClassification, context: HealingContext) -> List[str]:
        """Pattern table keys consulted for a classification and context."""
        keys = [classification.value]
        if context.test_type in ("ui", "api"):
            keys.append(f"{context.test_type}_{classification.value}")
        if context.page_url:
            keys.append(f"{extract_hostname(context.page_url)}_{classification.value}")
        return keys

    def pattern_candidates(self, classification: ErrorClassification, context: HealingContext) -> List[StrategyCandidate]:
        """Candidates built from learned patterns matching the lookup keys."""
        candidates = []
        for key in self.pattern_lookup_keys(classification, context):
            pattern = self.store.get_pattern(key)
            if pattern is None:
                continue
            candidates.append(StrategyCandidate(
                name=pattern.name,
                description=pattern.description,
                implementation=pattern.implementation,
                confidence=pattern.success_rate * 100,
                source=StrategySource.PATTERN
            ))
        return candidates

    def context_similarity(self, context: HealingContext) -> float:
        """0.8 if a past healing shared test type and page URL, else 0.3."""
        if self.store.has_similar_context(context.test_type, context.page_url):
            return self.SIMILAR_CONTEXT_SCORE
        return self.DISSIMILAR_CONTEXT_SCORE

    def score(self, candidate: StrategyCandidate, similarity: float) -> float:
        """Blend confidence, smoothed historical success and context similarity."""
        confidence = candidate.confidence if candidate.confidence is not None else self.DEFAULT_CONFIDENCE
        value = (
            confidence
            + self.store.get_success_rate(candidate.name) * self.HISTORY_WEIGHT
            + similarity * self.SIMILARITY_WEIGHT
        )
        return max(0.0, min(100.0, value))

    def rank_strategies(self, candidates: List[StrategyCandidate], context: HealingContext) -> List[RankedStrategy]:
        """Score candidates and sort descending; ties keep generation order."""
        similarity = self.context_similarity(context)
        ranked = [
            RankedStrategy(
                name=c.name,
                description=c.description,
                implementation=c.implementation,
                confidence=c.confidence,
                source=c.source,
                score=self.score(c, similarity)
            )
            for c in candidates
        ]
        return sorted(ranked, key=lambda s: s.score, reverse=True)
