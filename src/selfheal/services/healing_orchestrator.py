"""
Healing Orchestrator Service for Test Self-Healing System.

This service coordinates the healing workflow for one failure: it classifies
the error, asks the generator for ranked strategies, runs them in order
under an overall deadline, and folds every outcome into the learning store.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.healing_utils import create_healing_context, current_millis, error_message, json_safe
from ..core.logging_config import get_healing_logger
from ..core.metrics import get_metrics_collector
from ..core.models import (
    ErrorAnalysis, HealingConfiguration, HealingContext,
    HealingHistoryEntry, HealingMode, RankedStrategy, StrategyResult
)
from ..crew_ai.ai_integration import AIIntegration
from .api_healing_strategies import APIHealingStrategies
from .error_classifier import ErrorClassifier
from .pattern_store import PatternStore, create_backend, create_pattern_store
from .strategy_generator import StrategyGenerator
from .strategy_registry import StrategyRegistry
from .ui_healing_strategies import UIHealingStrategies

logger = logging.getLogger(__name__)

ContextLike = Union[HealingContext, Dict[str, Any], None]


class StrategyRejectedError(Exception):
    """Raised when a strategy implementation is refused instead of executed."""


class HealingOrchestrator:
    """Main orchestrator for the test self-healing workflow."""

    def __init__(
        self,
        config: Optional[HealingConfiguration] = None,
        store: Optional[PatternStore] = None,
        ai_integration: Optional[AIIntegration] = None,
        classifier: Optional[ErrorClassifier] = None,
        ui_strategies: Optional[UIHealingStrategies] = None,
        api_strategies: Optional[APIHealingStrategies] = None
    ):
        """Initialize the healing orchestrator.

        Args:
            config: Healing configuration settings
            store: Learning store; built from the configured backend if omitted
            ai_integration: Model collaborator; built from config if omitted
            classifier: Error classifier shared with the generator
            ui_strategies: Executor for browser strategies
            api_strategies: Executor for HTTP API strategies
        """
        self.config = config or HealingConfiguration()
        self.store = store or create_pattern_store(self.config)
        self.ai_integration = ai_integration or AIIntegration(self.config, backend=create_backend(self.config))
        self.classifier = classifier or ErrorClassifier()

        self.generator = StrategyGenerator(
            self.store,
            ai_integration=self.ai_integration,
            classifier=self.classifier,
            enable_ai=self.config.enable_ai
        )
        self.ui_strategies = ui_strategies or UIHealingStrategies(self.config, self.ai_integration)
        self.api_strategies = api_strategies or APIHealingStrategies(self.config, self.ai_integration)
        self.registry = StrategyRegistry(self.ui_strategies, self.api_strategies, self.heal_data_issue)

        # Callables registered in code for names outside the built-in table
        self.custom_strategies: Dict[str, Callable[..., Any]] = {}

        self.metrics_collector = get_metrics_collector()
        self._initialized = False

        logger.info(f"Healing orchestrator initialized in {self.config.healing_mode.value} mode")

    async def initialize(self):
        """Load learned patterns. Missing or unreadable storage starts fresh."""
        try:
            await self.store.load()
        except Exception as e:
            logger.warning(f"Failed to load healing patterns: {e}")
        self._initialized = True

    def register_custom_strategy(self, name: str, implementation: Callable[..., Any]) -> None:
        """Bind a callable to a strategy name outside the built-in table.

        Raises:
            TypeError: If the implementation is not callable
        """
        if not callable(implementation):
            raise TypeError(f"Custom strategy '{name}' must be callable")
        self.custom_strategies[name] = implementation

    # ---- analysis ----

    async def analyze_error(self, error: Any, context: ContextLike = None) -> ErrorAnalysis:
        """Classify an error and produce ranked strategies. Never raises."""
        error_type = self.classifier.classify(error)
        message = error_message(error)
        self.metrics_collector.record_error_classified(error_type, message)

        healing_context = HealingContext(timestamp=current_millis())
        try:
            healing_context = create_healing_context(context)
            candidates = await self.generator.generate(error, healing_context, error_type)
            strategies = self.generator.rank_strategies(candidates, healing_context)
        except Exception as e:
            logger.error(f"Strategy generation failed for {error_type.value}: {e}")
            strategies = []

        logger.info(
            f"Analyzed {error_type.value}: {len(strategies)} strategies "
            f"{[s.name for s in strategies]}"
        )
        return ErrorAnalysis(
            error_type=error_type,
            context=healing_context,
            strategies=strategies,
            timestamp=current_millis(),
            error_message=message
        )

    def select_strategies(self, strategies: List[RankedStrategy]) -> List[RankedStrategy]:
        """Filter ranked strategies according to the healing mode."""
        mode = self.config.healing_mode

        if mode == HealingMode.CONSERVATIVE:
            confident = [s for s in strategies if s.score >= self.config.conservative_min_score]
            return confident[:self.config.max_attempts]

        if mode == HealingMode.LEARNING:
            kept = []
            for strategy in strategies:
                pattern = self.store.get_pattern(strategy.name)
                if (pattern is not None
                        and pattern.total_count >= self.config.learning_min_samples
                        and pattern.success_rate < self.config.learning_prune_below):
                    logger.debug(f"Pruning '{strategy.name}' with success rate {pattern.success_rate:.2f}")
                    continue
                kept.append(strategy)
            return kept or list(strategies)

        return list(strategies)

    # ---- healing ----

    async def apply_healing(
        self,
        analysis: ErrorAnalysis,
        test_function: Callable[..., Any],
        test_data: Any,
        context: ContextLike = None,
        deadline: Optional[float] = None
    ) -> StrategyResult:
        """
        Try ranked strategies in order until one succeeds.

        Args:
            analysis: Output of analyze_error
            test_function: The failing test
            test_data: Data the test ran with
            context: Overrides the analysis context when given
            deadline: Absolute event-loop time in seconds; defaults to
                now plus healing_timeout_ms

        Returns:
            The winning strategy's result, or a failed result listing every
            attempted strategy name
        """
        healing_context = analysis.context if context is None else create_healing_context(context)
        loop = asyncio.get_running_loop()
        if deadline is None:
            deadline = loop.time() + self.config.healing_timeout_ms / 1000

        healing_logger = get_healing_logger("orchestrator", test_case=healing_context.element or None)
        healing_logger.log_operation_start(
            "apply_healing",
            error_type=analysis.error_type.value,
            strategy_count=len(analysis.strategies)
        )

        cycle_start = time.time()
        attempted: List[str] = []

        for strategy in self.select_strategies(analysis.strategies):
            if strategy.name in attempted:
                continue

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Healing deadline reached after {len(attempted)} strategies")
                break

            attempted.append(strategy.name)
            start = time.time()
            try:
                result = await asyncio.wait_for(
                    self.execute_healing_strategy(strategy, test_function, test_data, healing_context),
                    timeout=remaining
                )
            except asyncio.TimeoutError:
                result = StrategyResult.failed("Healing deadline exceeded", strategy.name)
            except StrategyRejectedError as e:
                result = StrategyResult.failed(str(e), strategy.name)
            except Exception as e:
                result = StrategyResult.failed(error_message(e), strategy.name)

            duration_ms = (time.time() - start) * 1000
            self.metrics_collector.record_strategy_attempt(strategy.name, result.success, duration_ms)
            healing_logger.log_strategy_attempt(
                strategy.name, len(attempted), result.success, duration_ms, result.error
            )

            if result.success:
                if result.strategy is None:
                    result.strategy = strategy.name
                self.record_successful_healing(
                    strategy, result, healing_context,
                    error=analysis.error_message, attempts=len(attempted)
                )
                cycle_ms = (time.time() - cycle_start) * 1000
                self.metrics_collector.record_healing_cycle(True, cycle_ms, len(attempted))
                healing_logger.log_operation_success("apply_healing", cycle_ms, strategy=strategy.name)
                return result

            logger.info(f"Strategy '{strategy.name}' failed: {result.error}")
            self.record_failed_healing(strategy)

        self.store.append_history(HealingHistoryEntry(
            timestamp=current_millis(),
            error=analysis.error_message,
            success=False,
            attempts=len(attempted),
            strategies=list(attempted),
            context=self._history_context(healing_context)
        ))

        cycle_ms = (time.time() - cycle_start) * 1000
        self.metrics_collector.record_healing_cycle(False, cycle_ms, len(attempted))
        healing_logger.log_operation_failure(
            "apply_healing", cycle_ms, "All healing strategies failed", strategies=attempted
        )
        return StrategyResult(success=False, error="All healing strategies failed", strategies=attempted)

    async def execute_healing_strategy(
        self,
        strategy: RankedStrategy,
        test_function: Callable[..., Any],
        test_data: Any,
        context: HealingContext
    ) -> StrategyResult:
        """Dispatch one strategy to its built-in handler or the custom path."""
        handler = self.registry.get(strategy.name)
        if handler is not None:
            return await handler(strategy, test_data, context)
        return await self.execute_custom_strategy(strategy, test_data)

    async def execute_custom_strategy(
        self,
        strategy: RankedStrategy,
        test_data: Any
    ) -> StrategyResult:
        """Run a callable implementation registered in code.

        Raises:
            StrategyRejectedError: If the implementation is source text
        """
        implementation = self.custom_strategies.get(strategy.name, strategy.implementation)

        if isinstance(implementation, str):
            raise StrategyRejectedError(
                f"Refusing to evaluate string implementation for strategy '{strategy.name}'"
            )
        if not callable(implementation):
            return StrategyResult.failed("Invalid strategy implementation", strategy.name)

        outcome = implementation(test_data)
        if inspect.isawaitable(outcome):
            outcome = await outcome

        if isinstance(outcome, StrategyResult):
            return outcome
        if isinstance(outcome, dict) and "success" in outcome:
            return StrategyResult(
                success=bool(outcome["success"]),
                strategy=strategy.name,
                healed_data=outcome.get("healed_data", outcome.get("healedData")),
                changes=list(outcome.get("changes") or []),
                error=outcome.get("error")
            )
        return StrategyResult(
            success=True,
            strategy=strategy.name,
            healed_data=outcome,
            changes=[f"Applied custom strategy '{strategy.name}'"]
        )

    async def heal_data_issue(self, strategy: RankedStrategy, test_data: Any, context: HealingContext) -> StrategyResult:
        """Ask the model for corrected test data and merge it over the original."""
        healed = await self.ai_integration.heal_test_data(test_data, strategy.description or strategy.name)
        if not isinstance(healed, dict):
            return StrategyResult.failed("AI could not produce corrected test data", "data_healing")

        base = test_data if isinstance(test_data, dict) else {}
        changed = sorted(k for k, v in healed.items() if base.get(k) != v)
        return StrategyResult(
            success=True,
            strategy="data_healing",
            healed_data={**base, **healed},
            changes=[f"Adjusted test data field '{name}'" for name in changed]
        )

    # ---- learning ----

    def record_successful_healing(
        self,
        strategy: RankedStrategy,
        result: StrategyResult,
        context: Optional[HealingContext] = None,
        error: str = "",
        attempts: int = 1
    ) -> None:
        """Fold a success into the pattern table, success rates and history."""
        if self.config.enable_learning:
            self.store.record_outcome(strategy.name, True, strategy.description, strategy.implementation)
            self.store.bump_success_rate(strategy.name)

        self.store.append_history(HealingHistoryEntry(
            timestamp=current_millis(),
            error=error,
            success=True,
            attempts=attempts,
            strategy=strategy.name,
            healed_data=json_safe(result.healed_data),
            context=self._history_context(context)
        ))

    def record_failed_healing(self, strategy: RankedStrategy) -> None:
        """Count a failed attempt against the strategy's pattern."""
        if self.config.enable_learning:
            self.store.record_outcome(strategy.name, False, strategy.description, strategy.implementation)

    @staticmethod
    def _history_context(context: Optional[HealingContext]) -> Dict[str, Any]:
        if context is None:
            return {}
        return {"testType": context.test_type, "pageUrl": context.page_url}

    def get_statistics(self) -> Dict[str, Any]:
        """Summarize healing outcomes and learned patterns."""
        history = self.store.history
        successful = sum(1 for entry in history if entry.success)
        total = len(history)

        strategy_stats = {
            name: {
                "success_count": pattern.success_count,
                "total_count": pattern.total_count,
                "success_rate": pattern.success_rate,
                "smoothed_success_rate": self.store.get_success_rate(name),
            }
            for name, pattern in self.store.patterns.items()
        }

        return {
            "total_healings": total,
            "successful_healings": successful,
            "failed_healings": total - successful,
            "success_rate": (successful / total * 100) if total else 0.0,
            "pattern_count": len(self.store.patterns),
            "strategy_stats": strategy_stats,
            "healing_mode": self.config.healing_mode.value,
            "learning_enabled": self.config.enable_learning,
        }

    async def cleanup(self):
        """Persist the learning store. Failures are logged, not raised."""
        try:
            await self.store.flush()
        except Exception as e:
            logger.error(f"Failed to save healing patterns: {e}")
        logger.info("Healing orchestrator cleaned up")