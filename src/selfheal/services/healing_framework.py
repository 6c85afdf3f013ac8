"""
Self-healing execution wrapper.

Runs a test callable and, when it fails with a healable error, drives the
orchestrator through repeated analyze/apply cycles. Unhealed failures are
re-raised unchanged.
"""

import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..core.config_loader import get_healing_config
from ..core.healing_utils import current_millis, error_message
from ..core.logging_config import get_healing_logger
from ..core.metrics import get_metrics_collector
from ..core.models import ExecutionMetrics, HealingConfiguration, StrategyResult
from ..crew_ai.ai_integration import AIIntegration
from .healing_orchestrator import HealingOrchestrator
from .pattern_store import create_backend

logger = logging.getLogger(__name__)


async def _invoke(test_function: Callable[..., Any], test_data: Any) -> Any:
    outcome = test_function(test_data)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


class SelfHealingFramework:
    """Wraps test execution with self-healing."""

    def __init__(
        self,
        config: Optional[HealingConfiguration] = None,
        orchestrator: Optional[HealingOrchestrator] = None,
        ai_integration: Optional[AIIntegration] = None
    ):
        self.config = config or get_healing_config()
        self.ai_integration = ai_integration or (
            orchestrator.ai_integration if orchestrator else AIIntegration(self.config, backend=create_backend(self.config))
        )
        self.orchestrator = orchestrator or HealingOrchestrator(self.config, ai_integration=self.ai_integration)
        self.classifier = self.orchestrator.classifier

        self.metrics = ExecutionMetrics()
        self.healing_history: List[Dict[str, Any]] = []
        self.test_context: Dict[str, Any] = {}

        self.metrics_collector = get_metrics_collector()

    async def initialize(self, test_context: Optional[Dict[str, Any]] = None):
        """Set the per-test context and load learned state."""
        self.test_context = {
            "test_name": "",
            "test_type": "ui",
            "start_time": current_millis(),
            **(test_context or {})
        }
        await self.orchestrator.initialize()
        await self.ai_integration.initialize()
        logger.info(f"Framework initialized with healing: {self.config.enabled}")

    async def execute_test(
        self,
        test_function: Callable[..., Any],
        test_data: Any = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Run a test, healing it on healable failures.

        Args:
            test_function: Async (or sync) callable taking the test data
            test_data: Data passed to the test
            context: Extra context merged over the framework's test context

        Returns:
            The test's own result, or the healing result when healing succeeded

        Raises:
            Exception: The test's original error when it could not be healed
        """
        test_data = {} if test_data is None else test_data
        start = time.time()
        outcome = "failed"
        self.metrics.total_tests += 1

        try:
            await self._pre_test_analysis(test_function, test_data)
            try:
                result = await _invoke(test_function, test_data)
            except Exception as error:
                logger.error(f"Test execution failed: {error_message(error)}")

                if self.config.enabled and self.classifier.is_healable_error(error):
                    healing_result = await self.attempt_healing(error, test_function, test_data, context)
                    if healing_result.success:
                        self.metrics.healed_tests += 1
                        outcome = "healed"
                        return healing_result
                raise

            outcome = "passed"
            await self._post_test_analysis(result)
            return result
        finally:
            duration_ms = (time.time() - start) * 1000
            self._update_metrics(duration_ms)
            self.metrics_collector.record_test_execution(outcome, duration_ms)

    async def attempt_healing(
        self,
        error: Exception,
        test_function: Callable[..., Any],
        test_data: Any,
        context: Optional[Dict[str, Any]] = None
    ) -> StrategyResult:
        """Run up to max_healing_attempts analyze/apply cycles."""
        healing_context = {**self.test_context, **(context or {})}
        healing_logger = get_healing_logger("framework", test_case=healing_context.get("test_name") or None)
        healing_logger.log_operation_start("attempt_healing", error=error_message(error)[:200])

        start = time.time()
        attempts: List[Dict[str, Any]] = []

        for attempt in range(1, self.config.max_healing_attempts + 1):
            try:
                analysis = await self.orchestrator.analyze_error(error, healing_context)
                result = await self.orchestrator.apply_healing(analysis, test_function, test_data, analysis.context)

                if result.success and self.config.rerun_after_healing:
                    result = await self._confirm_by_rerun(test_function, test_data, result)

                if result.success:
                    healing_logger.log_operation_success(
                        "attempt_healing", (time.time() - start) * 1000,
                        attempt=attempt, strategy=result.strategy
                    )
                    self.healing_history.append({
                        "timestamp": current_millis(),
                        "error": error_message(error),
                        "strategy": result.strategy,
                        "attempt": attempt,
                        "success": True
                    })
                    return result

                attempts.append({"attempt": attempt, "strategies": result.strategies, "error": result.error})
            except Exception as healing_error:
                logger.error(f"Healing attempt {attempt} failed: {healing_error}")
                attempts.append({"attempt": attempt, "strategies": [], "error": error_message(healing_error)})

        healing_logger.log_operation_failure(
            "attempt_healing", (time.time() - start) * 1000,
            "Healing attempts exhausted", attempts=len(attempts)
        )
        self.healing_history.append({
            "timestamp": current_millis(),
            "error": error_message(error),
            "attempts": attempts,
            "success": False
        })
        return StrategyResult(success=False, error="All healing attempts failed", details={"attempts": attempts})

    async def _confirm_by_rerun(self, test_function: Callable[..., Any], test_data: Any, result: StrategyResult) -> StrategyResult:
        healed_data = result.healed_data if result.healed_data is not None else test_data
        try:
            rerun = await _invoke(test_function, healed_data)
        except Exception as e:
            logger.warning(f"Re-run after '{result.strategy}' healing failed: {e}")
            return StrategyResult.failed(f"Re-run failed: {error_message(e)}", result.strategy)

        result.details["rerun_result"] = rerun
        return result

    async def _pre_test_analysis(self, test_function: Callable[..., Any], test_data: Any):
        if not self.config.enable_ai:
            return
        try:
            analysis = await self.ai_integration.analyze_test(test_function, test_data)
        except Exception as e:
            logger.warning(f"Pre-test AI analysis failed: {e}")
            return
        self.test_context["ai_analysis"] = analysis
        if analysis.get("potential_issues"):
            logger.info(f"AI detected potential issues: {analysis['potential_issues']}")

    async def _post_test_analysis(self, result: Any):
        if not self.config.enable_ai:
            return
        try:
            await self.ai_integration.learn_from_test(result, self.test_context)
        except Exception as e:
            logger.warning(f"Post-test analysis failed: {e}")

    def _update_metrics(self, duration_ms: float):
        self.metrics.healing_success_rate = self.metrics.healed_tests / self.metrics.total_tests * 100
        self.metrics.average_healing_time = duration_ms

    def get_metrics(self) -> Dict[str, Any]:
        """Execution metrics plus this wrapper's healing history."""
        return {
            **self.metrics.to_dict(),
            "healing_history": list(self.healing_history),
            "total_healing_attempts": len(self.healing_history),
            "successful_healings": sum(1 for h in self.healing_history if h["success"]),
        }

    async def cleanup(self):
        """Persist learned state and flush model learning data."""
        await self.orchestrator.cleanup()
        await self.ai_integration.cleanup()
        logger.info("Framework cleanup completed")
