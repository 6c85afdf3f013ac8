"""
AI Integration for the Test Self-Healing System.

Wraps the language model client with the healing-specific requests the
rest of the system makes: strategy generation, locator suggestions, test
data repair, API healing suggestions and best-effort test analysis.
"""

import inspect
import logging
import traceback
import uuid
from typing import Any, Dict, List, Optional

from ..core.healing_utils import current_millis, error_message, json_safe
from ..core.models import HealingConfiguration, HealingContext
from ..services.pattern_store import PersistenceBackend
from . import healing_prompts
from .llm_client import HealingLLMClient
from .llm_output_parser import LLMOutputParser

logger = logging.getLogger(__name__)

LEARNING_SAVE_INTERVAL = 10
LEARNING_DATA_LIMIT = 1000


class AIIntegration:
    """Healing-oriented facade over the language model."""

    RISK_KEYWORDS = {
        "high": ("critical", "breaking", "failure", "error"),
        "medium": ("warning", "caution", "potential"),
        "low": ("minor", "safe", "stable"),
    }

    def __init__(
        self,
        config: Optional[HealingConfiguration] = None,
        llm_client: Optional[HealingLLMClient] = None,
        backend: Optional[PersistenceBackend] = None,
        learning_key: str = "learning"
    ):
        """Initialize the AI integration.

        Args:
            config: Healing configuration (model and learning settings)
            llm_client: Client used for model calls; built from config if omitted
            backend: Optional persistence for test learning data
            learning_key: Record key for learning data
        """
        self.config = config or HealingConfiguration()
        self.llm_client = llm_client or HealingLLMClient(
            model_provider=self.config.model_provider,
            model_name=self.config.model_name,
            temperature=self.config.ai_temperature,
            max_tokens=self.config.ai_max_tokens
        )
        self.backend = backend
        self.learning_key = learning_key

        self.learning_data: List[Dict[str, Any]] = []
        self.learned_patterns: Dict[str, Dict[str, int]] = {}

    async def initialize(self):
        """Load persisted learning data when learning is enabled."""
        if self.config.enable_learning and self.backend is not None:
            try:
                record = await self.backend.load(self.learning_key)
            except Exception as e:
                logger.warning(f"Failed to load learning data: {e}")
                return
            if record:
                self.learning_data = list(record.get("learningData") or [])
                self.learned_patterns = {
                    name: dict(stats) for name, stats in record.get("patterns") or []
                }

    async def call_ai(self, prompt: str) -> str:
        """Send a raw prompt to the model. Errors propagate to the caller."""
        return await self.llm_client.call(prompt)

    async def generate_healing_strategies(self, error: Any, context: HealingContext) -> List[Dict[str, Any]]:
        """Ask the model for candidate healing strategies.

        Returns:
            Parsed strategy dicts; empty if the model call fails. Unparseable
            responses degrade to keyword-extracted or generic strategies.
        """
        stack = None
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = "".join(traceback.format_tb(error.__traceback__))[-1500:]
        prompt = healing_prompts.build_healing_prompt(error_message(error), context.to_dict(), stack)

        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.error(f"Healing strategy generation failed: {e}")
            return []

        return LLMOutputParser.parse_healing_strategies(response)

    async def generate_alternative_locators(
        self,
        element_description: str,
        page_source: str,
        current_locator: str
    ) -> List[Dict[str, Any]]:
        """Ask the model for alternative locators; empty list on any failure."""
        prompt = healing_prompts.build_locator_generation_prompt(element_description, page_source, current_locator)
        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.error(f"Locator generation failed: {e}")
            return []

        items = LLMOutputParser.parse_json_array(response) or []
        locators = []
        for item in items:
            if isinstance(item, str):
                locators.append({"selector": item})
            elif isinstance(item, dict) and isinstance(item.get("selector"), str):
                locators.append(item)
        return locators

    async def heal_test_data(self, test_data: Any, error: Any) -> Optional[Dict[str, Any]]:
        """Ask the model for corrected test data.

        Returns:
            The corrected data as a dict, or None if the model could not help
        """
        prompt = healing_prompts.build_test_data_prompt(error_message(error), json_safe(test_data))
        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.error(f"Test data healing failed: {e}")
            return None
        return LLMOutputParser.parse_json_object(response)

    async def suggest_endpoints(self, endpoint: str, method: str, context: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Ask the model for alternative API endpoints."""
        prompt = healing_prompts.build_endpoint_generation_prompt(endpoint, method, json_safe(context))
        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.warning(f"AI endpoint generation failed: {e}")
            return []
        items = LLMOutputParser.parse_json_array(response) or []
        return [item for item in items if isinstance(item, dict) and isinstance(item.get("endpoint"), str)]

    async def heal_schema(self, request_data: Any, response_schema: Any, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Ask the model to reconcile request data with a schema."""
        prompt = healing_prompts.build_schema_healing_prompt(
            json_safe(request_data), json_safe(response_schema), json_safe(context)
        )
        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.warning(f"AI schema healing failed: {e}")
            return None
        return LLMOutputParser.parse_json_object(response)

    async def heal_response(self, response: Any, expected_response: Any, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Ask the model to reconcile an API response with the expected one."""
        prompt = healing_prompts.build_response_healing_prompt(
            json_safe(response), json_safe(expected_response), json_safe(context)
        )
        try:
            reply = await self.call_ai(prompt)
        except Exception as e:
            logger.warning(f"AI response healing failed: {e}")
            return None
        return LLMOutputParser.parse_json_object(reply)

    async def analyze_api_schema_changes(self, old_schema: Any, new_schema: Any, endpoint: str) -> Dict[str, Any]:
        """Summarize the impact of an API schema change."""
        prompt = healing_prompts.build_schema_analysis_prompt(json_safe(old_schema), json_safe(new_schema), endpoint)
        try:
            response = await self.call_ai(prompt)
        except Exception as e:
            logger.error(f"Schema analysis failed: {e}")
            return {"changes": [], "impact": "unknown"}
        return LLMOutputParser.parse_json_object(response) or {"changes": [], "impact": "unknown"}

    async def analyze_test(self, test_function: Any, test_data: Any) -> Dict[str, Any]:
        """Best-effort review of a test before it runs. Never raises."""
        analysis_id = str(uuid.uuid4())
        try:
            source = inspect.getsource(test_function)
        except (OSError, TypeError):
            source = repr(test_function)

        try:
            response = await self.call_ai(healing_prompts.build_test_analysis_prompt(source, json_safe(test_data)))
        except Exception as e:
            logger.error(f"Test analysis failed: {e}")
            return {
                "id": analysis_id,
                "timestamp": current_millis(),
                "potential_issues": [],
                "recommendations": [],
                "confidence": 0,
                "risk_level": "unknown"
            }

        parsed = LLMOutputParser.parse_json_object(response) or {}
        return {
            "id": analysis_id,
            "timestamp": current_millis(),
            "potential_issues": parsed.get("potentialIssues") or [],
            "recommendations": parsed.get("recommendations") or [],
            "confidence": parsed.get("confidence") or 0,
            "risk_level": parsed.get("riskLevel") or self.assess_risk_level(response)
        }

    def assess_risk_level(self, text: str) -> str:
        """Rough risk level from keywords in a model response."""
        lowered = (text or "").lower()
        for level, keywords in self.RISK_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                return level
        return "unknown"

    async def learn_from_test(self, result: Any, test_context: Dict[str, Any]) -> None:
        """Record a finished test run so recurring patterns can be tracked."""
        if not self.config.enable_learning:
            return

        success = bool(result.get("success", True)) if isinstance(result, dict) else True
        entry = {
            "id": str(uuid.uuid4()),
            "timestamp": current_millis(),
            "testContext": json_safe(test_context),
            "patterns": self._extract_patterns(result),
            "success": success
        }
        self.learning_data.append(entry)
        if len(self.learning_data) > LEARNING_DATA_LIMIT:
            self.learning_data = self.learning_data[-LEARNING_DATA_LIMIT:]

        for pattern in entry["patterns"]:
            stats = self.learned_patterns.setdefault(pattern, {"count": 0, "successes": 0})
            stats["count"] += 1
            if success:
                stats["successes"] += 1

        if len(self.learning_data) % LEARNING_SAVE_INTERVAL == 0:
            await self.save_learning_data()

    async def save_learning_data(self) -> None:
        """Persist learning data; failures are logged, not raised."""
        if self.backend is None:
            return
        record = {
            "learningData": self.learning_data,
            "patterns": [[name, stats] for name, stats in self.learned_patterns.items()],
            "lastUpdated": current_millis()
        }
        try:
            await self.backend.save(self.learning_key, record)
        except Exception as e:
            logger.error(f"Failed to save learning data: {e}")

    async def cleanup(self):
        """Flush learning data on shutdown."""
        if self.config.enable_learning and self.learning_data:
            await self.save_learning_data()

    def _extract_patterns(self, result: Any) -> List[str]:
        patterns = []
        if isinstance(result, dict):
            for attempt in result.get("healing_attempts") or []:
                if isinstance(attempt, dict) and attempt.get("strategy"):
                    patterns.append(attempt["strategy"])
            if result.get("strategy"):
                patterns.append(result["strategy"])
            if result.get("error"):
                patterns.append(f"error_{self._coarse_error_type(result['error'])}")
        return patterns

    @staticmethod
    def _coarse_error_type(error: Any) -> str:
        message = error_message(error).lower()
        for phrase, label in (("element not found", "element_not_found"), ("timeout", "timeout"),
                              ("network", "network"), ("assertion", "assertion")):
            if phrase in message:
                return label
        return "unknown"
