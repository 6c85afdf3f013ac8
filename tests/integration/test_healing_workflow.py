"""
End-to-end tests for the healing workflow.

Runs the execution wrapper over a real orchestrator, real executors and a
JSON pattern store on disk; only the language model is replaced by a mock.
"""

from unittest.mock import patch

import pytest
import requests

from selfheal.services.healing_framework import SelfHealingFramework
from selfheal.services.healing_orchestrator import HealingOrchestrator
from selfheal.services.pattern_store import JsonFilePersistence, PatternStore

PAGE_URL = "https://shop.example.com/login"


def click(data):
    """Test double that only works with a healed, attribute-style locator."""
    element = data["element"]
    locator = element["locator"] if isinstance(element, dict) else element
    if locator.startswith("#"):
        raise Exception(f"Element not found: {locator}")
    return f"clicked {locator}"


@pytest.fixture
def ai_config(healing_config):
    healing_config.enable_ai = True
    healing_config.rerun_after_healing = True
    return healing_config


async def build_framework(config, store_dir, ai):
    store = PatternStore(JsonFilePersistence(str(store_dir)), key="patterns")
    orchestrator = HealingOrchestrator(config, store=store, ai_integration=ai)
    framework = SelfHealingFramework(config, orchestrator=orchestrator)
    await framework.initialize({"test_name": "login", "page_url": PAGE_URL})
    return framework


class TestHealingWorkflow:
    """Heal, persist and reuse learned state."""

    @pytest.mark.asyncio
    async def test_locator_failure_is_healed_and_learned(self, ai_config, tmp_path, mock_ai_integration):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "wait_healing", "confidence": 60},
            {"strategy": "locator_healing", "confidence": 90},
        ]
        framework = await build_framework(ai_config, tmp_path, mock_ai_integration)

        result = await framework.execute_test(click, {"element": "#login"})

        assert result.success is True
        assert result.strategy == "locator_healing"
        assert result.healed_data["element"]["locator"] == '[id="login"]'
        assert result.details["rerun_result"] == 'clicked [id="login"]'
        assert framework.metrics.healed_tests == 1

        await framework.cleanup()

        reloaded = PatternStore(JsonFilePersistence(str(tmp_path)), key="patterns")
        assert await reloaded.load() is True
        assert reloaded.get_pattern("locator_healing").success_count == 1
        assert reloaded.get_success_rate("locator_healing") == 0.75
        assert reloaded.get_success_rate("wait_healing") == 0.5
        assert len(reloaded.history) == 1
        assert reloaded.history[0].context == {"testType": "ui", "pageUrl": PAGE_URL}
        assert reloaded.has_similar_context("ui", PAGE_URL)

    @pytest.mark.asyncio
    async def test_learned_state_raises_scores_on_next_run(self, ai_config, tmp_path, mock_ai_integration):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "locator_healing", "confidence": 40},
        ]
        first = await build_framework(ai_config, tmp_path, mock_ai_integration)
        before = await first.orchestrator.analyze_error(Exception("Element not found: #login"), {"page_url": PAGE_URL})
        await first.execute_test(click, {"element": "#login"})
        await first.cleanup()

        second = await build_framework(ai_config, tmp_path, mock_ai_integration)
        after = await second.orchestrator.analyze_error(Exception("Element not found: #login"), {"page_url": PAGE_URL})

        # 40 + 0.5*30 + 0.3*20 before, 40 + 0.75*30 + 0.8*20 after
        assert before.strategies[0].score == 61.0
        assert after.strategies[0].score == 78.5

    @pytest.mark.asyncio
    async def test_unhealed_failure_is_reraised_and_recorded(self, ai_config, tmp_path, mock_ai_integration):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "api_endpoint_healing", "confidence": 80},
            {"strategy": "rewrite_selector", "confidence": 70, "implementation": "return page.fix()"},
        ]
        framework = await build_framework(ai_config, tmp_path, mock_ai_integration)

        async def call_api(data):
            raise Exception("Network error: connection refused")

        with patch("selfheal.services.api_healing_strategies.requests.request",
                   side_effect=requests.ConnectionError("refused")):
            with pytest.raises(Exception, match="Network error"):
                await framework.execute_test(
                    call_api, {"endpoint": "/orders", "base_url": "https://api.example.com"}
                )

        store = framework.orchestrator.store
        assert store.get_pattern("api_endpoint_healing").total_count == 2
        assert store.get_pattern("api_endpoint_healing").success_count == 0
        assert store.get_pattern("rewrite_selector").total_count == 2
        # One failed history entry per healing cycle
        assert [entry.success for entry in store.history] == [False, False]
        assert store.history[0].strategies == ["api_endpoint_healing", "rewrite_selector"]
        assert framework.metrics.healed_tests == 0

    @pytest.mark.asyncio
    async def test_custom_strategy_heals_from_code(self, ai_config, tmp_path, mock_ai_integration):
        mock_ai_integration.generate_healing_strategies.return_value = [
            {"strategy": "use_fallback_user", "confidence": 90},
        ]
        framework = await build_framework(ai_config, tmp_path, mock_ai_integration)
        framework.orchestrator.register_custom_strategy(
            "use_fallback_user", lambda data: {**data, "user": "fallback"}
        )

        async def login(data):
            if data["user"] != "fallback":
                raise Exception("Assertion failed: welcome banner missing")
            return "logged in"

        result = await framework.execute_test(login, {"user": "locked"})

        assert result.healed_data == {"user": "fallback"}
        assert result.details["rerun_result"] == "logged in"
