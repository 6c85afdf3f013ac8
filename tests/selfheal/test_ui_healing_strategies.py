"""
Tests for UI healing strategies against a mocked Playwright-style page.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from selfheal.core.models import HealingConfiguration, HealingContext, RankedStrategy
from selfheal.services.ui_healing_strategies import (
    BASIC_WAIT_OPTIONS, UIHealingStrategies, alternative_selectors
)


def make_page(visible=lambda selector: False, wait_error=None):
    """Build a page double whose locators report visibility per selector."""
    page = Mock()

    def locator(selector):
        loc = Mock()
        loc.first = loc
        loc.is_visible = AsyncMock(return_value=visible(selector))
        loc.wait_for = AsyncMock(side_effect=wait_error)
        loc.scroll_into_view_if_needed = AsyncMock()
        loc.is_enabled = AsyncMock(return_value=True)
        loc.click = AsyncMock()
        return loc

    page.locator = Mock(side_effect=locator)
    page.content = AsyncMock(return_value="<html><body></body></html>")
    page.goto = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.url = "https://example.com/current"
    return page


@pytest.fixture
def ui_config():
    return HealingConfiguration(ui_max_wait_time_ms=200, ui_retry_delay_ms=100)


@pytest.fixture
def ui(ui_config):
    return UIHealingStrategies(ui_config)


@pytest.fixture
def strategy():
    return RankedStrategy(name="locator_healing", score=80)


@pytest.fixture
def context():
    return HealingContext(test_type="ui", page_url="https://example.com/login")


class TestAlternativeSelectors:
    """Test page-free selector rewriting."""

    def test_id_selector(self):
        assert alternative_selectors("#login") == ['[id="login"]', '[data-testid="login"]', ".login"]

    def test_class_selector(self):
        assert alternative_selectors(".btn") == ['[class*="btn"]', '[data-class="btn"]']

    def test_attribute_selector(self):
        assert alternative_selectors('[name="q"]') == ['[name*="q"]']

    def test_unknown_or_empty(self):
        assert alternative_selectors("button") == []
        assert alternative_selectors(None) == []


class TestLocatorHealing:
    """Test locator healing with and without a live page."""

    @pytest.mark.asyncio
    async def test_basic_strategy_without_page(self, ui, strategy, context):
        result = await ui.heal_locator_issue(strategy, {"element": "#login"}, context)

        assert result.success is True
        assert result.strategy == "locator_healing"
        assert result.healed_data["element"]["locator"] == '[id="login"]'
        assert result.changes == ["Updated locator from '#login' to '[id=\"login\"]'"]

    @pytest.mark.asyncio
    async def test_basic_strategy_prefers_ai_suggestion(self, ui_config, mock_ai_integration, strategy, context):
        mock_ai_integration.generate_alternative_locators.return_value = [{"selector": "button#login-v2"}]
        ui = UIHealingStrategies(ui_config, mock_ai_integration)

        result = await ui.heal_locator_issue(strategy, {"element": {"locator": "#login"}}, context)

        assert result.healed_data["element"]["locator"] == "button#login-v2"
        assert result.details["technique"] == "ai_generated"

    @pytest.mark.asyncio
    async def test_basic_strategy_without_alternatives_fails(self, ui, strategy, context):
        result = await ui.heal_locator_issue(strategy, {"element": "button"}, context)

        assert result.success is False
        assert result.error == "No alternative locators found"

    @pytest.mark.asyncio
    async def test_visible_original_selector(self, ui, strategy, context):
        page = make_page(visible=lambda s: s == "#login")
        result = await ui.heal_locator_issue(strategy, {"page": page, "element": "#login"}, context)

        assert result.success is True
        assert result.details["technique"] == "alternative_selector"
        assert result.healed_data["page"] is page

    @pytest.mark.asyncio
    async def test_text_based_locator(self, ui, strategy, context):
        page = make_page(visible=lambda s: s == 'text="Sign in"')
        test_data = {"page": page, "element": {"locator": "#gone", "text": "Sign in"}}

        result = await ui.heal_locator_issue(strategy, test_data, context)

        assert result.healed_data["element"]["locator"] == 'text="Sign in"'
        assert result.healed_data["element"]["text"] == "Sign in"
        assert result.details["technique"] == "text_based"

    @pytest.mark.asyncio
    async def test_attribute_based_locator(self, ui, strategy, context):
        page = make_page(visible=lambda s: s == '[data-testid*="submit"]')
        test_data = {"page": page, "element": {"locator": "#gone", "attributes": {"data-testid": "submit"}}}

        result = await ui.heal_locator_issue(strategy, test_data, context)

        assert result.healed_data["element"]["locator"] == '[data-testid*="submit"]'

    @pytest.mark.asyncio
    async def test_position_based_locator(self, ui, strategy, context):
        page = make_page(visible=lambda s: s == "form > *:nth-child(2)")
        test_data = {"page": page, "element": {"locator": "#gone", "parent": "form", "position": 2}}

        result = await ui.heal_locator_issue(strategy, test_data, context)

        assert result.details["technique"] == "position_based"

    @pytest.mark.asyncio
    async def test_all_techniques_fail(self, ui, strategy, context):
        page = make_page()
        result = await ui.heal_locator_issue(strategy, {"page": page, "element": "#gone"}, context)

        assert result.success is False
        assert result.error == "All locator healing strategies failed"

    @pytest.mark.asyncio
    async def test_page_errors_are_swallowed(self, ui_config, mock_ai_integration, strategy, context):
        page = make_page()
        page.content.side_effect = RuntimeError("page closed")
        ui = UIHealingStrategies(ui_config, mock_ai_integration)

        result = await ui.heal_locator_issue(strategy, {"page": page, "element": "#gone"}, context)

        assert result.success is False


class TestWaitHealing:
    """Test wait healing techniques."""

    @pytest.mark.asyncio
    async def test_basic_wait_without_page(self, ui, strategy, context):
        result = await ui.heal_wait_issue(strategy, {"user": "alice"}, context)

        assert result.success is True
        assert result.healed_data["wait_strategy"] == "basic_wait"
        assert result.healed_data["wait_options"] == BASIC_WAIT_OPTIONS
        assert result.healed_data["user"] == "alice"

    @pytest.mark.asyncio
    async def test_explicit_wait(self, ui, strategy, context):
        page = make_page()
        result = await ui.heal_wait_issue(strategy, {"page": page, "element": "#spinner"}, context)

        assert result.healed_data["wait_strategy"] == "explicit_wait"
        assert result.healed_data["wait_options"] == {"timeout": 200}

    @pytest.mark.asyncio
    async def test_polling_after_wait_errors(self, ui, strategy, context):
        page = make_page(visible=lambda s: True, wait_error=TimeoutError("wait timed out"))
        result = await ui.heal_wait_issue(strategy, {"page": page, "element": "#spinner"}, context)

        assert result.healed_data["wait_strategy"] == "polling_wait"
        assert result.healed_data["wait_options"]["attempts"] == 1

    @pytest.mark.asyncio
    async def test_all_waits_fail(self, ui, strategy, context):
        page = make_page(wait_error=TimeoutError("wait timed out"))
        result = await ui.heal_wait_issue(strategy, {"page": page, "element": "#spinner"}, context)

        assert result.success is False
        # Polling waited between each of the max_wait / retry_delay polls
        assert page.wait_for_timeout.await_count == 2


class TestElementStateHealing:
    """Test element state healing techniques."""

    @pytest.mark.asyncio
    async def test_basic_without_page(self, ui, strategy, context):
        result = await ui.heal_element_state_issue(strategy, {}, context)

        assert result.success is True
        assert result.changes == ["Applied basic element state healing"]

    @pytest.mark.asyncio
    async def test_scroll_into_view(self, ui, strategy, context):
        page = make_page()
        result = await ui.heal_element_state_issue(strategy, {"page": page, "element": "#buy"}, context)

        assert result.healed_data["element_state"] == "scrolled"
        assert result.healed_data["interaction_method"] == "scroll_into_view"


class TestNavigationHealing:
    """Test navigation healing techniques."""

    @pytest.mark.asyncio
    async def test_basic_without_page(self, ui, strategy, context):
        result = await ui.heal_navigation_issue(strategy, {}, context)

        assert result.success is True
        assert result.changes == ["Applied basic navigation healing"]

    @pytest.mark.asyncio
    async def test_direct_navigation_uses_context_url(self, ui, strategy, context):
        page = make_page()
        result = await ui.heal_navigation_issue(strategy, {"page": page}, context)

        assert result.healed_data["url"] == "https://example.com/login"
        page.goto.assert_awaited_once_with("https://example.com/login", wait_until="networkidle")

    @pytest.mark.asyncio
    async def test_falls_back_to_waiting_for_load(self, ui, strategy, context):
        page = make_page()
        page.goto.side_effect = RuntimeError("net::ERR_CONNECTION_RESET")

        result = await ui.heal_navigation_issue(strategy, {"page": page, "url": "http://example.com/login"}, context)

        assert result.healed_data["navigation_method"] == "wait_for_page_load"
        assert result.healed_data["url"] == "https://example.com/current"
        # Linear backoff between retries
        backoffs = [call.args[0] for call in page.wait_for_timeout.await_args_list]
        assert backoffs == [1000, 2000, 3000]

    def test_alternative_urls(self):
        assert UIHealingStrategies.alternative_urls("http://example.com/login") == [
            "https://example.com/login",
            "http://example.com/login/",
            "http://www.example.com/login",
        ]

    def test_alternative_urls_strip_www(self):
        variants = UIHealingStrategies.alternative_urls("https://www.example.com/")
        assert "https://example.com/" in variants
        assert "https://www.example.com" in variants
