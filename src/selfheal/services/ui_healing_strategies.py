"""
UI Healing Strategies for Test Self-Healing System.

Each heal_* method tries an ordered list of techniques against a live
Playwright-style async page found under ``test_data["page"]`` and returns
on the first one that proves the target usable. Without a page, a basic
fallback describes the adjustment instead of verifying it.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.models import HealingConfiguration, HealingContext, RankedStrategy, StrategyResult
from ..crew_ai.ai_integration import AIIntegration

logger = logging.getLogger(__name__)

Technique = Callable[[], Awaitable[Optional[Dict[str, Any]]]]

LOCATOR_ATTRIBUTES = ("id", "class", "name", "data-testid", "data-cy", "aria-label", "title")
SETTLE_DELAY_MS = 500
NAVIGATION_RETRIES = 3
NAVIGATION_BACKOFF_MS = 1000
BASIC_WAIT_OPTIONS = {"timeout": 5000, "retries": 3, "delay": 1000}


def normalize_element(element: Any) -> Dict[str, Any]:
    """Element descriptors may be a bare selector string or a dict."""
    if isinstance(element, str):
        return {"locator": element}
    if isinstance(element, dict):
        return dict(element)
    return {}


def element_locator(element: Dict[str, Any]) -> Optional[str]:
    return element.get("locator") or element.get("selector")


def alternative_selectors(locator: Optional[str]) -> List[str]:
    """Rewrite a selector into looser equivalents without touching a page.

    Examples:
        "#login"       -> '[id="login"]', '[data-testid="login"]', '.login'
        ".btn"         -> '[class*="btn"]', '[data-class="btn"]'
        '[name="q"]'   -> '[name*="q"]'
    """
    if not locator:
        return []
    if locator.startswith("#"):
        ident = locator[1:]
        return [f'[id="{ident}"]', f'[data-testid="{ident}"]', f".{ident}"]
    if locator.startswith("."):
        class_name = locator[1:]
        return [f'[class*="{class_name}"]', f'[data-class="{class_name}"]']
    if locator.startswith("["):
        return [locator.replace("=", "*=", 1)]
    return []


def _unique(values: List[str], exclude: Optional[str] = None) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value and value != exclude and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class UIHealingStrategies:
    """Healing techniques for browser-driven tests."""

    def __init__(self, config: Optional[HealingConfiguration] = None, ai_integration: Optional[AIIntegration] = None):
        self.config = config or HealingConfiguration()
        self.ai_integration = ai_integration
        self.max_wait_time = self.config.ui_max_wait_time_ms
        self.retry_delay = self.config.ui_retry_delay_ms

    async def _first_success(self, techniques: List[Technique], label: str) -> Optional[Dict[str, Any]]:
        for technique in techniques:
            try:
                outcome = await technique()
            except Exception as e:
                logger.debug(f"{label} technique {getattr(technique, '__name__', technique)} failed: {e}")
                continue
            if outcome:
                return outcome
        return None

    @staticmethod
    def _locate(page: Any, selector: str):
        return page.locator(selector).first

    async def _visible(self, page: Any, selector: str) -> bool:
        try:
            return bool(await self._locate(page, selector).is_visible())
        except Exception as e:
            logger.debug(f"Visibility check failed for {selector}: {e}")
            return False

    # ---- locator healing ----

    async def heal_locator_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Find a working replacement for a broken element locator."""
        logger.info(f"Applying locator healing strategy: {strategy.name}")
        test_data = test_data or {}
        element = normalize_element(test_data.get("element"))
        original = element_locator(element)
        page = test_data.get("page")

        if page is None:
            outcome = await self._basic_locator(element, original)
        else:
            outcome = await self._first_success([
                lambda: self._try_alternative_selectors(original, page),
                lambda: self._try_ai_locators(element, original, page),
                lambda: self._try_text_locators(element, page),
                lambda: self._try_attribute_locators(element, page),
                lambda: self._try_position_locator(element, page),
            ], "Locator")

        if not outcome:
            error = "No alternative locators found" if page is None else "All locator healing strategies failed"
            return StrategyResult.failed(error, "locator_healing")

        healed_element = {**element, "locator": outcome["locator"], "selector": outcome["locator"],
                          "strategy": outcome["technique"]}
        return StrategyResult(
            success=True,
            strategy="locator_healing",
            healed_data={**test_data, "element": healed_element},
            changes=[f"Updated locator from '{original}' to '{outcome['locator']}'"],
            details={"technique": outcome["technique"], "confidence": outcome.get("confidence")}
        )

    async def _basic_locator(self, element: Dict[str, Any], original: Optional[str]) -> Optional[Dict[str, Any]]:
        if self.config.enable_ai_locator_generation and self.ai_integration is not None:
            try:
                suggestions = await self.ai_integration.generate_alternative_locators(
                    f"Element with selector: {original}", "", original or ""
                )
            except Exception as e:
                logger.debug(f"AI locator generation failed: {e}")
                suggestions = []
            if suggestions:
                return {"locator": suggestions[0]["selector"], "technique": "ai_generated",
                        "confidence": suggestions[0].get("confidence") or 70}

        alternatives = alternative_selectors(original)
        if alternatives:
            return {"locator": alternatives[0], "technique": "alternative_selector", "confidence": 60}
        return None

    async def _try_alternative_selectors(self, original: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not original:
            return None
        candidates = _unique([
            original,
            f"*[{original.strip('[]')}]",
            original.replace("=", "*="),
            original.replace("=", "~="),
        ])
        for selector in candidates:
            if await self._visible(page, selector):
                return {"locator": selector, "technique": "alternative_selector"}
        return None

    async def _try_ai_locators(self, element: Dict[str, Any], original: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not self.config.enable_ai_locator_generation or self.ai_integration is None:
            return None
        page_source = await page.content()
        description = element.get("description") or element.get("text") or "element"
        for suggestion in await self.ai_integration.generate_alternative_locators(description, page_source, original or ""):
            if await self._visible(page, suggestion["selector"]):
                return {"locator": suggestion["selector"], "technique": "ai_generated",
                        "confidence": suggestion.get("confidence")}
        return None

    async def _try_text_locators(self, element: Dict[str, Any], page: Any) -> Optional[Dict[str, Any]]:
        text = element.get("text")
        if not text:
            return None
        for selector in (f'text="{text}"', f"text={text}", f':has-text("{text}")'):
            if await self._visible(page, selector):
                return {"locator": selector, "technique": "text_based"}
        return None

    async def _try_attribute_locators(self, element: Dict[str, Any], page: Any) -> Optional[Dict[str, Any]]:
        attributes = {**(element.get("attributes") or {}), **element}
        for attr in LOCATOR_ATTRIBUTES:
            value = attributes.get(attr)
            if not value or not isinstance(value, str):
                continue
            for selector in (f'[{attr}="{value}"]', f'[{attr}*="{value}"]', f'[{attr}~="{value}"]'):
                if await self._visible(page, selector):
                    return {"locator": selector, "technique": "attribute_based"}
        return None

    async def _try_position_locator(self, element: Dict[str, Any], page: Any) -> Optional[Dict[str, Any]]:
        parent = element.get("parent") or "body"
        position = element.get("position") or 1
        selector = f"{parent} > *:nth-child({position})"
        if await self._visible(page, selector):
            return {"locator": selector, "technique": "position_based"}
        return None

    # ---- wait healing ----

    async def heal_wait_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Find a wait that lets the target element appear."""
        logger.info(f"Applying wait healing strategy: {strategy.name}")
        test_data = test_data or {}
        page = test_data.get("page")

        if page is None:
            return StrategyResult(
                success=True,
                strategy="wait_healing",
                healed_data={**test_data, "wait_strategy": "basic_wait", "wait_options": dict(BASIC_WAIT_OPTIONS)},
                changes=["Applied basic wait strategy with 5s timeout"],
                details={"technique": "basic_wait"}
            )

        selector = element_locator(normalize_element(test_data.get("element")))
        outcome = await self._first_success([
            lambda: self._try_explicit_wait(selector, page),
            lambda: self._try_smart_wait(selector, page),
            lambda: self._try_polling_wait(selector, page),
            lambda: self._try_conditional_wait(selector, page),
        ], "Wait")

        if not outcome:
            return StrategyResult.failed("All wait healing strategies failed", "wait_healing")

        return StrategyResult(
            success=True,
            strategy="wait_healing",
            healed_data={**test_data, "wait_strategy": outcome["technique"], "wait_options": outcome["options"]},
            changes=[f"Applied {outcome['technique']} wait strategy"],
            details={"technique": outcome["technique"]}
        )

    async def _try_explicit_wait(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        await self._locate(page, selector).wait_for(timeout=self.max_wait_time)
        return {"technique": "explicit_wait", "options": {"timeout": self.max_wait_time}}

    async def _try_smart_wait(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector or not self.config.enable_smart_waits:
            return None
        await self._locate(page, selector).wait_for(state="visible", timeout=self.max_wait_time)
        await page.wait_for_timeout(SETTLE_DELAY_MS)
        return {"technique": "smart_wait", "options": {"state": "visible", "stability": True}}

    async def _try_polling_wait(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        max_polls = max(1, self.max_wait_time // self.retry_delay)
        for poll in range(max_polls):
            if await self._visible(page, selector):
                return {"technique": "polling_wait", "options": {"attempts": poll + 1, "delay": self.retry_delay}}
            await page.wait_for_timeout(self.retry_delay)
        return None

    async def _try_conditional_wait(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector or not self.config.enable_smart_waits:
            return None
        await asyncio.gather(
            self._locate(page, selector).wait_for(state="visible"),
            page.wait_for_load_state("networkidle")
        )
        return {"technique": "conditional_wait", "options": {"conditions": ["visible", "networkidle"]}}

    # ---- element state healing ----

    async def heal_element_state_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Bring the target element into an interactable state."""
        logger.info(f"Applying element state healing strategy: {strategy.name}")
        test_data = test_data or {}
        page = test_data.get("page")

        if page is None:
            return StrategyResult(
                success=True,
                strategy="element_state_healing",
                changes=["Applied basic element state healing"]
            )

        selector = element_locator(normalize_element(test_data.get("element")))
        outcome = await self._first_success([
            lambda: self._try_scroll_into_view(selector, page),
            lambda: self._try_wait_for_visibility(selector, page),
            lambda: self._try_wait_for_interactability(selector, page),
            lambda: self._try_force_click(selector, page),
        ], "Element state")

        if not outcome:
            return StrategyResult.failed("All element state healing strategies failed", "element_state_healing")

        return StrategyResult(
            success=True,
            strategy="element_state_healing",
            healed_data={**test_data, "element_state": outcome["state"], "interaction_method": outcome["method"]},
            changes=[f"Applied {outcome['method']} for element state"],
            details={"technique": outcome["method"]}
        )

    async def _try_scroll_into_view(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        await self._locate(page, selector).scroll_into_view_if_needed()
        return {"state": "scrolled", "method": "scroll_into_view"}

    async def _try_wait_for_visibility(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        await self._locate(page, selector).wait_for(state="visible", timeout=self.max_wait_time)
        return {"state": "visible", "method": "wait_for_visibility"}

    async def _try_wait_for_interactability(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        locator = self._locate(page, selector)
        await locator.wait_for(state="attached", timeout=self.max_wait_time)
        if await locator.is_enabled() and await locator.is_visible():
            return {"state": "interactable", "method": "wait_for_interactability"}
        return None

    async def _try_force_click(self, selector: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not selector:
            return None
        await self._locate(page, selector).click(force=True)
        return {"state": "force_interacted", "method": "force_click"}

    # ---- navigation healing ----

    async def heal_navigation_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Reach the intended page despite flaky or moved URLs."""
        logger.info(f"Applying navigation healing strategy: {strategy.name}")
        test_data = test_data or {}
        page = test_data.get("page")

        if page is None:
            return StrategyResult(
                success=True,
                strategy="navigation_healing",
                changes=["Applied basic navigation healing"]
            )

        url = test_data.get("url") or context.page_url
        outcome = await self._first_success([
            lambda: self._try_direct_navigation(url, page),
            lambda: self._try_retry_navigation(url, page),
            lambda: self._try_alternative_urls(url, page),
            lambda: self._try_wait_for_page_load(page),
        ], "Navigation")

        if not outcome:
            return StrategyResult.failed("All navigation healing strategies failed", "navigation_healing")

        return StrategyResult(
            success=True,
            strategy="navigation_healing",
            healed_data={**test_data, "url": outcome["url"], "navigation_method": outcome["method"]},
            changes=[f"Applied {outcome['method']} navigation strategy"],
            details={"technique": outcome["method"]}
        )

    async def _try_direct_navigation(self, url: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not url:
            return None
        await page.goto(url, wait_until="networkidle")
        return {"url": url, "method": "direct_navigation"}

    async def _try_retry_navigation(self, url: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        if not url:
            return None
        for attempt in range(NAVIGATION_RETRIES):
            try:
                await page.goto(url, wait_until="domcontentloaded")
                return {"url": url, "method": "retry_navigation", "attempts": attempt + 1}
            except Exception as e:
                logger.debug(f"Navigation attempt {attempt + 1} to {url} failed: {e}")
                await page.wait_for_timeout(NAVIGATION_BACKOFF_MS * (attempt + 1))
        return None

    async def _try_alternative_urls(self, url: Optional[str], page: Any) -> Optional[Dict[str, Any]]:
        for candidate in self.alternative_urls(url):
            try:
                await page.goto(candidate, wait_until="domcontentloaded")
                return {"url": candidate, "method": "alternative_url"}
            except Exception as e:
                logger.debug(f"Alternative URL {candidate} failed: {e}")
        return None

    async def _try_wait_for_page_load(self, page: Any) -> Optional[Dict[str, Any]]:
        await page.wait_for_load_state("networkidle")
        return {"url": page.url, "method": "wait_for_page_load"}

    @staticmethod
    def alternative_urls(url: Optional[str]) -> List[str]:
        """Common variations of a URL: scheme swap, trailing slash, www prefix."""
        if not url:
            return []
        match = re.match(r"^(https?)://(.*)$", url)
        scheme, rest = (match.group(1), match.group(2)) if match else ("https", url)
        variants = [
            url.replace("http://", "https://", 1),
            url.replace("https://", "http://", 1),
            url + "/",
            url.rstrip("/"),
            url.replace("www.", "", 1),
        ]
        if not rest.startswith("www."):
            variants.append(f"{scheme}://www.{rest}")
        return _unique(variants, exclude=url)
