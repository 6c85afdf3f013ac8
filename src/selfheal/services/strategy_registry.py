"""Closed table of built-in healing strategies, keyed by lower-cased name."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.models import HealingContext, RankedStrategy, StrategyResult

logger = logging.getLogger(__name__)

StrategyHandler = Callable[[RankedStrategy, Dict[str, Any], HealingContext], Awaitable[StrategyResult]]

BUILTIN_STRATEGIES = (
    "locator_healing",
    "wait_healing",
    "element_state_healing",
    "navigation_healing",
    "api_endpoint_healing",
    "api_schema_healing",
    "api_response_healing",
    "data_healing",
)


class StrategyRegistry:
    """Dispatch table from strategy names to executor methods.

    Only the built-in names can be bound; anything else is left to the
    orchestrator's custom-strategy path.
    """

    def __init__(self, ui_strategies, api_strategies, data_handler: StrategyHandler):
        self._handlers: Dict[str, StrategyHandler] = {}
        self.register("locator_healing", ui_strategies.heal_locator_issue)
        self.register("wait_healing", ui_strategies.heal_wait_issue)
        self.register("element_state_healing", ui_strategies.heal_element_state_issue)
        self.register("navigation_healing", ui_strategies.heal_navigation_issue)
        self.register("api_endpoint_healing", api_strategies.heal_endpoint_issue)
        self.register("api_schema_healing", api_strategies.heal_schema_issue)
        self.register("api_response_healing", api_strategies.heal_response_issue)
        self.register("data_healing", data_handler)

    def register(self, name: str, handler: StrategyHandler) -> None:
        """Rebind a built-in strategy name to a different handler.

        Raises:
            KeyError: If the name is not a built-in strategy
        """
        key = name.lower()
        if key not in BUILTIN_STRATEGIES:
            raise KeyError(f"Unknown built-in strategy: {name}")
        self._handlers[key] = handler

    def get(self, name: str) -> Optional[StrategyHandler]:
        return self._handlers.get((name or "").lower())

    def __contains__(self, name: str) -> bool:
        return (name or "").lower() in self._handlers

    @property
    def names(self) -> List[str]:
        return list(self._handlers)
