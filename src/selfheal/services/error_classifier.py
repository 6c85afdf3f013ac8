"""
Error Classifier for Test Self-Healing System.

Maps a failure's message text onto a coarse ErrorClassification and decides
whether the failure is eligible for automatic healing at all.
"""

import logging
from typing import Any, List, Tuple

from ..core.healing_utils import error_message
from ..core.models import ErrorClassification

logger = logging.getLogger(__name__)


class ErrorClassifier:
    """Classifies test failures by case-insensitive substring matching."""

    # Evaluated top to bottom; the first category with a matching phrase wins
    CLASSIFICATION_PATTERNS: List[Tuple[ErrorClassification, Tuple[str, ...]]] = [
        (ErrorClassification.LOCATOR_FAILURE, ("element not found", "selector")),
        (ErrorClassification.WAIT_FAILURE, ("timeout", "wait")),
        (ErrorClassification.ELEMENT_STATE_FAILURE, ("not visible", "not clickable")),
        (ErrorClassification.NAVIGATION_FAILURE, ("navigation", "page not found")),
        (ErrorClassification.API_FAILURE, ("api", "endpoint")),
        (ErrorClassification.ASSERTION_FAILURE, ("assertion", "expect")),
        (ErrorClassification.NETWORK_FAILURE, ("network", "connection")),
    ]

    # Failures outside this allow-list are never handed to the orchestrator
    HEALABLE_PATTERNS: Tuple[str, ...] = (
        "element not found",
        "timeout",
        "selector not found",
        "network error",
        "assertion failed",
        "element not visible",
        "element not clickable",
    )

    def classify(self, error: Any) -> ErrorClassification:
        """
        Classify an error by its message text.

        Args:
            error: Exception, string or any object with a message

        Returns:
            The first matching ErrorClassification, UNKNOWN_FAILURE otherwise
        """
        message = error_message(error).lower()
        for classification, phrases in self.CLASSIFICATION_PATTERNS:
            if any(phrase in message for phrase in phrases):
                return classification
        return ErrorClassification.UNKNOWN_FAILURE

    def is_healable_error(self, error: Any) -> bool:
        """Check whether an error matches the healable allow-list."""
        message = error_message(error).lower()
        healable = any(phrase in message for phrase in self.HEALABLE_PATTERNS)
        if not healable:
            logger.debug(f"Error is not healable: {message[:120]}")
        return healable
