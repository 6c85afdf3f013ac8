"""Utility functions for working with self-healing data models."""

import json
import time
from collections.abc import Mapping
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from .models.healing_models import HealingContext


def current_millis() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def error_message(error: Any) -> str:
    """Extract the message text of an error-like value.

    Exceptions, strings and ``None`` are all accepted so callers never
    have to guard before classifying.
    """
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error) if error.args else type(error).__name__
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    return str(error)


def extract_hostname(url: Optional[str]) -> str:
    """Return the hostname of a URL, or 'unknown' if it cannot be parsed."""
    if not url:
        return "unknown"
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    return hostname or "unknown"


def create_healing_context(
    context: Optional[Dict[str, Any]] = None,
    timestamp: Optional[int] = None
) -> HealingContext:
    """Create a HealingContext, applying defaults for missing fields.

    Args:
        context: Loose mapping of context fields (camelCase or snake_case)
        timestamp: Optional override for the capture time in epoch ms

    Returns:
        HealingContext: Immutable context snapshot
    """
    if isinstance(context, HealingContext):
        return context
    return HealingContext.from_mapping(context, timestamp if timestamp is not None else current_millis())


def json_safe(value: Any) -> Any:
    """Return a JSON-serializable snapshot of ``value``.

    Live handles such as browser pages or HTTP sessions are replaced by
    their type name so history entries can always be persisted.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, HealingContext):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return f"<{type(value).__name__}>"
