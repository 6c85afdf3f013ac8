"""
LLM Output Parser - Robust parsing for model responses.

Models asked for "ONLY a JSON array" regularly wrap it in markdown fences
or surround it with prose. This module strips that noise, decodes the
first JSON value it can find, and falls back to keyword extraction when
the response carries no usable JSON at all.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class LLMOutputParser:
    """
    Extracts structured data from free-form model output.

    All methods are static; nothing here raises on bad input.
    """

    CODE_FENCE_PATTERN = re.compile(r"```(?:json|JSON|javascript|js)?\s*(.*?)```", re.DOTALL)

    # (pattern, strategy name) pairs for responses that are not JSON
    KEYWORD_PATTERNS = [
        (re.compile(r"locator.*healing", re.IGNORECASE), "locator_healing"),
        (re.compile(r"wait.*strategy", re.IGNORECASE), "wait_healing"),
        (re.compile(r"element.*state", re.IGNORECASE), "element_state_healing"),
        (re.compile(r"navigation.*healing", re.IGNORECASE), "navigation_healing"),
        (re.compile(r"data.*adjustment", re.IGNORECASE), "data_healing"),
    ]

    KEYWORD_CONFIDENCE = 70
    DEFAULT_CONFIDENCE = 60

    DEFAULT_STRATEGIES = [
        {
            "strategy": "locator_healing",
            "description": "Try alternative locators",
            "confidence": DEFAULT_CONFIDENCE,
        },
        {
            "strategy": "wait_healing",
            "description": "Add explicit wait",
            "confidence": DEFAULT_CONFIDENCE,
        },
    ]

    @staticmethod
    def strip_code_fences(text: str) -> str:
        """
        Return the body of the first markdown code block, or the text itself.

        Examples:
            Input:  "Here you go:\\n```json\\n[1, 2]\\n```"
            Output: "[1, 2]"
        """
        if not isinstance(text, str):
            return ""
        match = LLMOutputParser.CODE_FENCE_PATTERN.search(text)
        return match.group(1).strip() if match else text.strip()

    @staticmethod
    def extract_json(text: str) -> Any:
        """
        Decode the first JSON array or object found in the text.

        Raises:
            ValueError: If no JSON value can be decoded
        """
        cleaned = LLMOutputParser.strip_code_fences(text)
        if not cleaned:
            raise ValueError("Empty model response")

        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass

        decoder = json.JSONDecoder()
        for index, char in enumerate(cleaned):
            if char in "[{":
                try:
                    value, _ = decoder.raw_decode(cleaned[index:])
                    return value
                except json.JSONDecodeError:
                    continue
        raise ValueError("No JSON value found in model response")

    @staticmethod
    def parse_json_array(text: str) -> Optional[List[Any]]:
        """Return the decoded JSON array, or None if the text holds none."""
        try:
            value = LLMOutputParser.extract_json(text)
        except ValueError:
            return None
        if isinstance(value, dict):
            for key in ("strategies", "locators", "endpoints", "items"):
                if isinstance(value.get(key), list):
                    return value[key]
            return None
        return value if isinstance(value, list) else None

    @staticmethod
    def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
        """Return the decoded JSON object, or None if the text holds none."""
        try:
            value = LLMOutputParser.extract_json(text)
        except ValueError:
            return None
        return value if isinstance(value, dict) else None

    @staticmethod
    def extract_keyword_strategies(text: str) -> List[Dict[str, Any]]:
        """Infer strategies from prose mentioning known healing techniques."""
        if not isinstance(text, str):
            return []
        strategies = []
        lines = text.splitlines()
        for pattern, name in LLMOutputParser.KEYWORD_PATTERNS:
            if not pattern.search(text):
                continue
            description = next(
                (line.strip() for line in lines if pattern.search(line)),
                "AI-generated healing strategy"
            )
            strategies.append({
                "strategy": name,
                "description": description,
                "confidence": LLMOutputParser.KEYWORD_CONFIDENCE,
            })
        return strategies

    @staticmethod
    def parse_healing_strategies(text: str) -> List[Dict[str, Any]]:
        """
        Parse a strategy list from a model response.

        Falls back from a JSON array, to keyword extraction, to the generic
        locator/wait pair, so the result is never empty.
        """
        items = LLMOutputParser.parse_json_array(text)
        if items is not None:
            strategies = [
                item for item in items
                if isinstance(item, dict) and isinstance(item.get("strategy") or item.get("name"), str)
            ]
            for item in strategies:
                item.setdefault("strategy", item.get("name"))
            return strategies

        strategies = LLMOutputParser.extract_keyword_strategies(text)
        if strategies:
            logger.info(f"Model response was not JSON, extracted {len(strategies)} strategies by keyword")
            return strategies

        logger.warning("Model response unusable, falling back to generic strategies")
        return [dict(s) for s in LLMOutputParser.DEFAULT_STRATEGIES]
