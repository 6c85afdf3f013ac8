"""
API Healing Strategies for Test Self-Healing System.

Endpoint healing probes the service under test with ``requests`` (run in
the default executor); schema and response healing reshape the test data
locally before falling back to the language model.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import requests

from ..core.models import HealingConfiguration, HealingContext, RankedStrategy, StrategyResult
from ..crew_ai.ai_integration import AIIntegration

logger = logging.getLogger(__name__)

Technique = Callable[[], Awaitable[Optional[Dict[str, Any]]]]

API_VERSION_PREFIXES = ("v1", "v2", "v3", "api/v1", "api/v2", "api/v3")
FALLBACK_ENDPOINTS = ("/health", "/status", "/ping", "/api/health", "/api/status")
BODY_METHODS = ("POST", "PUT", "PATCH")


def convert_data_type(value: Any, target_type: Optional[str]) -> Any:
    """Coerce a value to a JSON-schema primitive type.

    Raises:
        ValueError: If the value cannot be represented as the target type
    """
    if target_type == "string":
        return value if isinstance(value, str) else str(value)
    if target_type == "integer":
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        return int(float(value))
    if target_type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        number = float(value)
        return int(number) if number.is_integer() and not isinstance(value, float) else number
    if target_type == "boolean":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no", ""):
                return False
        return bool(value)
    if target_type == "array":
        return value if isinstance(value, list) else [value]
    if target_type == "object":
        return value if isinstance(value, dict) else {"value": value}
    return value


def normalize_response(response: Any) -> Any:
    """Decode JSON text; anything else is returned unchanged."""
    if isinstance(response, (str, bytes)):
        try:
            return json.loads(response)
        except (TypeError, ValueError):
            return response
    return response


def field_mappings(schema: Dict[str, Any]) -> Dict[str, str]:
    """Map ``alias -> field`` for schema properties declaring an alias."""
    mappings = {}
    for field_name, field_schema in (schema.get("properties") or {}).items():
        if isinstance(field_schema, dict) and field_schema.get("alias"):
            mappings[field_schema["alias"]] = field_name
    return mappings


def _same_kind(a: Any, b: Any) -> bool:
    def kind(value: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, (int, float)):
            return "number"
        if isinstance(value, str):
            return "string"
        if isinstance(value, (list, tuple)):
            return "array"
        return "object"
    return kind(a) == kind(b)


class APIHealingStrategies:
    """Healing techniques for HTTP API tests."""

    def __init__(self, config: Optional[HealingConfiguration] = None, ai_integration: Optional[AIIntegration] = None):
        self.config = config or HealingConfiguration()
        self.ai_integration = ai_integration
        self.timeout = self.config.api_timeout_ms / 1000

    async def _first_success(self, techniques: List[Technique], label: str) -> Optional[Dict[str, Any]]:
        for technique in techniques:
            try:
                outcome = await technique()
            except Exception as e:
                logger.debug(f"{label} technique failed: {e}")
                continue
            if outcome:
                return outcome
        return None

    async def make_request(self, url: str, method: str, data: Any = None) -> requests.Response:
        """Issue an HTTP request without blocking the event loop."""
        kwargs = {"timeout": self.timeout, "headers": {"Content-Type": "application/json"}}
        if data is not None and method.upper() in BODY_METHODS:
            kwargs["json"] = data
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: requests.request(method.upper(), url, **kwargs)
        )

    async def _probe(self, base_url: str, candidates: List[Tuple[str, str]]) -> Optional[Dict[str, Any]]:
        for endpoint, method in candidates:
            try:
                response = await self.make_request(f"{base_url}{endpoint}", method)
            except requests.RequestException as e:
                logger.debug(f"Probe {method} {base_url}{endpoint} failed: {e}")
                continue
            if response.status_code < 400:
                return {"endpoint": endpoint, "method": method, "status_code": response.status_code}
        return None

    # ---- endpoint healing ----

    async def heal_endpoint_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Find an endpoint variant that the service answers without error."""
        logger.info(f"Applying API endpoint healing strategy: {strategy.name}")
        test_data = test_data or {}
        endpoint = test_data.get("endpoint")

        if not endpoint:
            return StrategyResult(
                success=True,
                strategy="api_endpoint_healing",
                changes=["Applied basic API endpoint healing"]
            )

        method = (test_data.get("method") or "GET").upper()
        base_url = test_data.get("base_url") or ""

        outcome = await self._first_success([
            lambda: self._probe(base_url, self.alternative_endpoints(endpoint, method)),
            lambda: self._probe(base_url, [(f"/{prefix}{endpoint}", method) for prefix in API_VERSION_PREFIXES]),
            lambda: self._probe(base_url, [(fallback, method) for fallback in FALLBACK_ENDPOINTS]),
            lambda: self._try_ai_endpoints(endpoint, method, base_url, context),
        ], "Endpoint")

        if not outcome:
            return StrategyResult.failed("All endpoint healing strategies failed", "api_endpoint_healing")

        return StrategyResult(
            success=True,
            strategy="api_endpoint_healing",
            healed_data={**test_data, "endpoint": outcome["endpoint"], "method": outcome["method"], "base_url": base_url},
            changes=[f"Updated endpoint from '{endpoint}' to '{outcome['endpoint']}'"],
            details={"status_code": outcome["status_code"]}
        )

    @staticmethod
    def alternative_endpoints(endpoint: str, method: str) -> List[Tuple[str, str]]:
        """Method, trailing-slash and case variants of an endpoint."""
        candidates = [
            (endpoint, "GET"),
            (endpoint, "POST"),
            (endpoint.rstrip("/") or "/", method),
            (endpoint if endpoint.endswith("/") else endpoint + "/", method),
            (endpoint.lower(), method),
            (endpoint.upper(), method),
        ]
        unique = []
        for candidate in candidates:
            if candidate not in unique:
                unique.append(candidate)
        return unique

    async def _try_ai_endpoints(self, endpoint: str, method: str, base_url: str, context: HealingContext) -> Optional[Dict[str, Any]]:
        if self.ai_integration is None:
            return None
        suggestions = await self.ai_integration.suggest_endpoints(endpoint, method, context.to_dict())
        candidates = [(s["endpoint"], str(s.get("method") or method).upper()) for s in suggestions]
        return await self._probe(base_url, candidates)

    # ---- schema healing ----

    async def heal_schema_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Reshape request data so it conforms to the response schema."""
        logger.info(f"Applying API schema healing strategy: {strategy.name}")
        test_data = test_data or {}
        schema = test_data.get("response_schema")

        if not schema:
            return StrategyResult(
                success=True,
                strategy="api_schema_healing",
                changes=["Applied basic API schema healing"]
            )

        request_data = dict(test_data.get("request_data") or {})
        outcome = await self._first_success([
            lambda: self._try_schema_adaptation(request_data, schema),
            lambda: self._try_field_mapping(request_data, schema),
            lambda: self._try_type_conversion(request_data, schema),
            lambda: self._try_ai_schema(request_data, schema, context),
        ], "Schema")

        if not outcome:
            return StrategyResult.failed("All schema healing strategies failed", "api_schema_healing")

        return StrategyResult(
            success=True,
            strategy="api_schema_healing",
            healed_data={**test_data, "request_data": outcome["request_data"],
                         "response_schema": outcome.get("response_schema", schema)},
            changes=outcome["changes"]
        )

    async def _try_schema_adaptation(self, request_data: Dict[str, Any], schema: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        properties = schema.get("properties")
        if not isinstance(properties, dict):
            return None
        aliases = field_mappings(schema)
        removed = [f for f in request_data if f not in properties and f not in aliases]
        if not removed:
            return None
        adapted = {k: v for k, v in request_data.items() if k not in removed}
        return {"request_data": adapted, "changes": [f"Removed invalid fields from request data: {', '.join(removed)}"]}

    async def _try_field_mapping(self, request_data: Dict[str, Any], schema: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        mapped = dict(request_data)
        changes = []
        for alias, field_name in field_mappings(schema).items():
            if alias in mapped:
                mapped[field_name] = mapped.pop(alias)
                changes.append(f"Mapped field '{alias}' to '{field_name}'")
        if not changes:
            return None
        return {"request_data": mapped, "changes": changes}

    async def _try_type_conversion(self, request_data: Dict[str, Any], schema: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        converted = dict(request_data)
        changes = []
        for field_name, field_schema in (schema.get("properties") or {}).items():
            if field_name not in converted or not isinstance(field_schema, dict):
                continue
            value = converted[field_name]
            new_value = convert_data_type(value, field_schema.get("type"))
            if type(new_value) is not type(value) or new_value != value:
                converted[field_name] = new_value
                changes.append(f"Converted '{field_name}' to {field_schema.get('type')}")
        if not changes:
            return None
        return {"request_data": converted, "changes": changes}

    async def _try_ai_schema(self, request_data: Dict[str, Any], schema: Dict[str, Any], context: HealingContext) -> Optional[Dict[str, Any]]:
        if self.ai_integration is None:
            return None
        healed = await self.ai_integration.heal_schema(request_data, schema, context.to_dict())
        if not healed or not isinstance(healed.get("requestData"), dict):
            return None
        return {
            "request_data": healed["requestData"],
            "response_schema": healed.get("responseSchema") or schema,
            "changes": healed.get("changes") or ["Applied AI schema healing"],
        }

    # ---- response healing ----

    async def heal_response_issue(self, strategy: RankedStrategy, test_data: Dict[str, Any], context: HealingContext) -> StrategyResult:
        """Reconcile an API response with the expected response."""
        logger.info(f"Applying API response healing strategy: {strategy.name}")
        test_data = test_data or {}
        response = test_data.get("response")

        if response is None:
            return StrategyResult(
                success=True,
                strategy="api_response_healing",
                changes=["Applied basic API response healing"]
            )

        expected = test_data.get("expected_response")
        outcome = await self._first_success([
            lambda: self._try_normalization(response, expected),
            lambda: self._try_response_mapping(response, expected),
            lambda: self._try_response_validation(response, expected),
            lambda: self._try_ai_response(response, expected, context),
        ], "Response")

        if not outcome:
            return StrategyResult.failed("All response healing strategies failed", "api_response_healing")

        return StrategyResult(
            success=True,
            strategy="api_response_healing",
            healed_data={**test_data, "response": outcome["response"], "expected_response": outcome["expected_response"]},
            changes=outcome["changes"]
        )

    async def _try_normalization(self, response: Any, expected: Any) -> Optional[Dict[str, Any]]:
        normalized = normalize_response(response)
        normalized_expected = normalize_response(expected)
        if normalized == normalized_expected:
            return {"response": normalized, "expected_response": normalized_expected,
                    "changes": ["Normalized response format"]}
        return None

    async def _try_response_mapping(self, response: Any, expected: Any) -> Optional[Dict[str, Any]]:
        response = normalize_response(response)
        if not isinstance(response, dict) or not isinstance(expected, dict):
            return None
        mapped = dict(response)
        for key in expected:
            lowered = key.lower()
            if key not in mapped and lowered in mapped:
                mapped[key] = mapped.pop(lowered)
        if mapped == expected:
            return {"response": mapped, "expected_response": expected, "changes": ["Mapped response fields"]}
        return None

    async def _try_response_validation(self, response: Any, expected: Any) -> Optional[Dict[str, Any]]:
        if _same_kind(response, expected):
            return {"response": response, "expected_response": expected, "changes": ["Response validation passed"]}
        return None

    async def _try_ai_response(self, response: Any, expected: Any, context: HealingContext) -> Optional[Dict[str, Any]]:
        if self.ai_integration is None:
            return None
        healed = await self.ai_integration.heal_response(response, expected, context.to_dict())
        if not healed or "response" not in healed:
            return None
        return {
            "response": healed["response"],
            "expected_response": healed.get("expectedResponse", expected),
            "changes": healed.get("changes") or ["Applied AI response healing"],
        }
