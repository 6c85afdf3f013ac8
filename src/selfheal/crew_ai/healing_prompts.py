"""Prompt templates for the healing language model."""

import json
from typing import Any, Dict, Optional

SYSTEM_PROMPT = (
    "You are an expert test automation engineer specializing in self-healing test frameworks. "
    "Provide precise, actionable responses."
)

PAGE_SOURCE_LIMIT = 2000


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _with_system(prompt: str) -> str:
    return f"{SYSTEM_PROMPT}\n{prompt}"


def build_healing_prompt(message: str, context: Dict[str, Any], stack: Optional[str] = None) -> str:
    """Prompt asking for a ranked JSON array of healing strategies."""
    return _with_system(f"""
A test failed with this error: {message}

Context:
- Test Type: {context.get('testType') or 'unknown'}
- Page URL: {context.get('pageUrl') or 'unknown'}
- Element: {context.get('element') or 'unknown'}
- Action: {context.get('action') or 'unknown'}
- Error Stack: {stack or 'not available'}

Generate healing strategies to fix this test. Consider:
1. Locator alternatives
2. Wait strategies
3. Element state checks
4. Page navigation
5. Data adjustments

Known strategy names: locator_healing, wait_healing, element_state_healing,
navigation_healing, api_endpoint_healing, api_schema_healing,
api_response_healing, data_healing.

IMPORTANT: Return ONLY a valid JSON array with this exact format:
[
  {{
    "strategy": "locator_healing",
    "description": "Try alternative CSS selectors",
    "confidence": 80
  }},
  {{
    "strategy": "wait_healing",
    "description": "Add explicit wait for element",
    "confidence": 70
  }}
]

Do not include any text before or after the JSON array.
""")


def build_test_analysis_prompt(test_source: str, test_data: Any) -> str:
    """Prompt for the best-effort pre-execution analysis of a test."""
    return _with_system(f"""
Analyze this test function for potential issues and provide recommendations:

Test Function:
{test_source}

Test Data:
{_dump(test_data)}

Please provide:
1. Potential issues (array of strings)
2. Recommendations (array of strings)
3. Confidence level (0-100)
4. Risk assessment (low/medium/high)

Format your response as JSON with these exact keys: potentialIssues, recommendations, confidence, riskLevel.
""")


def build_locator_generation_prompt(element_description: str, page_source: str, current_locator: str) -> str:
    """Prompt asking for alternative locators for a broken element."""
    return _with_system(f"""
Generate alternative locators for this element:

Element Description: {element_description}
Current Locator: {current_locator}
Page Source (first {PAGE_SOURCE_LIMIT} chars): {(page_source or '')[:PAGE_SOURCE_LIMIT]}

Provide multiple locator strategies:
1. CSS selectors
2. XPath expressions
3. Text-based selectors
4. Attribute-based selectors

Format as JSON array with: type, selector, confidence, description.
""")


def build_test_data_prompt(message: str, test_data: Any) -> str:
    """Prompt asking for corrected test data."""
    return _with_system(f"""
Test data failed with error: {message}

Current test data: {_dump(test_data)}

Generate corrected test data that should work. Return only valid JSON.
""")


def build_schema_analysis_prompt(old_schema: Any, new_schema: Any, endpoint: str) -> str:
    """Prompt comparing two API schemas."""
    return _with_system(f"""
Analyze API schema changes and their impact on testing:

Endpoint: {endpoint}
Old Schema: {_dump(old_schema)}
New Schema: {_dump(new_schema)}

Identify:
1. Breaking changes
2. New fields
3. Removed fields
4. Modified fields
5. Impact on existing tests

Format as JSON with: changes, impact, recommendations.
""")


def build_endpoint_generation_prompt(endpoint: str, method: str, context: Dict[str, Any]) -> str:
    """Prompt asking for alternative API endpoints."""
    return _with_system(f"""
Generate alternative API endpoints for this request:

Original Endpoint: {endpoint}
Method: {method}
Context: {_dump(context)}

Consider:
1. Different API versions
2. Alternative path structures
3. RESTful conventions
4. Common endpoint patterns

Provide 3-5 alternative endpoints with confidence scores.
Format as JSON array with: endpoint, method, confidence, description.
""")


def build_schema_healing_prompt(request_data: Any, response_schema: Any, context: Dict[str, Any]) -> str:
    """Prompt asking to reconcile request data with a response schema."""
    return _with_system(f"""
Heal this API schema mismatch:

Request Data: {_dump(request_data)}
Response Schema: {_dump(response_schema)}
Context: {_dump(context)}

Identify and fix:
1. Field name mismatches
2. Data type mismatches
3. Missing required fields
4. Invalid field values

Provide healed request data and updated schema.
Format as JSON with: requestData, responseSchema, changes.
""")


def build_response_healing_prompt(response: Any, expected_response: Any, context: Dict[str, Any]) -> str:
    """Prompt asking to reconcile an actual response with the expected one."""
    return _with_system(f"""
Heal this API response mismatch:

Actual Response: {_dump(response)}
Expected Response: {_dump(expected_response)}
Context: {_dump(context)}

Identify and fix:
1. Field mapping issues
2. Data format differences
3. Missing fields
4. Type mismatches

Provide healed response and expected response.
Format as JSON with: response, expectedResponse, changes.
""")
