"""
Tests for the error classifier.
"""

import pytest

from selfheal.core.healing_utils import error_message
from selfheal.core.models import ErrorClassification
from selfheal.services.error_classifier import ErrorClassifier


@pytest.fixture
def classifier():
    return ErrorClassifier()


class TestClassify:
    """Test classification priority and matching."""

    @pytest.mark.parametrize("message,expected", [
        ("Element not found: #submit", ErrorClassification.LOCATOR_FAILURE),
        ("Invalid selector syntax", ErrorClassification.LOCATOR_FAILURE),
        ("Timeout 30000ms exceeded", ErrorClassification.WAIT_FAILURE),
        ("Gave up waiting for spinner", ErrorClassification.WAIT_FAILURE),
        ("Element is not visible", ErrorClassification.ELEMENT_STATE_FAILURE),
        ("Button not clickable at point (10, 20)", ErrorClassification.ELEMENT_STATE_FAILURE),
        ("Navigation failed because page crashed", ErrorClassification.NAVIGATION_FAILURE),
        ("404 page not found", ErrorClassification.NAVIGATION_FAILURE),
        ("API returned 500", ErrorClassification.API_FAILURE),
        ("Unknown endpoint /users", ErrorClassification.API_FAILURE),
        ("Assertion error: 1 != 2", ErrorClassification.ASSERTION_FAILURE),
        ("expected true to be false", ErrorClassification.ASSERTION_FAILURE),
        ("Network unreachable", ErrorClassification.NETWORK_FAILURE),
        ("Connection refused", ErrorClassification.NETWORK_FAILURE),
        ("Something odd happened", ErrorClassification.UNKNOWN_FAILURE),
    ])
    def test_classification_table(self, classifier, message, expected):
        """Each phrase maps to its category."""
        assert classifier.classify(Exception(message)) == expected

    def test_earlier_category_wins(self, classifier):
        """A message matching several categories takes the first in priority order."""
        assert classifier.classify(Exception("selector timeout")) == ErrorClassification.LOCATOR_FAILURE
        assert classifier.classify(Exception("network timeout")) == ErrorClassification.WAIT_FAILURE
        assert classifier.classify(Exception("api connection reset")) == ErrorClassification.API_FAILURE

    def test_case_insensitive(self, classifier):
        assert classifier.classify(Exception("ELEMENT NOT FOUND")) == ErrorClassification.LOCATOR_FAILURE

    def test_non_exception_inputs(self, classifier):
        """Strings and None are classified without raising."""
        assert classifier.classify("timeout") == ErrorClassification.WAIT_FAILURE
        assert classifier.classify(None) == ErrorClassification.UNKNOWN_FAILURE
        assert classifier.classify(Exception()) == ErrorClassification.UNKNOWN_FAILURE

    def test_classification_is_deterministic(self, classifier):
        error = Exception("Element not visible after timeout")
        assert classifier.classify(error) == classifier.classify(error)


class TestHealable:
    """Test the healable allow-list."""

    @pytest.mark.parametrize("message", [
        "element not found",
        "Timeout exceeded",
        "Selector not found: .btn",
        "Network error while loading",
        "Assertion failed: title",
        "Element not visible",
        "Element not clickable",
    ])
    def test_healable_messages(self, classifier, message):
        assert classifier.is_healable_error(Exception(message)) is True

    @pytest.mark.parametrize("message", [
        "TypeError: undefined is not a function",
        "Connection refused",
        "page not found",
        "",
    ])
    def test_non_healable_messages(self, classifier, message):
        assert classifier.is_healable_error(Exception(message)) is False


class TestErrorMessage:
    """Test message extraction from error-like values."""

    def test_exception_message(self):
        assert error_message(ValueError("boom")) == "boom"

    def test_exception_without_args_uses_type_name(self):
        assert error_message(KeyError()) == "KeyError"

    def test_object_with_message_attribute(self):
        class Failure:
            message = "element not found"

        assert error_message(Failure()) == "element not found"

    def test_none_and_strings(self):
        assert error_message(None) == ""
        assert error_message("plain text") == "plain text"
