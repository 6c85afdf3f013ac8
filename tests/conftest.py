"""
Pytest configuration and shared fixtures for the test suite.
"""

import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

# Add the package source to Python path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from selfheal.core.metrics import initialize_metrics  # noqa: E402
from selfheal.core.models import HealingConfiguration  # noqa: E402
from selfheal.services.pattern_store import JsonFilePersistence, PatternStore  # noqa: E402


@pytest.fixture(scope="session")
def package_src_path():
    """Provide the package source path for tests."""
    return src_path


@pytest.fixture
def healing_config(tmp_path):
    """Create a test healing configuration with the model switched off."""
    return HealingConfiguration(
        enabled=True,
        enable_ai=False,
        max_healing_attempts=2,
        healing_timeout_ms=5000,
        pattern_store_path=str(tmp_path / "patterns.json"),
        ui_max_wait_time_ms=100,
        ui_retry_delay_ms=50,
        api_timeout_ms=1000
    )


@pytest.fixture
def pattern_store(tmp_path):
    """Pattern store backed by a temporary directory."""
    return PatternStore(JsonFilePersistence(str(tmp_path)), key="patterns")


@pytest.fixture
def mock_ai_integration():
    """AI collaborator double with every model-backed call mocked."""
    ai = Mock()
    ai.initialize = AsyncMock()
    ai.cleanup = AsyncMock()
    ai.generate_healing_strategies = AsyncMock(return_value=[])
    ai.generate_alternative_locators = AsyncMock(return_value=[])
    ai.heal_test_data = AsyncMock(return_value=None)
    ai.suggest_endpoints = AsyncMock(return_value=[])
    ai.heal_schema = AsyncMock(return_value=None)
    ai.heal_response = AsyncMock(return_value=None)
    ai.analyze_test = AsyncMock(return_value={"potential_issues": [], "risk_level": "unknown"})
    ai.learn_from_test = AsyncMock()
    return ai


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Give every test its own global metrics collector."""
    initialize_metrics()
    yield


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
