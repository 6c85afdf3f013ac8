"""Self-healing orchestration layer for browser and API test execution."""

__version__ = "0.1.0"
