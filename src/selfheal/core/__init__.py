"""
Core module for the self-healing test layer.

This module contains:
- config.py: Application configuration and settings
- config_loader.py: YAML healing configuration loader
- logging_config.py: Logging configuration
- metrics.py: Metrics and monitoring
"""

__all__ = ["config", "config_loader", "logging_config", "metrics"]
