"""Core data models for the test self-healing system."""

from .healing_models import (
    ErrorClassification,
    HealingMode,
    StrategySource,
    HealingContext,
    StrategyCandidate,
    RankedStrategy,
    Pattern,
    HealingHistoryEntry,
    StrategyResult,
    ErrorAnalysis,
    ExecutionMetrics,
    HealingConfiguration
)

# Note: Service classes are imported separately from their respective modules

__all__ = [
    "ErrorClassification",
    "HealingMode",
    "StrategySource",
    "HealingContext",
    "StrategyCandidate",
    "RankedStrategy",
    "Pattern",
    "HealingHistoryEntry",
    "StrategyResult",
    "ErrorAnalysis",
    "ExecutionMetrics",
    "HealingConfiguration"
]
