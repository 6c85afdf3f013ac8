"""Data models for the test self-healing system."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Any, Callable, Union
from enum import Enum


class ErrorClassification(Enum):
    """Coarse failure categories derived from an error message."""
    LOCATOR_FAILURE = "locator_failure"
    WAIT_FAILURE = "wait_failure"
    ELEMENT_STATE_FAILURE = "element_state_failure"
    NAVIGATION_FAILURE = "navigation_failure"
    API_FAILURE = "api_failure"
    ASSERTION_FAILURE = "assertion_failure"
    NETWORK_FAILURE = "network_failure"
    UNKNOWN_FAILURE = "unknown_failure"


class HealingMode(Enum):
    """How aggressively ranked strategies are attempted."""
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"
    LEARNING = "learning"


class StrategySource(Enum):
    """Where a candidate strategy came from."""
    AI = "ai"
    PATTERN = "pattern"


StrategyImplementation = Union[Callable[..., Any], str, None]


def _read_only_viewport(value: Any) -> Mapping[str, Any]:
    # Harnesses pass "1920x1080", [w, h] or a mapping
    if isinstance(value, MappingProxyType):
        return value
    if isinstance(value, Mapping):
        return MappingProxyType(dict(value))
    if value in (None, "", [], ()):
        return MappingProxyType({})
    return MappingProxyType({"value": value})


@dataclass(frozen=True)
class HealingContext:
    """Snapshot of the environment at the moment a test failed."""
    test_type: str = "ui"
    page_url: str = ""
    element: str = ""
    action: str = ""
    timestamp: int = 0
    user_agent: str = ""
    viewport: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        object.__setattr__(self, "viewport", _read_only_viewport(self.viewport))

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]], timestamp: int) -> 'HealingContext':
        """Build a context from a loose mapping.

        Both snake_case and camelCase keys are accepted so that test data
        coming from different harnesses can be passed straight through.
        """
        data = data or {}
        return cls(
            test_type=data.get("test_type") or data.get("testType") or "ui",
            page_url=data.get("page_url") or data.get("pageUrl") or data.get("url") or "",
            element=data.get("element") or "",
            action=data.get("action") or "",
            timestamp=timestamp,
            user_agent=data.get("user_agent") or data.get("userAgent") or "",
            viewport=data.get("viewport"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for prompts and logging."""
        return {
            "testType": self.test_type,
            "pageUrl": self.page_url,
            "element": self.element,
            "action": self.action,
            "timestamp": self.timestamp,
            "userAgent": self.user_agent,
            "viewport": dict(self.viewport),
        }


@dataclass
class StrategyCandidate:
    """A remediation technique proposed for one error analysis."""
    name: str
    description: str = ""
    implementation: StrategyImplementation = None
    confidence: Optional[float] = None
    source: StrategySource = StrategySource.AI


@dataclass
class RankedStrategy(StrategyCandidate):
    """A candidate with its computed ranking score (0-100)."""
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert ranked strategy to a JSON-safe dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "confidence": self.confidence,
            "source": self.source.value,
            "score": self.score,
            "has_implementation": self.implementation is not None,
        }


@dataclass
class Pattern:
    """Lifetime outcome counts for a strategy name."""
    name: str
    description: str = ""
    implementation: Optional[str] = None
    success_count: int = 0
    total_count: int = 0
    success_rate: float = 0.5

    def record(self, success: bool) -> None:
        """Fold one healing outcome into the counts."""
        self.total_count += 1
        if success:
            self.success_count += 1
        self.success_rate = self.success_count / self.total_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert pattern to its persisted form."""
        return {
            "name": self.name,
            "description": self.description,
            "implementation": self.implementation,
            "successCount": self.success_count,
            "totalCount": self.total_count,
            "successRate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'Pattern':
        """Create pattern from its persisted form."""
        return cls(
            name=data.get("name", name),
            description=data.get("description") or "",
            implementation=data.get("implementation") if isinstance(data.get("implementation"), str) else None,
            success_count=int(data.get("successCount", 0)),
            total_count=int(data.get("totalCount", 0)),
            success_rate=float(data.get("successRate", 0.5)),
        )


@dataclass
class HealingHistoryEntry:
    """One healing outcome, kept for auditing and context similarity."""
    timestamp: int
    error: str
    success: bool
    attempts: int = 1
    strategy: Optional[str] = None
    strategies: List[str] = field(default_factory=list)
    healed_data: Any = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to its persisted form."""
        data = {
            "timestamp": self.timestamp,
            "error": self.error,
            "attempts": self.attempts,
            "success": self.success,
            "healedData": self.healed_data,
            "context": self.context,
        }
        if self.strategy is not None:
            data["strategy"] = self.strategy
        if self.strategies:
            data["strategies"] = list(self.strategies)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingHistoryEntry':
        """Create entry from its persisted form."""
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            error=data.get("error") or "",
            success=bool(data.get("success", False)),
            attempts=int(data.get("attempts", 1)),
            strategy=data.get("strategy"),
            strategies=list(data.get("strategies") or []),
            healed_data=data.get("healedData"),
            context=dict(data.get("context") or {}),
        )


@dataclass
class StrategyResult:
    """Outcome of running one strategy, or of a whole healing cycle."""
    success: bool
    strategy: Optional[str] = None
    healed_data: Any = None
    changes: List[str] = field(default_factory=list)
    error: Optional[str] = None
    strategies: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, strategy: Optional[str] = None, **details) -> 'StrategyResult':
        """Shorthand for a failed outcome."""
        return cls(success=False, strategy=strategy, error=error, details=details)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for API responses."""
        return {
            "success": self.success,
            "strategy": self.strategy,
            "changes": list(self.changes),
            "error": self.error,
            "strategies": list(self.strategies),
            "details": self.details,
        }


@dataclass
class ErrorAnalysis:
    """Classification plus ranked strategies for one failure."""
    error_type: ErrorClassification
    context: HealingContext
    strategies: List[RankedStrategy]
    timestamp: int
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert analysis to dictionary for API responses."""
        return {
            "error_type": self.error_type.value,
            "context": self.context.to_dict(),
            "strategies": [s.to_dict() for s in self.strategies],
            "timestamp": self.timestamp,
            "error_message": self.error_message,
        }


@dataclass
class ExecutionMetrics:
    """Per-wrapper execution counters."""
    total_tests: int = 0
    healed_tests: int = 0
    healing_success_rate: float = 0.0  # percent
    average_healing_time: float = 0.0  # ms, duration of the most recent test

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "total_tests": self.total_tests,
            "healed_tests": self.healed_tests,
            "healing_success_rate": self.healing_success_rate,
            "average_healing_time": self.average_healing_time,
        }


@dataclass
class HealingConfiguration:
    """Configuration settings for the self-healing system."""
    enabled: bool = True
    enable_ai: bool = True
    healing_mode: HealingMode = HealingMode.AGGRESSIVE
    max_healing_attempts: int = 3
    max_attempts: int = 3
    healing_timeout_ms: int = 30000
    enable_learning: bool = True
    rerun_after_healing: bool = False

    # Strategy selection settings
    conservative_min_score: float = 70.0
    learning_min_samples: int = 3
    learning_prune_below: float = 0.25

    # Pattern store settings
    pattern_store_backend: str = "json"
    pattern_store_path: str = "data/patterns.json"
    history_limit: int = 1000

    # Executor settings
    ui_max_wait_time_ms: int = 10000
    ui_retry_delay_ms: int = 1000
    enable_ai_locator_generation: bool = True
    enable_smart_waits: bool = True
    api_timeout_ms: int = 10000

    # Model settings
    model_provider: str = "online"
    model_name: str = "gemini/gemini-2.5-flash"
    ai_temperature: float = 0.3
    ai_max_tokens: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "enabled": self.enabled,
            "enable_ai": self.enable_ai,
            "healing_mode": self.healing_mode.value,
            "max_healing_attempts": self.max_healing_attempts,
            "max_attempts": self.max_attempts,
            "healing_timeout_ms": self.healing_timeout_ms,
            "enable_learning": self.enable_learning,
            "rerun_after_healing": self.rerun_after_healing,
            "conservative_min_score": self.conservative_min_score,
            "learning_min_samples": self.learning_min_samples,
            "learning_prune_below": self.learning_prune_below,
            "pattern_store_backend": self.pattern_store_backend,
            "pattern_store_path": self.pattern_store_path,
            "history_limit": self.history_limit,
            "ui_max_wait_time_ms": self.ui_max_wait_time_ms,
            "ui_retry_delay_ms": self.ui_retry_delay_ms,
            "enable_ai_locator_generation": self.enable_ai_locator_generation,
            "enable_smart_waits": self.enable_smart_waits,
            "api_timeout_ms": self.api_timeout_ms,
            "model_provider": self.model_provider,
            "model_name": self.model_name,
            "ai_temperature": self.ai_temperature,
            "ai_max_tokens": self.ai_max_tokens,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingConfiguration':
        """Create configuration from dictionary."""
        data = data.copy()
        if "healing_mode" in data and not isinstance(data["healing_mode"], HealingMode):
            data["healing_mode"] = HealingMode(str(data["healing_mode"]).lower())
        return cls(**data)
