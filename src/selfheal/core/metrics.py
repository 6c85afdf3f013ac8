"""
Metrics collection system for test self-healing operations.

This module provides metrics collection for test executions, healing
cycles and per-strategy effectiveness.
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Dict, Optional
import json
import logging

from .models import ErrorClassification


@dataclass
class MetricPoint:
    """A single metric data point."""
    timestamp: datetime
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class HealingMetrics:
    """Aggregated healing metrics."""
    # Test executions
    total_tests: int = 0
    passed_tests: int = 0
    healed_tests: int = 0
    failed_tests: int = 0

    # Healing cycles
    total_healing_cycles: int = 0
    successful_healings: int = 0
    failed_healings: int = 0
    healing_success_rate: float = 0.0

    # Performance metrics (ms)
    avg_healing_time: float = 0.0
    avg_strategy_time: float = 0.0
    avg_test_time: float = 0.0

    # Error type distribution
    error_type_counts: Dict[str, int] = field(default_factory=dict)

    # Strategy effectiveness
    strategy_attempts: Dict[str, int] = field(default_factory=dict)
    strategy_success_rates: Dict[str, float] = field(default_factory=dict)

    # AI collaborator
    ai_calls: int = 0
    ai_failures: int = 0

    # Error patterns
    most_common_errors: Dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """Thread-safe metrics collector for healing operations."""

    def __init__(self, retention_hours: int = 24):
        """
        Initialize metrics collector.

        Args:
            retention_hours: How long to retain detailed metrics in memory
        """
        self.retention_hours = retention_hours
        self.retention_delta = timedelta(hours=retention_hours)

        self._lock = threading.RLock()

        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, deque] = defaultdict(lambda: deque(maxlen=1000))

        self._error_patterns: Dict[str, int] = defaultdict(int)

        self.logger = logging.getLogger("healing.metrics")

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        with self._lock:
            key = self._make_key(name, labels)
            self._counters[key] += value

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge metric value."""
        with self._lock:
            key = self._make_key(name, labels)
            self._gauges[key] = value

    def record_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Record a value in a histogram."""
        with self._lock:
            key = self._make_key(name, labels)
            self._histograms[key].append(MetricPoint(
                timestamp=datetime.now(),
                value=value,
                labels=labels or {}
            ))

    def record_test_execution(self, outcome: str, duration_ms: float):
        """Record a wrapped test execution.

        Args:
            outcome: 'passed', 'healed' or 'failed'
            duration_ms: Wall-clock duration of the execution
        """
        with self._lock:
            self.increment_counter("test_executions_total")
            self.increment_counter(f"test_executions_{outcome}")
            self.record_histogram("test_execution_duration", duration_ms)

    def record_error_classified(self, error_type: ErrorClassification, message: str = None):
        """Record a classified failure."""
        with self._lock:
            self.increment_counter("errors_classified_by_type", labels={"error_type": error_type.value})
            if message:
                self._error_patterns[message[:200]] += 1

    def record_strategy_attempt(self, strategy: str, success: bool, duration_ms: float):
        """Record one strategy execution inside a healing cycle."""
        with self._lock:
            self.increment_counter("strategy_attempts_total", labels={"strategy": strategy})
            self.increment_counter(f"strategy_{'success' if success else 'failure'}",
                                   labels={"strategy": strategy})
            self.record_histogram("strategy_duration", duration_ms, {"strategy": strategy})

    def record_healing_cycle(self, success: bool, duration_ms: float, attempted: int):
        """Record the outcome of one analyze+apply cycle."""
        with self._lock:
            self.increment_counter("healing_cycles_total")
            self.increment_counter(f"healing_{'success' if success else 'failure'}_total")
            self.record_histogram("healing_cycle_duration", duration_ms)
            self.set_gauge("last_cycle_strategies_attempted", attempted)

    def record_ai_call(self, success: bool, response_time_ms: float):
        """Record a call to the language model collaborator."""
        with self._lock:
            self.increment_counter("ai_calls_total")
            if not success:
                self.increment_counter("ai_failures_total")
            self.record_histogram("ai_response_time", response_time_ms)

    def get_current_metrics(self) -> HealingMetrics:
        """Get current aggregated metrics."""
        with self._lock:
            self.prune_expired()
            cycles = self._counters.get("healing_cycles_total", 0)
            successful = self._counters.get("healing_success_total", 0)

            error_type_counts = {}
            prefix = "errors_classified_by_type_error_type:"
            for key, count in self._counters.items():
                if key.startswith(prefix):
                    error_type_counts[key[len(prefix):]] = count

            strategy_attempts = {}
            strategy_success_rates = {}
            prefix = "strategy_attempts_total_strategy:"
            for key, count in self._counters.items():
                if key.startswith(prefix):
                    name = key[len(prefix):]
                    strategy_attempts[name] = count
                    wins = self._counters.get(f"strategy_success_strategy:{name}", 0)
                    strategy_success_rates[name] = wins / count if count else 0.0

            most_common_errors = dict(sorted(self._error_patterns.items(),
                                             key=lambda x: x[1], reverse=True)[:10])

            return HealingMetrics(
                total_tests=self._counters.get("test_executions_total", 0),
                passed_tests=self._counters.get("test_executions_passed", 0),
                healed_tests=self._counters.get("test_executions_healed", 0),
                failed_tests=self._counters.get("test_executions_failed", 0),
                total_healing_cycles=cycles,
                successful_healings=successful,
                failed_healings=self._counters.get("healing_failure_total", 0),
                healing_success_rate=(successful / cycles * 100) if cycles else 0.0,
                avg_healing_time=self._average("healing_cycle_duration"),
                avg_strategy_time=self._average("strategy_duration"),
                avg_test_time=self._average("test_execution_duration"),
                error_type_counts=error_type_counts,
                strategy_attempts=strategy_attempts,
                strategy_success_rates=strategy_success_rates,
                ai_calls=self._counters.get("ai_calls_total", 0),
                ai_failures=self._counters.get("ai_failures_total", 0),
                most_common_errors=most_common_errors
            )

    def export_metrics(self, format: str = "json") -> str:
        """Export metrics in specified format."""
        metrics = self.get_current_metrics()

        if format == "json":
            return json.dumps(asdict(metrics), default=str, indent=2)
        elif format == "prometheus":
            return self._export_prometheus_format(metrics)
        else:
            raise ValueError(f"Unsupported export format: {format}")

    def prune_expired(self):
        """Drop histogram samples older than the retention window."""
        cutoff_time = datetime.now() - self.retention_delta

        with self._lock:
            for hist in self._histograms.values():
                while hist and hist[0].timestamp < cutoff_time:
                    hist.popleft()

    def reset(self):
        """Drop all collected metrics."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._error_patterns.clear()

    def _average(self, name: str) -> float:
        values = [p.value for key, hist in self._histograms.items()
                  if key == name or key.startswith(f"{name}_") for p in hist]
        return sum(values) / len(values) if values else 0.0

    def _make_key(self, name: str, labels: Dict[str, str] = None) -> str:
        """Create a key for metric storage."""
        if not labels:
            return name

        label_str = "_".join(f"{k}:{v}" for k, v in sorted(labels.items()))
        return f"{name}_{label_str}"

    def _export_prometheus_format(self, metrics: HealingMetrics) -> str:
        """Export metrics in Prometheus format."""
        lines = []

        lines.append("# HELP selfheal_tests_total Total number of wrapped test executions")
        lines.append("# TYPE selfheal_tests_total counter")
        lines.append(f"selfheal_tests_total {metrics.total_tests}")

        lines.append("# HELP selfheal_healed_tests_total Tests that passed after healing")
        lines.append("# TYPE selfheal_healed_tests_total counter")
        lines.append(f"selfheal_healed_tests_total {metrics.healed_tests}")

        lines.append("# HELP selfheal_healing_cycles_total Total number of healing cycles")
        lines.append("# TYPE selfheal_healing_cycles_total counter")
        lines.append(f"selfheal_healing_cycles_total {metrics.total_healing_cycles}")

        lines.append("# HELP selfheal_healing_avg_duration_ms Average healing cycle duration")
        lines.append("# TYPE selfheal_healing_avg_duration_ms gauge")
        lines.append(f"selfheal_healing_avg_duration_ms {metrics.avg_healing_time}")

        lines.append("# HELP selfheal_healing_success_rate Healing cycle success rate (percent)")
        lines.append("# TYPE selfheal_healing_success_rate gauge")
        lines.append(f"selfheal_healing_success_rate {metrics.healing_success_rate}")

        lines.append("# HELP selfheal_strategy_success_rate Success rate per strategy")
        lines.append("# TYPE selfheal_strategy_success_rate gauge")
        for name, rate in sorted(metrics.strategy_success_rates.items()):
            lines.append(f'selfheal_strategy_success_rate{{strategy="{name}"}} {rate}')

        return "\n".join(lines)


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def initialize_metrics(retention_hours: int = 24):
    """Initialize the global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(retention_hours)
