"""
Logging configuration for the test self-healing system.

This module provides structured logging configuration with different loggers
for the classifier, generator, executors, orchestrator and wrapper.
"""

import logging
import logging.handlers
import json
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import asdict, is_dataclass
from enum import Enum


# Extra attributes copied from log records into the JSON payload
STRUCTURED_FIELDS = (
    "session_id",
    "test_case",
    "operation",
    "phase",
    "strategy",
    "error_type",
    "attempt",
    "duration",
    "success",
    "error_code",
    "metadata",
)

# Components that get their own "healing.<name>" logger
HEALING_COMPONENTS = (
    "orchestrator",
    "generator",
    "executors",
    "framework",
    "store",
    "ai",
)


class StructuredFormatter(logging.Formatter):
    """Renders log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for field_name in STRUCTURED_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        if record.exc_info:
            log_data['exception'] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=self._json_serializer)

    def _json_serializer(self, obj):
        """Fallback for dataclasses, enums and datetimes in record extras."""
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        elif is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif hasattr(obj, 'isoformat'):  # datetime objects
            return obj.isoformat()
        elif hasattr(obj, '__dict__'):
            return obj.__dict__
        else:
            return str(obj)


class HealingLoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps session and test case onto every healing log record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge the adapter context into the record extras."""
        if 'extra' not in kwargs:
            kwargs['extra'] = {}
        kwargs['extra'].update(self.extra)
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        """Log that an operation (analysis, healing cycle, flush) has started."""
        self.info(f"Starting {operation}", extra={
            'operation': operation,
            'phase': 'start',
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, **metadata):
        """Log a completed operation with its duration in ms."""
        self.info(f"Completed {operation} successfully", extra={
            'operation': operation,
            'phase': 'complete',
            'success': True,
            'duration': duration,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str, error_code: str = None, **metadata):
        """Log a failed operation at ERROR level."""
        self.error(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'phase': 'complete',
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })

    def log_strategy_attempt(self, strategy: str, attempt: int, success: bool, duration: float, error: str = None):
        """Log the outcome of a single strategy within a healing cycle."""
        level = logging.INFO if success else logging.WARNING
        outcome = "succeeded" if success else f"failed: {error}"
        self.log(level, f"Strategy {strategy} {outcome}", extra={
            'operation': 'apply_strategy',
            'strategy': strategy,
            'attempt': attempt,
            'success': success,
            'duration': duration
        })



def _rotating_handler(path: Path, max_mb: int, backups: int, level: int, formatter: logging.Formatter):
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_healing_logging(log_level: str = "INFO", log_dir: str = "logs") -> Dict[str, logging.Logger]:
    """
    Route healing loggers to JSON files under log_dir.

    Every record goes to healing_all.log. Component and metrics loggers
    also write to healing_operations.log, and errors to healing_errors.log.
    Returns the configured loggers keyed by component name.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    # External library log levels from environment
    crewai_level = getattr(logging, os.getenv("CREWAI_LOG_LEVEL", "INFO").upper(), logging.INFO)
    litellm_level = getattr(logging, os.getenv("LITELLM_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    requests_level = getattr(logging, os.getenv("REQUESTS_LOG_LEVEL", "WARNING").upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    structured_formatter = StructuredFormatter()
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler for development
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(level)

    all_logs_handler = _rotating_handler(log_path / "healing_all.log", 10, 5, logging.DEBUG, structured_formatter)
    healing_handler = _rotating_handler(log_path / "healing_operations.log", 10, 10, logging.INFO, structured_formatter)
    error_handler = _rotating_handler(log_path / "healing_errors.log", 5, 10, logging.ERROR, structured_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(all_logs_handler)

    loggers = {}

    for component in HEALING_COMPONENTS:
        component_logger = logging.getLogger(f"healing.{component}")
        component_logger.addHandler(healing_handler)
        component_logger.addHandler(error_handler)
        loggers[component] = component_logger

    # Metrics logger
    metrics_logger = logging.getLogger("healing.metrics")
    metrics_logger.addHandler(healing_handler)
    loggers["metrics"] = metrics_logger

    # Model backends
    for name, lib_level in (("crewai", crewai_level), ("litellm", litellm_level), ("langchain", crewai_level)):
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(lib_level)
        lib_logger.addHandler(_rotating_handler(log_path / f"{name}.log", 10, 5, logging.DEBUG, structured_formatter))
        loggers[name] = lib_logger

    # HTTP requests logger (API healing probes)
    requests_logger = logging.getLogger("urllib3")
    requests_logger.setLevel(requests_level)
    requests_logger.addHandler(
        _rotating_handler(log_path / "http_requests.log", 10, 5, logging.DEBUG, structured_formatter)
    )
    loggers["requests"] = requests_logger

    return loggers


def get_healing_logger(component: str, session_id: Optional[str] = None, test_case: Optional[str] = None) -> HealingLoggerAdapter:
    """
    Get a healing logger adapter with contextual information.

    Args:
        component: Component name (orchestrator, generator, executors, etc.)
        session_id: Optional healing session ID
        test_case: Optional test case name

    Returns:
        HealingLoggerAdapter instance
    """
    logger = logging.getLogger(f"healing.{component}")

    extra = {}
    if session_id:
        extra['session_id'] = session_id
    if test_case:
        extra['test_case'] = test_case

    return HealingLoggerAdapter(logger, extra)
