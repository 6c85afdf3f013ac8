"""
Healing API endpoints for the Test Self-Healing system.

Read-only views over the learning store, the metrics collector and the
active configuration, plus an endpoint for classifying error messages.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..core.config_loader import get_healing_config
from ..core.metrics import get_metrics_collector
from ..services.error_classifier import ErrorClassifier
from ..services.healing_orchestrator import HealingOrchestrator

logger = logging.getLogger(__name__)

# Global healing orchestrator instance
_healing_orchestrator: Optional[HealingOrchestrator] = None

router = APIRouter(prefix="/healing", tags=["healing"])

classifier = ErrorClassifier()


# Pydantic models for API requests/responses
class ClassifyRequest(BaseModel):
    error_message: str = Field(..., description="Error message to classify")


class ClassifyResponse(BaseModel):
    error_message: str
    classification: str
    healable: bool


class HealingStatisticsResponse(BaseModel):
    total_healings: int
    successful_healings: int
    failed_healings: int
    success_rate: float
    pattern_count: int
    strategy_stats: Dict[str, Dict[str, float]]
    healing_mode: str
    learning_enabled: bool


class PatternResponse(BaseModel):
    name: str
    description: str
    success_count: int
    total_count: int
    success_rate: float
    smoothed_success_rate: float


class HistoryEntryResponse(BaseModel):
    timestamp: int
    error: str
    success: bool
    attempts: int
    strategy: Optional[str] = None
    strategies: List[str] = []
    context: Dict[str, Any] = {}


async def get_healing_orchestrator() -> HealingOrchestrator:
    """Get or create the global healing orchestrator instance."""
    global _healing_orchestrator

    if _healing_orchestrator is None:
        config = get_healing_config()
        _healing_orchestrator = HealingOrchestrator(config)
        await _healing_orchestrator.initialize()
        logger.info(f"Healing orchestrator initialized with {config.model_provider}/{config.model_name}")

    return _healing_orchestrator


def set_healing_orchestrator(orchestrator: Optional[HealingOrchestrator]) -> None:
    """Replace the global orchestrator (used on startup and in tests)."""
    global _healing_orchestrator
    _healing_orchestrator = orchestrator


@router.get("/statistics")
async def get_healing_statistics():
    """Get healing outcome totals and per-strategy statistics."""
    orchestrator = await get_healing_orchestrator()
    return {
        "status": "success",
        "statistics": HealingStatisticsResponse(**orchestrator.get_statistics())
    }


@router.get("/metrics")
async def get_healing_metrics():
    """Get aggregated healing metrics."""
    metrics = get_metrics_collector().get_current_metrics()
    return {"status": "success", "metrics": metrics}


@router.get("/metrics/export")
async def export_healing_metrics(format: str = Query("json", pattern="^(json|prometheus)$")):
    """Export metrics as JSON or in Prometheus text format."""
    try:
        payload = get_metrics_collector().export_metrics(format)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    media_type = "application/json" if format == "json" else "text/plain; version=0.0.4"
    return PlainTextResponse(payload, media_type=media_type)


@router.get("/patterns")
async def get_learned_patterns():
    """List learned patterns, best first."""
    orchestrator = await get_healing_orchestrator()
    store = orchestrator.store
    patterns = [
        PatternResponse(
            name=pattern.name,
            description=pattern.description,
            success_count=pattern.success_count,
            total_count=pattern.total_count,
            success_rate=pattern.success_rate,
            smoothed_success_rate=store.get_success_rate(name)
        )
        for name, pattern in store.patterns.items()
    ]
    patterns.sort(key=lambda p: p.success_rate, reverse=True)
    return {"status": "success", "total": len(patterns), "patterns": patterns}


@router.get("/history")
async def get_healing_history(limit: int = Query(50, ge=1, le=1000)):
    """Most recent healing outcomes, newest last."""
    orchestrator = await get_healing_orchestrator()
    entries = [
        HistoryEntryResponse(
            timestamp=entry.timestamp,
            error=entry.error,
            success=entry.success,
            attempts=entry.attempts,
            strategy=entry.strategy,
            strategies=entry.strategies,
            context=entry.context
        )
        for entry in orchestrator.store.recent_history(limit)
    ]
    return {"status": "success", "total": len(entries), "history": entries}


@router.get("/config")
async def get_healing_configuration():
    """Get the active healing configuration."""
    return {"status": "success", "config": get_healing_config().to_dict()}


@router.post("/classify", response_model=ClassifyResponse)
async def classify_error(request: ClassifyRequest):
    """Classify an error message and report whether it is healable."""
    return ClassifyResponse(
        error_message=request.error_message,
        classification=classifier.classify(request.error_message).value,
        healable=classifier.is_healable_error(request.error_message)
    )
