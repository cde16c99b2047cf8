"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from bounty_market_service.core.state import get_app_state
from bounty_market_service.routers.validation import get_task_manager
from bounty_market_service.schemas import HealthResponse, IndexReportResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = {}
    if state.task_manager is not None:
        stats = state.task_manager.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
    )


@router.get("/health/indices", response_model=IndexReportResponse)
async def index_consistency() -> dict[str, Any]:
    """Rebuild the company and invitation indices from the task store and diff them."""
    return get_task_manager().verify_indices()
