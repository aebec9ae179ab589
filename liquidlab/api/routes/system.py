"""
Operational routes: manual pipeline triggers and scheduler status.
"""

from fastapi import APIRouter, Depends, Request

import structlog

from liquidlab.api.dependencies import get_container, require_admin
from liquidlab.api.schemas.common import SuccessResponse, create_success_response
from liquidlab.services.container import ServiceContainer

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post(
    "/ingestion/run",
    response_model=SuccessResponse,
    summary="Run Ingestion",
    description="Run one ingestion cycle now; skipped if one is already running"
)
async def run_ingestion(container: ServiceContainer = Depends(get_container)):
    stats = await container.ingestion.run_cycle()
    message = "Ingestion already running, trigger skipped" if stats.skipped else "Ingestion cycle completed"
    return create_success_response(data=stats.to_dict(), message=message)


@router.post(
    "/revenue/refresh",
    response_model=SuccessResponse,
    summary="Refresh Revenue Summaries",
    description="Recompute revenue summaries for all platforms"
)
async def refresh_revenue(container: ServiceContainer = Depends(get_container)):
    result = await container.aggregator.refresh_all()
    return create_success_response(data=result, message="Revenue summaries refreshed")


@router.get(
    "/scheduler",
    response_model=SuccessResponse,
    summary="Scheduler Status",
    description="Registered jobs with last/next run and error counts"
)
async def get_scheduler_status(request: Request, container: ServiceContainer = Depends(get_container)):
    scheduler = getattr(request.app.state, "scheduler", None)
    checkpoints = await container.checkpoints.get_all()
    data = {
        "scheduler": await scheduler.health_check() if scheduler else None,
        "ingestion_running": container.ingestion.is_running,
        "last_ingestion": container.ingestion.last_cycle.to_dict() if container.ingestion.last_cycle else None,
        "checkpoints": {str(k): v for k, v in checkpoints.items()},
        "global_checkpoint": await container.checkpoints.get_global(),
    }
    message = "Scheduler running" if scheduler and scheduler.running else "Scheduler not running in this process"
    return create_success_response(data=data, message=message)
