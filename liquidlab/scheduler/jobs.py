"""
Pipeline jobs: what runs on the scheduler and how often.
"""

import structlog

from liquidlab.core.exceptions import LiquidLabException
from liquidlab.services.container import ServiceContainer
from .task_scheduler import TaskScheduler

logger = structlog.get_logger(__name__)


TRADE_INGESTION = "trade_ingestion"
REVENUE_REFRESH = "revenue_refresh"
PAYOUT_PREPARATION = "payout_preparation"
PAYOUT_EXECUTION = "payout_execution"


def register_pipeline_tasks(scheduler: TaskScheduler, container: ServiceContainer) -> TaskScheduler:
    """Register the pipeline jobs on a scheduler. Safe to call more than once."""
    settings = container.settings

    async def ingest():
        stats = await container.ingestion.run_cycle()
        if stats.platforms_failed and not stats.platforms_succeeded and stats.platforms_total:
            raise LiquidLabException(
                "Ingestion failed for every platform",
                "INGESTION_FAILED",
                {"platforms_failed": stats.platforms_failed}
            )

    async def refresh():
        await container.aggregator.refresh_all()

    async def prepare():
        await container.payouts.prepare_payouts()

    async def execute():
        await container.payouts.execute_pending()

    scheduler.register_task(
        TRADE_INGESTION,
        ingest,
        interval_seconds=settings.ingestion_interval_seconds,
        run_immediately=True,
        initial_delay=settings.ingestion_startup_delay_seconds
    )

    scheduler.register_task(
        REVENUE_REFRESH,
        refresh,
        interval_seconds=settings.revenue_refresh_interval_seconds
    )

    if settings.payouts_enabled:
        scheduler.register_task(
            PAYOUT_PREPARATION,
            prepare,
            interval_seconds=settings.payout_interval_seconds
        )
        if container.executor is not None:
            scheduler.register_task(
                PAYOUT_EXECUTION,
                execute,
                interval_seconds=settings.payout_interval_seconds
            )
        else:
            logger.warning("Payouts enabled without an executor; payouts will only be prepared")

    return scheduler
