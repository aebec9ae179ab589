"""
Main FastAPI application for the LiquidLab revenue backend.
Configures the API server with routes, middleware, and the background scheduler.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

import structlog

from liquidlab.core.config import settings, Settings
from liquidlab.core.database import init_database, close_database, DatabaseManager
from liquidlab.core.logging import setup_logging
from liquidlab.api.middleware import add_middleware
from liquidlab.api.schemas.common import HealthCheckResponse, create_success_response
from liquidlab.api.routes import revenue, payouts, fees, system, webhooks
from liquidlab.scheduler.jobs import register_pipeline_tasks
from liquidlab.scheduler.task_scheduler import TaskScheduler
from liquidlab.services.container import ServiceContainer, build_services


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    app_settings: Settings = app.state.settings
    owns_container = app.state.container is None

    logger.info("Starting LiquidLab revenue API", environment=app_settings.environment)

    if owns_container:
        session_maker = await init_database()
        app.state.container = build_services(app_settings, session_maker)

    scheduler_task: Optional[asyncio.Task] = None
    if app.state.run_scheduler:
        scheduler = TaskScheduler(loop_interval=app_settings.scheduler_loop_interval)
        register_pipeline_tasks(scheduler, app.state.container)
        app.state.scheduler = scheduler
        scheduler_task = asyncio.create_task(scheduler.start())
        logger.info("Background scheduler started", tasks=list(scheduler.tasks))

    yield

    logger.info("Shutting down LiquidLab revenue API")

    try:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
        if scheduler_task is not None:
            scheduler_task.cancel()
            await asyncio.gather(scheduler_task, return_exceptions=True)

        if owns_container:
            await app.state.container.close()
            await close_database()
            app.state.container = None
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


def create_app(
    container: Optional[ServiceContainer] = None,
    app_settings: Optional[Settings] = None,
    run_scheduler: Optional[bool] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt container can be passed in (tests, embedding); otherwise the
    database and services are set up by the lifespan handler.
    """
    app_settings = app_settings or (container.settings if container else settings)

    setup_logging(app_settings.log_file)

    app = FastAPI(
        title=app_settings.app_name,
        description="""
        Fee attribution and revenue reconciliation for platforms trading through Hyperliquid.

        ## Authentication

        Admin endpoints require:
        ```
        Authorization: Bearer <admin-api-key>
        ```

        ## Error Handling

        Errors are returned as `{success: false, error, message, details, timestamp}`.
        """,
        version=app_settings.app_version,
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.container = container
    app.state.scheduler = None
    app.state.run_scheduler = app_settings.scheduler_enabled if run_scheduler is None else run_scheduler

    add_middleware(app, app_settings)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Check API server health and service status"
    )
    async def health_check():
        """Health check endpoint."""
        current = app.state.container
        database_ok = current is not None and await DatabaseManager.health_check(current.session_maker)
        scheduler = app.state.scheduler

        services = {
            "database": "healthy" if database_ok else "unhealthy",
            "api": "healthy",
            "scheduler": "running" if scheduler and scheduler.running else "disabled",
        }
        if not database_ok:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "version": app_settings.app_version, "services": services}
            )
        return HealthCheckResponse(status="healthy", version=app_settings.app_version, services=services)

    @app.get(
        "/",
        tags=["System"],
        summary="API Information",
        description="Get basic API information and status"
    )
    async def root():
        """Root endpoint with API information."""
        return create_success_response(
            message=f"{app_settings.app_name} v{app_settings.app_version}",
            data={
                "version": app_settings.app_version,
                "environment": app_settings.environment,
                "docs_url": "/docs",
            }
        )

    app.include_router(
        revenue.router,
        prefix=f"{app_settings.api_v1_prefix}/revenue",
        tags=["Revenue"]
    )

    app.include_router(
        payouts.router,
        prefix=f"{app_settings.api_v1_prefix}/payouts",
        tags=["Payouts"]
    )

    app.include_router(
        fees.router,
        prefix=f"{app_settings.api_v1_prefix}/fees",
        tags=["Fees"]
    )

    app.include_router(
        system.router,
        prefix=f"{app_settings.api_v1_prefix}/system",
        tags=["System"]
    )

    app.include_router(
        webhooks.router,
        prefix="/webhooks",
        tags=["Webhooks"]
    )

    logger.info("FastAPI application created successfully")
    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "liquidlab.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
