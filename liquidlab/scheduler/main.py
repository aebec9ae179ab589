"""
Main entry point for the standalone scheduler service.
Runs the ingestion, summary and payout jobs without the HTTP API.
"""

import asyncio
import signal
from typing import Optional

import structlog

from liquidlab.core.config import settings
from liquidlab.core.database import init_database, close_database
from liquidlab.core.logging import setup_logging
from liquidlab.services.container import ServiceContainer, build_services
from .jobs import register_pipeline_tasks
from .task_scheduler import TaskScheduler

logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Main scheduler service coordinator."""

    def __init__(self):
        self.container: Optional[ServiceContainer] = None
        self.task_scheduler: Optional[TaskScheduler] = None
        self.running = False
        self.tasks = []

    async def initialize(self):
        """Initialize scheduler components."""
        try:
            logger.info("Initializing scheduler service")

            session_maker = await init_database()
            self.container = build_services(settings, session_maker)

            self.task_scheduler = TaskScheduler(loop_interval=settings.scheduler_loop_interval)
            register_pipeline_tasks(self.task_scheduler, self.container)

            logger.info("Scheduler service initialized", tasks=list(self.task_scheduler.tasks))

        except Exception as e:
            logger.error("Failed to initialize scheduler", error=str(e))
            raise

    async def start(self):
        """Start the scheduler service."""
        logger.info("Starting scheduler service")
        self.running = True

        self.tasks.append(asyncio.create_task(self.task_scheduler.start()))
        self.tasks.append(asyncio.create_task(self._periodic_health_check()))

        logger.info("Scheduler service started")
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def stop(self):
        """Stop the scheduler service."""
        if not self.running and not self.tasks:
            return
        logger.info("Stopping scheduler service")

        self.running = False

        if self.task_scheduler:
            await self.task_scheduler.stop()

        for task in self.tasks:
            if not task.done():
                task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        if self.container:
            await self.container.close()
        await close_database()

        logger.info("Scheduler service stopped")

    async def _periodic_health_check(self):
        """Periodic health log for the scheduler."""
        while self.running:
            try:
                await asyncio.sleep(300)  # 5 minutes

                if not self.running:
                    break

                health = await self.task_scheduler.health_check()
                logger.info(
                    "Scheduler health check",
                    healthy=health["healthy"],
                    tasks_with_errors=health["tasks_with_errors"]
                )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main():
    """Main function to run the scheduler service."""
    setup_logging(settings.log_file)

    scheduler = SchedulerMain()
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info("Received signal, shutting down", signal=signum)
        asyncio.create_task(scheduler.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await scheduler.initialize()
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await scheduler.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
