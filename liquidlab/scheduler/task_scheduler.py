"""
Task scheduler for periodic background jobs.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Any, Awaitable, Callable, Optional

import structlog

from liquidlab.utils.time import utc_now

logger = structlog.get_logger(__name__)


class ScheduledTask:
    """Represents a scheduled task."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False,
        initial_delay: int = 0
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run: Optional[datetime] = None
        self.last_duration: Optional[float] = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

        if run_immediately:
            self.next_run = utc_now() + timedelta(seconds=initial_delay)
        else:
            self.next_run = utc_now() + timedelta(seconds=interval_seconds)

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """Check if task should run now."""
        return self.enabled and (now or utc_now()) >= self.next_run

    def schedule_next_run(self):
        """Schedule the next run."""
        self.next_run = utc_now() + timedelta(seconds=self.interval_seconds)

    async def run(self):
        """Execute the task."""
        start_time = utc_now()
        try:
            logger.debug("Running scheduled task", task=self.name)

            await self.func()

            self.last_duration = (utc_now() - start_time).total_seconds()
            self.run_count += 1

            logger.debug(
                "Task completed",
                task=self.name,
                duration=self.last_duration,
                run_count=self.run_count
            )

        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)

            logger.error(
                "Task failed",
                task=self.name,
                error=str(e),
                error_count=self.error_count
            )
            raise

        finally:
            self.last_run = start_time
            self.schedule_next_run()  # Scheduled even after a failure


class TaskScheduler:
    """Manages scheduled background tasks."""

    def __init__(self, loop_interval: float = 1):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.loop_interval = loop_interval

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False,
        initial_delay: int = 0
    ) -> ScheduledTask:
        """
        Register a new scheduled task.

        Registering a name that already exists keeps the existing task, so
        repeated startup code never doubles a job.
        """
        if name in self.tasks:
            logger.warning("Task already registered, ignoring", task=name)
            return self.tasks[name]

        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately,
            initial_delay=initial_delay
        )

        self.tasks[name] = task
        logger.info("Registered task", task=name, interval_seconds=interval_seconds)
        return task

    def enable_task(self, name: str):
        """Enable a task."""
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info("Enabled task", task=name)

    def disable_task(self, name: str):
        """Disable a task."""
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info("Disabled task", task=name)

    async def start(self):
        """Start the task scheduler loop. A second call while running is a no-op."""
        if self.running:
            logger.warning("Task scheduler already running")
            return

        logger.info("Starting task scheduler", tasks=list(self.tasks))
        self.running = True

        while self.running:
            try:
                await self._run_pending_tasks()
                await asyncio.sleep(self.loop_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Task scheduler loop error", error=str(e))
                await asyncio.sleep(self.loop_interval)

        self.running = False
        logger.info("Task scheduler stopped")

    async def stop(self):
        """Stop the task scheduler."""
        logger.info("Stopping task scheduler")
        self.running = False

    async def _run_pending_tasks(self):
        """Run all pending tasks."""
        now = utc_now()
        pending_tasks = [
            task for task in self.tasks.values()
            if task.should_run(now)
        ]

        if pending_tasks:
            logger.debug("Running pending tasks", count=len(pending_tasks))

            # Run tasks concurrently
            task_coroutines = [task.run() for task in pending_tasks]
            results = await asyncio.gather(*task_coroutines, return_exceptions=True)

            # Failures are already recorded on the task; keep the loop alive
            for task, result in zip(pending_tasks, results):
                if isinstance(result, Exception):
                    logger.warning("Scheduled task raised", task=task.name, error=str(result))

    async def health_check(self) -> Dict[str, Any]:
        """Get health status of task scheduler."""
        total_tasks = len(self.tasks)
        enabled_tasks = sum(1 for task in self.tasks.values() if task.enabled)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)

        task_statuses = {}
        for name, task in self.tasks.items():
            task_statuses[name] = {
                "enabled": task.enabled,
                "interval_seconds": task.interval_seconds,
                "last_run": task.last_run.isoformat() if task.last_run else None,
                "next_run": task.next_run.isoformat(),
                "last_duration": task.last_duration,
                "run_count": task.run_count,
                "error_count": task.error_count,
                "last_error": task.last_error
            }

        return {
            "healthy": self.running and tasks_with_errors < max(total_tasks, 1) * 0.5,
            "running": self.running,
            "total_tasks": total_tasks,
            "enabled_tasks": enabled_tasks,
            "tasks_with_errors": tasks_with_errors,
            "tasks": task_statuses
        }
