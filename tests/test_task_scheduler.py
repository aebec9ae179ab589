"""
Task scheduler behaviour and pipeline job registration.
"""

import asyncio
from datetime import timedelta

import pytest

from liquidlab.scheduler.jobs import (
    PAYOUT_EXECUTION,
    PAYOUT_PREPARATION,
    REVENUE_REFRESH,
    TRADE_INGESTION,
    register_pipeline_tasks,
)
from liquidlab.scheduler.task_scheduler import ScheduledTask, TaskScheduler
from liquidlab.services.container import build_services
from liquidlab.utils.time import utc_now


async def noop():
    return None


def test_register_task_is_idempotent():
    scheduler = TaskScheduler()

    first = scheduler.register_task("job", noop, interval_seconds=60)
    second = scheduler.register_task("job", noop, interval_seconds=5)

    assert first is second
    assert len(scheduler.tasks) == 1
    assert scheduler.tasks["job"].interval_seconds == 60


def test_run_immediately_respects_initial_delay():
    immediate = ScheduledTask("a", noop, interval_seconds=600, run_immediately=True)
    delayed = ScheduledTask("b", noop, interval_seconds=600, run_immediately=True, initial_delay=30)
    regular = ScheduledTask("c", noop, interval_seconds=600)

    now = utc_now()
    assert immediate.should_run(now + timedelta(seconds=1))
    assert not delayed.should_run(now + timedelta(seconds=1))
    assert delayed.should_run(now + timedelta(seconds=31))
    assert not regular.should_run(now + timedelta(seconds=31))


def test_disabled_task_never_runs():
    scheduler = TaskScheduler()
    task = scheduler.register_task("job", noop, interval_seconds=1, run_immediately=True)

    scheduler.disable_task("job")
    assert not task.should_run(utc_now() + timedelta(hours=1))

    scheduler.enable_task("job")
    assert task.should_run(utc_now() + timedelta(hours=1))


async def test_failing_task_does_not_block_others():
    scheduler = TaskScheduler()
    calls = []

    async def broken():
        calls.append("broken")
        raise RuntimeError("venue down")

    async def healthy():
        calls.append("healthy")

    bad = scheduler.register_task("broken", broken, interval_seconds=60, run_immediately=True)
    good = scheduler.register_task("healthy", healthy, interval_seconds=60, run_immediately=True)

    await scheduler._run_pending_tasks()

    assert sorted(calls) == ["broken", "healthy"]
    assert bad.error_count == 1
    assert bad.last_error == "venue down"
    assert good.run_count == 1
    assert good.error_count == 0


async def test_next_run_is_scheduled_after_failure():
    async def broken():
        raise RuntimeError("boom")

    task = ScheduledTask("broken", broken, interval_seconds=120, run_immediately=True)
    before = utc_now()

    with pytest.raises(RuntimeError):
        await task.run()

    assert task.last_run is not None
    assert task.next_run >= before + timedelta(seconds=120)
    assert not task.should_run()


async def test_start_and_stop_loop():
    scheduler = TaskScheduler(loop_interval=0.01)
    ran = asyncio.Event()

    async def job():
        ran.set()

    scheduler.register_task("job", job, interval_seconds=3600, run_immediately=True)
    loop_task = asyncio.create_task(scheduler.start())

    await asyncio.wait_for(ran.wait(), timeout=2)
    health = await scheduler.health_check()
    assert health["running"] is True
    assert health["healthy"] is True
    assert health["tasks"]["job"]["run_count"] == 1

    await scheduler.stop()
    await asyncio.wait_for(loop_task, timeout=2)
    assert scheduler.running is False


async def test_health_check_reports_errors():
    scheduler = TaskScheduler()

    async def broken():
        raise RuntimeError("boom")

    scheduler.register_task("broken", broken, interval_seconds=60, run_immediately=True)
    await scheduler._run_pending_tasks()

    health = await scheduler.health_check()

    assert health["healthy"] is False
    assert health["tasks_with_errors"] == 1
    assert health["tasks"]["broken"]["last_error"] == "boom"


async def test_pipeline_tasks_registered_once(container):
    scheduler = TaskScheduler()

    register_pipeline_tasks(scheduler, container)
    register_pipeline_tasks(scheduler, container)

    # No executor configured, so payouts are prepared but not executed
    assert set(scheduler.tasks) == {TRADE_INGESTION, REVENUE_REFRESH, PAYOUT_PREPARATION}


class RecordingExecutor:
    async def execute(self, request):
        raise AssertionError("not expected in this test")

    async def get_balance(self, currency):
        return None

    async def close(self):
        pass


async def test_payout_execution_registered_with_executor(test_settings, session_maker, venue):
    container = build_services(test_settings, session_maker, venue=venue, executor=RecordingExecutor())
    scheduler = TaskScheduler()

    register_pipeline_tasks(scheduler, container)

    assert PAYOUT_EXECUTION in scheduler.tasks


async def test_payout_jobs_skipped_when_disabled(test_settings, session_maker, venue):
    settings = test_settings.model_copy(update={"payouts_enabled": False})
    container = build_services(settings, session_maker, venue=venue)
    scheduler = TaskScheduler()

    register_pipeline_tasks(scheduler, container)

    assert set(scheduler.tasks) == {TRADE_INGESTION, REVENUE_REFRESH}
