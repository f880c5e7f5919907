"""Tests for apps/scheduler/tasks.py — scheduler management.

调度器管理测试。

Run with: pytest tests/apps/scheduler/ -v
"""

from __future__ import annotations

import pytest
from unittest.mock import patch


def _reset_scheduler():
    """Stop any running scheduler and reset the singleton."""
    import apps.scheduler.tasks as tasks_module
    if tasks_module._scheduler is not None:
        if tasks_module._scheduler.running:
            tasks_module._scheduler.shutdown(wait=False)
        tasks_module._scheduler = None


@pytest.fixture(autouse=True)
def fresh_scheduler():
    _reset_scheduler()
    yield
    _reset_scheduler()


class TestSchedulerSingleton:
    """Test scheduler singleton pattern.

    验证调度器单例模式。
    """

    def test_get_scheduler_returns_singleton(self):
        from apps.scheduler.tasks import get_scheduler

        assert get_scheduler() is get_scheduler()

    def test_get_scheduler_creates_async_scheduler(self):
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apps.scheduler.tasks import get_scheduler

        assert isinstance(get_scheduler(), AsyncIOScheduler)

    def test_get_scheduler_uses_configured_timezone(self):
        from apps.scheduler.tasks import get_scheduler
        from settings import settings

        assert str(get_scheduler().timezone) == settings.scheduler_timezone


class TestFetchTrigger:
    """Cron trigger built from ``FETCH_SCHEDULE``.

    由 FETCH_SCHEDULE 构造 cron 触发器。
    """

    def test_trigger_fields(self):
        from apps.scheduler.tasks import build_fetch_trigger

        trigger = build_fetch_trigger("30 7 * * 1-5", "UTC")
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["hour"] == "7"
        assert fields["minute"] == "30"
        assert fields["day_of_week"] == "mon-fri" or fields["day_of_week"] == "1-5"

    def test_invalid_cron_raises(self):
        from apps.scheduler.tasks import build_fetch_trigger

        with pytest.raises(ValueError):
            build_fetch_trigger("every morning", "UTC")


class TestRegisterJobs:
    """Job registration.

    定时任务注册。
    """

    def test_fetch_job_registered(self):
        from apps.scheduler.tasks import FETCH_JOB_ID, get_scheduler, register_jobs

        scheduler = get_scheduler()
        with patch("apps.scheduler.tasks.settings.fetch_enabled", True):
            register_jobs(scheduler)

        job = scheduler.get_job(FETCH_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True

    @pytest.mark.asyncio
    async def test_register_again_replaces(self):
        from apps.scheduler.tasks import get_scheduler, register_jobs, start_scheduler

        with patch("apps.scheduler.tasks.settings.fetch_enabled", True):
            await start_scheduler()
            register_jobs(get_scheduler())

        assert len(get_scheduler().get_jobs()) == 1

    def test_disabled_registers_nothing(self):
        from apps.scheduler.tasks import get_scheduler, register_jobs

        scheduler = get_scheduler()
        with patch("apps.scheduler.tasks.settings.fetch_enabled", False):
            register_jobs(scheduler)

        assert scheduler.get_jobs() == []


class TestStartStop:
    """Scheduler lifecycle.

    调度器生命周期。
    """

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        import apps.scheduler.tasks as tasks_module
        from apps.scheduler import start_scheduler, stop_scheduler

        with patch("apps.scheduler.tasks.settings.fetch_enabled", True):
            await start_scheduler()

        scheduler = tasks_module._scheduler
        assert scheduler is not None
        assert scheduler.running
        assert scheduler.get_job(tasks_module.FETCH_JOB_ID) is not None

        await stop_scheduler()
        assert tasks_module._scheduler is None

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        from apps.scheduler import stop_scheduler

        await stop_scheduler()
