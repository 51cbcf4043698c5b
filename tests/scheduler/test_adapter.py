from __future__ import annotations

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from feed_relay.config import ScheduleConfig, ScheduleType
from feed_relay.scheduler import APSchedulerAdapter, CHECK_JOB_ID


def test_build_triggers() -> None:
    cron_trigger = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="*/5 * * * *"))
    assert isinstance(cron_trigger, CronTrigger)

    interval_trigger = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=30))
    assert isinstance(interval_trigger, IntervalTrigger)
    assert interval_trigger.interval.total_seconds() == 30

    kwargs_trigger = APSchedulerAdapter.build_trigger(
        ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2})
    )
    assert kwargs_trigger.interval.total_seconds() == 120


def test_invalid_crontab_is_rejected() -> None:
    with pytest.raises(ValueError):
        APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="every minute"))


def test_schedule_check_registers_job() -> None:
    adapter = APSchedulerAdapter(BackgroundScheduler())
    calls: list[str] = []

    adapter.schedule_check(ScheduleConfig(type=ScheduleType.INTERVAL, value=60), lambda: calls.append("run"))

    jobs = adapter.list_jobs()
    assert [job["id"] for job in jobs] == [CHECK_JOB_ID]
    assert "0:01:00" in jobs[0]["trigger"]
    job = adapter.scheduler.get_job(CHECK_JOB_ID)
    assert job.max_instances == 1
    assert job.coalesce is True

    adapter.remove_check()
    assert adapter.list_jobs() == []
    adapter.remove_check()


def test_start_and_shutdown_are_idempotent() -> None:
    calls: list[str] = []

    class StubScheduler:
        def start(self):
            calls.append("start")

        def shutdown(self, wait=False):  # noqa: ARG002
            calls.append("shutdown")

    adapter = APSchedulerAdapter(StubScheduler())  # type: ignore[arg-type]
    adapter.start()
    adapter.start()
    adapter.shutdown()
    adapter.shutdown()

    assert calls == ["start", "shutdown"]
