"""APScheduler wrapper driving the periodic feed check."""

from __future__ import annotations

from typing import Any, Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType
from ..logging_conf import component_logger

CHECK_JOB_ID = "feed-relay::check-feeds"


class APSchedulerAdapter:
    """Run the feed check on an interval or crontab schedule."""

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = logger or component_logger("scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_check(self, schedule: ScheduleConfig, callback: Callable[[], Any]) -> None:
        trigger = self.build_trigger(schedule)
        # a manual run may overlap a timed one, but timed runs do not pile up
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=CHECK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job=CHECK_JOB_ID, schedule=schedule.model_dump(mode="json"))

    def remove_check(self) -> None:
        if self.scheduler.get_job(CHECK_JOB_ID) is None:
            self.logger.warning("job_remove_failed", job=CHECK_JOB_ID)
            return
        self.scheduler.remove_job(CHECK_JOB_ID)

    @staticmethod
    def build_trigger(schedule: ScheduleConfig):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "CHECK_JOB_ID"]
