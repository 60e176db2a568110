"""APScheduler wrapper that fires the daily scheduled run."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import DateRange, ScheduleConfig
from ..errors import AlreadyRunning
from ..models import TriggerType

if TYPE_CHECKING:
    from ..orchestrator import RunOrchestrator

DAILY_JOB_ID = "run::daily"


class APSchedulerAdapter:
    """Manage the APScheduler job that triggers a run every day."""

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = (logger or structlog.get_logger("lien_crawler")).bind(component="scheduler")
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

    def schedule_daily(self, schedule: ScheduleConfig, orchestrator: "RunOrchestrator") -> None:
        trigger = self.build_trigger(schedule)
        self.scheduler.add_job(
            self.trigger_run,
            trigger=trigger,
            id=DAILY_JOB_ID,
            args=[orchestrator],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job_id=DAILY_JOB_ID, schedule=schedule.model_dump())

    def remove_daily(self) -> None:
        try:
            self.scheduler.remove_job(DAILY_JOB_ID)
        except JobLookupError:
            self.logger.warning("job_remove_failed", job_id=DAILY_JOB_ID)

    @staticmethod
    def build_trigger(schedule: ScheduleConfig) -> CronTrigger:
        day_of_week = "mon-fri" if schedule.skip_weekends else "*"
        return CronTrigger(
            day_of_week=day_of_week,
            hour=schedule.hour,
            minute=schedule.minute,
            timezone=schedule.timezone,
        )

    def trigger_run(self, orchestrator: "RunOrchestrator") -> str | None:
        try:
            run_id = orchestrator.start(TriggerType.SCHEDULED, DateRange.yesterday())
        except AlreadyRunning as exc:
            self.logger.warning("scheduled_run_skipped", reason=str(exc), run_id=exc.run_id)
            return None
        self.logger.info("scheduled_run_started", run_id=run_id)
        return run_id

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


__all__ = ["APSchedulerAdapter", "DAILY_JOB_ID"]
