"""Cron and startup triggers for the sync workflow, backed by APScheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from reposync.core.config import SchedulerSettings
from reposync.core.logging import Logger, get_logger
from reposync.sync.models import SyncJobResult
from reposync.sync.orchestrator import SyncOrchestrator

__all__ = ["CRON_JOB_ID", "STARTUP_JOB_ID", "SyncScheduler"]

CRON_JOB_ID = "reposync-sync-cron"
STARTUP_JOB_ID = "reposync-sync-startup"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SyncScheduler:
    """Register the cron and startup jobs that trigger
    :meth:`SyncOrchestrator.execute_sync_workflow`.

    Both jobs run the orchestrator's own entry point, so scheduled, startup
    and manual runs share the single-flight guard. The cron job is registered
    on construction; the startup job is registered by :meth:`start` so its
    delay counts from when the scheduler actually starts.
    """

    orchestrator: SyncOrchestrator
    settings: SchedulerSettings = field(default_factory=SchedulerSettings)
    scheduler: BackgroundScheduler | None = None
    now: Callable[[], datetime] = _utcnow
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="sync-scheduler")
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(
                timezone=self.settings.timezone,
                job_defaults={"coalesce": True, "max_instances": 1},
            )
        self.scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
        )
        self._register_cron_job()

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self, *, paused: bool = False) -> None:
        if self.scheduler.running:
            return
        self._register_startup_job()
        self.scheduler.start(paused=paused)
        self.logger.info(
            "scheduler-started",
            jobs=[job.id for job in self.scheduler.get_jobs()],
        )

    def shutdown(self, wait: bool = False) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        self.logger.info("scheduler-stopped")

    def next_run_time(self) -> datetime | None:
        """Return when the cron job fires next, if it is registered."""

        job = self.scheduler.get_job(CRON_JOB_ID)
        if job is None:
            return None
        next_run = getattr(job, "next_run_time", None)
        if next_run is not None:
            return next_run
        return job.trigger.get_next_fire_time(None, self.now())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _register_cron_job(self) -> None:
        if not self.settings.enabled:
            return
        workflow = self.orchestrator.execute_sync_workflow
        trigger = CronTrigger.from_crontab(
            self.settings.cron,
            timezone=self.settings.timezone,
        )
        self.scheduler.add_job(
            workflow,
            trigger=trigger,
            id=CRON_JOB_ID,
            name="scheduled sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info(
            "scheduler-cron-registered",
            cron=self.settings.cron,
            timezone=self.settings.timezone,
        )

    def _register_startup_job(self) -> None:
        if not self.settings.run_on_startup:
            return
        run_date = self.now() + timedelta(seconds=self.settings.startup_delay)
        # A one-off run must not be dropped as missed when the executor
        # picks it up late.
        self.scheduler.add_job(
            self.orchestrator.execute_sync_workflow,
            trigger=DateTrigger(run_date=run_date),
            id=STARTUP_JOB_ID,
            name="startup sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )
        self.logger.info(
            "scheduler-startup-registered",
            run_date=run_date.isoformat(),
            delay=self.settings.startup_delay,
        )

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        if event.code == EVENT_JOB_MISSED:
            self.logger.warning("scheduler-job-missed", job_id=event.job_id)
            return
        if event.exception is not None:
            self.logger.error(
                "scheduler-job-error",
                job_id=event.job_id,
                error=str(event.exception),
            )
            return
        result = event.retval
        if isinstance(result, SyncJobResult):
            self.logger.info(
                "scheduler-job-finished",
                job_id=event.job_id,
                sync_job_id=result.job_id,
                status=result.status.value,
                vectors=result.vectors_stored,
            )
