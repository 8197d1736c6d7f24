"""Tests for :mod:`reposync.sync.scheduler`."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from reposync.core.config import SchedulerSettings, SyncSettings
from reposync.modules.embedding.batcher import EmbeddingBatcher
from reposync.modules.vdb.gateway import VectorStoreGateway
from reposync.sync.orchestrator import SyncOrchestrator
from reposync.sync.scheduler import CRON_JOB_ID, STARTUP_JOB_ID, SyncScheduler

NOW = datetime(2025, 3, 4, 7, 30, tzinfo=timezone.utc)


@pytest.fixture
def orchestrator(fake_source, stub_provider, memory_backend) -> SyncOrchestrator:
    return SyncOrchestrator(
        settings=SyncSettings(
            organization="acme",
            collection_name="repo_docs",
            vector_dimension=4,
            chunk_size=1000,
            overlap=200,
        ),
        source=fake_source,
        batcher=EmbeddingBatcher(provider=stub_provider, model="stub-model"),
        gateway=VectorStoreGateway(backend=memory_backend),
    )


def _scheduler(orchestrator: SyncOrchestrator, **settings) -> SyncScheduler:
    return SyncScheduler(
        orchestrator=orchestrator,
        settings=SchedulerSettings(**settings),
        scheduler=BackgroundScheduler(timezone="UTC"),
        now=lambda: NOW,
    )


def test_registers_cron_and_startup_jobs(orchestrator) -> None:
    scheduler = _scheduler(orchestrator, startup_delay=5.0)
    scheduler.start(paused=True)

    jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
    scheduler.shutdown()

    assert set(jobs) == {CRON_JOB_ID, STARTUP_JOB_ID}
    for job in jobs.values():
        assert job.func == orchestrator.execute_sync_workflow
        assert job.max_instances == 1
        assert job.coalesce is True

    cron = jobs[CRON_JOB_ID].trigger
    assert isinstance(cron, CronTrigger)
    assert str(cron.timezone) == "UTC"

    startup = jobs[STARTUP_JOB_ID].trigger
    assert isinstance(startup, DateTrigger)
    assert startup.run_date == NOW + timedelta(seconds=5)
    assert jobs[STARTUP_JOB_ID].misfire_grace_time is None


def test_startup_job_waits_for_start(orchestrator) -> None:
    scheduler = _scheduler(orchestrator)

    assert [job.id for job in scheduler.scheduler.get_jobs()] == [CRON_JOB_ID]


def test_next_run_time_follows_crontab(orchestrator) -> None:
    scheduler = _scheduler(orchestrator, cron="0 8 * * *", run_on_startup=False)

    assert scheduler.next_run_time() == datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc)


def test_disabled_cron_keeps_only_startup_job(orchestrator) -> None:
    scheduler = _scheduler(orchestrator, enabled=False)
    scheduler.start(paused=True)

    job_ids = [job.id for job in scheduler.scheduler.get_jobs()]
    scheduler.shutdown()

    assert job_ids == [STARTUP_JOB_ID]
    assert scheduler.next_run_time() is None


def test_everything_disabled_registers_nothing(orchestrator) -> None:
    scheduler = _scheduler(orchestrator, enabled=False, run_on_startup=False)

    assert scheduler.scheduler.get_jobs() == []


def test_start_and_shutdown_are_idempotent(orchestrator) -> None:
    scheduler = _scheduler(orchestrator, enabled=False, run_on_startup=False)

    scheduler.start()
    scheduler.start()
    assert scheduler.running

    scheduler.shutdown()
    scheduler.shutdown()
    assert not scheduler.running


def test_invalid_crontab_is_rejected() -> None:
    with pytest.raises(ValueError):
        SchedulerSettings(cron="every morning")


def test_startup_job_fires_when_started_late(orchestrator, fake_source) -> None:
    scheduler = SyncScheduler(
        orchestrator=orchestrator,
        settings=SchedulerSettings(
            enabled=False,
            run_on_startup=True,
            startup_delay=0.0,
        ),
        scheduler=BackgroundScheduler(timezone="UTC"),
    )
    time.sleep(1.5)

    scheduler.start()
    try:
        deadline = time.monotonic() + 5.0
        while not fake_source.list_calls and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        scheduler.shutdown(wait=True)

    assert fake_source.list_calls == [("acme", None)]
