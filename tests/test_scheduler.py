"""Tests for the maintenance jobs and their scheduler wiring."""

from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from app.jobs.scheduler import MaintenanceJobs, start_scheduler
from app.services.notifications import InMemoryDeliveryLog, NotificationKind
from tests.conftest import make_slot


class _Boom:
    def sweep(self):
        raise RuntimeError("db down")

    def cleanup(self, *args):
        raise RuntimeError("db down")


def test_tick_runs_every_cleanup(sweeper, limiter, queue, bookings, clock):
    log = InMemoryDeliveryLog(clock=clock)
    jobs = MaintenanceJobs(sweeper, limiter, log, log_retention=timedelta(days=30), clock=clock)

    slot = make_slot(bookings, starts_in=timedelta(days=45))
    queue.enqueue("A", slot.id)
    limiter.is_allowed("+8801712345678")
    log.record("A", NotificationKind.WAITLISTED, "x", "sent")

    clock.advance(days=31)
    assert jobs.tick() == {
        "waitlist_removed": 1,
        "rate_limits_removed": 1,
        "notification_logs_removed": 1,
    }
    assert jobs.tick() == {"waitlist_removed": 0, "rate_limits_removed": 0, "notification_logs_removed": 0}


def test_tick_is_idempotent(sweeper, limiter, clock):
    jobs = MaintenanceJobs(sweeper, limiter, InMemoryDeliveryLog(clock=clock), clock=clock)
    assert jobs.tick() == {"waitlist_removed": 0, "rate_limits_removed": 0, "notification_logs_removed": 0}


def test_job_errors_are_contained(caplog):
    boom = _Boom()
    jobs = MaintenanceJobs(boom, boom, boom)
    with caplog.at_level("ERROR", logger="app.jobs.scheduler"):
        result = jobs.tick()
    assert result == {"waitlist_removed": 0, "rate_limits_removed": 0, "notification_logs_removed": 0}
    assert "Error en waitlist sweep" in caplog.text


def test_start_scheduler_registers_jobs(sweeper, limiter, clock):
    jobs = MaintenanceJobs(sweeper, limiter, InMemoryDeliveryLog(clock=clock), clock=clock)
    scheduler = start_scheduler(jobs, BackgroundScheduler(timezone="UTC"))
    try:
        ids = {job.id for job in scheduler.get_jobs()}
        assert ids == {"waitlist_sweep", "rate_limit_cleanup", "notification_log_cleanup"}
    finally:
        scheduler.shutdown(wait=False)
