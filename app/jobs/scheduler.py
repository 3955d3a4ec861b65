from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..domain import Clock, utcnow
from ..services.expiry import ExpirySweeper
from ..services.notifications import DeliveryLog
from ..services.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


class MaintenanceJobs:
    """
    Tareas periódicas como llamadas explícitas. El scheduler solo decide
    cuándo; los tests llaman tick() o cada tarea directamente.
    """

    def __init__(
        self,
        sweeper: ExpirySweeper,
        limiter: FixedWindowRateLimiter,
        delivery_log: DeliveryLog,
        *,
        log_retention: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ) -> None:
        self._sweeper = sweeper
        self._limiter = limiter
        self._delivery_log = delivery_log
        self._log_retention = log_retention
        self._clock = clock

    def sweep_waitlist(self) -> int:
        try:
            return self._sweeper.sweep()
        except Exception:
            logger.exception("Error en waitlist sweep")
            return 0

    def cleanup_rate_limits(self) -> int:
        try:
            return self._limiter.cleanup()
        except Exception:
            logger.exception("Error limpiando ventanas de rate limit")
            return 0

    def cleanup_notification_log(self) -> int:
        try:
            removed = self._delivery_log.cleanup(self._clock() - self._log_retention)
        except Exception:
            logger.exception("Error limpiando bitácora de notificaciones")
            return 0
        if removed:
            logger.info("🧹 Cleaned up %s old notification logs", removed)
        return removed

    def tick(self) -> dict:
        """Una pasada completa de mantenimiento (trigger manual o tests)."""
        return {
            "waitlist_removed": self.sweep_waitlist(),
            "rate_limits_removed": self.cleanup_rate_limits(),
            "notification_logs_removed": self.cleanup_notification_log(),
        }


def start_scheduler(jobs: MaintenanceJobs, scheduler: Optional[BackgroundScheduler] = None):
    scheduler = scheduler or BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        jobs.sweep_waitlist,
        IntervalTrigger(minutes=settings.WAITLIST_SWEEP_MINUTES),
        id="waitlist_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        jobs.cleanup_rate_limits,
        IntervalTrigger(minutes=settings.RATE_LIMIT_CLEANUP_MINUTES),
        id="rate_limit_cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        jobs.cleanup_notification_log,
        CronTrigger(hour=settings.NOTIFICATION_LOG_CLEANUP_HOUR, minute=0),  # diario
        id="notification_log_cleanup",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler iniciado: sweep cada %s min, rate-limit cleanup cada %s min",
        settings.WAITLIST_SWEEP_MINUTES,
        settings.RATE_LIMIT_CLEANUP_MINUTES,
    )
    return scheduler
