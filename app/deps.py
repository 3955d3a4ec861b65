# app/deps.py
"""
Armado de servicios. Los routers piden `Container` vía Depends(get_container);
los tests reemplazan esa dependencia con un contenedor en memoria.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .config import Settings, settings
from .database import SessionLocal
from .domain import Clock, utcnow
from .jobs.scheduler import MaintenanceJobs
from .services.admission import AdmissionController
from .services.booking_store import BookingStore, InMemoryBookingStore, SqlBookingStore
from .services.capacity import CapacityLedger
from .services.contacts import ContactDirectory, InMemoryContactDirectory, SqlContactDirectory
from .services.expiry import ExpirySweeper
from .services.locks import KeyedLocks
from .services.notifications import (
    ContactLookup,
    DeliveryLog,
    InMemoryDeliveryLog,
    NotificationDispatcher,
    SmsNotificationDispatcher,
    SqlDeliveryLog,
)
from .services.rate_limiter import FixedWindowRateLimiter, InMemoryRateLimitStore, SqlRateLimitStore
from .services.waitlist import WaitlistQueue
from .services.waitlist_store import InMemoryWaitlistStore, SqlWaitlistStore


@dataclass
class Container:
    bookings: BookingStore
    ledger: CapacityLedger
    queue: WaitlistQueue
    controller: AdmissionController
    sweeper: ExpirySweeper
    limiter: FixedWindowRateLimiter
    delivery_log: DeliveryLog
    contacts: ContactDirectory
    notifier: NotificationDispatcher
    jobs: MaintenanceJobs


def build_container(
    cfg: Settings = settings,
    *,
    session_factory: sessionmaker = SessionLocal,
    clock: Clock = utcnow,
    contact_lookup: Optional[ContactLookup] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> Container:
    if cfg.STORE_BACKEND == "memory":
        bookings = InMemoryBookingStore(clock=clock)
        waitlist_store = InMemoryWaitlistStore()
        rate_store = InMemoryRateLimitStore()
        delivery_log = InMemoryDeliveryLog(clock=clock)
        contacts = InMemoryContactDirectory()
    else:
        bookings = SqlBookingStore(session_factory, clock=clock)
        waitlist_store = SqlWaitlistStore(session_factory)
        rate_store = SqlRateLimitStore(session_factory)
        delivery_log = SqlDeliveryLog(session_factory, clock=clock)
        contacts = SqlContactDirectory(session_factory, clock=clock)

    if notifier is None:
        # Por defecto el teléfono sale del directorio que llena /book
        notifier = SmsNotificationDispatcher(delivery_log, contact_lookup=contact_lookup or contacts.lookup)

    ledger = CapacityLedger(bookings)
    queue = WaitlistQueue(
        waitlist_store,
        bookings,
        ledger,
        locks=KeyedLocks(),
        ttl=timedelta(hours=cfg.WAITLIST_TTL_HOURS),
        clock=clock,
    )
    controller = AdmissionController(bookings, ledger, queue, notifier, clock=clock)
    sweeper = ExpirySweeper(queue, bookings, notifier, clock=clock)
    limiter = FixedWindowRateLimiter(
        rate_store,
        max_requests=cfg.OTP_MAX_REQUESTS,
        window=timedelta(minutes=cfg.OTP_WINDOW_MINUTES),
        clock=clock,
    )
    jobs = MaintenanceJobs(
        sweeper,
        limiter,
        delivery_log,
        log_retention=timedelta(days=cfg.NOTIFICATION_LOG_RETENTION_DAYS),
        clock=clock,
    )
    return Container(
        bookings=bookings,
        ledger=ledger,
        queue=queue,
        controller=controller,
        sweeper=sweeper,
        limiter=limiter,
        delivery_log=delivery_log,
        contacts=contacts,
        notifier=notifier,
        jobs=jobs,
    )


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container()
