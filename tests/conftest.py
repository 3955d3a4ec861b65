"""Shared test fixtures and helpers."""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import pytest

from app.domain import Slot
from app.services.admission import AdmissionController
from app.services.booking_store import InMemoryBookingStore
from app.services.capacity import CapacityLedger
from app.services.expiry import ExpirySweeper
from app.services.notifications import NotificationKind
from app.services.rate_limiter import FixedWindowRateLimiter, InMemoryRateLimitStore
from app.services.waitlist import WaitlistQueue
from app.services.waitlist_store import InMemoryWaitlistStore

START = datetime(2025, 3, 15, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock; tests move time forward explicitly."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Collects notify() calls; can be told to fail for delivery-failure tests."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, NotificationKind, dict]] = []
        self._lock = threading.Lock()

    def notify(self, student_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self.calls.append((student_id, kind, dict(payload)))
        if self.fail:
            raise RuntimeError("sms gateway down")

    def kinds(self) -> list[NotificationKind]:
        return [k for _, k, _ in self.calls]

    def students(self, kind: Optional[NotificationKind] = None) -> list[str]:
        return [s for s, k, _ in self.calls if kind is None or k == kind]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bookings(clock):
    return InMemoryBookingStore(clock=clock)


@pytest.fixture
def waitlist_store():
    return InMemoryWaitlistStore()


@pytest.fixture
def ledger(bookings):
    return CapacityLedger(bookings)


@pytest.fixture
def queue(waitlist_store, bookings, ledger, clock):
    return WaitlistQueue(waitlist_store, bookings, ledger, clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def controller(bookings, ledger, queue, notifier, clock):
    return AdmissionController(bookings, ledger, queue, notifier, clock=clock)


@pytest.fixture
def sweeper(queue, bookings, notifier, clock):
    return ExpirySweeper(queue, bookings, notifier, clock=clock)


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(
        InMemoryRateLimitStore(), max_requests=5, window=timedelta(hours=1), clock=clock
    )


def make_slot(store, capacity: int = 1, starts_in: timedelta = timedelta(days=2), now: datetime = START) -> Slot:
    """Register a slot in the given booking store and return it."""
    start = now + starts_in
    slot = Slot(id=f"slot-{uuid.uuid4().hex[:8]}", capacity=capacity, start_at=start, end_at=start + timedelta(hours=1))
    store.add_slot(slot)
    return slot


def fill_slot(controller: AdmissionController, slot: Slot, prefix: str = "booked") -> list:
    """Book every seat of a slot with throwaway students."""
    return [controller.request_seat(f"{prefix}-{i}", slot.id) for i in range(slot.capacity)]


def assert_contiguous(queue: WaitlistQueue, slot_id: str) -> None:
    priorities = [e.priority for e in queue.list_for_slot(slot_id)]
    assert priorities == list(range(1, len(priorities) + 1))
