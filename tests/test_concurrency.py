"""Concurrency tests: slot-level serialization never oversells or double-promotes."""

import threading
from concurrent.futures import ThreadPoolExecutor

from app.domain import Booking, WaitlistEntry
from app.models import BookingStatus
from app.services.admission import AdmissionController
from app.services.locks import KeyedLocks
from tests.conftest import assert_contiguous, fill_slot, make_slot


class TestKeyedLocks:
    def test_registry_is_released(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            with locks.hold("a"):
                assert len(locks) == 1
        assert len(locks) == 0

    def test_distinct_keys_do_not_block(self):
        locks = KeyedLocks()
        entered = threading.Event()

        def other():
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=2)
            t.join()

    def test_same_key_blocks(self):
        locks = KeyedLocks()
        entered = threading.Event()

        def other():
            with locks.hold("a"):
                entered.set()

        with locks.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert not entered.wait(timeout=0.2)
        t.join(timeout=2)
        assert entered.is_set()


class TestAdmissionUnderLoad:
    def test_parallel_requests_never_oversell(self, controller, bookings, queue):
        slot = make_slot(bookings, capacity=3)
        students = [f"s{i}" for i in range(30)]

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda s: controller.request_seat(s, slot.id), students))

        booked = [r for r in results if isinstance(r, Booking)]
        waiting = [r for r in results if isinstance(r, WaitlistEntry)]
        assert len(booked) == 3
        assert len(waiting) == 27
        assert bookings.count_active_bookings(slot.id) == 3
        assert sorted(e.priority for e in waiting) == list(range(1, 28))
        assert_contiguous(queue, slot.id)

    def test_parallel_cancellations_promote_each_seat_once(self, controller, bookings, queue):
        slot = make_slot(bookings, capacity=5)
        booked = fill_slot(controller, slot)
        for i in range(8):
            controller.request_seat(f"w{i}", slot.id)

        with ThreadPoolExecutor(max_workers=5) as pool:
            outcomes = list(pool.map(lambda b: controller.cancel_booking(b.id), booked))

        promoted = [p for _, p in outcomes if p is not None]
        assert len(promoted) == 5
        assert len({p.student_id for p in promoted}) == 5
        assert {p.student_id for p in promoted} == {f"w{i}" for i in range(5)}
        assert bookings.count_active_bookings(slot.id) == 5
        assert [e.student_id for e in queue.list_for_slot(slot.id)] == ["w5", "w6", "w7"]
        assert_contiguous(queue, slot.id)

    def test_cancel_and_leave_race_keeps_queue_consistent(self, controller, bookings, queue):
        slot = make_slot(bookings, capacity=1)
        (booked,) = fill_slot(controller, slot)
        for i in range(10):
            controller.request_seat(f"w{i}", slot.id)

        def leave(i):
            controller.withdraw(f"w{i}", slot.id)

        with ThreadPoolExecutor(max_workers=6) as pool:
            cancel = pool.submit(controller.cancel_booking, booked.id)
            leaves = [pool.submit(leave, i) for i in range(5, 10)]
            for f in leaves:
                f.result()
            _, promoted = cancel.result()

        assert promoted.student_id == "w0"
        assert bookings.count_active_bookings(slot.id) == 1
        assert [e.student_id for e in queue.list_for_slot(slot.id)] == ["w1", "w2", "w3", "w4"]
        assert_contiguous(queue, slot.id)

    def test_different_slots_do_not_interfere(self, controller, bookings):
        slots = [make_slot(bookings, capacity=2) for _ in range(4)]

        def book(i):
            slot = slots[i % 4]
            return controller.request_seat(f"s{i}", slot.id)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(book, range(20)))

        for slot in slots:
            assert bookings.count_active_bookings(slot.id) == 2
            assert all(
                b.status is BookingStatus.CONFIRMED for b in bookings.bookings_for_slot(slot.id)
            )


class _LockCheckingNotifier:
    """Desde otro hilo intenta tomar el lock del slot mientras se envía cada aviso."""

    def __init__(self, locks, slot_id):
        self._locks = locks
        self._slot_id = slot_id
        self.lock_free = {}

    def notify(self, student_id, kind, payload):
        got_it = threading.Event()

        def grab():
            with self._locks.hold(self._slot_id):
                got_it.set()

        t = threading.Thread(target=grab)
        t.start()
        self.lock_free[kind.value] = got_it.wait(timeout=1)
        t.join(timeout=5)


class TestNotifyOutsideLock:
    def _controller(self, bookings, ledger, queue, clock, slot):
        notifier = _LockCheckingNotifier(queue.locks, slot.id)
        return AdmissionController(bookings, ledger, queue, notifier, clock=clock), notifier

    def test_cancel_sends_promoted_after_releasing_slot_lock(self, bookings, ledger, queue, clock):
        slot = make_slot(bookings)
        controller, notifier = self._controller(bookings, ledger, queue, clock, slot)
        (booked,) = fill_slot(controller, slot)
        controller.request_seat("A", slot.id)

        _, promoted = controller.cancel_booking(booked.id)
        assert promoted.student_id == "A"
        assert notifier.lock_free == {"WAITLISTED": True, "PROMOTED": True}

    def test_promote_next_notifies_without_lock(self, bookings, ledger, queue, clock):
        slot = make_slot(bookings)
        controller, notifier = self._controller(bookings, ledger, queue, clock, slot)
        (booked,) = fill_slot(controller, slot)
        controller.request_seat("A", slot.id)
        bookings.update_status(booked.id, BookingStatus.CANCELLED)

        controller.promote_next(slot.id)
        assert notifier.lock_free["PROMOTED"] is True
