"""Tests for the per-slot waitlist queue."""

from datetime import timedelta

import pytest

from app.errors import AlreadyBooked, AlreadyWaitlisted, NotWaitlisted, SlotInPast, SlotNotFound
from tests.conftest import assert_contiguous, make_slot


class TestEnqueue:
    def test_priorities_follow_arrival_order(self, queue, bookings):
        slot = make_slot(bookings)
        entries = [queue.enqueue(s, slot.id) for s in ("A", "B", "C")]
        assert [e.priority for e in entries] == [1, 2, 3]
        assert [e.student_id for e in queue.list_for_slot(slot.id)] == ["A", "B", "C"]

    def test_expires_after_ttl(self, queue, bookings, clock):
        slot = make_slot(bookings)
        entry = queue.enqueue("A", slot.id)
        assert entry.created_at == clock.now
        assert entry.expires_at == clock.now + timedelta(hours=24)

    def test_unknown_slot(self, queue):
        with pytest.raises(SlotNotFound):
            queue.enqueue("A", "missing")

    def test_past_slot(self, queue, bookings):
        slot = make_slot(bookings, starts_in=timedelta(hours=-1))
        with pytest.raises(SlotInPast):
            queue.enqueue("A", slot.id)

    def test_double_waitlisting_rejected(self, queue, bookings):
        slot = make_slot(bookings)
        queue.enqueue("A", slot.id)
        with pytest.raises(AlreadyWaitlisted):
            queue.enqueue("A", slot.id)
        assert len(queue.list_for_slot(slot.id)) == 1

    def test_rejoin_allowed_after_expiry(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=25)
        entry = queue.enqueue("A", slot.id)
        assert entry.priority == 1

    def test_booked_student_cannot_wait(self, queue, bookings):
        slot = make_slot(bookings)
        bookings.create_booking("A", slot.id)
        with pytest.raises(AlreadyBooked):
            queue.enqueue("A", slot.id)

    def test_free_slot_only_warns(self, queue, bookings, caplog):
        slot = make_slot(bookings, capacity=3)
        with caplog.at_level("WARNING", logger="app.services.waitlist"):
            entry = queue.enqueue("A", slot.id)
        assert entry.priority == 1
        assert "lugar libre" in caplog.text

    def test_priority_ignores_expired_entries(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=12)
        queue.enqueue("B", slot.id)
        clock.advance(hours=13)  # A expired, not swept
        entry = queue.enqueue("C", slot.id)
        assert entry.priority == 2
        assert [(e.student_id, e.priority) for e in queue.list_for_slot(slot.id)] == [("B", 1), ("C", 2)]


class TestLeave:
    def test_leave_renumbers(self, queue, bookings):
        slot = make_slot(bookings)
        for s in ("A", "B", "C"):
            queue.enqueue(s, slot.id)
        queue.leave("B", slot.id)
        assert [(e.student_id, e.priority) for e in queue.list_for_slot(slot.id)] == [("A", 1), ("C", 2)]

    def test_leave_head(self, queue, bookings):
        slot = make_slot(bookings)
        for s in ("A", "B", "C"):
            queue.enqueue(s, slot.id)
        queue.leave("A", slot.id)
        assert [(e.student_id, e.priority) for e in queue.list_for_slot(slot.id)] == [("B", 1), ("C", 2)]

    def test_leave_when_not_waiting(self, queue, bookings):
        slot = make_slot(bookings)
        with pytest.raises(NotWaitlisted):
            queue.leave("A", slot.id)

    def test_leave_expired_entry_is_not_waitlisted(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=24)
        with pytest.raises(NotWaitlisted):
            queue.leave("A", slot.id)

    def test_leave_does_not_touch_other_slots(self, queue, bookings, waitlist_store):
        one = make_slot(bookings)
        two = make_slot(bookings)
        queue.enqueue("A", one.id)
        queue.enqueue("B", one.id)
        queue.enqueue("B", two.id)
        before = waitlist_store.entries_for_slot(two.id)
        queue.leave("A", one.id)
        assert waitlist_store.entries_for_slot(two.id) == before


class TestPopNext:
    def test_pop_returns_head_and_compacts(self, queue, bookings):
        slot = make_slot(bookings)
        for s in ("A", "B", "C"):
            queue.enqueue(s, slot.id)
        head = queue.pop_next(slot.id)
        assert head.student_id == "A"
        assert [(e.student_id, e.priority) for e in queue.list_for_slot(slot.id)] == [("B", 1), ("C", 2)]

    def test_pop_empty(self, queue, bookings):
        slot = make_slot(bookings)
        assert queue.pop_next(slot.id) is None

    def test_pop_skips_expired(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=1)
        queue.enqueue("B", slot.id)
        clock.advance(hours=23, minutes=30)
        assert queue.pop_next(slot.id).student_id == "B"
        assert queue.pop_next(slot.id) is None

    def test_pop_all_expired(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=24)
        assert queue.pop_next(slot.id) is None


class TestListing:
    def test_list_for_slot_is_restartable(self, queue, bookings):
        slot = make_slot(bookings)
        for s in ("A", "B"):
            queue.enqueue(s, slot.id)
        assert queue.list_for_slot(slot.id) == queue.list_for_slot(slot.id)

    def test_list_for_slot_excludes_expired(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=2)
        queue.enqueue("B", slot.id)
        clock.advance(hours=22, minutes=30)
        listed = queue.list_for_slot(slot.id)
        assert [(e.student_id, e.priority) for e in listed] == [("B", 1)]

    def test_list_for_student_newest_first(self, queue, bookings, clock):
        one = make_slot(bookings)
        two = make_slot(bookings)
        queue.enqueue("X", one.id)
        queue.enqueue("A", one.id)
        clock.advance(minutes=5)
        queue.enqueue("A", two.id)
        listed = queue.list_for_student("A")
        assert [e.slot_id for e in listed] == [two.id, one.id]
        assert [e.priority for e in listed] == [1, 2]

    def test_list_for_student_excludes_expired(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        queue.enqueue("A", slot.id)
        clock.advance(hours=24)
        assert queue.list_for_student("A") == []


class TestContiguity:
    def test_mixed_operations_keep_priorities_contiguous(self, queue, bookings, clock):
        slot = make_slot(bookings, starts_in=timedelta(days=5))
        for s in "ABCDEF":
            queue.enqueue(s, slot.id)
            assert_contiguous(queue, slot.id)
        queue.leave("C", slot.id)
        assert_contiguous(queue, slot.id)
        queue.pop_next(slot.id)
        assert_contiguous(queue, slot.id)
        queue.leave("F", slot.id)
        assert_contiguous(queue, slot.id)
        queue.enqueue("G", slot.id)
        assert [e.student_id for e in queue.list_for_slot(slot.id)] == ["B", "D", "E", "G"]
        assert_contiguous(queue, slot.id)

    def test_stored_priorities_compacted_on_mutation(self, queue, bookings, waitlist_store):
        slot = make_slot(bookings)
        for s in ("A", "B", "C"):
            queue.enqueue(s, slot.id)
        queue.leave("A", slot.id)
        assert sorted(e.priority for e in waitlist_store.entries_for_slot(slot.id)) == [1, 2]


class TestStats:
    def test_stats(self, queue, bookings):
        one = make_slot(bookings)
        two = make_slot(bookings)
        for s in ("A", "B", "C"):
            queue.enqueue(s, one.id)
        queue.enqueue("D", two.id)
        stats = queue.stats()
        assert stats["total_entries"] == 4
        assert stats["upcoming_entries"] == 4
        assert stats["entries_by_slot"] == {one.id: 3, two.id: 1}
        assert stats["entries_by_priority"] == {1: 2, 2: 1, 3: 1}
        assert stats["average_priority"] == pytest.approx(7 / 4)

    def test_stats_empty(self, queue):
        assert queue.stats()["average_priority"] == 0.0
