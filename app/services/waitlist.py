# app/services/waitlist.py
"""
Cola de espera por slot.

Reglas que se mantienen después de cada operación:
  - las entradas vigentes de un slot tienen prioridades 1..N sin huecos
  - un estudiante tiene como máximo una entrada vigente por slot
  - quien está en la fila no tiene reserva activa en ese mismo slot

Toda mutación de un slot corre bajo el lock de ese slot (KeyedLocks). Las
lecturas no toman lock; devuelven la posición real en la fila, no el valor
guardado, porque las entradas expiradas aún no barridas dejan huecos.
"""
from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from ..domain import Clock, WaitlistEntry, utcnow
from ..errors import AlreadyBooked, AlreadyWaitlisted, NotWaitlisted, SlotInPast, SlotNotFound
from .booking_store import BookingStore
from .capacity import CapacityLedger
from .locks import KeyedLocks
from .waitlist_store import WaitlistStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


class WaitlistQueue:
    def __init__(
        self,
        store: WaitlistStore,
        bookings: BookingStore,
        ledger: CapacityLedger,
        *,
        locks: Optional[KeyedLocks] = None,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._bookings = bookings
        self._ledger = ledger
        self.locks = locks or KeyedLocks()
        self._ttl = ttl
        self._clock = clock

    # ------------------ operaciones públicas ------------------

    def enqueue(self, student_id: str, slot_id: str) -> WaitlistEntry:
        with self.locks.hold(slot_id):
            now = self._clock()
            slot = self._bookings.get_slot(slot_id)
            if slot is None:
                raise SlotNotFound(slot_id)
            if slot.start_at <= now:
                raise SlotInPast(slot_id)

            active = self._active(slot_id, now)
            if any(e.student_id == student_id for e in active):
                raise AlreadyWaitlisted(student_id, slot_id)
            if self._bookings.find_active_booking(student_id, slot_id) is not None:
                raise AlreadyBooked(student_id, slot_id)

            if self._ledger.has_capacity(slot_id):
                logger.warning("enqueue con lugar libre: student=%s slot=%s (podría reservar directo)", student_id, slot_id)

            self._compact(active)
            entry = WaitlistEntry(
                id=uuid.uuid4().hex,
                student_id=student_id,
                slot_id=slot_id,
                priority=len(active) + 1,
                created_at=now,
                expires_at=now + self._ttl,
            )
            self._store.add(entry)
            logger.info("Waitlist +1: student=%s slot=%s position=%s", student_id, slot_id, entry.priority)
            return entry

    def leave(self, student_id: str, slot_id: str) -> None:
        with self.locks.hold(slot_id):
            now = self._clock()
            active = self._active(slot_id, now)
            entry = next((e for e in active if e.student_id == student_id), None)
            if entry is None:
                raise NotWaitlisted(student_id, slot_id)
            self._store.delete(entry.id)
            self._compact([e for e in active if e.id != entry.id])
            logger.info("Waitlist -1 (leave): student=%s slot=%s", student_id, slot_id)

    def list_for_slot(self, slot_id: str) -> List[WaitlistEntry]:
        active = self._active(slot_id, self._clock())
        return [replace(e, priority=pos) for pos, e in enumerate(active, start=1)]

    def list_for_student(self, student_id: str) -> List[WaitlistEntry]:
        now = self._clock()
        out = []
        for entry in self._store.entries_for_student(student_id):
            if entry.is_expired(now):
                continue
            out.append(replace(entry, priority=self._position(entry, now)))
        out.sort(key=lambda e: e.created_at, reverse=True)
        return out

    def peek_next(self, slot_id: str) -> Optional[WaitlistEntry]:
        active = self._active(slot_id, self._clock())
        return replace(active[0], priority=1) if active else None

    def pop_next(self, slot_id: str) -> Optional[WaitlistEntry]:
        with self.locks.hold(slot_id):
            active = self._active(slot_id, self._clock())
            if not active:
                return None
            head = active[0]
            self._store.delete(head.id)
            self._compact(active[1:])
            return replace(head, priority=1)

    def discard(self, entry: WaitlistEntry) -> None:
        """Quita una entrada concreta (ya promovida) y renumera su slot."""
        with self.locks.hold(entry.slot_id):
            self._store.delete(entry.id)
            self._compact(self._active(entry.slot_id, self._clock()))

    def find_active(self, student_id: str, slot_id: str) -> Optional[WaitlistEntry]:
        active = self._active(slot_id, self._clock())
        for pos, e in enumerate(active, start=1):
            if e.student_id == student_id:
                return replace(e, priority=pos)
        return None

    # ------------------ soporte para el barrido ------------------

    def expired_slot_ids(self, now: datetime) -> List[str]:
        return sorted({e.slot_id for e in self._store.expired(now)})

    def remove_expired(self, slot_id: str, now: datetime) -> List[WaitlistEntry]:
        """Borra las expiradas de un slot y renumera solo ese slot."""
        with self.locks.hold(slot_id):
            removed: List[WaitlistEntry] = []
            remaining: List[WaitlistEntry] = []
            for e in self._store.entries_for_slot(slot_id):
                if e.is_expired(now):
                    if self._store.delete(e.id):
                        removed.append(e)
                else:
                    remaining.append(e)
            self._compact(remaining)
            return removed

    # ------------------ estadísticas ------------------

    def stats(self) -> dict:
        now = self._clock()
        active = self._store.active(now)
        by_slot: Dict[str, int] = Counter(e.slot_id for e in active)
        by_priority: Dict[int, int] = Counter()
        upcoming = 0
        for slot_id, count in by_slot.items():
            for pos in range(1, count + 1):
                by_priority[pos] += 1
            slot = self._bookings.get_slot(slot_id)
            if slot is not None and slot.start_at > now:
                upcoming += count
        total = len(active)
        return {
            "total_entries": total,
            "upcoming_entries": upcoming,
            "entries_by_slot": dict(by_slot),
            "entries_by_priority": dict(sorted(by_priority.items())),
            "average_priority": (sum(p * c for p, c in by_priority.items()) / total) if total else 0.0,
        }

    # ------------------ internos ------------------

    def _active(self, slot_id: str, now: datetime) -> List[WaitlistEntry]:
        rows = [e for e in self._store.entries_for_slot(slot_id) if not e.is_expired(now)]
        rows.sort(key=lambda e: (e.priority, e.created_at))
        return rows

    def _position(self, entry: WaitlistEntry, now: datetime) -> int:
        for pos, e in enumerate(self._active(entry.slot_id, now), start=1):
            if e.id == entry.id:
                return pos
        return entry.priority

    def _compact(self, remaining: Sequence[WaitlistEntry]) -> None:
        """Prioridades 1..N conservando el orden relativo."""
        changes = {e.id: pos for pos, e in enumerate(remaining, start=1) if e.priority != pos}
        if changes:
            self._store.set_priorities(changes)

