# app/services/booking_store.py
"""
Store de slots y reservas.

Slots y reservas pertenecen a otros módulos del sistema (ciclo de vida del
slot, asistencia, evaluaciones); aquí solo se lee capacidad/ocupación y se
crean o cancelan reservas.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Dict, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ..domain import Booking, Clock, Slot, as_utc, utcnow
from ..errors import BookingNotFound, CapacityExceeded
from ..models import ACTIVE_STATUSES, BookingRow, BookingStatus, SlotRow

logger = logging.getLogger(__name__)


class BookingStore(Protocol):
    def get_slot(self, slot_id: str) -> Optional[Slot]: ...

    def count_active_bookings(self, slot_id: str) -> int: ...

    def create_booking(
        self,
        student_id: str,
        slot_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
        *,
        capacity: Optional[int] = None,
    ) -> Booking:
        """
        Si `capacity` viene, la escritura es condicional: lanza CapacityExceeded
        en vez de sobrevender el slot.
        """
        ...

    def find_active_booking(self, student_id: str, slot_id: str) -> Optional[Booking]: ...

    def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    def update_status(self, booking_id: str, status: BookingStatus) -> Booking: ...


def _to_slot(row: SlotRow) -> Slot:
    return Slot(id=row.id, capacity=row.capacity, start_at=as_utc(row.start_at), end_at=as_utc(row.end_at))


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        student_id=row.student_id,
        slot_id=row.slot_id,
        status=row.status,
        created_at=as_utc(row.created_at),
    )


class SqlBookingStore:
    def __init__(self, session_factory: sessionmaker, *, clock: Clock = utcnow) -> None:
        self._sessions = session_factory
        self._clock = clock

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        db: Session = self._sessions()
        try:
            row = db.get(SlotRow, slot_id)
            return _to_slot(row) if row else None
        finally:
            db.close()

    def count_active_bookings(self, slot_id: str) -> int:
        db: Session = self._sessions()
        try:
            return self._count_active(db, slot_id)
        finally:
            db.close()

    @staticmethod
    def _count_active(db: Session, slot_id: str) -> int:
        q = (
            select(func.count(BookingRow.id))
            .where(BookingRow.slot_id == slot_id)
            .where(BookingRow.status.in_(ACTIVE_STATUSES))
        )
        return int(db.execute(q).scalar_one())

    def create_booking(
        self,
        student_id: str,
        slot_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
        *,
        capacity: Optional[int] = None,
    ) -> Booking:
        db: Session = self._sessions()
        try:
            if capacity is not None and status in ACTIVE_STATUSES:
                # En Postgres bloquea la fila del slot hasta el commit; SQLite lo ignora
                db.execute(select(SlotRow.id).where(SlotRow.id == slot_id).with_for_update()).first()
                if self._count_active(db, slot_id) >= capacity:
                    logger.warning("Escritura condicional rechazada: slot=%s lleno (capacity=%s)", slot_id, capacity)
                    raise CapacityExceeded(slot_id)

            row = BookingRow(
                id=uuid.uuid4().hex,
                student_id=student_id,
                slot_id=slot_id,
                status=status,
                created_at=self._clock(),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_booking(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def find_active_booking(self, student_id: str, slot_id: str) -> Optional[Booking]:
        db: Session = self._sessions()
        try:
            row = db.execute(
                select(BookingRow)
                .where(BookingRow.student_id == student_id)
                .where(BookingRow.slot_id == slot_id)
                .where(BookingRow.status.in_(ACTIVE_STATUSES))
                .limit(1)
            ).scalar_one_or_none()
            return _to_booking(row) if row else None
        finally:
            db.close()

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        db: Session = self._sessions()
        try:
            row = db.get(BookingRow, booking_id)
            return _to_booking(row) if row else None
        finally:
            db.close()

    def update_status(self, booking_id: str, status: BookingStatus) -> Booking:
        db: Session = self._sessions()
        try:
            row = db.get(BookingRow, booking_id)
            if row is None:
                raise BookingNotFound(booking_id)
            row.status = status
            db.commit()
            db.refresh(row)
            return _to_booking(row)
        finally:
            db.close()

    def add_slot(self, slot: Slot) -> Slot:
        db: Session = self._sessions()
        try:
            db.add(SlotRow(id=slot.id, capacity=slot.capacity, start_at=slot.start_at, end_at=slot.end_at))
            db.commit()
            return slot
        finally:
            db.close()


class InMemoryBookingStore:
    """Store en proceso (tests, una sola instancia)."""

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._slots: Dict[str, Slot] = {}
        self._bookings: Dict[str, Booking] = {}

    def add_slot(self, slot: Slot) -> Slot:
        with self._lock:
            self._slots[slot.id] = slot
        return slot

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        return self._slots.get(slot_id)

    def count_active_bookings(self, slot_id: str) -> int:
        with self._lock:
            return self._count_active(slot_id)

    def _count_active(self, slot_id: str) -> int:
        return sum(
            1 for b in self._bookings.values()
            if b.slot_id == slot_id and b.status in ACTIVE_STATUSES
        )

    def create_booking(
        self,
        student_id: str,
        slot_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
        *,
        capacity: Optional[int] = None,
    ) -> Booking:
        with self._lock:
            if capacity is not None and status in ACTIVE_STATUSES and self._count_active(slot_id) >= capacity:
                raise CapacityExceeded(slot_id)
            booking = Booking(
                id=uuid.uuid4().hex,
                student_id=student_id,
                slot_id=slot_id,
                status=status,
                created_at=self._clock(),
            )
            self._bookings[booking.id] = booking
            return booking

    def find_active_booking(self, student_id: str, slot_id: str) -> Optional[Booking]:
        with self._lock:
            for b in self._bookings.values():
                if b.student_id == student_id and b.slot_id == slot_id and b.status in ACTIVE_STATUSES:
                    return b
        return None

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def update_status(self, booking_id: str, status: BookingStatus) -> Booking:
        with self._lock:
            current = self._bookings.get(booking_id)
            if current is None:
                raise BookingNotFound(booking_id)
            updated = replace(current, status=status)
            self._bookings[booking_id] = updated
            return updated

    def bookings_for_slot(self, slot_id: str) -> list[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if b.slot_id == slot_id]
