# app/services/admission.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Tuple, Union

from ..domain import Booking, Clock, Slot, WaitlistEntry, utcnow
from ..errors import AlreadyBooked, BookingNotFound, SlotInPast, SlotNotFound
from ..models import BookingStatus
from .booking_store import BookingStore
from .capacity import CapacityLedger
from .notifications import NotificationDispatcher, NotificationKind
from .waitlist import WaitlistQueue

logger = logging.getLogger(__name__)

SeatResult = Union[Booking, WaitlistEntry]


class AdmissionController:
    """
    Orquesta "reservar o esperar", la promoción tras una cancelación y la
    salida voluntaria de la lista.

    La secuencia capacidad → cabeza de la fila → reserva corre completa bajo
    el lock del slot (el mismo que usa la cola), así dos cancelaciones
    simultáneas no promueven dos veces al mismo lugar y un request_seat no
    compite con una promoción por la misma unidad de capacidad. La escritura
    de la reserva además es condicional en el store (CapacityExceeded).
    """

    def __init__(
        self,
        bookings: BookingStore,
        ledger: CapacityLedger,
        queue: WaitlistQueue,
        notifier: NotificationDispatcher,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._bookings = bookings
        self._ledger = ledger
        self._queue = queue
        self._notifier = notifier
        self._clock = clock
        self.notification_failures = 0

    def request_seat(self, student_id: str, slot_id: str) -> SeatResult:
        with self._queue.locks.hold(slot_id):
            slot = self._require_future_slot(slot_id)
            if self._bookings.find_active_booking(student_id, slot_id) is not None:
                raise AlreadyBooked(student_id, slot_id)

            if self._ledger.has_capacity(slot_id):
                booking = self._bookings.create_booking(
                    student_id, slot_id, BookingStatus.CONFIRMED, capacity=slot.capacity
                )
                # Si estaba en la fila de este slot, ya no debe estarlo
                pending = self._queue.find_active(student_id, slot_id)
                if pending is not None:
                    self._queue.discard(pending)
                logger.info("Reserva directa: student=%s slot=%s booking=%s", student_id, slot_id, booking.id)
                return booking

            entry = self._queue.enqueue(student_id, slot_id)

        self._safe_notify(student_id, NotificationKind.WAITLISTED, {
            "slot_id": slot_id,
            "slot_start": slot.start_at,
            "position": entry.priority,
            "expires_at": entry.expires_at,
        })
        return entry

    def promote_next(self, slot_id: str) -> Optional[Booking]:
        with self._queue.locks.hold(slot_id):
            promoted = self._promote_locked(slot_id)
        if promoted is None:
            return None
        booking, slot = promoted
        self._notify_promoted(booking, slot)
        return booking

    def withdraw(self, student_id: str, slot_id: str) -> None:
        self._queue.leave(student_id, slot_id)

    def cancel_booking(
        self, booking_id: str, status: BookingStatus = BookingStatus.CANCELLED
    ) -> Tuple[Booking, Optional[Booking]]:
        """
        Flujo de cancelación / no-show: saca la reserva de CONFIRMED y promueve
        al siguiente de la fila. Devuelve (reserva actualizada, promovida o None).
        El aviso PROMOTED sale ya sin el lock del slot.
        """
        if status not in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW):
            raise ValueError(f"status inválido para cancelar: {status}")

        booking = self._bookings.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)

        with self._queue.locks.hold(booking.slot_id):
            current = self._bookings.get_booking(booking_id)
            if current is None:
                raise BookingNotFound(booking_id)
            if current.status is not BookingStatus.CONFIRMED:
                logger.info("cancel_booking: booking=%s ya estaba en %s", booking_id, current.status.value)
                return current, None
            updated = self._bookings.update_status(booking_id, status)
            promoted = self._promote_locked(booking.slot_id)

        if promoted is None:
            return updated, None
        new_booking, slot = promoted
        self._notify_promoted(new_booking, slot)
        return updated, new_booking

    # ------------------ internos ------------------

    def _promote_locked(self, slot_id: str) -> Optional[Tuple[Booking, Slot]]:
        """Capacidad → cabeza de la fila → reserva. Quien llama ya tiene el lock del slot."""
        slot = self._bookings.get_slot(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if not self._ledger.has_capacity(slot_id):
            logger.info("promote_next: slot=%s sin lugar libre, nada que promover", slot_id)
            return None

        while True:
            head = self._queue.peek_next(slot_id)
            if head is None:
                return None
            if self._bookings.find_active_booking(head.student_id, slot_id) is not None:
                # Ya tiene lugar en el slot; su entrada sobra
                logger.warning("promote_next: student=%s ya reservado en slot=%s, se descarta entrada", head.student_id, slot_id)
                self._queue.discard(head)
                continue
            # Si la escritura falla (CapacityExceeded) la entrada sigue intacta en la fila
            booking = self._bookings.create_booking(
                head.student_id, slot_id, BookingStatus.CONFIRMED, capacity=slot.capacity
            )
            self._queue.discard(head)
            logger.info("Promoción: student=%s slot=%s booking=%s", booking.student_id, slot_id, booking.id)
            return booking, slot

    def _notify_promoted(self, booking: Booking, slot: Slot) -> None:
        self._safe_notify(booking.student_id, NotificationKind.PROMOTED, {
            "slot_id": slot.id,
            "slot_start": slot.start_at,
            "booking_id": booking.id,
        })

    def _require_future_slot(self, slot_id: str) -> Slot:
        slot = self._bookings.get_slot(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if slot.start_at <= self._clock():
            raise SlotInPast(slot_id)
        return slot

    def _safe_notify(self, student_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        try:
            self._notifier.notify(student_id, kind, payload)
        except Exception:
            self.notification_failures += 1
            logger.exception("No se pudo enviar aviso %s a student=%s", kind.value, student_id)
