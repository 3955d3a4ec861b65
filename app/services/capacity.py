# app/services/capacity.py
from __future__ import annotations

import logging

from .booking_store import BookingStore

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Vista de solo lectura: ¿el slot tiene un lugar libre?"""

    def __init__(self, bookings: BookingStore) -> None:
        self._bookings = bookings

    def has_capacity(self, slot_id: str) -> bool:
        slot = self._bookings.get_slot(slot_id)
        if slot is None:
            # Falla cerrado: un slot desconocido nunca tiene lugar
            logger.debug("has_capacity: slot=%s no existe", slot_id)
            return False
        return self._bookings.count_active_bookings(slot_id) < slot.capacity

    def free_seats(self, slot_id: str) -> int:
        slot = self._bookings.get_slot(slot_id)
        if slot is None:
            return 0
        return max(0, slot.capacity - self._bookings.count_active_bookings(slot_id))
