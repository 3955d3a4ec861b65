# app/services/expiry.py
from __future__ import annotations

import logging

from ..domain import Clock, utcnow
from .booking_store import BookingStore
from .notifications import NotificationDispatcher, NotificationKind
from .waitlist import WaitlistQueue

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Barre entradas vencidas (expires_at <= now) de todos los slots.

    Cada slot se procesa bajo su propio lock, igual que `leave`, y solo se
    renumeran los slots tocados. El borrado es lo que cuenta: si el aviso
    EXPIRED falla se registra y se sigue.
    """

    def __init__(
        self,
        queue: WaitlistQueue,
        bookings: BookingStore,
        notifier: NotificationDispatcher,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._queue = queue
        self._bookings = bookings
        self._notifier = notifier
        self._clock = clock
        self.notification_failures = 0

    def sweep(self) -> int:
        now = self._clock()
        removed_total = 0
        for slot_id in self._queue.expired_slot_ids(now):
            removed = self._queue.remove_expired(slot_id, now)
            removed_total += len(removed)
            if not removed:
                continue
            slot = self._bookings.get_slot(slot_id)
            for entry in removed:
                try:
                    self._notifier.notify(entry.student_id, NotificationKind.EXPIRED, {
                        "slot_id": slot_id,
                        "slot_start": slot.start_at if slot else None,
                        "expired_at": entry.expires_at,
                    })
                except Exception:
                    self.notification_failures += 1
                    logger.exception("Aviso EXPIRED falló: student=%s slot=%s", entry.student_id, slot_id)

        if removed_total:
            logger.info("🧹 Waitlist sweep: %s entradas vencidas eliminadas", removed_total)
        return removed_total
