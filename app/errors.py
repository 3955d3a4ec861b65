# app/errors.py
from __future__ import annotations

from datetime import datetime


class AdmissionError(Exception):
    """Error de negocio que se devuelve al cliente tal cual (mensaje amigable)."""

    code = "admission_error"
    status_code = 400
    retryable = False


class SlotNotFound(AdmissionError):
    code = "slot_not_found"
    status_code = 404

    def __init__(self, slot_id: str) -> None:
        super().__init__(f"El horario {slot_id} no existe.")
        self.slot_id = slot_id


class SlotInPast(AdmissionError):
    code = "slot_in_past"
    status_code = 422

    def __init__(self, slot_id: str) -> None:
        super().__init__("El horario ya pasó; no es posible reservar ni unirse a la lista de espera.")
        self.slot_id = slot_id


class AlreadyWaitlisted(AdmissionError):
    code = "already_waitlisted"
    status_code = 409

    def __init__(self, student_id: str, slot_id: str) -> None:
        super().__init__("El estudiante ya está en la lista de espera de este horario.")
        self.student_id = student_id
        self.slot_id = slot_id


class AlreadyBooked(AdmissionError):
    code = "already_booked"
    status_code = 409

    def __init__(self, student_id: str, slot_id: str) -> None:
        super().__init__("El estudiante ya tiene una reserva confirmada en este horario.")
        self.student_id = student_id
        self.slot_id = slot_id


class NotWaitlisted(AdmissionError):
    code = "not_waitlisted"
    status_code = 404

    def __init__(self, student_id: str, slot_id: str) -> None:
        super().__init__("El estudiante no está en la lista de espera de este horario.")
        self.student_id = student_id
        self.slot_id = slot_id


class BookingNotFound(AdmissionError):
    code = "booking_not_found"
    status_code = 404

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"La reserva {booking_id} no existe.")
        self.booking_id = booking_id


class CapacityExceeded(AdmissionError):
    """Carrera detectada al escribir la reserva. La operación se aborta sin escrituras parciales."""

    code = "capacity_exceeded"
    status_code = 409
    retryable = True

    def __init__(self, slot_id: str) -> None:
        super().__init__("El horario se llenó mientras se procesaba la solicitud. Intenta de nuevo.")
        self.slot_id = slot_id


class RateLimited(Exception):
    code = "rate_limited"
    status_code = 429
    retryable = True

    def __init__(self, key: str, reset_time: datetime, now: datetime) -> None:
        self.key = key
        self.reset_time = reset_time
        self.retry_after_seconds = max(0, int((reset_time - now).total_seconds()))
        minutes = max(1, -(-self.retry_after_seconds // 60))
        super().__init__(f"Demasiadas solicitudes de código. Intenta de nuevo en {minutes} minutos.")


class NotificationError(Exception):
    """Fallo al entregar una notificación. Nunca sale del flujo de admisión."""
