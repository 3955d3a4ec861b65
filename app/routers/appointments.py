from fastapi import APIRouter, Depends

from ..deps import Container, get_container
from ..domain import Booking
from ..models import BookingStatus
from .. import schemas

router = APIRouter(prefix="", tags=["appointments"])

@router.post("/book", response_model=schemas.BookResponse)
def book(req: schemas.BookRequest, c: Container = Depends(get_container)):
    if req.contact:
        c.contacts.save(req.student_id, req.contact, req.consent_messages)
    # Reservar o esperar: los errores de negocio los traduce el handler de main.py
    result = c.controller.request_seat(req.student_id, req.slot_id)
    if isinstance(result, Booking):
        return schemas.BookResponse(
            result="booked",
            booking=schemas.BookingOut.model_validate(result),
            message="Reserva confirmada.",
        )
    return schemas.BookResponse(
        result="waitlisted",
        waitlist_entry=schemas.WaitlistEntryOut.model_validate(result),
        message=f"El horario está lleno. Quedaste en la lista de espera, posición {result.priority}.",
    )

@router.post("/cancel", response_model=schemas.CancelResponse)
def cancel(req: schemas.CancelRequest, c: Container = Depends(get_container)):
    booking, promoted = c.controller.cancel_booking(req.booking_id, BookingStatus(req.status))
    return schemas.CancelResponse(
        booking=schemas.BookingOut.model_validate(booking),
        promoted=schemas.BookingOut.model_validate(promoted) if promoted else None,
    )
