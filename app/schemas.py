from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Literal, Optional

from .models import BookingStatus

class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    slot_id: str
    status: BookingStatus
    created_at: datetime

class WaitlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    slot_id: str
    priority: int
    created_at: datetime
    expires_at: datetime

class BookRequest(BaseModel):
    student_id: str = Field(min_length=1)
    slot_id: str = Field(min_length=1)
    # Teléfono para avisos de lista de espera / promoción (opcional)
    contact: Optional[str] = Field(default=None, min_length=1)
    consent_messages: bool = True

class BookResponse(BaseModel):
    result: Literal["booked", "waitlisted"]
    booking: Optional[BookingOut] = None
    waitlist_entry: Optional[WaitlistEntryOut] = None
    message: str

class CancelRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    status: Literal["CANCELLED", "NO_SHOW"] = "CANCELLED"

class CancelResponse(BaseModel):
    ok: bool = True
    booking: BookingOut
    promoted: Optional[BookingOut] = None

class WaitlistResponse(BaseModel):
    entries: list[WaitlistEntryOut]

class OtpRequest(BaseModel):
    phone_number: str = Field(min_length=1)

class RateLimitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allowed: bool
    remaining: int
    reset_time: datetime

class WaitlistStats(BaseModel):
    total_entries: int
    upcoming_entries: int
    entries_by_slot: dict[str, int]
    entries_by_priority: dict[int, int]
    average_priority: float

class SweepResponse(BaseModel):
    ok: bool = True
    removed: int
