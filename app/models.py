from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Boolean, Integer, String, DateTime, Enum, ForeignKey, Text, Index
from datetime import datetime, timezone
import enum
import uuid
from .database import Base

def _new_id() -> str:
    return uuid.uuid4().hex

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class BookingStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"

# Estados que ocupan lugar en el slot
ACTIVE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)

class SlotRow(Base):
    __tablename__ = "slots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_slot_status", "slot_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    # student_id viene del sistema de usuarios (externo), no hay FK
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    slot_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus, name="booking_status"), default=BookingStatus.CONFIRMED, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

class WaitlistRow(Base):
    __tablename__ = "waiting_list"
    __table_args__ = (
        Index("ix_waiting_list_slot_priority", "slot_id", "priority"),
        Index("ix_waiting_list_student_created", "student_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slot_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

class RateLimitRow(Base):
    __tablename__ = "rate_limit_windows"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

class NotificationLog(Base):
    __tablename__ = "notification_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(20))  # WAITLISTED / PROMOTED / EXPIRED
    channel: Mapped[str] = mapped_column(String(20), default="sms")
    payload: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(50), default="queued")  # sent / failed / dry_run
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

class StudentContact(Base):
    __tablename__ = "student_contacts"

    # Un teléfono por estudiante; se actualiza con cada /book que lo traiga
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contact: Mapped[str] = mapped_column(String(120), nullable=False)
    consent_messages: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
