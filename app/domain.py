# app/domain.py
"""
Objetos de dominio que viajan entre stores, servicios y routers.

Los stores SQL convierten sus filas a estos dataclasses y los stores en
memoria los guardan tal cual, así la lógica no depende del backend.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .models import BookingStatus

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """SQLite devuelve datetimes naive aunque la columna sea timezone=True."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Slot:
    id: str
    capacity: int
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True, slots=True)
class Booking:
    id: str
    student_id: str
    slot_id: str
    status: BookingStatus
    created_at: datetime


@dataclass(frozen=True, slots=True)
class WaitlistEntry:
    id: str
    student_id: str
    slot_id: str
    priority: int  # 1 = siguiente en la fila
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True, slots=True)
class RateLimitWindow:
    key: str
    count: int
    reset_time: datetime


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: datetime
