# app/services/notifications.py
"""
Avisos al estudiante: entró a la lista de espera, fue promovido o su lugar expiró.

El envío es "fire-and-forget" desde el punto de vista de la admisión: el
dispatcher lanza NotificationError si algo falla y quien lo llama lo registra
sin interrumpir la operación.
"""
from __future__ import annotations

import enum
import logging
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..domain import Clock, as_utc, utcnow
from ..errors import NotificationError
from ..models import NotificationLog
from .twilio_client import send_sms

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    WAITLISTED = "WAITLISTED"
    PROMOTED = "PROMOTED"
    EXPIRED = "EXPIRED"


class NotificationDispatcher(Protocol):
    def notify(self, student_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None: ...


# ------------------ plantillas ------------------

def _fmt_local(value: Any) -> str:
    if isinstance(value, datetime):
        return as_utc(value).astimezone(ZoneInfo(settings.TIMEZONE)).strftime("%d/%m/%Y %H:%M")
    return str(value) if value is not None else "-"

def render_message(kind: NotificationKind, payload: Mapping[str, Any]) -> str:
    when = _fmt_local(payload.get("slot_start"))
    if kind is NotificationKind.WAITLISTED:
        return (
            "⏳ *Lista de espera*\n"
            f"Horario: {when}\n"
            f"Tu posición: {payload.get('position')}\n"
            f"Tu lugar vence: {_fmt_local(payload.get('expires_at'))}"
        )
    if kind is NotificationKind.PROMOTED:
        return (
            "✅ *Reserva confirmada*\n"
            f"Se liberó un lugar y tu reserva para {when} quedó confirmada.\n"
            f"Folio: {payload.get('booking_id')}"
        )
    return (
        "⌛ Tu lugar en la lista de espera venció.\n"
        f"Horario: {when}\n"
        "Si aún hay lugares puedes intentar reservar de nuevo."
    )


# ------------------ bitácora de envíos ------------------

@dataclass(frozen=True, slots=True)
class DeliveryRecord:
    student_id: str
    kind: str
    body: str
    status: str
    error: Optional[str]
    created_at: datetime


class DeliveryLog(Protocol):
    def record(self, student_id: str, kind: NotificationKind, body: str, status: str, error: Optional[str] = None) -> None: ...

    def history(self, student_id: str) -> List[DeliveryRecord]: ...

    def stats(self) -> Dict[str, int]: ...

    def cleanup(self, older_than: datetime) -> int: ...


def _stats_from(statuses: List[str]) -> Dict[str, int]:
    counts = Counter(statuses)
    return {
        "total": len(statuses),
        "sent": counts.get("sent", 0),
        "failed": counts.get("failed", 0),
        "dry_run": counts.get("dry_run", 0) + counts.get("mock", 0),
        "no_contact": counts.get("no_contact", 0),
    }


class InMemoryDeliveryLog:
    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: List[DeliveryRecord] = []

    def record(self, student_id: str, kind: NotificationKind, body: str, status: str, error: Optional[str] = None) -> None:
        rec = DeliveryRecord(student_id, kind.value, body, status, error, self._clock())
        with self._lock:
            self._records.append(rec)

    def history(self, student_id: str) -> List[DeliveryRecord]:
        with self._lock:
            rows = [r for r in self._records if r.student_id == student_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return _stats_from([r.status for r in self._records])

    def cleanup(self, older_than: datetime) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.created_at >= older_than]
            return before - len(self._records)


class SqlDeliveryLog:
    def __init__(self, session_factory: sessionmaker, *, clock: Clock = utcnow) -> None:
        self._sessions = session_factory
        self._clock = clock

    def record(self, student_id: str, kind: NotificationKind, body: str, status: str, error: Optional[str] = None) -> None:
        db: Session = self._sessions()
        try:
            db.add(NotificationLog(
                student_id=student_id,
                kind=kind.value,
                channel="sms",
                payload=body,
                status=status,
                error=error,
                created_at=self._clock(),
            ))
            db.commit()
        finally:
            db.close()

    def history(self, student_id: str) -> List[DeliveryRecord]:
        db: Session = self._sessions()
        try:
            rows = db.execute(
                select(NotificationLog)
                .where(NotificationLog.student_id == student_id)
                .order_by(NotificationLog.created_at.desc())
            ).scalars().all()
            return [
                DeliveryRecord(r.student_id, r.kind, r.payload, r.status, r.error, as_utc(r.created_at))
                for r in rows
            ]
        finally:
            db.close()

    def stats(self) -> Dict[str, int]:
        db: Session = self._sessions()
        try:
            statuses = list(db.execute(select(NotificationLog.status)).scalars().all())
            return _stats_from(statuses)
        finally:
            db.close()

    def cleanup(self, older_than: datetime) -> int:
        db: Session = self._sessions()
        try:
            result = db.execute(delete(NotificationLog).where(NotificationLog.created_at < older_than))
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()


# ------------------ dispatcher SMS ------------------

ContactLookup = Callable[[str], Optional[str]]


def _no_contacts(student_id: str) -> Optional[str]:
    return None


class SmsNotificationDispatcher:
    """
    Resuelve el teléfono del estudiante (módulo de usuarios, externo), arma el
    texto y lo manda por Twilio. Todo intento queda en la bitácora.
    """

    def __init__(
        self,
        log: DeliveryLog,
        *,
        contact_lookup: ContactLookup = _no_contacts,
        sender: Callable[[str, str], dict] = send_sms,
    ) -> None:
        self._log = log
        self._lookup = contact_lookup
        self._send = sender

    def notify(self, student_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        body = render_message(kind, payload)
        contact = self._lookup(student_id)
        if not contact:
            logger.warning("Sin teléfono para student=%s; aviso %s no enviado", student_id, kind.value)
            self._log.record(student_id, kind, body, "no_contact")
            return

        result = self._send(contact, body)
        if "error" in result:
            self._log.record(student_id, kind, body, "failed", error=str(result["error"]))
            raise NotificationError(f"SMS {kind.value} a student={student_id} falló: {result['error']}")

        status = "dry_run" if result.get("dry_run") else "mock" if result.get("mock") else "sent"
        self._log.record(student_id, kind, body, status)
        logger.info("Aviso %s → student=%s (%s)", kind.value, student_id, status)

