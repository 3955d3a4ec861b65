# app/services/contacts.py
"""
Directorio de contactos de estudiantes para los avisos por SMS.

El teléfono llega en la solicitud de reserva (igual que el contacto del
paciente en una cita) y se guarda por student_id. El dispatcher lo consulta
con `lookup`; sin consentimiento de mensajes se trata como sin contacto.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import Session, sessionmaker

from ..domain import Clock, utcnow
from ..models import StudentContact


def _clean(contact: str) -> str:
    return contact.strip()


class ContactDirectory(Protocol):
    def save(self, student_id: str, contact: str, consent_messages: bool = True) -> None: ...

    def lookup(self, student_id: str) -> Optional[str]: ...


class InMemoryContactDirectory:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contacts: Dict[str, Tuple[str, bool]] = {}

    def save(self, student_id: str, contact: str, consent_messages: bool = True) -> None:
        with self._lock:
            self._contacts[student_id] = (_clean(contact), consent_messages)

    def lookup(self, student_id: str) -> Optional[str]:
        with self._lock:
            found = self._contacts.get(student_id)
        if found is None or not found[1]:
            return None
        return found[0]


class SqlContactDirectory:
    def __init__(self, session_factory: sessionmaker, *, clock: Clock = utcnow) -> None:
        self._sessions = session_factory
        self._clock = clock

    def save(self, student_id: str, contact: str, consent_messages: bool = True) -> None:
        db: Session = self._sessions()
        try:
            row = db.get(StudentContact, student_id)
            if row is None:
                row = StudentContact(student_id=student_id)
                db.add(row)
            row.contact = _clean(contact)
            row.consent_messages = consent_messages
            row.updated_at = self._clock()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def lookup(self, student_id: str) -> Optional[str]:
        db: Session = self._sessions()
        try:
            row = db.get(StudentContact, student_id)
            if row is None or not row.consent_messages:
                return None
            return row.contact
        finally:
            db.close()
