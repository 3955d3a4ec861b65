# app/services/waitlist_store.py
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Mapping, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ..domain import WaitlistEntry, as_utc
from ..models import WaitlistRow


class WaitlistStore(Protocol):
    """
    Persistencia cruda de la lista de espera. No filtra expirados ni valida
    reglas; eso lo hace WaitlistQueue bajo el lock del slot.
    """

    def entries_for_slot(self, slot_id: str) -> List[WaitlistEntry]:
        """Todas las entradas del slot (incluye expiradas), por prioridad."""
        ...

    def entries_for_student(self, student_id: str) -> List[WaitlistEntry]: ...

    def add(self, entry: WaitlistEntry) -> WaitlistEntry: ...

    def delete(self, entry_id: str) -> bool: ...

    def set_priorities(self, priorities: Mapping[str, int]) -> None: ...

    def expired(self, now: datetime) -> List[WaitlistEntry]: ...

    def active(self, now: datetime) -> List[WaitlistEntry]: ...


def _to_entry(row: WaitlistRow) -> WaitlistEntry:
    return WaitlistEntry(
        id=row.id,
        student_id=row.student_id,
        slot_id=row.slot_id,
        priority=row.priority,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
    )


class SqlWaitlistStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def entries_for_slot(self, slot_id: str) -> List[WaitlistEntry]:
        db: Session = self._sessions()
        try:
            rows = db.execute(
                select(WaitlistRow)
                .where(WaitlistRow.slot_id == slot_id)
                .order_by(WaitlistRow.priority.asc(), WaitlistRow.created_at.asc())
            ).scalars().all()
            return [_to_entry(r) for r in rows]
        finally:
            db.close()

    def entries_for_student(self, student_id: str) -> List[WaitlistEntry]:
        db: Session = self._sessions()
        try:
            rows = db.execute(
                select(WaitlistRow)
                .where(WaitlistRow.student_id == student_id)
                .order_by(WaitlistRow.created_at.desc())
            ).scalars().all()
            return [_to_entry(r) for r in rows]
        finally:
            db.close()

    def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        db: Session = self._sessions()
        try:
            db.add(WaitlistRow(
                id=entry.id,
                student_id=entry.student_id,
                slot_id=entry.slot_id,
                priority=entry.priority,
                created_at=entry.created_at,
                expires_at=entry.expires_at,
            ))
            db.commit()
            return entry
        finally:
            db.close()

    def delete(self, entry_id: str) -> bool:
        db: Session = self._sessions()
        try:
            result = db.execute(delete(WaitlistRow).where(WaitlistRow.id == entry_id))
            db.commit()
            return result.rowcount > 0
        finally:
            db.close()

    def set_priorities(self, priorities: Mapping[str, int]) -> None:
        if not priorities:
            return
        db: Session = self._sessions()
        try:
            # Una sola transacción: o se renumera todo el slot o nada
            for entry_id, priority in priorities.items():
                row = db.get(WaitlistRow, entry_id)
                if row is not None:
                    row.priority = priority
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def expired(self, now: datetime) -> List[WaitlistEntry]:
        db: Session = self._sessions()
        try:
            rows = db.execute(
                select(WaitlistRow)
                .where(WaitlistRow.expires_at <= now)
                .order_by(WaitlistRow.slot_id, WaitlistRow.priority)
            ).scalars().all()
            return [_to_entry(r) for r in rows]
        finally:
            db.close()

    def active(self, now: datetime) -> List[WaitlistEntry]:
        db: Session = self._sessions()
        try:
            rows = db.execute(
                select(WaitlistRow)
                .where(WaitlistRow.expires_at > now)
                .order_by(WaitlistRow.slot_id, WaitlistRow.priority)
            ).scalars().all()
            return [_to_entry(r) for r in rows]
        finally:
            db.close()


class InMemoryWaitlistStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, WaitlistEntry] = {}

    def entries_for_slot(self, slot_id: str) -> List[WaitlistEntry]:
        with self._lock:
            rows = [e for e in self._entries.values() if e.slot_id == slot_id]
        return sorted(rows, key=lambda e: (e.priority, e.created_at))

    def entries_for_student(self, student_id: str) -> List[WaitlistEntry]:
        with self._lock:
            rows = [e for e in self._entries.values() if e.student_id == student_id]
        return sorted(rows, key=lambda e: e.created_at, reverse=True)

    def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        with self._lock:
            self._entries[entry.id] = entry
        return entry

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def set_priorities(self, priorities: Mapping[str, int]) -> None:
        with self._lock:
            for entry_id, priority in priorities.items():
                current = self._entries.get(entry_id)
                if current is not None:
                    self._entries[entry_id] = replace(current, priority=priority)

    def expired(self, now: datetime) -> List[WaitlistEntry]:
        with self._lock:
            rows = [e for e in self._entries.values() if e.is_expired(now)]
        return sorted(rows, key=lambda e: (e.slot_id, e.priority))

    def active(self, now: datetime) -> List[WaitlistEntry]:
        with self._lock:
            rows = [e for e in self._entries.values() if not e.is_expired(now)]
        return sorted(rows, key=lambda e: (e.slot_id, e.priority))
