"""
Límite de solicitudes de OTP por teléfono.

Ventana FIJA, no deslizante: el contador se reinicia cuando `now > reset_time`.
Un cliente puede mandar `max_requests` al final de una ventana y otros
`max_requests` justo después del reinicio. Es aceptable porque solo frena
abuso de SMS; no es una frontera de seguridad.

Cada store decide y escribe en un solo paso atómico (`acquire`): el de
memoria bajo su lock, el SQL con UPDATE condicionales dentro de una
transacción, así varias instancias sobre la misma BD no pierden incrementos.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..domain import Clock, RateLimitDecision, RateLimitWindow, as_utc, utcnow
from ..errors import RateLimited
from ..models import RateLimitRow

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    def acquire(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> Tuple[RateLimitWindow, bool]:
        """
        Cuenta una solicitud si cabe en la ventana vigente (o abre una nueva si
        la anterior venció). Devuelve (ventana resultante, permitido).
        """
        ...

    def purge(self, before: datetime) -> int:
        """Borra ventanas con reset_time < before."""
        ...

    def windows(self) -> List[RateLimitWindow]: ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, RateLimitWindow] = {}

    def acquire(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> Tuple[RateLimitWindow, bool]:
        with self._lock:
            current = self._windows.get(key)
            if current is None or now > current.reset_time:
                # Primera solicitud o ventana vencida: arranca una nueva
                fresh = RateLimitWindow(key=key, count=1, reset_time=now + window)
                self._windows[key] = fresh
                return fresh, True
            if current.count >= max_requests:
                return current, False
            bumped = RateLimitWindow(key=key, count=current.count + 1, reset_time=current.reset_time)
            self._windows[key] = bumped
            return bumped, True

    def purge(self, before: datetime) -> int:
        with self._lock:
            stale = [k for k, w in self._windows.items() if w.reset_time < before]
            for k in stale:
                del self._windows[k]
            return len(stale)

    def windows(self) -> List[RateLimitWindow]:
        with self._lock:
            return list(self._windows.values())


class SqlRateLimitStore:
    """Para varias instancias detrás de un balanceador: la ventana vive en la BD compartida."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def acquire(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> Tuple[RateLimitWindow, bool]:
        try:
            return self._acquire_once(key, now, window, max_requests)
        except IntegrityError:
            # Otra instancia insertó la misma llave primero; ahora la fila existe
            logger.debug("rate limit: insert concurrente para key=%s, reintento", key)
            return self._acquire_once(key, now, window, max_requests)

    def _acquire_once(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> Tuple[RateLimitWindow, bool]:
        db: Session = self._sessions()
        try:
            # 1) Ventana vigente con cupo: incremento condicional
            bumped = db.execute(
                update(RateLimitRow)
                .where(RateLimitRow.key == key)
                .where(RateLimitRow.reset_time >= now)
                .where(RateLimitRow.count < max_requests)
                .values(count=RateLimitRow.count + 1)
                .execution_options(synchronize_session=False)
            )
            if bumped.rowcount == 1:
                current = self._read(db, key)
                db.commit()
                return current, True

            # 2) Ventana vencida: se reinicia solo si sigue vencida
            fresh = RateLimitWindow(key=key, count=1, reset_time=now + window)
            reset = db.execute(
                update(RateLimitRow)
                .where(RateLimitRow.key == key)
                .where(RateLimitRow.reset_time < now)
                .values(count=1, reset_time=fresh.reset_time)
                .execution_options(synchronize_session=False)
            )
            if reset.rowcount == 1:
                db.commit()
                return fresh, True

            # 3) Existe y está llena
            current = self._read(db, key)
            if current is not None:
                db.commit()
                return current, False

            # 4) Primera solicitud de la llave
            db.add(RateLimitRow(key=key, count=1, reset_time=fresh.reset_time))
            db.commit()
            return fresh, True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _read(db: Session, key: str) -> Optional[RateLimitWindow]:
        row = db.execute(
            select(RateLimitRow.count, RateLimitRow.reset_time).where(RateLimitRow.key == key)
        ).first()
        if row is None:
            return None
        return RateLimitWindow(key=key, count=row.count, reset_time=as_utc(row.reset_time))

    def purge(self, before: datetime) -> int:
        db: Session = self._sessions()
        try:
            result = db.execute(delete(RateLimitRow).where(RateLimitRow.reset_time < before))
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()

    def windows(self) -> List[RateLimitWindow]:
        db: Session = self._sessions()
        try:
            rows = db.execute(select(RateLimitRow)).scalars().all()
            return [RateLimitWindow(key=r.key, count=r.count, reset_time=as_utc(r.reset_time)) for r in rows]
        finally:
            db.close()


class FixedWindowRateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        *,
        max_requests: int = 5,
        window: timedelta = timedelta(hours=1),
        clock: Clock = utcnow,
    ) -> None:
        if max_requests < 1:
            raise ValueError(f"max_requests debe ser >= 1, se recibió {max_requests}")
        self._store = store
        self.max_requests = max_requests
        self.window = window
        self._clock = clock

    def is_allowed(self, key: str) -> RateLimitDecision:
        current, allowed = self._store.acquire(key, self._clock(), self.window, self.max_requests)
        if not allowed:
            logger.info("OTP rate limit alcanzado: key=%s reset=%s", key, current.reset_time.isoformat())
            return RateLimitDecision(False, 0, current.reset_time)
        return RateLimitDecision(True, max(0, self.max_requests - current.count), current.reset_time)

    def check(self, key: str) -> RateLimitDecision:
        """Como is_allowed, pero lanza RateLimited cuando no hay cupo."""
        decision = self.is_allowed(key)
        if not decision.allowed:
            raise RateLimited(key, decision.reset_time, self._clock())
        return decision

    def cleanup(self) -> int:
        removed = self._store.purge(self._clock())
        if removed:
            logger.info("🧹 Cleaned up %s expired OTP rate limits", removed)
        return removed

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        windows = self._store.windows()
        return {
            "total_entries": len(windows),
            "active_entries": sum(1 for w in windows if now <= w.reset_time),
        }
