# app/services/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """
    Registro de locks por llave (slot_id).

    Responsabilidad:
      - serializar operaciones read-modify-write sobre la misma llave
      - no bloquear llaves distintas entre sí
      - liberar la entrada del registro cuando nadie la usa (memoria acotada)

    Los locks son reentrantes: el controlador toma el lock del slot y dentro
    llama a operaciones de la cola que vuelven a tomarlo.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users <= 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
