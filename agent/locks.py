"""
Locks — Exclusión mutua por conversación.

Los turnos de conversaciones distintas corren en paralelo (un thread por
turno); los de una misma conversación se serializan con un lock por clave.
Los locks se crean bajo demanda y se descartan cuando nadie los usa.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class TurnBusyError(RuntimeError):
    """No se pudo tomar el lock de la conversación dentro del timeout."""


class ConversationLocks:
    """Registro de locks por conversation id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Toma el lock de ``key`` durante el bloque ``with``.

        Se libera en cualquier salida (éxito o excepción).

        Raises:
            TurnBusyError: si ``timeout`` vence sin obtener el lock
        """
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1

        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        try:
            if not acquired:
                logger.warning(f"[{key}] lock ocupado tras {timeout}s")
                raise TurnBusyError(key)
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        """Cantidad de conversaciones con un turno en curso o esperando."""
        with self._guard:
            return len(self._locks)
