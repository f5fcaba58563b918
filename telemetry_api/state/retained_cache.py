"""Cache en memoria del último mensaje retenido por topic.

Vista derivada y reconstruible: todo lo que contiene se puede recuperar
desde la tabla retained_messages del store. Last-write-wins por orden de
llegada, igual que los retained del broker.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from ..core.domain.models import RetainedMessage


class RetainedStateCache:
    """Mapa topic → RetainedMessage, thread-safe."""

    def __init__(self) -> None:
        self._entries: Dict[str, RetainedMessage] = {}
        self._lock = threading.Lock()
        self._topic_locks: Dict[str, threading.RLock] = {}

    def get(self, topic: str) -> Optional[RetainedMessage]:
        with self._lock:
            return self._entries.get(topic)

    def put(self, topic: str, message: RetainedMessage) -> bool:
        """Reemplaza la entrada del topic. Devuelve True si cambió algo."""
        with self._lock:
            current = self._entries.get(topic)
            self._entries[topic] = message
            return current != message

    def all(self) -> List[RetainedMessage]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda m: m.topic)

    def topic_lock(self, topic: str) -> threading.RLock:
        """Lock para read-modify-write de un topic (upsert en store + put)."""
        with self._lock:
            lock = self._topic_locks.get(topic)
            if lock is None:
                lock = self._topic_locks[topic] = threading.RLock()
            return lock

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, topic: str) -> bool:
        with self._lock:
            return topic in self._entries
