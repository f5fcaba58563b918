"""DurableStore - Interface del almacenamiento durable.

Tabla append-only de lecturas, tabla key-value de retained messages y log
de todos los mensajes crudos. Cualquier fallo transitorio se reporta como
``StoreUnavailable``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ...core.domain.models import MessageType, RawMessageLogEntry, Reading, RetainedMessage


@dataclass(frozen=True)
class ReadingStatistics:
    """Agregados de lecturas en un periodo."""

    count: int
    avg_temperature: Optional[float]
    avg_humidity: Optional[float]
    min_temperature: Optional[float]
    max_temperature: Optional[float]
    min_humidity: Optional[float]
    max_humidity: Optional[float]


@dataclass(frozen=True)
class MessageLogQuery:
    limit: int = 100
    offset: int = 0
    topic: Optional[str] = None
    device_id: Optional[str] = None
    message_type: Optional[MessageType] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class DurableStore(ABC):
    """Contrato que consumen normalizer, reconciliation y recovery."""

    @abstractmethod
    def create_schema(self) -> None:
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass

    # Lecturas

    @abstractmethod
    def insert_reading(self, reading: Reading) -> Reading:
        """Persiste una lectura y la devuelve con ``id`` asignado.

        Raises:
            DuplicateReading: si ya existe lectura para ``source_entry_id``
            StoreUnavailable: fallo transitorio
        """

    @abstractmethod
    def find_reading_for_entry(self, entry_id: int) -> Optional[Reading]:
        pass

    @abstractmethod
    def reading_exists(self, device_id: str, timestamp: datetime) -> bool:
        """Busca por clave natural (device_id, timestamp)."""

    @abstractmethod
    def query_latest_reading(self) -> Optional[Reading]:
        pass

    @abstractmethod
    def query_readings_since(
        self,
        since: datetime,
        limit: int,
        until: Optional[datetime] = None,
    ) -> List[Reading]:
        """Lecturas con timestamp en [since, until], orden ascendente.

        Si hay más de ``limit``, se conservan las más recientes.
        """

    @abstractmethod
    def query_recent_readings(self, count: int) -> List[Reading]:
        """Últimas ``count`` lecturas, orden ascendente."""

    @abstractmethod
    def query_statistics(self, since: datetime) -> ReadingStatistics:
        pass

    # Retained messages

    @abstractmethod
    def upsert_retained_message(self, message: RetainedMessage) -> bool:
        """Inserta o actualiza por topic.

        Returns:
            False si ya había una fila con ``updated_at`` más reciente
        """

    @abstractmethod
    def get_retained_message(self, topic: str) -> Optional[RetainedMessage]:
        pass

    @abstractmethod
    def query_retained_messages(self) -> List[RetainedMessage]:
        """Todos los retained, orden ascendente por ``updated_at``."""

    # Log crudo

    @abstractmethod
    def append_raw_log(self, entry: RawMessageLogEntry) -> RawMessageLogEntry:
        """Agrega la entrada al log.

        Si ya existe una entrada con el mismo fingerprint, la devuelve tal
        cual (con su ``processed`` actual) en lugar de duplicarla.
        """

    @abstractmethod
    def get_raw_log(self, entry_id: int) -> Optional[RawMessageLogEntry]:
        pass

    @abstractmethod
    def mark_processed(self, entry_id: int) -> bool:
        """Compare-and-swap processed false → true.

        Returns:
            True si esta llamada hizo la transición
        """

    @abstractmethod
    def query_unprocessed(self, limit: int) -> List[RawMessageLogEntry]:
        """Entradas con processed=false, orden ascendente por timestamp."""

    @abstractmethod
    def query_message_logs(self, query: MessageLogQuery) -> List[RawMessageLogEntry]:
        """Log paginado, más recientes primero."""
