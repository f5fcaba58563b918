"""Modelos de dominio para telemetría ambiental.

Contratos que fluyen por todo el pipeline:
Transport → Normalizer → Store / RetainedStateCache → Reconciliation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


TEMPERATURE_RANGE = (-50.0, 100.0)
HUMIDITY_RANGE = (0.0, 100.0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normaliza un datetime a UTC aware (naive se asume UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def offset_minutes(value: Optional[datetime]) -> Optional[int]:
    """Offset UTC de un datetime aware en minutos; None si es naive."""
    if value is None or value.tzinfo is None:
        return None
    offset = value.utcoffset()
    if offset is None:
        return None
    return int(offset.total_seconds() // 60)


class MessageType(str, Enum):
    SENSOR_DATA = "sensor_data"
    STATUS = "status"
    COMMAND = "command"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TransportMeta:
    """Metadata que entrega cualquier transporte junto al payload."""

    qos: int = 0
    retain: bool = False
    received_at: datetime = field(default_factory=utcnow)
    client_id: Optional[str] = None


@dataclass(frozen=True)
class Reading:
    """Lectura de sensor - modelo canónico de dominio.

    Inmutable una vez creada. ``id`` lo asigna el store al persistir.
    """

    temperature: float
    humidity: float
    device_id: str
    location: str
    timestamp: datetime
    received_at: datetime
    id: Optional[int] = None
    source_entry_id: Optional[int] = None
    # Offset original del timestamp del dispositivo; None = UTC.
    utc_offset_minutes: Optional[int] = None

    @property
    def natural_key(self) -> tuple:
        return (self.device_id, self.timestamp)

    @property
    def local_timestamp(self) -> datetime:
        """Timestamp en la zona horaria que reportó el dispositivo."""
        if self.utc_offset_minutes is None:
            return self.timestamp
        return self.timestamp.astimezone(timezone(timedelta(minutes=self.utc_offset_minutes)))


@dataclass(frozen=True)
class RetainedMessage:
    """Último mensaje conocido por topic."""

    topic: str
    payload: str
    qos: int
    timestamp: datetime
    device_id: Optional[str]
    updated_at: datetime


@dataclass(frozen=True)
class RawMessageLogEntry:
    """Registro append-only de cada mensaje recibido, válido o no."""

    fingerprint: str
    topic: str
    payload: str
    qos: int
    retain: bool
    timestamp: datetime
    received_at: datetime
    device_id: Optional[str]
    message_type: MessageType
    client_id: Optional[str] = None
    processed: bool = False
    id: Optional[int] = None

    def transport_meta(self) -> TransportMeta:
        return TransportMeta(
            qos=self.qos,
            retain=self.retain,
            received_at=self.received_at,
            client_id=self.client_id,
        )
