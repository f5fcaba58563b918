"""Normalización de payloads crudos a lecturas canónicas.

Función pura: no toca el store ni la cache. Los efectos secundarios
(log crudo, persistencia, retained) viven en ``service.py``.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Union

import orjson

from ..core.domain.models import MessageType, Reading, TransportMeta, as_utc, offset_minutes
from ..core.errors import RejectKind
from .topics import classify_message_type, extract_device_id
from .validators import parse_timestamp, validate_telemetry

logger = logging.getLogger(__name__)

RawPayload = Union[bytes, bytearray, str, dict, list, None]


def payload_to_text(raw_payload: RawPayload) -> str:
    """Representación textual estable del payload, para log y retained."""
    if raw_payload is None:
        return ""
    if isinstance(raw_payload, (bytes, bytearray)):
        return bytes(raw_payload).decode("utf-8", errors="replace")
    if isinstance(raw_payload, str):
        return raw_payload
    try:
        return orjson.dumps(raw_payload).decode("utf-8")
    except TypeError:
        return str(raw_payload)


def decode_payload(text: str) -> Optional[dict]:
    """Decodifica JSON; None si no es un objeto JSON."""
    try:
        parsed = orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def message_fingerprint(topic: str, payload_text: str, meta: TransportMeta) -> str:
    """Identidad de la entrada del log crudo.

    Dos entregas con mismo topic, payload y metadata son la misma entrada.
    """
    received_at = as_utc(meta.received_at)
    parts = [
        topic,
        payload_text,
        str(int(meta.qos or 0)),
        "1" if meta.retain else "0",
        received_at.isoformat() if received_at else "",
        meta.client_id or "",
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()[:40]


@dataclass(frozen=True)
class NormalizationResult:
    """Resultado de normalizar un mensaje.

    ``reading`` presente → aceptado. ``reject_kind`` presente → rechazado.
    Ninguno de los dos → mensaje no-telemetría (status/command) que solo se registra.
    """

    topic: str
    payload_text: str
    message_type: MessageType
    device_id: str
    timestamp: datetime
    received_at: datetime
    reading: Optional[Reading] = None
    reject_kind: Optional[RejectKind] = None
    reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.reading is not None

    @property
    def rejected(self) -> bool:
        return self.reject_kind is not None


class TelemetryNormalizer:
    """Convierte payloads de cualquier transporte en ``Reading``."""

    def __init__(self, default_device_id: str = "SHT20-001", default_location: str = "Default Room"):
        self.default_device_id = default_device_id
        self.default_location = default_location

    def resolve_device_id(self, topic: str, parsed: Optional[dict]) -> str:
        if parsed:
            candidate = parsed.get("deviceId") or parsed.get("device_id")
            if candidate is not None and str(candidate).strip():
                return str(candidate).strip()
        return extract_device_id(topic) or self.default_device_id

    def normalize(
        self,
        raw_payload: RawPayload,
        topic: str,
        meta: TransportMeta,
        *,
        fallback_timestamp: Optional[datetime] = None,
    ) -> NormalizationResult:
        """Valida y convierte un payload crudo.

        Args:
            raw_payload: JSON object, str o bytes tal como llegó
            topic: Topic/canal del mensaje
            meta: Metadata del transporte
            fallback_timestamp: Instante a usar si el payload no trae timestamp
                (por defecto, la hora de llegada)
        """
        text = payload_to_text(raw_payload)
        received_at = as_utc(meta.received_at)
        fallback = as_utc(fallback_timestamp) or received_at

        parsed = raw_payload if isinstance(raw_payload, dict) else decode_payload(text)
        if parsed is None:
            logger.info("[NORMALIZER] Non-JSON payload on topic=%s, logging as unknown", topic)
            return NormalizationResult(
                topic=topic,
                payload_text=text,
                message_type=MessageType.UNKNOWN,
                device_id=extract_device_id(topic) or self.default_device_id,
                timestamp=fallback,
                received_at=received_at,
                reject_kind=RejectKind.PARSE_FAILURE,
                reason="payload is not a JSON object",
            )

        message_type = classify_message_type(topic, parsed)
        device_id = self.resolve_device_id(topic, parsed)

        if message_type is not MessageType.SENSOR_DATA:
            embedded = parse_timestamp(parsed.get("timestamp"))
            result = NormalizationResult(
                topic=topic,
                payload_text=text,
                message_type=message_type,
                device_id=device_id,
                timestamp=as_utc(embedded) or fallback,
                received_at=received_at,
            )
            if message_type is MessageType.UNKNOWN:
                return replace(result, reject_kind=RejectKind.UNSUPPORTED, reason="unrecognised message type")
            return result

        validation = validate_telemetry(dict(parsed))
        if not validation.valid:
            return NormalizationResult(
                topic=topic,
                payload_text=text,
                message_type=message_type,
                device_id=device_id,
                timestamp=fallback,
                received_at=received_at,
                reject_kind=RejectKind.VALIDATION_REJECTED,
                reason=validation.error,
            )

        payload = validation.payload
        timestamp = as_utc(payload.timestamp) or fallback
        reading = Reading(
            temperature=payload.temperature,
            humidity=payload.humidity,
            device_id=payload.device_id or device_id,
            location=payload.location or self.default_location,
            timestamp=timestamp,
            received_at=received_at,
            utc_offset_minutes=offset_minutes(payload.timestamp),
        )
        return NormalizationResult(
            topic=topic,
            payload_text=text,
            message_type=message_type,
            device_id=reading.device_id,
            timestamp=timestamp,
            received_at=received_at,
            reading=reading,
            warnings=validation.warnings,
        )

