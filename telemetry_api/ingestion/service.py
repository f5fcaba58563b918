"""Servicio de ingesta: punto de entrada único de todos los transportes.

Flujo por mensaje:
  append log crudo (processed=false)
  → normalizar + persistir lectura
  → upsert retained + cache (si retain)
  → marcar processed

Un crash entre pasos deja la entrada con processed=false; la recuperación
la reintenta y el unique de ``source_entry_id`` evita la doble lectura.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from ..core.domain.models import (
    RawMessageLogEntry,
    Reading,
    RetainedMessage,
    TransportMeta,
    as_utc,
)
from ..core.errors import DuplicateReading, StoreUnavailable
from ..infrastructure.persistence.base import DurableStore
from ..state.retained_cache import RetainedStateCache
from .locks import KeyedLock
from .normalizer import NormalizationResult, RawPayload, TelemetryNormalizer, message_fingerprint

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    LOGGED = "logged"
    REJECTED = "rejected"
    RETRY = "retry"


@dataclass(frozen=True)
class IngestOutcome:
    """Resultado estructurado que recibe el transporte."""

    status: IngestStatus
    reason: Optional[str] = None
    reading_id: Optional[int] = None
    entry_id: Optional[int] = None
    # Problemas no fatales: alias duplicados, timestamp ilegible
    warnings: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.status in (IngestStatus.ACCEPTED, IngestStatus.DUPLICATE, IngestStatus.LOGGED)

    @property
    def retryable(self) -> bool:
        return self.status is IngestStatus.RETRY


class IngestStats:
    """Contadores del servicio de ingesta."""

    def __init__(self):
        self._lock = threading.Lock()
        self.received = 0
        self.accepted = 0
        self.rejected = 0
        self.logged = 0
        self.duplicates = 0
        self.retries = 0

    def record(self, outcome: IngestOutcome) -> None:
        with self._lock:
            if outcome.status is IngestStatus.ACCEPTED:
                self.accepted += 1
            elif outcome.status is IngestStatus.REJECTED:
                self.rejected += 1
            elif outcome.status is IngestStatus.LOGGED:
                self.logged += 1
            elif outcome.status is IngestStatus.DUPLICATE:
                self.duplicates += 1
            else:
                self.retries += 1

    def mark_received(self) -> None:
        with self._lock:
            self.received += 1

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "accepted": self.accepted,
                "rejected": self.rejected,
                "logged": self.logged,
                "duplicates": self.duplicates,
                "retries": self.retries,
            }


class IngestionService:
    """Normaliza, registra y persiste cada mensaje entrante de forma idempotente."""

    def __init__(
        self,
        store: DurableStore,
        cache: RetainedStateCache,
        normalizer: TelemetryNormalizer,
    ):
        self._store = store
        self._cache = cache
        self._normalizer = normalizer
        self._entry_locks = KeyedLock()
        self._stats = IngestStats()

    @property
    def normalizer(self) -> TelemetryNormalizer:
        return self._normalizer

    @property
    def stats(self) -> dict:
        return self._stats.to_dict()

    def ingest(self, topic: str, raw_payload: RawPayload, meta: Optional[TransportMeta] = None) -> IngestOutcome:
        """Ingesta un mensaje de cualquier transporte.

        Nunca lanza por payloads inválidos ni por fallos del store: todo se
        refleja en el ``IngestOutcome``.
        """
        meta = _utc_meta(meta)
        self._stats.mark_received()

        result = self._normalizer.normalize(raw_payload, topic, meta)
        entry = _log_entry(topic, result, meta)

        with self._entry_locks.hold(entry.fingerprint):
            try:
                entry = self._store.append_raw_log(entry)
            except StoreUnavailable as e:
                logger.warning("[INGEST] Raw log append failed topic=%s: %s", topic, e)
                return self._finish(IngestOutcome(IngestStatus.RETRY, reason="store unavailable, retry later"))

            if entry.processed:
                return self._finish(self._duplicate(entry))

            outcome = self._apply(entry, result)

        return self._finish(outcome)

    def log_pending(
        self,
        topic: str,
        raw_payload: RawPayload,
        meta: Optional[TransportMeta] = None,
    ) -> Optional[RawMessageLogEntry]:
        """Solo registra el mensaje en el log crudo (processed=false).

        Para cuando no hay capacidad de procesarlo ahora: la recuperación
        periódica lo toma después. None si el store tampoco está disponible.
        """
        meta = _utc_meta(meta)
        result = self._normalizer.normalize(raw_payload, topic, meta)
        entry = _log_entry(topic, result, meta)

        with self._entry_locks.hold(entry.fingerprint):
            try:
                entry = self._store.append_raw_log(entry)
            except StoreUnavailable as e:
                logger.error("[INGEST] Could not log pending message topic=%s: %s", topic, e)
                return None

        logger.info("[INGEST] Message logged for recovery entry=%s topic=%s", entry.id, topic)
        return entry

    def process_entry(self, entry: RawMessageLogEntry) -> IngestOutcome:
        """Procesa una entrada ya existente en el log (camino de recuperación)."""
        with self._entry_locks.hold(entry.fingerprint):
            try:
                current = self._store.get_raw_log(entry.id)
            except StoreUnavailable as e:
                logger.warning("[INGEST] Could not reload entry id=%s: %s", entry.id, e)
                return IngestOutcome(IngestStatus.RETRY, reason="store unavailable, retry later", entry_id=entry.id)

            if current is None or current.processed:
                return self._duplicate(current or entry)

            result = self._normalizer.normalize(
                current.payload,
                current.topic,
                current.transport_meta(),
                fallback_timestamp=current.timestamp,
            )
            return self._apply(current, result)

    def _apply(self, entry: RawMessageLogEntry, result: NormalizationResult) -> IngestOutcome:
        try:
            if result.rejected:
                self._store.mark_processed(entry.id)
                logger.warning(
                    "[INGEST] Rejected entry=%s topic=%s kind=%s reason=%s",
                    entry.id,
                    entry.topic,
                    result.reject_kind.value,
                    result.reason,
                )
                return IngestOutcome(IngestStatus.REJECTED, reason=result.reason, entry_id=entry.id)

            if not result.accepted:
                # status / command: solo se registra (y se retiene si corresponde)
                if entry.retain:
                    self._retain(entry, result)
                self._store.mark_processed(entry.id)
                logger.info("[INGEST] Logged %s message topic=%s", result.message_type.value, entry.topic)
                return IngestOutcome(IngestStatus.LOGGED, entry_id=entry.id)

            if result.warnings:
                logger.warning(
                    "[INGEST] Accepted with warnings entry=%s topic=%s: %s",
                    entry.id,
                    entry.topic,
                    "; ".join(result.warnings),
                )
            reading = self._persist_reading(entry, result.reading)
            if entry.retain:
                self._retain(entry, result)
            self._store.mark_processed(entry.id)
            return IngestOutcome(
                IngestStatus.ACCEPTED,
                reading_id=reading.id,
                entry_id=entry.id,
                warnings=tuple(result.warnings),
            )

        except StoreUnavailable as e:
            logger.warning(
                "[INGEST] Store unavailable for entry=%s topic=%s, left for recovery: %s",
                entry.id,
                entry.topic,
                e,
            )
            return IngestOutcome(IngestStatus.RETRY, reason="store unavailable, retry later", entry_id=entry.id)

    def _persist_reading(self, entry: RawMessageLogEntry, reading: Reading) -> Reading:
        try:
            return self._store.insert_reading(replace(reading, source_entry_id=entry.id))
        except DuplicateReading:
            # Persistida en un intento previo que no llegó a marcar processed.
            existing = self._store.find_reading_for_entry(entry.id)
            logger.info("[INGEST] Reading for entry=%s already persisted, reusing", entry.id)
            if existing is None:
                raise StoreUnavailable("find_reading_for_entry")
            return existing

    def _retain(self, entry: RawMessageLogEntry, result: NormalizationResult) -> None:
        message = RetainedMessage(
            topic=entry.topic,
            payload=entry.payload,
            qos=entry.qos,
            timestamp=result.timestamp,
            device_id=result.device_id,
            updated_at=entry.received_at,
        )
        with self._cache.topic_lock(entry.topic):
            if self._store.upsert_retained_message(message):
                self._cache.put(entry.topic, message)
            else:
                logger.debug("[INGEST] Stale retained message ignored topic=%s", entry.topic)

    def _duplicate(self, entry: RawMessageLogEntry) -> IngestOutcome:
        reading_id = None
        if entry.id is not None:
            try:
                existing = self._store.find_reading_for_entry(entry.id)
                reading_id = existing.id if existing else None
            except StoreUnavailable:
                reading_id = None
        logger.debug("[INGEST] Duplicate entry=%s topic=%s suppressed", entry.id, entry.topic)
        return IngestOutcome(
            IngestStatus.DUPLICATE,
            reason="already processed",
            reading_id=reading_id,
            entry_id=entry.id,
        )

    def _finish(self, outcome: IngestOutcome) -> IngestOutcome:
        self._stats.record(outcome)
        return outcome


def _utc_meta(meta: Optional[TransportMeta]) -> TransportMeta:
    meta = meta or TransportMeta()
    return replace(meta, received_at=as_utc(meta.received_at))


def _log_entry(topic: str, result: NormalizationResult, meta: TransportMeta) -> RawMessageLogEntry:
    return RawMessageLogEntry(
        fingerprint=message_fingerprint(topic, result.payload_text, meta),
        topic=topic,
        payload=result.payload_text,
        qos=int(meta.qos or 0),
        retain=bool(meta.retain),
        timestamp=result.timestamp,
        received_at=meta.received_at,
        device_id=result.device_id,
        message_type=result.message_type,
        client_id=meta.client_id,
    )
