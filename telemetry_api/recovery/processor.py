"""Recovery processor.

Reconstruye la cache de retained desde el store y reprocesa las entradas
del log crudo que quedaron con processed=false (crash, store caído,
timeout). Idempotente: correrlo dos veces sin datos nuevos no cambia nada.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.domain.models import MessageType, RawMessageLogEntry, RetainedMessage, TransportMeta, utcnow
from ..core.errors import DuplicateReading, StoreUnavailable
from ..infrastructure.persistence.base import DurableStore
from ..ingestion.normalizer import TelemetryNormalizer
from ..ingestion.service import IngestionService, IngestStatus
from ..state.retained_cache import RetainedStateCache

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


@dataclass
class RecoveryReport:
    """Resumen de una corrida de recuperación."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    retained_loaded: int = 0
    cache_updates: int = 0
    backfilled: int = 0
    processed: int = 0
    rejected: int = 0
    duplicates: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: list = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return not self.cancelled and not self.errors and self.finished_at is not None

    def __str__(self) -> str:
        return (
            f"retained={self.retained_loaded} cache_updates={self.cache_updates} "
            f"backfilled={self.backfilled} processed={self.processed} rejected={self.rejected} "
            f"duplicates={self.duplicates} failed={self.failed} completed={self.completed}"
        )


class RecoveryProcessor:
    def __init__(
        self,
        store: DurableStore,
        cache: RetainedStateCache,
        service: IngestionService,
        normalizer: TelemetryNormalizer,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self._store = store
        self._cache = cache
        self._service = service
        self._normalizer = normalizer
        self._batch_size = batch_size
        self._run_lock = threading.Lock()
        self._last_report: Optional[RecoveryReport] = None

    @property
    def last_report(self) -> Optional[RecoveryReport]:
        return self._last_report

    def recover(self, cancel_event: Optional[threading.Event] = None) -> RecoveryReport:
        """Corre ambos pasos. Las corridas concurrentes se serializan.

        Args:
            cancel_event: Si se activa, la corrida termina antes del siguiente ítem
        """
        with self._run_lock:
            report = RecoveryReport()
            logger.info("[RECOVERY] Starting recovery batch_size=%d", self._batch_size)

            self._replay_retained(report, cancel_event)
            if not report.cancelled:
                self._replay_unprocessed(report, cancel_event)

            report.finished_at = utcnow()
            self._last_report = report
            if report.completed:
                logger.info("[RECOVERY] Done. %s", report)
            else:
                logger.warning("[RECOVERY] Finished incomplete. %s errors=%s", report, report.errors)
            return report

    # Paso 1: retained → cache (+ backfill de lecturas faltantes)

    def _replay_retained(self, report: RecoveryReport, cancel_event: Optional[threading.Event]) -> None:
        try:
            messages = self._store.query_retained_messages()
        except StoreUnavailable as e:
            logger.error("[RECOVERY] Could not load retained messages: %s", e)
            report.errors.append(f"retained: {e}")
            return

        for message in messages:
            if _cancelled(cancel_event):
                report.cancelled = True
                logger.info("[RECOVERY] Cancelled during retained replay")
                return
            report.retained_loaded += 1

            with self._cache.topic_lock(message.topic):
                current = self._cache.get(message.topic)
                # Nunca retroceder: el camino vivo pudo escribir algo más nuevo.
                if current is None or current.updated_at <= message.updated_at:
                    if self._cache.put(message.topic, message):
                        report.cache_updates += 1

            try:
                if self._backfill(message):
                    report.backfilled += 1
            except StoreUnavailable as e:
                report.failed += 1
                logger.warning("[RECOVERY] Backfill failed topic=%s: %s", message.topic, e)

    def _backfill(self, message: RetainedMessage) -> bool:
        """Persiste la lectura de un retained si todavía no existe."""
        meta = TransportMeta(qos=message.qos, retain=True, received_at=message.updated_at)
        result = self._normalizer.normalize(
            message.payload,
            message.topic,
            meta,
            fallback_timestamp=message.timestamp,
        )
        if result.message_type is not MessageType.SENSOR_DATA or not result.accepted:
            return False

        reading = result.reading
        if self._store.reading_exists(reading.device_id, reading.timestamp):
            return False
        try:
            saved = self._store.insert_reading(reading)
        except DuplicateReading:
            return False
        logger.info(
            "[RECOVERY] Backfilled reading id=%s device=%s ts=%s from retained topic=%s",
            saved.id,
            saved.device_id,
            saved.timestamp.isoformat(),
            message.topic,
        )
        return True

    # Paso 2: log crudo sin procesar

    def _replay_unprocessed(self, report: RecoveryReport, cancel_event: Optional[threading.Event]) -> None:
        try:
            entries = self._store.query_unprocessed(self._batch_size)
        except StoreUnavailable as e:
            logger.error("[RECOVERY] Could not load unprocessed log entries: %s", e)
            report.errors.append(f"unprocessed: {e}")
            return

        if entries:
            logger.info("[RECOVERY] Replaying %d unprocessed entries", len(entries))

        for entry in entries:
            if _cancelled(cancel_event):
                report.cancelled = True
                logger.info("[RECOVERY] Cancelled during log replay")
                return
            self._replay_entry(entry, report)

    def _replay_entry(self, entry: RawMessageLogEntry, report: RecoveryReport) -> None:
        try:
            outcome = self._service.process_entry(entry)
        except Exception:
            # Mensaje venenoso: se descarta para no bloquear la recuperación.
            logger.exception("[RECOVERY] Unexpected error on entry id=%s, marking as rejected", entry.id)
            report.rejected += 1
            try:
                self._store.mark_processed(entry.id)
            except StoreUnavailable as e:
                logger.warning("[RECOVERY] Could not mark entry id=%s: %s", entry.id, e)
            return

        if outcome.status is IngestStatus.REJECTED:
            report.rejected += 1
        elif outcome.status is IngestStatus.DUPLICATE:
            report.duplicates += 1
        elif outcome.status is IngestStatus.RETRY:
            report.failed += 1
        else:
            report.processed += 1


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()
