"""Composition root del servicio.

Construye una sola vez store, cache, normalizer, servicio de ingesta,
dispatcher, reconciliation, recovery y transporte, y los expone como una
fachada. Nada se accede por globals: FastAPI lo guarda en
``app.state.context`` y el CLI lo construye directamente.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from common.config import Settings, get_settings
from common.db import build_engine

from .core.domain.models import RawMessageLogEntry, Reading, RetainedMessage, TransportMeta
from .core.errors import StoreUnavailable
from .infrastructure.persistence.base import DurableStore, MessageLogQuery, ReadingStatistics
from .infrastructure.persistence.sql_store import SqlStore
from .ingestion.dispatcher import IngestionDispatcher
from .ingestion.normalizer import RawPayload, TelemetryNormalizer
from .ingestion.service import IngestionService, IngestOutcome
from .reconciliation.engine import LatestValue, ReconciliationEngine
from .reconciliation.grouping import Bucket
from .recovery.processor import RecoveryProcessor, RecoveryReport
from .recovery.sweeper import RecoverySweeper
from .state.retained_cache import RetainedStateCache
from .transports.base import TelemetryTransport
from .transports.factory import create_transport

logger = logging.getLogger(__name__)


class AppContext:
    def __init__(
        self,
        settings: Settings,
        store: DurableStore,
        cache: RetainedStateCache,
        normalizer: TelemetryNormalizer,
        service: IngestionService,
        dispatcher: IngestionDispatcher,
        reconciliation: ReconciliationEngine,
        recovery: RecoveryProcessor,
        sweeper: RecoverySweeper,
        transport: TelemetryTransport,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.normalizer = normalizer
        self.service = service
        self.dispatcher = dispatcher
        self.reconciliation = reconciliation
        self.recovery = recovery
        self.sweeper = sweeper
        self.transport = transport
        self._started = False

    # Ciclo de vida

    def start(self) -> None:
        """Schema → workers → recovery de arranque → transporte → sweeper."""
        if self._started:
            return
        if self.settings.db_auto_create:
            try:
                self.store.create_schema()
            except StoreUnavailable as e:
                logger.error("[CONTEXT] Schema creation failed, continuing: %s", e)

        self.dispatcher.start()

        # Cold start: reconstruye la cache antes de aceptar tráfico en vivo.
        report = self.recovery.recover()
        logger.info("[CONTEXT] Startup recovery completed=%s", report.completed)

        self.transport.start()
        self.sweeper.start()
        self._started = True
        logger.info("[CONTEXT] Started transport=%s", self.transport.transport_name)

    def stop(self) -> None:
        if not self._started:
            return
        self.transport.stop()
        self.sweeper.stop()
        self.dispatcher.stop(drain=True)
        self._started = False
        logger.info("[CONTEXT] Stopped")

    @property
    def started(self) -> bool:
        return self._started

    # Fachada

    def ingest(self, topic: str, raw_payload: RawPayload, meta: Optional[TransportMeta] = None) -> IngestOutcome:
        return self.service.ingest(topic, raw_payload, meta)

    def get_latest(self, topic_filter: Optional[str] = None) -> LatestValue:
        return self.reconciliation.latest(topic_filter)

    def get_grouped(
        self,
        window_start: datetime,
        window_end: datetime,
        bucket_size: int,
        bucket_unit: str,
    ) -> List[Bucket]:
        return self.reconciliation.grouped(window_start, window_end, bucket_size, bucket_unit)

    def get_readings(self, window_start: datetime, window_end: datetime, limit: int = 1000) -> List[Reading]:
        return self.reconciliation.readings(window_start, window_end, limit)

    def get_recent(self, count: int = 24) -> List[Reading]:
        return self.reconciliation.recent(count)

    def get_statistics(self, days: int = 7) -> ReadingStatistics:
        return self.reconciliation.statistics(days)

    def trigger_recovery(self) -> RecoveryReport:
        return self.recovery.recover()

    def get_retained_snapshot(self) -> List[RetainedMessage]:
        return self.cache.all()

    def get_message_logs(self, query: MessageLogQuery) -> List[RawMessageLogEntry]:
        return self.store.query_message_logs(query)

    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> bool:
        return self.transport.publish(topic, payload, qos=qos, retain=retain)

    def status(self) -> dict:
        return {
            "transport": self.transport.stats,
            "dispatcher": self.dispatcher.metrics,
            "ingest": self.service.stats,
            "retained_topics": len(self.cache),
            "recovery": {
                "sweeper_running": self.sweeper.running,
                "interval_seconds": self.settings.recovery_interval_seconds,
                "last_report": self.recovery.last_report,
            },
        }


def build_context(
    settings: Optional[Settings] = None,
    *,
    store: Optional[DurableStore] = None,
    transport: Optional[TelemetryTransport] = None,
) -> AppContext:
    """Arma el grafo de dependencias. ``store``/``transport`` se inyectan en tests."""
    settings = settings or get_settings()

    if store is None:
        store = SqlStore(build_engine(settings))

    cache = RetainedStateCache()
    normalizer = TelemetryNormalizer(
        default_device_id=settings.default_device_id,
        default_location=settings.default_location,
    )
    service = IngestionService(store, cache, normalizer)
    dispatcher = IngestionDispatcher(
        service,
        max_queue_size=settings.ingest_queue_size,
        num_workers=settings.ingest_num_workers,
    )
    reconciliation = ReconciliationEngine(
        cache,
        store,
        canonical_topic=settings.canonical_topic,
        grouped_limit=settings.grouped_readings_limit,
        default_location=settings.default_location,
    )
    recovery = RecoveryProcessor(
        store,
        cache,
        service,
        normalizer,
        batch_size=settings.recovery_batch_size,
    )
    sweeper = RecoverySweeper(recovery, interval_seconds=settings.recovery_interval_seconds)

    if transport is None:
        transport = create_transport(settings, dispatcher.submit)

    return AppContext(
        settings=settings,
        store=store,
        cache=cache,
        normalizer=normalizer,
        service=service,
        dispatcher=dispatcher,
        reconciliation=reconciliation,
        recovery=recovery,
        sweeper=sweeper,
        transport=transport,
    )
