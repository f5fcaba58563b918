"""Fixtures compartidos: store SQLite temporal y contexto aislado por test."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine

from common.config import Settings
from telemetry_api.context import build_context
from telemetry_api.core.domain.models import TransportMeta
from telemetry_api.infrastructure.persistence.sql_store import SqlStore
from telemetry_api.ingestion.normalizer import TelemetryNormalizer
from telemetry_api.ingestion.service import IngestionService
from telemetry_api.reconciliation.engine import ReconciliationEngine
from telemetry_api.recovery.processor import RecoveryProcessor
from telemetry_api.state.retained_cache import RetainedStateCache
from telemetry_api.transports.null import NullTransport


T0 = datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'telemetry.db'}",
        recovery_interval_seconds=0,
        ingest_num_workers=2,
        ingest_queue_size=100,
    )


@pytest.fixture
def store(tmp_path) -> SqlStore:
    """Store SQLite en archivo temporal (compartido entre threads)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'store.db'}",
        connect_args={"timeout": 10, "check_same_thread": False},
    )
    s = SqlStore(engine)
    s.create_schema()
    yield s
    engine.dispose()


@pytest.fixture
def cache() -> RetainedStateCache:
    return RetainedStateCache()


@pytest.fixture
def normalizer() -> TelemetryNormalizer:
    return TelemetryNormalizer(default_device_id="SHT20-001", default_location="Default Room")


@pytest.fixture
def service(store, cache, normalizer) -> IngestionService:
    return IngestionService(store, cache, normalizer)


@pytest.fixture
def engine(cache, store) -> ReconciliationEngine:
    return ReconciliationEngine(cache, store, canonical_topic="sht20/data")


@pytest.fixture
def recovery(store, cache, service, normalizer) -> RecoveryProcessor:
    return RecoveryProcessor(store, cache, service, normalizer, batch_size=1000)


@pytest.fixture
def retained_meta():
    """Metadata de un mensaje retenido con hora de llegada fija."""

    def _make(received_at=T0, qos=1, client_id="sensor-monitor"):
        return TransportMeta(qos=qos, retain=True, received_at=received_at, client_id=client_id)

    return _make


@pytest.fixture
def context(settings, store):
    """AppContext completo con transporte nulo, sin arrancar."""
    ctx = build_context(settings, store=store, transport=NullTransport())
    yield ctx
    ctx.stop()


@pytest.fixture
def reading_count(store):
    """Cantidad total de lecturas persistidas."""

    def _count() -> int:
        return store.query_statistics(datetime(1970, 1, 1, tzinfo=timezone.utc)).count

    return _count
