"""Reconciliation engine: resuelve el "último valor" visible.

Fuentes, en orden de precedencia:
1. RetainedStateCache: último valor conocido del broker
2. DurableStore: última lectura persistida
3. Default en cero (source=none): arranque en frío, no es un error
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..core.domain.models import Reading, RetainedMessage, as_utc, utcnow
from ..infrastructure.persistence.base import DurableStore, ReadingStatistics
from ..ingestion.normalizer import decode_payload
from ..ingestion.topics import topic_matches
from ..ingestion.validators import validate_telemetry
from ..state.retained_cache import RetainedStateCache
from .grouping import Bucket, floor_to_bucket, group_readings

logger = logging.getLogger(__name__)

DEFAULT_GROUPED_LIMIT = 5000


class LatestSource(str, Enum):
    RETAINED_CACHE = "retained_cache"
    DURABLE_STORE = "durable_store"
    NONE = "none"


@dataclass(frozen=True)
class LatestValue:
    temperature: float
    humidity: float
    timestamp: Optional[datetime]
    source: LatestSource
    topic: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def empty(cls) -> "LatestValue":
        return cls(temperature=0.0, humidity=0.0, timestamp=None, source=LatestSource.NONE)


class ReconciliationEngine:
    def __init__(
        self,
        cache: RetainedStateCache,
        store: DurableStore,
        canonical_topic: str = "sht20/data",
        grouped_limit: int = DEFAULT_GROUPED_LIMIT,
        default_location: Optional[str] = None,
    ):
        self._cache = cache
        self._store = store
        self._canonical_topic = canonical_topic
        self._grouped_limit = grouped_limit
        self._default_location = default_location

    def latest(self, topic_filter: Optional[str] = None) -> LatestValue:
        """Último valor conocido.

        Raises:
            StoreUnavailable: solo si la cache no tiene valor y el store falla
        """
        cached = self._latest_from_cache(topic_filter)
        if cached is not None:
            return cached

        reading = self._store.query_latest_reading()
        if reading is not None:
            return LatestValue(
                temperature=reading.temperature,
                humidity=reading.humidity,
                timestamp=reading.timestamp,
                source=LatestSource.DURABLE_STORE,
                device_id=reading.device_id,
                location=reading.location,
            )

        return LatestValue.empty()

    def _latest_from_cache(self, topic_filter: Optional[str]) -> Optional[LatestValue]:
        candidates = [
            m for m in self._cache.all() if topic_matches(topic_filter, m.topic, self._canonical_topic)
        ]
        # Más reciente primero; el topic canónico desempata.
        candidates.sort(key=lambda m: (m.updated_at, m.topic == self._canonical_topic), reverse=True)

        for message in candidates:
            value = self._value_from_retained(message)
            if value is not None:
                return value
        return None

    def _value_from_retained(self, message: RetainedMessage) -> Optional[LatestValue]:
        parsed = decode_payload(message.payload)
        if parsed is None:
            return None
        result = validate_telemetry(dict(parsed))
        if not result.valid:
            logger.debug("[RECONCILE] Retained topic=%s not usable: %s", message.topic, result.error)
            return None
        payload = result.payload
        return LatestValue(
            temperature=payload.temperature,
            humidity=payload.humidity,
            timestamp=message.timestamp,
            source=LatestSource.RETAINED_CACHE,
            topic=message.topic,
            device_id=payload.device_id or message.device_id,
            location=payload.location or self._default_location,
        )

    def grouped(
        self,
        window_start: datetime,
        window_end: datetime,
        bucket_size: int,
        bucket_unit: str,
    ) -> List[Bucket]:
        """Promedios por bucket en [window_start, window_end]."""
        window_start = as_utc(window_start)
        window_end = as_utc(window_end)
        if window_start > window_end:
            raise ValueError("window_start must not be after window_end")
        # valida unidad/tamaño antes de ir al store
        floor_to_bucket(window_start, bucket_size, bucket_unit)

        readings = self._store.query_readings_since(window_start, self._grouped_limit, until=window_end)
        if len(readings) >= self._grouped_limit:
            logger.warning(
                "[RECONCILE] Grouped window capped at %d newest readings start=%s end=%s",
                self._grouped_limit,
                window_start.isoformat(),
                window_end.isoformat(),
            )
        return group_readings(readings, bucket_size, bucket_unit)

    def readings(self, window_start: datetime, window_end: datetime, limit: int = 1000) -> List[Reading]:
        """Lecturas crudas de la ventana, más recientes primero."""
        window_start = as_utc(window_start)
        window_end = as_utc(window_end)
        if window_start > window_end:
            raise ValueError("window_start must not be after window_end")
        if limit < 1:
            raise ValueError("limit must be positive")
        readings = self._store.query_readings_since(window_start, limit, until=window_end)
        return list(reversed(readings))

    def recent(self, count: int = 24) -> List[Reading]:
        if count < 1:
            raise ValueError("count must be positive")
        return self._store.query_recent_readings(count)

    def statistics(self, days: int = 7) -> ReadingStatistics:
        if days < 1:
            raise ValueError("days must be positive")
        return self._store.query_statistics(utcnow() - timedelta(days=days))
