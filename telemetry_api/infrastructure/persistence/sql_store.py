"""SqlStore - DurableStore sobre SQLAlchemy Core.

Un único engine con pool (``pool_pre_ping``) y una conexión por operación.
Funciona con SQLite (desarrollo/tests) y PostgreSQL (producción).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import false, func, insert, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ...core.domain.models import (
    MessageType,
    RawMessageLogEntry,
    Reading,
    RetainedMessage,
    as_utc,
)
from ...core.errors import DuplicateReading, StoreUnavailable
from .base import DurableStore, MessageLogQuery, ReadingStatistics
from .tables import metadata, mqtt_message_log, retained_messages, sensor_readings

logger = logging.getLogger(__name__)


def _reading_from_row(row) -> Reading:
    return Reading(
        id=int(row.id),
        temperature=float(row.temperature),
        humidity=float(row.humidity),
        device_id=str(row.device_id),
        location=str(row.location),
        timestamp=as_utc(row.timestamp),
        received_at=as_utc(row.received_at),
        source_entry_id=int(row.source_entry_id) if row.source_entry_id is not None else None,
        utc_offset_minutes=int(row.utc_offset_minutes) if row.utc_offset_minutes is not None else None,
    )


def _retained_from_row(row) -> RetainedMessage:
    return RetainedMessage(
        topic=str(row.topic),
        payload=str(row.payload),
        qos=int(row.qos or 0),
        timestamp=as_utc(row.timestamp),
        device_id=str(row.device_id) if row.device_id is not None else None,
        updated_at=as_utc(row.updated_at),
    )


def _entry_from_row(row) -> RawMessageLogEntry:
    try:
        message_type = MessageType(row.message_type)
    except ValueError:
        message_type = MessageType.UNKNOWN

    return RawMessageLogEntry(
        id=int(row.id),
        fingerprint=str(row.fingerprint),
        topic=str(row.topic),
        payload=str(row.payload),
        qos=int(row.qos or 0),
        retain=bool(row.retain),
        timestamp=as_utc(row.timestamp),
        received_at=as_utc(row.received_at),
        device_id=str(row.device_id) if row.device_id is not None else None,
        client_id=str(row.client_id) if row.client_id is not None else None,
        message_type=message_type,
        processed=bool(row.processed),
    )


class SqlStore(DurableStore):
    """Store durable sobre tablas sensor_readings, retained_messages y mqtt_message_log."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Traduce fallos de SQLAlchemy/driver a StoreUnavailable."""
        try:
            yield
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.warning("[STORE] %s failed: %s", operation, e)
            raise StoreUnavailable(operation, e) from e

    def create_schema(self) -> None:
        with self._guard("create_schema"):
            metadata.create_all(self._engine)
        logger.info("[STORE] Schema ready (%s)", ", ".join(sorted(metadata.tables)))

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # Lecturas
    # ------------------------------------------------------------------

    def insert_reading(self, reading: Reading) -> Reading:
        values = {
            "temperature": float(reading.temperature),
            "humidity": float(reading.humidity),
            "device_id": reading.device_id,
            "location": reading.location,
            "timestamp": as_utc(reading.timestamp),
            "received_at": as_utc(reading.received_at),
            "source_entry_id": reading.source_entry_id,
            "utc_offset_minutes": reading.utc_offset_minutes,
        }
        with self._guard("insert_reading"):
            try:
                with self._engine.begin() as conn:
                    result = conn.execute(insert(sensor_readings).values(**values))
                    new_id = result.inserted_primary_key[0]
            except IntegrityError as e:
                raise DuplicateReading(reading.source_entry_id) from e

        logger.info(
            "[STORE] New reading id=%s device=%s T=%.2f°C H=%.2f%%",
            new_id,
            reading.device_id,
            reading.temperature,
            reading.humidity,
        )
        return replace(reading, id=int(new_id))

    def find_reading_for_entry(self, entry_id: int) -> Optional[Reading]:
        with self._guard("find_reading_for_entry"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(sensor_readings).where(sensor_readings.c.source_entry_id == entry_id)
                ).first()
        return _reading_from_row(row) if row else None

    def reading_exists(self, device_id: str, timestamp: datetime) -> bool:
        with self._guard("reading_exists"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(sensor_readings.c.id)
                    .where(
                        sensor_readings.c.device_id == device_id,
                        sensor_readings.c.timestamp == as_utc(timestamp),
                    )
                    .limit(1)
                ).first()
        return row is not None

    def query_latest_reading(self) -> Optional[Reading]:
        with self._guard("query_latest_reading"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(sensor_readings)
                    .order_by(sensor_readings.c.timestamp.desc(), sensor_readings.c.id.desc())
                    .limit(1)
                ).first()
        return _reading_from_row(row) if row else None

    def query_readings_since(
        self,
        since: datetime,
        limit: int,
        until: Optional[datetime] = None,
    ) -> List[Reading]:
        stmt = select(sensor_readings).where(sensor_readings.c.timestamp >= as_utc(since))
        if until is not None:
            stmt = stmt.where(sensor_readings.c.timestamp <= as_utc(until))
        # Las más recientes dentro del límite, devueltas en orden ascendente
        stmt = stmt.order_by(sensor_readings.c.timestamp.desc(), sensor_readings.c.id.desc()).limit(int(limit))

        with self._guard("query_readings_since"):
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        return [_reading_from_row(r) for r in reversed(rows)]

    def query_recent_readings(self, count: int) -> List[Reading]:
        with self._guard("query_recent_readings"):
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(sensor_readings)
                    .order_by(sensor_readings.c.timestamp.desc(), sensor_readings.c.id.desc())
                    .limit(int(count))
                ).fetchall()
        # Orden ascendente para gráficos
        return [_reading_from_row(r) for r in reversed(rows)]

    def query_statistics(self, since: datetime) -> ReadingStatistics:
        t = sensor_readings.c
        with self._guard("query_statistics"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(
                        func.count(t.id).label("total"),
                        func.avg(t.temperature).label("avg_temperature"),
                        func.avg(t.humidity).label("avg_humidity"),
                        func.min(t.temperature).label("min_temperature"),
                        func.max(t.temperature).label("max_temperature"),
                        func.min(t.humidity).label("min_humidity"),
                        func.max(t.humidity).label("max_humidity"),
                    ).where(t.timestamp >= as_utc(since))
                ).one()

        def _opt(value) -> Optional[float]:
            return float(value) if value is not None else None

        return ReadingStatistics(
            count=int(row.total or 0),
            avg_temperature=_opt(row.avg_temperature),
            avg_humidity=_opt(row.avg_humidity),
            min_temperature=_opt(row.min_temperature),
            max_temperature=_opt(row.max_temperature),
            min_humidity=_opt(row.min_humidity),
            max_humidity=_opt(row.max_humidity),
        )

    # ------------------------------------------------------------------
    # Retained messages
    # ------------------------------------------------------------------

    def upsert_retained_message(self, message: RetainedMessage) -> bool:
        values = {
            "payload": message.payload,
            "qos": int(message.qos or 0),
            "timestamp": as_utc(message.timestamp),
            "device_id": message.device_id,
            "updated_at": as_utc(message.updated_at),
        }
        t = retained_messages.c

        # Dos intentos: si otro writer inserta el topic entre el UPDATE y el
        # INSERT, el segundo intento cae en la rama UPDATE condicional.
        for attempt in range(2):
            with self._guard("upsert_retained_message"):
                try:
                    with self._engine.begin() as conn:
                        result = conn.execute(
                            update(retained_messages)
                            .where(t.topic == message.topic, t.updated_at <= values["updated_at"])
                            .values(**values)
                        )
                        if result.rowcount:
                            return True

                        exists = conn.execute(
                            select(t.topic).where(t.topic == message.topic)
                        ).first()
                        if exists is not None:
                            logger.debug(
                                "[STORE] Retained topic=%s kept, stored row is newer",
                                message.topic,
                            )
                            return False

                        conn.execute(insert(retained_messages).values(topic=message.topic, **values))
                        return True
                except IntegrityError:
                    if attempt == 1:
                        raise StoreUnavailable("upsert_retained_message")
        return False

    def get_retained_message(self, topic: str) -> Optional[RetainedMessage]:
        with self._guard("get_retained_message"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(retained_messages).where(retained_messages.c.topic == topic)
                ).first()
        return _retained_from_row(row) if row else None

    def query_retained_messages(self) -> List[RetainedMessage]:
        with self._guard("query_retained_messages"):
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(retained_messages).order_by(
                        retained_messages.c.updated_at.asc(),
                        retained_messages.c.topic.asc(),
                    )
                ).fetchall()
        return [_retained_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Log crudo
    # ------------------------------------------------------------------

    def append_raw_log(self, entry: RawMessageLogEntry) -> RawMessageLogEntry:
        values = {
            "fingerprint": entry.fingerprint,
            "topic": entry.topic,
            "payload": entry.payload,
            "qos": int(entry.qos or 0),
            "retain": bool(entry.retain),
            "timestamp": as_utc(entry.timestamp),
            "received_at": as_utc(entry.received_at),
            "device_id": entry.device_id,
            "client_id": entry.client_id,
            "message_type": entry.message_type.value,
            "processed": False,
        }
        with self._guard("append_raw_log"):
            try:
                with self._engine.begin() as conn:
                    result = conn.execute(insert(mqtt_message_log).values(**values))
                    new_id = result.inserted_primary_key[0]
                return replace(entry, id=int(new_id), processed=False)
            except IntegrityError:
                existing = self._find_log_by_fingerprint(entry.fingerprint)
                if existing is None:
                    raise StoreUnavailable("append_raw_log")
                logger.debug(
                    "[STORE] Raw log entry already present id=%s processed=%s",
                    existing.id,
                    existing.processed,
                )
                return existing

    def _find_log_by_fingerprint(self, fingerprint: str) -> Optional[RawMessageLogEntry]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(mqtt_message_log).where(mqtt_message_log.c.fingerprint == fingerprint)
            ).first()
        return _entry_from_row(row) if row else None

    def get_raw_log(self, entry_id: int) -> Optional[RawMessageLogEntry]:
        with self._guard("get_raw_log"):
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(mqtt_message_log).where(mqtt_message_log.c.id == entry_id)
                ).first()
        return _entry_from_row(row) if row else None

    def mark_processed(self, entry_id: int) -> bool:
        t = mqtt_message_log.c
        with self._guard("mark_processed"):
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(mqtt_message_log)
                    .where(t.id == entry_id, t.processed == false())
                    .values(processed=True)
                )
        return result.rowcount == 1

    def query_unprocessed(self, limit: int) -> List[RawMessageLogEntry]:
        t = mqtt_message_log.c
        with self._guard("query_unprocessed"):
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(mqtt_message_log)
                    .where(t.processed == false())
                    .order_by(t.timestamp.asc(), t.id.asc())
                    .limit(int(limit))
                ).fetchall()
        return [_entry_from_row(r) for r in rows]

    def query_message_logs(self, query: MessageLogQuery) -> List[RawMessageLogEntry]:
        t = mqtt_message_log.c
        stmt = select(mqtt_message_log)
        if query.topic:
            stmt = stmt.where(t.topic.contains(query.topic, autoescape=True))
        if query.device_id:
            stmt = stmt.where(t.device_id == query.device_id)
        if query.message_type is not None:
            stmt = stmt.where(t.message_type == query.message_type.value)
        if query.start is not None:
            stmt = stmt.where(t.timestamp >= as_utc(query.start))
        if query.end is not None:
            stmt = stmt.where(t.timestamp <= as_utc(query.end))
        stmt = stmt.order_by(t.timestamp.desc(), t.id.desc()).offset(int(query.offset)).limit(int(query.limit))

        with self._guard("query_message_logs"):
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        return [_entry_from_row(r) for r in rows]
