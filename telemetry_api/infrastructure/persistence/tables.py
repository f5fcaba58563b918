"""Esquema SQLAlchemy Core de las tablas de telemetría."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

sensor_readings = Table(
    "sensor_readings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("temperature", Float, nullable=False),
    Column("humidity", Float, nullable=False),
    Column("device_id", String(100), nullable=False),
    Column("location", String(200), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("received_at", DateTime(timezone=True), nullable=False),
    # Una lectura por entrada del log crudo; NULL para backfill desde retained.
    Column("source_entry_id", Integer, nullable=True, unique=True),
    Column("utc_offset_minutes", Integer, nullable=True),
    Index("ix_sensor_readings_timestamp", "timestamp"),
    Index("ix_sensor_readings_device_ts", "device_id", "timestamp"),
)

retained_messages = Table(
    "retained_messages",
    metadata,
    Column("topic", String(255), primary_key=True),
    Column("payload", Text, nullable=False),
    Column("qos", Integer, nullable=False, default=0),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("device_id", String(100), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

mqtt_message_log = Table(
    "mqtt_message_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("fingerprint", String(64), nullable=False, unique=True),
    Column("topic", String(255), nullable=False),
    Column("payload", Text, nullable=False),
    Column("qos", Integer, nullable=False, default=0),
    Column("retain", Boolean, nullable=False, default=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("received_at", DateTime(timezone=True), nullable=False),
    Column("device_id", String(100), nullable=True),
    Column("client_id", String(255), nullable=True),
    Column("message_type", String(20), nullable=False),
    Column("processed", Boolean, nullable=False, default=False),
    Index("ix_mqtt_message_log_pending", "processed", "timestamp"),
)
