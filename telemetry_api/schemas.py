from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .core.domain.models import MessageType
from .ingestion.service import IngestStatus
from .reconciliation.engine import LatestSource


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class WebhookMessageIn(_CamelModel):
    """Mensaje reenviado por el webhook del broker.

    Acepta ``payload`` explícito o el formato plano histórico
    (``{"topic": ..., "temperature": ..., "humidity": ...}``).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    topic: Optional[str] = None
    payload: Optional[Any] = None
    qos: int = Field(default=0, ge=0, le=2)
    retain: bool = True
    client_id: Optional[str] = None

    def message_payload(self) -> Any:
        if self.payload is not None:
            return self.payload
        return dict(self.model_extra or {})


class PublishIn(_CamelModel):
    topic: str = Field(..., min_length=1)
    payload: Any
    qos: int = Field(default=1, ge=0, le=2)
    retain: bool = True


class IngestResult(_CamelModel):
    accepted: bool
    status: IngestStatus
    reason: Optional[str] = None
    reading_id: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)


class LatestOut(_CamelModel):
    temperature: float
    humidity: float
    timestamp: Optional[datetime] = None
    source: LatestSource
    topic: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[str] = None


class BucketOut(_CamelModel):
    bucket_start: datetime
    avg_temperature: float
    avg_humidity: float
    count: int


class ReadingOut(_CamelModel):
    id: Optional[int] = None
    temperature: float
    humidity: float
    device_id: str
    location: str
    timestamp: datetime
    received_at: datetime
    utc_offset_minutes: Optional[int] = None


class StatisticsOut(_CamelModel):
    days: int
    count: int
    avg_temperature: Optional[float] = None
    avg_humidity: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    min_humidity: Optional[float] = None
    max_humidity: Optional[float] = None


class RetainedMessageOut(_CamelModel):
    topic: str
    payload: str
    qos: int
    timestamp: datetime
    device_id: Optional[str] = None
    updated_at: datetime


class MessageLogOut(_CamelModel):
    id: int
    topic: str
    payload: str
    qos: int
    retain: bool
    timestamp: datetime
    received_at: datetime
    device_id: Optional[str] = None
    client_id: Optional[str] = None
    message_type: MessageType
    processed: bool


class MessageLogPage(_CamelModel):
    items: List[MessageLogOut] = Field(default_factory=list)
    limit: int
    offset: int


class RecoveryOut(_CamelModel):
    completed: bool
    retained_loaded: int = 0
    cache_updates: int = 0
    backfilled: int = 0
    processed: int = 0
    rejected: int = 0
    duplicates: int = 0
    failed: int = 0
    cancelled: bool = False


class TransportStatusOut(_CamelModel):
    transport: str
    connected: bool
    running: Optional[bool] = None
    broker: Optional[str] = None
    topics: Optional[List[str]] = None
    messages_received: Optional[int] = None
    messages_forwarded: Optional[int] = None
    messages_dropped: Optional[int] = None
    messages_failed: Optional[int] = None
    last_message_at: Optional[float] = None


class DispatcherStatusOut(_CamelModel):
    queue_depth: int
    queue_max: int
    workers: int
    enqueued: int
    dropped: int
    deferred: int
    processed: int
    retries: int
    errors: int


class IngestStatsOut(_CamelModel):
    received: int
    accepted: int
    rejected: int
    logged: int
    duplicates: int
    retries: int


class RecoveryStatusOut(_CamelModel):
    sweeper_running: bool
    interval_seconds: float
    last_report: Optional[RecoveryOut] = None


class StatusOut(_CamelModel):
    """Estado de transporte, dispatcher, ingesta, cache y recovery."""

    transport: TransportStatusOut
    dispatcher: DispatcherStatusOut
    ingest: IngestStatsOut
    retained_topics: int
    recovery: RecoveryStatusOut
