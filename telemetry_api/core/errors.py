"""Taxonomía de errores del núcleo de ingesta."""

from __future__ import annotations

from enum import Enum


class TelemetryError(Exception):
    """Base de errores del servicio de telemetría."""


class StoreUnavailable(TelemetryError):
    """Fallo transitorio del store durable (timeout, conexión caída).

    Es reintentable: la entrada del log queda con processed=false y la
    recuperación la volverá a intentar.
    """

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unavailable"
        super().__init__(f"store unavailable during {operation} ({detail})")


class DuplicateReading(TelemetryError):
    """Ya existe una lectura para la misma entrada del log."""

    def __init__(self, source_entry_id: int | None):
        self.source_entry_id = source_entry_id
        super().__init__(f"reading already persisted for entry {source_entry_id}")


class RejectKind(str, Enum):
    """Motivos de rechazo. Son valores, nunca excepciones."""

    PARSE_FAILURE = "parse_failure"
    VALIDATION_REJECTED = "validation_rejected"
    UNSUPPORTED = "unsupported"
