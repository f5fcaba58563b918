"""Validadores de payloads de telemetría.

Acepta los alias históricos de los productores (``temp``/``temperature``,
``hum``/``humidity``) y valida rangos físicos antes de persistir.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.domain.models import HUMIDITY_RANGE, TEMPERATURE_RANGE

logger = logging.getLogger(__name__)

TEMPERATURE_KEYS = ("temperature", "temp")
HUMIDITY_KEYS = ("humidity", "hum")

# Epoch values above this are milliseconds.
_EPOCH_MS_THRESHOLD = 1e11


def _require_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be numeric, got {type(value).__name__}")
    value = float(value)
    if math.isnan(value):
        raise ValueError(f"{name} is NaN")
    if math.isinf(value):
        raise ValueError(f"{name} is infinite")
    return value


def _check_range(name: str, value: float, bounds: tuple) -> float:
    low, high = bounds
    if not (low <= value <= high):
        raise ValueError(f"{name} {value} out of range [{low:g}, {high:g}]")
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parsea ISO-8601 o epoch (segundos o milisegundos). None si no se puede."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError) as e:
        logger.warning("[VALIDATOR] Unparseable timestamp %r: %s", value, e)
    return None


class TelemetryPayload(BaseModel):
    """Schema de validación para lecturas de temperatura/humedad.

    Formato esperado:
    {
        "temp": 25.5,
        "hum": 60.2,
        "deviceId": "SHT20-001",
        "location": "Server Room",
        "timestamp": "2026-01-31T08:00:00Z"
    }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    temperature: float = Field(..., validation_alias=AliasChoices(*TEMPERATURE_KEYS))
    humidity: float = Field(..., validation_alias=AliasChoices(*HUMIDITY_KEYS))
    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("deviceId", "device_id"))
    location: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("temperature", mode="before")
    @classmethod
    def validate_temperature(cls, v):
        return _check_range("temperature", _require_number("temperature", v), TEMPERATURE_RANGE)

    @field_validator("humidity", mode="before")
    @classmethod
    def validate_humidity(cls, v):
        return _check_range("humidity", _require_number("humidity", v), HUMIDITY_RANGE)

    @field_validator("device_id", "location", mode="before")
    @classmethod
    def validate_text(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, v):
        # Un timestamp ilegible no invalida la lectura: se usa la hora de llegada.
        return parse_timestamp(v)


@dataclass
class ValidationResult:
    """Resultado de validación."""

    valid: bool
    payload: Optional[TelemetryPayload] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def _format_errors(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        name = str(err["loc"][-1]) if err.get("loc") else "payload"
        if err.get("type") == "missing":
            messages.append(f"{name} is required")
        else:
            messages.append(err.get("msg", "").replace("Value error, ", ""))
    return "; ".join(messages)


def has_temperature_field(data: Any) -> bool:
    return isinstance(data, dict) and any(key in data for key in TEMPERATURE_KEYS)


def validate_telemetry(data: dict[str, Any]) -> ValidationResult:
    """Valida payload de telemetría.

    Args:
        data: Diccionario decodificado del mensaje

    Returns:
        ValidationResult con payload validado o error
    """
    warnings = []
    if "temp" in data and "temperature" in data:
        warnings.append("Both temp and temperature present, using temperature")
    if "hum" in data and "humidity" in data:
        warnings.append("Both hum and humidity present, using humidity")

    try:
        payload = TelemetryPayload.model_validate(data)
    except ValidationError as e:
        error = _format_errors(e)
        logger.debug("[VALIDATOR] Validation failed: %s", error)
        return ValidationResult(valid=False, error=error)

    if "timestamp" in data and data.get("timestamp") is not None and payload.timestamp is None:
        warnings.append("Invalid timestamp ignored, using arrival time")

    return ValidationResult(valid=True, payload=payload, warnings=warnings)
