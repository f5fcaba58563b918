from .models import (
    HUMIDITY_RANGE,
    TEMPERATURE_RANGE,
    MessageType,
    RawMessageLogEntry,
    Reading,
    RetainedMessage,
    TransportMeta,
    as_utc,
    utcnow,
)

__all__ = [
    "HUMIDITY_RANGE",
    "TEMPERATURE_RANGE",
    "MessageType",
    "RawMessageLogEntry",
    "Reading",
    "RetainedMessage",
    "TransportMeta",
    "as_utc",
    "utcnow",
]
