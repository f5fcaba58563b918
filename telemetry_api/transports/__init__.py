from .base import MessageSink, TelemetryTransport
from .null import NullTransport

__all__ = ["MessageSink", "NullTransport", "TelemetryTransport"]
