"""Transporte vacío: modo solo-HTTP (MQTT_ENABLED=false)."""

from __future__ import annotations

import logging

from .base import TelemetryTransport

logger = logging.getLogger(__name__)


class NullTransport(TelemetryTransport):
    """No se conecta a ningún broker; las lecturas llegan por los bridges HTTP."""

    def start(self) -> bool:
        logger.info("[TRANSPORT] Live subscription disabled, HTTP bridges only")
        return True

    def stop(self) -> None:
        pass

    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> bool:
        logger.warning("[TRANSPORT] Publish to %s ignored: no live transport", topic)
        return False

    @property
    def transport_name(self) -> str:
        return "none"

    @property
    def is_connected(self) -> bool:
        return False
