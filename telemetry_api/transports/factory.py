"""Selección del transporte en vivo según configuración."""

from __future__ import annotations

import logging

from common.config import Settings

from .base import MessageSink, TelemetryTransport
from .null import NullTransport

logger = logging.getLogger(__name__)


def create_transport(settings: Settings, sink: MessageSink) -> TelemetryTransport:
    """MQTTTransport si MQTT_ENABLED y hay host, si no NullTransport."""
    if not settings.mqtt_enabled:
        return NullTransport()
    if not settings.mqtt_host:
        logger.warning("[TRANSPORT] MQTT_ENABLED=true but MQTT_HOST is empty, using NullTransport")
        return NullTransport()

    from .mqtt import MQTTTransport

    return MQTTTransport(
        sink=sink,
        broker_host=settings.mqtt_host,
        broker_port=settings.mqtt_port,
        topics=settings.mqtt_topics,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        client_id=settings.mqtt_client_id,
        use_tls=settings.mqtt_tls,
    )
