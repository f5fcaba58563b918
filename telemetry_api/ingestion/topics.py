"""Convenciones de nombres de topics.

- ``<device>/data``, ``sensor/<device>/data`` → lecturas
- ``.../status`` → estado del dispositivo
- ``.../command`` → comandos
"""

from __future__ import annotations

import re
from typing import Any, Optional

from paho.mqtt.client import topic_matches_sub

from ..core.domain.models import MessageType
from .validators import has_temperature_field

_SENSOR_PREFIX = re.compile(r"^sensors?/([^/]+)/")
_DEVICE_SUFFIX = re.compile(r"^([^/]+)/(?:data|status|command)$")
_GENERIC_SEGMENTS = {"sensor", "sensors", "api", "iot"}


def classify_message_type(topic: str, parsed: Any = None) -> MessageType:
    if topic.endswith("/data"):
        return MessageType.SENSOR_DATA
    if topic.endswith("/status"):
        return MessageType.STATUS
    if topic.endswith("/command"):
        return MessageType.COMMAND
    if has_temperature_field(parsed):
        return MessageType.SENSOR_DATA
    return MessageType.UNKNOWN


def extract_device_id(topic: str) -> Optional[str]:
    """Deriva el device id de un segmento del topic, si el patrón lo permite."""
    match = _SENSOR_PREFIX.match(topic)
    if match:
        return match.group(1)
    match = _DEVICE_SUFFIX.match(topic)
    if match and match.group(1).lower() not in _GENERIC_SEGMENTS:
        return match.group(1)
    return None


def is_sensor_data_topic(topic: str, canonical_topic: str = "sht20/data") -> bool:
    return topic == canonical_topic or topic.endswith("/data")


def topic_matches(topic_filter: Optional[str], topic: str, canonical_topic: str = "sht20/data") -> bool:
    """Filtro de topics con wildcards MQTT (``+``/``#``).

    Sin filtro se aceptan todos los topics de lecturas.
    """
    if not topic_filter:
        return is_sensor_data_topic(topic, canonical_topic)
    try:
        return topic_matches_sub(topic_filter, topic)
    except ValueError:
        return False
