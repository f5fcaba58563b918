"""Transporte MQTT en vivo.

Suscripción persistente (clean_session=False, QoS 1) con paho-mqtt. El
callback de mensaje solo arma el ``TransportMeta`` y entrega al sink; el
trabajo pesado lo hacen los workers del dispatcher.
"""

from __future__ import annotations

import logging
import ssl
import threading
import time
from typing import Any, Dict, Optional, Sequence

import paho.mqtt.client as mqtt

from ...core.domain.models import TransportMeta, utcnow
from ..base import MessageSink, TelemetryTransport

logger = logging.getLogger(__name__)

CONNECT_WAIT_SECONDS = 5.0


class TransportStats:
    """Estadísticas del transporte."""

    def __init__(self):
        self.received = 0
        self.forwarded = 0
        self.dropped = 0
        self.failed = 0
        self.last_message_at: float = 0

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} forwarded={self.forwarded} "
            f"dropped={self.dropped} failed={self.failed}"
        )


class MQTTTransport(TelemetryTransport):
    """Suscriptor MQTT que entrega cada mensaje al sink de ingesta."""

    def __init__(
        self,
        sink: MessageSink,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        topics: Sequence[str] = ("sht20/data",),
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "sensor-monitor",
        use_tls: bool = False,
        qos: int = 1,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topics = list(topics)
        self.username = username
        self.password = password
        # Client id estable: la sesión persistente depende de él.
        self.client_id = client_id
        self.use_tls = use_tls
        self.qos = qos

        self._sink = sink
        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = threading.Event()
        self._stats = TransportStats()
        self._stats_lock = threading.Lock()

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=False,
            protocol=mqtt.MQTTv311,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        if self.username:
            client.username_pw_set(self.username, self.password)
        if self.use_tls:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        return client

    def start(self) -> bool:
        if self._running:
            return self.is_connected
        try:
            self._client = self._build_client()
            logger.info("[MQTT] Connecting to %s:%d as %s", self.broker_host, self.broker_port, self.client_id)
            self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()
            self._running = True
        except (OSError, ValueError) as e:
            logger.error("[MQTT] Start failed: %s", e)
            return False

        if self._connected.wait(CONNECT_WAIT_SECONDS):
            logger.info("[MQTT] Started successfully")
            return True
        # paho sigue reintentando en background
        logger.warning("[MQTT] Not connected after %.0fs, reconnecting in background", CONNECT_WAIT_SECONDS)
        return False

    def stop(self) -> None:
        self._running = False
        if self._client is not None:
            try:
                self._client.disconnect()
                self._client.loop_stop()
            except (OSError, RuntimeError) as e:
                logger.warning("[MQTT] Error stopping: %s", e)
            self._client = None
        self._connected.clear()
        logger.info("[MQTT] Stopped. %s", self._stats)

    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> bool:
        if self._client is None or not self.is_connected:
            logger.warning("[MQTT] Publish to %s skipped: not connected", topic)
            return False
        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("[MQTT] Publish to %s failed rc=%s", topic, info.rc)
            return False
        logger.info("[MQTT] Published to %s retain=%s", topic, retain)
        return True

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            self._connected.set()
            logger.info("[MQTT] Connected to broker")
            for topic in self.topics:
                client.subscribe(topic, qos=self.qos)
                logger.info("[MQTT] Subscribed to %s", topic)
        else:
            self._connected.clear()
            logger.error("[MQTT] Connection failed: rc=%s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        if self._running:
            logger.warning("[MQTT] Disconnected (rc=%s), paho will reconnect", reason_code)

    def _on_message(self, client, userdata, msg):
        with self._stats_lock:
            self._stats.received += 1
            self._stats.last_message_at = time.time()

        meta = TransportMeta(
            qos=int(msg.qos),
            retain=bool(msg.retain),
            received_at=utcnow(),
            client_id=self.client_id,
        )
        try:
            forwarded = self._sink(msg.topic, msg.payload, meta)
        except Exception:
            # Nunca dejar que una excepción mate el network loop de paho.
            logger.exception("[MQTT] Sink error topic=%s", msg.topic)
            with self._stats_lock:
                self._stats.failed += 1
            return

        with self._stats_lock:
            if forwarded:
                self._stats.forwarded += 1
            else:
                self._stats.dropped += 1

    @property
    def transport_name(self) -> str:
        return "mqtt"

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                "transport": self.transport_name,
                "running": self._running,
                "connected": self.is_connected,
                "broker": f"{self.broker_host}:{self.broker_port}",
                "topics": list(self.topics),
                "messages_received": self._stats.received,
                "messages_forwarded": self._stats.forwarded,
                "messages_dropped": self._stats.dropped,
                "messages_failed": self._stats.failed,
                "last_message_at": self._stats.last_message_at,
            }
