"""Tests del transporte MQTT (sin broker: callbacks invocados directo).

Ejecutar:
    pytest tests/test_mqtt_transport.py -v
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt

from common.config import Settings
from telemetry_api.transports.factory import create_transport
from telemetry_api.transports.mqtt import MQTTTransport
from telemetry_api.transports.null import NullTransport


def _msg(topic="sht20/data", payload=b'{"temp":25.5,"hum":60.2}', qos=1, retain=True):
    return SimpleNamespace(topic=topic, payload=payload, qos=qos, retain=retain)


class TestMQTTTransportCallbacks:
    def test_message_forwarded_with_transport_meta(self):
        sink = MagicMock(return_value=True)
        transport = MQTTTransport(sink, client_id="monitor-1")

        transport._on_message(None, None, _msg())

        topic, payload, meta = sink.call_args[0]
        assert topic == "sht20/data"
        assert payload == b'{"temp":25.5,"hum":60.2}'
        assert meta.qos == 1
        assert meta.retain is True
        assert meta.client_id == "monitor-1"
        assert meta.received_at.tzinfo is not None
        assert transport.stats["messages_forwarded"] == 1

    def test_full_queue_counted_as_dropped(self):
        transport = MQTTTransport(MagicMock(return_value=False))

        transport._on_message(None, None, _msg())

        assert transport.stats["messages_dropped"] == 1

    def test_sink_error_does_not_escape_callback(self):
        transport = MQTTTransport(MagicMock(side_effect=RuntimeError("boom")))

        transport._on_message(None, None, _msg())

        assert transport.stats["messages_failed"] == 1

    def test_subscribes_every_topic_on_connect(self):
        transport = MQTTTransport(MagicMock(), topics=["sht20/data", "sensor/+/data"])
        client = MagicMock()

        transport._on_connect(client, None, {}, 0)

        assert transport.is_connected is True
        subscribed = [c.args[0] for c in client.subscribe.call_args_list]
        assert subscribed == ["sht20/data", "sensor/+/data"]
        assert all(c.kwargs["qos"] == 1 for c in client.subscribe.call_args_list)

    def test_disconnect_clears_connected_flag(self):
        transport = MQTTTransport(MagicMock())
        transport._on_connect(MagicMock(), None, {}, 0)

        transport._on_disconnect(None, None, {}, 7)

        assert transport.is_connected is False

    def test_publish_requires_connection(self):
        transport = MQTTTransport(MagicMock())

        assert transport.publish("sht20/data", "{}") is False

    def test_persistent_session_client(self):
        transport = MQTTTransport(MagicMock(), client_id="monitor-1", username="u", password="p")

        with patch.object(mqtt, "Client") as client_cls:
            transport._build_client()

        kwargs = client_cls.call_args.kwargs
        assert kwargs["clean_session"] is False
        assert kwargs["client_id"] == "monitor-1"
        assert kwargs["callback_api_version"] == mqtt.CallbackAPIVersion.VERSION2
        client_cls.return_value.username_pw_set.assert_called_once_with("u", "p")


class TestTransportFactory:
    def test_disabled_uses_null_transport(self):
        transport = create_transport(Settings(mqtt_enabled=False), MagicMock())

        assert isinstance(transport, NullTransport)
        assert transport.publish("t", "{}") is False
        assert transport.start() is True

    def test_enabled_builds_mqtt_transport(self):
        settings = Settings(mqtt_enabled=True, mqtt_host="broker.local", mqtt_topics=["a/data"])

        transport = create_transport(settings, MagicMock())

        assert isinstance(transport, MQTTTransport)
        assert transport.broker_host == "broker.local"
        assert transport.topics == ["a/data"]
