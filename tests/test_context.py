"""Tests de configuración, composition root y CLI de recovery.

Ejecutar:
    pytest tests/test_context.py -v
"""

from common.config import get_settings
from jobs.recovery_cli import main as recovery_main
from telemetry_api.context import build_context
from telemetry_api.infrastructure.persistence.sql_store import SqlStore
from telemetry_api.transports.null import NullTransport


class TestSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TELEMETRY_ENV_FILE", str(tmp_path / "missing.env"))
        for name in ("DATABASE_URL", "MQTT_ENABLED", "MQTT_TOPICS", "RECOVERY_BATCH_SIZE"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()

        assert settings.mqtt_enabled is False
        assert settings.recovery_batch_size == 1000
        assert settings.recovery_interval_seconds == 30.0
        assert "sensor/+/data" in settings.mqtt_topics

    def test_env_file_does_not_override_environment(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MQTT_PORT=8883\nDEFAULT_LOCATION=Server Room\n")
        monkeypatch.setenv("TELEMETRY_ENV_FILE", str(env_file))
        monkeypatch.setenv("MQTT_PORT", "1884")
        # registra el estado original para que el teardown borre lo que cargue dotenv
        monkeypatch.setenv("DEFAULT_LOCATION", "unset")
        monkeypatch.delenv("DEFAULT_LOCATION")

        settings = get_settings()

        assert settings.mqtt_port == 1884
        assert settings.default_location == "Server Room"

    def test_topic_list_parsing(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TELEMETRY_ENV_FILE", str(tmp_path / "missing.env"))
        monkeypatch.setenv("MQTT_TOPICS", " a/data, ,b/+/data ")

        assert get_settings().mqtt_topics == ["a/data", "b/+/data"]


class TestAppContext:
    def test_build_from_settings_and_lifecycle(self, settings):
        ctx = build_context(settings)
        try:
            assert isinstance(ctx.store, SqlStore)
            assert isinstance(ctx.transport, NullTransport)

            ctx.start()
            assert ctx.started is True
            assert ctx.dispatcher.running is True

            outcome = ctx.ingest("sht20/data", '{"temp":24,"hum":50}')
            assert outcome.accepted is True
            assert ctx.get_latest().temperature == 24.0
        finally:
            ctx.stop()

        assert ctx.started is False
        ctx.store.engine.dispose()

    def test_startup_recovery_rebuilds_cache(self, settings, store, retained_meta):
        first = build_context(settings, store=store, transport=NullTransport())
        first.ingest("sht20/data", '{"temp":25.5,"hum":60.2}', retained_meta())

        second = build_context(settings, store=store, transport=NullTransport())
        second.start()
        try:
            snapshot = second.get_retained_snapshot()
            assert [m.topic for m in snapshot] == ["sht20/data"]
            assert second.get_latest().source.value == "retained_cache"
        finally:
            second.stop()


class TestRecoveryCli:
    def test_once_processes_pending_entries(self, monkeypatch, tmp_path, settings):
        monkeypatch.setenv("TELEMETRY_ENV_FILE", str(tmp_path / "missing.env"))
        monkeypatch.setenv("DATABASE_URL", settings.database_url)
        monkeypatch.setenv("MQTT_ENABLED", "false")

        assert recovery_main(["--once"]) == 0
