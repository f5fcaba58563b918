from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_TOPICS = "sht20/data,sht20/status,sensor/+/data,sensor/+/status"


def _default_env_file() -> str:
    # .env next to the working directory, same as the dashboard deployment.
    return str(Path.cwd() / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./telemetry.db"
    db_timeout_seconds: float = 5.0
    db_auto_create: bool = True

    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_tls: bool = False
    mqtt_client_id: str = "sensor-monitor"
    mqtt_topics: List[str] = field(default_factory=lambda: DEFAULT_TOPICS.split(","))

    canonical_topic: str = "sht20/data"
    http_bridge_topic: str = "sensor/data"
    default_device_id: str = "SHT20-001"
    default_location: str = "Default Room"

    recovery_interval_seconds: float = 30.0
    recovery_batch_size: int = 1000

    ingest_queue_size: int = 1000
    ingest_num_workers: int = 4

    grouped_readings_limit: int = 5000

    log_level: str = "INFO"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./telemetry.db"),
        db_timeout_seconds=float(os.getenv("DB_TIMEOUT_SECONDS", "5")),
        db_auto_create=_env_bool("DB_AUTO_CREATE", True),
        mqtt_enabled=_env_bool("MQTT_ENABLED", False),
        mqtt_host=os.getenv("MQTT_HOST", "localhost"),
        mqtt_port=int(os.getenv("MQTT_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_tls=_env_bool("MQTT_TLS", False),
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "sensor-monitor"),
        mqtt_topics=_env_list("MQTT_TOPICS", DEFAULT_TOPICS),
        canonical_topic=os.getenv("CANONICAL_TOPIC", "sht20/data"),
        http_bridge_topic=os.getenv("HTTP_BRIDGE_TOPIC", "sensor/data"),
        default_device_id=os.getenv("DEFAULT_DEVICE_ID", "SHT20-001"),
        default_location=os.getenv("DEFAULT_LOCATION", "Default Room"),
        recovery_interval_seconds=float(os.getenv("RECOVERY_INTERVAL_SECONDS", "30")),
        recovery_batch_size=int(os.getenv("RECOVERY_BATCH_SIZE", "1000")),
        ingest_queue_size=int(os.getenv("INGEST_QUEUE_SIZE", "1000")),
        ingest_num_workers=int(os.getenv("INGEST_NUM_WORKERS", "4")),
        grouped_readings_limit=int(os.getenv("GROUPED_READINGS_LIMIT", "5000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
