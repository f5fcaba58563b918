from __future__ import annotations

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings, get_settings


logger = logging.getLogger(__name__)


def _connect_args(settings: Settings) -> dict:
    # Bound every driver-level wait so a stalled database never blocks
    # the MQTT delivery thread for longer than db_timeout_seconds.
    backend = make_url(settings.database_url).get_backend_name()
    timeout = float(settings.db_timeout_seconds)

    if backend == "sqlite":
        return {"timeout": timeout, "check_same_thread": False}
    if backend == "postgresql":
        return {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return {}


def build_engine(settings: Settings | None = None) -> Engine:
    settings = settings or get_settings()
    url = make_url(settings.database_url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Creating engine backend=%s host=%s db=%s timeout=%.1fs",
        url.get_backend_name(),
        url.host,
        url.database,
        settings.db_timeout_seconds,
    )

    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=settings.db_timeout_seconds,
        connect_args=_connect_args(settings),
        future=True,
    )

    # Test de conexión: ayuda a ver en logs si el servicio realmente llega a la BD
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection probe OK")
    except Exception:
        logger.exception("[DB] Connection probe FAILED")

    return engine
