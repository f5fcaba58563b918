from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import get_settings
from common.log import configure_logging

from .context import AppContext, build_context
from .endpoints import health_router, ingest_router, mqtt_router, readings_router

logger = logging.getLogger(__name__)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Crea la app. Sin ``context`` lo construye desde el entorno al arrancar."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context
        if ctx is None:
            settings = get_settings()
            configure_logging(settings)
            ctx = build_context(settings)
        app.state.context = ctx
        ctx.start()
        logger.info("[APP] Sensor monitor ready")
        try:
            yield
        finally:
            ctx.stop()

    app = FastAPI(title="Sensor Monitor Telemetry Service", version="0.1.0", lifespan=lifespan)
    if context is not None:
        app.state.context = context

    app.include_router(health_router)
    app.include_router(ingest_router)
    app.include_router(readings_router)
    app.include_router(mqtt_router)
    return app


app = create_app()
