"""Módulo de endpoints HTTP.

Routers delgados sobre la fachada ``AppContext``.
"""

from .health import router as health_router
from .ingest import router as ingest_router
from .mqtt import router as mqtt_router
from .readings import router as readings_router

__all__ = [
    "health_router",
    "ingest_router",
    "mqtt_router",
    "readings_router",
]
