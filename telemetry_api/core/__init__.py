"""Core module - dominio y errores del servicio de telemetría.

Estructura:
- domain/  → Modelos de dominio (Reading, RetainedMessage, RawMessageLogEntry)
- errors   → Taxonomía de errores
"""
