"""Servicio de ingesta de telemetría ambiental (temperatura/humedad)."""
