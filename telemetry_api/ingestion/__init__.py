"""Ingesta: normalización, idempotencia y dispatch de mensajes entrantes."""
