"""Bridges HTTP de ingesta.

Ambos endpoints llaman al mismo ``AppContext.ingest`` que usa la
suscripción MQTT; solo cambia cómo se arma el ``TransportMeta``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from ..context import AppContext
from ..core.domain.models import TransportMeta, utcnow
from ..ingestion.service import IngestOutcome, IngestStatus
from ..schemas import IngestResult, WebhookMessageIn
from .deps import get_context

router = APIRouter(tags=["ingest"])
logger = logging.getLogger(__name__)

_HTTP_STATUS = {
    IngestStatus.REJECTED: 400,
    IngestStatus.RETRY: 503,
}


def _respond(outcome: IngestOutcome) -> JSONResponse:
    body = IngestResult.model_validate(outcome).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=_HTTP_STATUS.get(outcome.status, 200), content=body)


@router.post("/api/mqtt/webhook", response_model=IngestResult)
def mqtt_webhook(message: WebhookMessageIn, context: AppContext = Depends(get_context)):
    """Mensaje reenviado por el broker (webhook) en lugar de suscripción directa."""
    topic = message.topic or context.settings.http_bridge_topic
    meta = TransportMeta(
        qos=message.qos,
        retain=message.retain,
        received_at=utcnow(),
        client_id=message.client_id,
    )
    outcome = context.ingest(topic, message.message_payload(), meta)
    logger.info("[HTTP] Webhook topic=%s status=%s", topic, outcome.status.value)
    return _respond(outcome)


@router.post("/api/sensor/data", response_model=IngestResult)
def sensor_data(payload: Dict[str, Any] = Body(...), context: AppContext = Depends(get_context)):
    """POST directo desde el dispositivo (ESP32) con el JSON de la lectura."""
    topic = context.settings.http_bridge_topic
    # El último valor POSTeado se trata como retenido, igual que en el broker.
    meta = TransportMeta(qos=0, retain=True, received_at=utcnow())
    outcome = context.ingest(topic, payload, meta)
    logger.info("[HTTP] Direct post topic=%s status=%s", topic, outcome.status.value)
    return _respond(outcome)
