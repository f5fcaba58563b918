"""Endpoints de operación MQTT: recovery, retained, log crudo y publish."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

import orjson
from fastapi import APIRouter, Depends, HTTPException, Query

from ..context import AppContext
from ..core.domain.models import MessageType
from ..core.errors import StoreUnavailable
from ..infrastructure.persistence.base import MessageLogQuery
from ..schemas import MessageLogOut, MessageLogPage, PublishIn, RecoveryOut, RetainedMessageOut
from .deps import get_context

router = APIRouter(prefix="/api/mqtt", tags=["mqtt"])
logger = logging.getLogger(__name__)


@router.post("/recover", response_model=RecoveryOut)
def recover(context: AppContext = Depends(get_context)):
    """Dispara la recuperación manualmente (retained → cache + log pendiente)."""
    report = context.trigger_recovery()
    return RecoveryOut.model_validate(report)


@router.get("/retained", response_model=List[RetainedMessageOut])
def retained(context: AppContext = Depends(get_context)):
    return context.get_retained_snapshot()


@router.get("/logs", response_model=MessageLogPage)
def message_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    topic: Optional[str] = Query(default=None),
    device_id: Optional[str] = Query(default=None, alias="deviceId"),
    message_type: Optional[MessageType] = Query(default=None, alias="messageType"),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    context: AppContext = Depends(get_context),
):
    query = MessageLogQuery(
        limit=limit,
        offset=offset,
        topic=topic,
        device_id=device_id,
        message_type=message_type,
        start=start,
        end=end,
    )
    try:
        items = context.get_message_logs(query)
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/mqtt/logs")
        raise HTTPException(status_code=503, detail="store unavailable")
    return MessageLogPage(
        items=[MessageLogOut.model_validate(e) for e in items],
        limit=limit,
        offset=offset,
    )


@router.post("/publish")
def publish(message: PublishIn, context: AppContext = Depends(get_context)):
    """Publica (por defecto retenido) a través del transporte en vivo."""
    payload = message.payload
    if not isinstance(payload, str):
        payload = orjson.dumps(payload).decode("utf-8")
    if not context.publish(message.topic, payload, qos=message.qos, retain=message.retain):
        raise HTTPException(status_code=503, detail="live transport unavailable")
    return {"success": True, "topic": message.topic, "retain": message.retain}


@router.get("/config")
def mqtt_config(context: AppContext = Depends(get_context)):
    settings = context.settings
    return {
        "enabled": settings.mqtt_enabled,
        "broker": settings.mqtt_host,
        "port": settings.mqtt_port,
        "topics": list(settings.mqtt_topics),
        "canonicalTopic": settings.canonical_topic,
        "transport": context.transport.transport_name,
        "webhookPath": "/api/mqtt/webhook",
        "directPostPath": "/api/sensor/data",
    }
