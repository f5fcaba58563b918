"""Endpoints de lectura: último valor, agrupados, recientes y estadísticas."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..context import AppContext
from ..core.domain.models import utcnow
from ..core.errors import StoreUnavailable
from ..schemas import BucketOut, LatestOut, ReadingOut, StatisticsOut
from .deps import get_context

router = APIRouter(tags=["readings"])
logger = logging.getLogger(__name__)


@router.get("/api/latest", response_model=LatestOut)
def latest(
    topic: Optional[str] = Query(default=None, description="Filtro de topic MQTT (+/# permitidos)"),
    context: AppContext = Depends(get_context),
):
    """Último valor conocido. Sin datos devuelve ceros con source=none."""
    try:
        return context.get_latest(topic)
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/latest")
        raise HTTPException(status_code=503, detail="store unavailable")


@router.get("/api/readings/grouped", response_model=List[BucketOut])
def grouped(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    bucket_size: int = Query(default=15, alias="bucketSize"),
    bucket_unit: str = Query(default="minutes", alias="bucketUnit"),
    context: AppContext = Depends(get_context),
):
    """Promedios por bucket. Por defecto, las últimas 24 horas en buckets de 15 minutos."""
    end = end or utcnow()
    start = start or end - timedelta(hours=24)
    try:
        return context.get_grouped(start, end, bucket_size, bucket_unit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/readings/grouped")
        raise HTTPException(status_code=503, detail="store unavailable")


@router.get("/api/readings", response_model=List[ReadingOut])
def readings(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    days: float = Query(default=0.125, gt=0, le=365, description="Ventana hacia atrás si no se da start"),
    limit: int = Query(default=1000, ge=1, le=5000),
    context: AppContext = Depends(get_context),
):
    """Lecturas crudas de una ventana, más recientes primero. Por defecto, las últimas 3 horas."""
    end = end or utcnow()
    start = start or end - timedelta(days=days)
    try:
        return context.get_readings(start, end, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/readings")
        raise HTTPException(status_code=503, detail="store unavailable")


@router.get("/api/readings/recent", response_model=List[ReadingOut])
def recent(
    count: int = Query(default=24, ge=1, le=1000),
    context: AppContext = Depends(get_context),
):
    try:
        return context.get_recent(count)
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/readings/recent")
        raise HTTPException(status_code=503, detail="store unavailable")


@router.get("/api/statistics", response_model=StatisticsOut)
def statistics(
    days: int = Query(default=7, ge=1, le=365),
    context: AppContext = Depends(get_context),
):
    try:
        stats = context.get_statistics(days)
    except StoreUnavailable:
        logger.exception("[HTTP] Store unavailable in /api/statistics")
        raise HTTPException(status_code=503, detail="store unavailable")
    return StatisticsOut(days=days, **vars(stats))
