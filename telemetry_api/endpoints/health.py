"""Health and readiness endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..context import AppContext
from ..schemas import StatusOut
from .deps import get_context

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: always returns ok if process is running."""
    return {"status": "ok", "service": "Sensor Monitor"}


@router.get("/ready")
def ready(context: AppContext = Depends(get_context)):
    """Readiness probe: checks DB connectivity."""
    if not context.store.ping():
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready"}


@router.get("/api/status", response_model=StatusOut, response_model_exclude_none=True)
def status(context: AppContext = Depends(get_context)):
    """Estado de transporte, dispatcher, cache y última recuperación."""
    return StatusOut.model_validate(context.status(), from_attributes=True)
