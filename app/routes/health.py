"""
Health endpoints.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException

from recall.services.memory_service import MemoryService
from app.deps import get_memory_service


router = APIRouter()


@router.get("/health")
async def health(service: MemoryService = Depends(get_memory_service)):
    """Health check endpoint."""
    await service.store.recheck()
    status = service.health()
    if not status["store"]["durable_available"]:
        raise HTTPException(status_code=503, detail=status)

    return {
        "service": "Recall",
        "version": "0.1.0",
        "instance_id": os.environ.get("RECALL_INSTANCE_ID", "recall-1"),
        **status,
    }
