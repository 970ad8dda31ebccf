"""
Standalone FastAPI app wiring for the recall engine.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import recall.config as config
from recall.db import DB, dispose_db, init_db
from recall.services.forgetting_service import forgetting_loop
from recall.services.memory_embeddings import build_embedding_provider
from recall.services.memory_service import MemoryService
from app.routes.health import router as health_router


async def _recheck_loop(service: MemoryService) -> None:
    if config.DURABLE_RECHECK_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.DURABLE_RECHECK_SECONDS)
        try:
            await service.store.recheck()
        except Exception as exc:
            config.logger.warning(f"Durable recheck task error: {exc}")


async def _cancel(task) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    engine_config = config.validate_and_prepare_config(config.EngineConfig.from_env())
    init_db()
    service = MemoryService.from_config(
        engine_config,
        session_factory=DB.SessionLocal,
        embedding_provider=build_embedding_provider(),
    )
    app.state.memory_service = service

    forgetting_task = None
    if engine_config.forgetting.interval_seconds > 0:
        forgetting_task = asyncio.create_task(
            forgetting_loop(service.forgetting, engine_config.forgetting.interval_seconds)
        )
    recheck_task = asyncio.create_task(_recheck_loop(service))
    try:
        yield
    finally:
        await _cancel(forgetting_task)
        await _cancel(recheck_task)
        await service.close()
        dispose_db()


app = FastAPI(title="Recall", redirect_slashes=False, lifespan=lifespan)

# Health endpoints
app.include_router(health_router)
