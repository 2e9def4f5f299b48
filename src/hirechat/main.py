# src/hirechat/main.py
"""Main entry point for the HireChat sync service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from hirechat.api.v1 import system_router
from hirechat.core.logging import setup_logging
from hirechat.core.settings import settings
from hirechat.services.chat_client import load_chat_config
from hirechat.services.chat_service import ChatService, build_chat_service

logger = logging.getLogger(__name__)

app = FastAPI(
    title="HireChat Sync",
    description="Keeps chat rooms and identities in step with hiring platform records",
    version=settings.app_version,
)

app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    setup_logging(settings.log_level)
    app.state.chat_service = build_chat_service(load_chat_config(settings))


@app.on_event("shutdown")
async def on_shutdown() -> None:
    chat_service: ChatService | None = getattr(app.state, "chat_service", None)
    if chat_service is not None:
        await chat_service.close()
        app.state.chat_service = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("hirechat.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
