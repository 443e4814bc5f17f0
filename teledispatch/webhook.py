"""FastAPI app receiving Telegram updates in webhook mode."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from fastapi import APIRouter, FastAPI, HTTPException, Request
from telegram import Update

if TYPE_CHECKING:
    from teledispatch.engine import Engine

logger = logging.getLogger(__name__)


def build_webhook_router(engine: "Engine") -> APIRouter:
    """Routes for the bot's webhook and a health check."""
    router = APIRouter(prefix="/bot", tags=["telegram"])
    expected_token = engine.config.telegram.bot_token

    @router.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.post("/{token}")
    async def receive_update(token: str, request: Request) -> dict[str, Any]:
        # Unknown tokens look like unknown routes
        if not expected_token or not secrets.compare_digest(token, expected_token):
            raise HTTPException(status_code=404, detail="Not Found")
        try:
            payload = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid JSON") from e
        update = Update.de_json(payload, engine.client.raw_bot)
        if update is None:
            raise HTTPException(status_code=400, detail="Invalid update")
        await engine.client.application.update_queue.put(update)
        return {"ok": True}

    return router


def create_app(engine: "Engine") -> FastAPI:
    """ASGI app that starts and stops the engine with the server."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(title=engine.config.app_name, lifespan=lifespan)
    app.include_router(build_webhook_router(engine))
    return app
