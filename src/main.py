"""Entry point for the phone call relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from calls.errors import RelayError
from config.settings import get_settings
from db.base import dispose_db, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await dispose_db()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Call Relay",
    description="Relays phone calls to a realtime voice agent and reports transcripts to chat.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    logging.getLogger(__name__).error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
