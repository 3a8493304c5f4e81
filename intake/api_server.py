"""
FastAPI API Server.

Call-ended webhook for the voice platform plus caller and lead endpoints
for the intake team.

Start with:
    uvicorn intake.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intake.api.callers import router as callers_router
from intake.api.leads import router as leads_router
from intake.api.middleware import RequestIdMiddleware
from intake.api.webhooks import router as webhooks_router
from intake.db import StoreError, get_db
from intake.logging_config import get_logger, setup_logging
from intake.services.call_pipeline import CallPipeline
from intake.services.locks import create_keyed_lock

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    logger.info("api_server_starting")
    locks = create_keyed_lock()
    app.state.pipeline = CallPipeline(get_db(), locks)
    yield
    await locks.close()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Intake Extraction Service API",
    description="Claim-number recovery, caller recognition and lead tracking for law-firm intake calls",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (order matters — outermost first)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(webhooks_router)
app.include_router(callers_router)
app.include_router(leads_router)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Store outages answer 503 so webhook senders redeliver."""
    logger.error("store_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Store unavailable, retry later"})


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "intake-extraction-service"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Intake Extraction Service",
        "version": "0.1.0",
        "docs": "/docs",
    }
