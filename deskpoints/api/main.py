"""
deskpoints.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn deskpoints.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from deskpoints.api.deps import get_engine  # noqa: E402
from deskpoints.api.routes.events import router as events_router  # noqa: E402
from deskpoints.api.routes.jobs import router as jobs_router  # noqa: E402
from deskpoints.api.routes.ledger import router as ledger_router  # noqa: E402
from deskpoints.engine.events import (  # noqa: E402
    EventValidationError,
    LedgerConflictError,
    ScoringError,
)
from deskpoints.services.log_buffer import install_handler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins: CORS_ALLOW_ORIGINS (comma-separated), else FRONTEND_URL."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    # Uvicorn reconfigures logging on startup, so attach the buffer here.
    install_handler()
    engine = get_engine()
    logger.info("deskpoints API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("deskpoints API shutting down")


app = FastAPI(
    title="deskpoints Scoring API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error bodies are always {"error": "..."}
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(EventValidationError)
async def _invalid_event(request: Request, exc: EventValidationError):
    logger.warning("Rejected event: %s", exc)
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(LedgerConflictError)
async def _ledger_conflict(request: Request, exc: LedgerConflictError):
    logger.warning("Refused ledger correction: %s", exc)
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ScoringError)
async def _scoring_failed(request: Request, exc: ScoringError):
    logger.error("Scoring failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


app.include_router(events_router, prefix="/api")
app.include_router(ledger_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
