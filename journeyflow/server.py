"""FastAPI server for journeyflow.

Run with:
    uvicorn journeyflow.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from journeyflow.api.authoring_routes import router as authoring_router
from journeyflow.api.routes import router
from journeyflow.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from journeyflow.db.database import init_db
from journeyflow.errors import (
    ConfigurationError,
    ConflictError,
    JourneyFlowError,
    NotFoundError,
    OracleError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.services.session_store import SessionStore

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: create tables, the oracle client and the live-session registry."""
    init_db()
    application.state.oracle = TransitionOracle()
    application.state.sessions = SessionStore()
    logger.info("journeyflow ready.")
    yield
    # Live sessions are in-memory only; nothing to persist on shutdown


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="journeyflow",
    description=(
        "Conversation-graph runtime: agent, form and report steps joined by "
        "natural-language transitions, shared through public links."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the editor and the visitor frontend) ───────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header and prefixed
    to the request's log line.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Error mapping ────────────────────────────────────────────────────

_STATUS_BY_ERROR: list[tuple[type[JourneyFlowError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (UnauthorizedError, 401),
    (ConfigurationError, 422),
    (OracleError, 502),
    (PersistenceError, 503),
]


@app.exception_handler(JourneyFlowError)
async def handle_domain_error(request: Request, exc: JourneyFlowError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "?")
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)), 500,
    )
    if isinstance(exc, OracleError):
        # Raw oracle output and transport details stay in the server log
        logger.warning("[%s] Oracle failure in %s: %s", request_id, exc.operation, exc)
        detail = "The assistant could not respond. Please try again."
    else:
        logger.info("[%s] %s: %s", request_id, type(exc).__name__, exc)
        detail = str(exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Log the full traceback server-side, never send it to the client
    logger.exception("[%s] Unhandled error", getattr(request.state, "request_id", "?"))
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again."},
    )


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(authoring_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "journeyflow",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting journeyflow API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "journeyflow.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
