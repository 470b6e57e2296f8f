"""
Planner CRM — mailbox discovery and supplier status proposals.

Wires routers, middleware, error envelopes and the background scheduler.
"""

import asyncio
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from .config import settings
from .database import SessionLocal
from .errors import CRMError
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers import backfill, candidates, mailbox, proposals, statuses
from .schemas.errors import ErrorResponse
from .services.signal_lexicon import seed_statuses

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        seed_statuses(db)
    finally:
        db.close()

    task = None
    if not os.environ.get("TESTING"):
        from .scheduler import start_scheduler

        task = asyncio.create_task(start_scheduler())
    logger.info("Planner CRM started")
    yield
    if task:
        task.cancel()
    await close_clients()


app = FastAPI(title="Planner CRM", version="1.0.0", lifespan=lifespan)
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Request ID + security headers ────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ── Error envelopes ──────────────────────────────────────────────────


def _error(request: Request, status_code: int, message: str, detail: list | None = None):
    body = ErrorResponse(
        error=message,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    if exc.status_code >= 500:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return _error(request, 422, "Validation error", detail)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(request, 400, str(exc))


# ── Routers ──────────────────────────────────────────────────────────

app.include_router(backfill.router)
app.include_router(candidates.router)
app.include_router(proposals.router)
app.include_router(statuses.router)
app.include_router(mailbox.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": app.version}
