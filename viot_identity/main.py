# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""VIOT Identity Server - Main FastAPI application."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from viot_identity.config import configure_logging, settings
from viot_identity.database import async_session_maker, init_db
from viot_identity.exceptions import AccountError, ErrorKind
from viot_identity.routers import admin, auth
from viot_identity.services import otp

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    raw = (settings.cors_origins or "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


async def purge_loop() -> None:
    """Drop one-time codes past their retention window."""
    while True:
        await asyncio.sleep(settings.otp_purge_interval_seconds)
        try:
            async with async_session_maker() as db:
                removed = await otp.purge_expired(db)
            if removed:
                logger.info("Purged %d expired one-time codes", removed)
        except SQLAlchemyError as e:
            logger.warning("One-time code purge failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    await init_db()
    purge_task = asyncio.create_task(purge_loop())
    yield
    purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await purge_task


app = FastAPI(
    title="VIOT Identity Server",
    description="Phone-number based accounts, verification and sessions",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and duration for each request (no body or auth headers)."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


def _error(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "kind": kind.value, "message": message},
    )


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError):
    if exc.kind == ErrorKind.INTERNAL:
        logger.error("Internal failure on %s: %s", request.url.path, exc.message)
    return _error(exc.status_code, exc.kind, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "Invalid request."
    return _error(422, ErrorKind.VALIDATION, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = ErrorKind.NOT_FOUND if exc.status_code == 404 else ErrorKind.VALIDATION
    return _error(exc.status_code, kind, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
    return _error(500, ErrorKind.INTERNAL, "Internal server error.")


# API v1
app.include_router(auth.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("viot_identity.main:app", host=settings.host, port=settings.port)
