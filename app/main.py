import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import admin, bookings, reference, slots, users
from app.core.config import settings, _ENV_FILE
from app.core.db import init_db
from app.services.errors import ServiceError, Unauthorized

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


def _log_configuration() -> None:
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Schedule: %02d:00-%02d:00 (%s), break %02d:00-%02d:00, lead time %d min, booking mode %s",
        settings.opening_hour,
        settings.closing_hour,
        settings.timezone,
        settings.break_start_hour,
        settings.break_end_hour,
        settings.lead_time_minutes,
        settings.booking_mode,
    )
    if settings.mock_auth_allowed:
        logger.warning("Mock LINE login is ENABLED (env=%s). Never use this in production.", settings.env)
    if settings.google_calendar_enabled:
        logger.info("Google Calendar: configured (calendar_id=%s)", settings.google_calendar_id)
    else:
        logger.warning("Google Calendar: NOT configured. Busy intervals and booking mirror are disabled.")
    if not settings.line_push_enabled:
        logger.warning("LINE push: NOT configured. Admin notifications are disabled.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _log_configuration()
    if settings.auto_create_tables:
        await init_db()
        logger.info("Tables created (AUTO_CREATE_TABLES)")
    yield


app = FastAPI(
    title="Tutoring Booking API",
    description="Backend for the LINE mini-app: slots, bookings, users",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Admin-Key"],
)

app.include_router(slots.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(reference.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type, X-Admin-Key",
    }
    origins = settings.cors_origins_list
    if origin and ("*" in origins or origin in origins):
        headers["Access-Control-Allow-Origin"] = origin
    elif origins:
        headers["Access-Control-Allow-Origin"] = origins[0]
    return headers


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    headers = _cors_headers(request.headers.get("origin"))
    if isinstance(exc, Unauthorized):
        headers["WWW-Authenticate"] = "Bearer"
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the real error; the client only ever sees a generic 500 (with CORS so it isn't blocked)."""
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "internal_error"},
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
