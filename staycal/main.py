from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import time
import uuid

from .config import settings
from .database import create_tables
from .exceptions import CalendarError
from .utils.dependencies import allow_all
from .utils.logging_config import clear_request_context, set_request_context, setup_logging
from .utils.metrics import record_http_request
from .utils.rate_limiter import limiter

from .routers import availability, bookings, calendar, health, manual_blocks, metrics, rates

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(settings.log_level, settings.log_json)
    logger.info(f"Starting staycal ({settings.environment})")
    logger.info(f"CORS origins: {settings.cors_origins}")

    create_tables()
    logger.info("Database ready")

    yield

    logger.info("Shutting down staycal")


app = FastAPI(
    title="StayCal Calendar API",
    description="Availability timeline, manual blocks and iCal feeds for rental listings",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter
# Replaced by the host platform with its own permission check
app.state.capability_checker = allow_all
app.state.feed_client = None


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        host_id = request.headers.get("X-Host-ID")
        request.state.request_id = request_id
        request.state.host_id = host_id
        set_request_context(request_id, host_id)

        started = time.time()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        record_http_request(request.method, request.url.path, response.status_code, time.time() - started)
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(CalendarError)
async def calendar_error_handler(request: Request, exc: CalendarError):
    content = {"detail": exc.message}
    if exc.details:
        content["details"] = exc.details
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests, try again later"}
    )


app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(calendar.router)
app.include_router(manual_blocks.router)
app.include_router(bookings.router)
app.include_router(rates.router)
app.include_router(availability.router)


@app.get("/")
async def root():
    return {
        "message": "StayCal Calendar API",
        "version": "1.0.0",
        "docs": "/docs"
    }
