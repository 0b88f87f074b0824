from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import uuid

from .config import settings
from .database import create_tables, get_data_store
from .services.container import build_services
from .services.data_store import StoreError, StoreNotConfigured
from .utils.errors import DomainError
from .utils.logging_config import clear_request_context, request_id_var, set_request_context, setup_logging
from .utils.rate_limiter import limiter

from .routers import admin, bookings, health, internal, payments

setup_logging(level=settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting yono booking engine")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    if settings.data_store_backend.lower() != "supabase":
        create_tables()

    store = get_data_store()
    app.state.services = build_services(store, settings)
    logger.info("Services ready")

    yield

    logger.info("Shutting down yono booking engine")
    await store.close()


app = FastAPI(
    title="Yono Booking Engine",
    description="Booking lifecycle and payment webhook reconciliation",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


def error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    """{ok: false, code, message, request_id}"""
    request_id = getattr(request.state, "request_id", None) or request_id_var.get() or None
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "code": code, "message": message, "request_id": request_id},
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    return error_response(request, exc.status_code, exc.code, exc.message)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Row store failure on {exc.table}: {exc}")
    code = "STORE_NOT_CONFIGURED" if isinstance(exc, StoreNotConfigured) else "STORE_UNAVAILABLE"
    return error_response(request, 503, code, "Data store is unavailable, try again later")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else (first.get("msg") or "Invalid request")
    return error_response(request, 400, "VALIDATION_ERROR", message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(request, 429, "RATE_LIMITED", "Too many requests, try again later")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(request, 500, "INTERNAL_ERROR", "Internal server error")


# Include routers
app.include_router(health.router)
app.include_router(bookings.router)
app.include_router(payments.router)
app.include_router(admin.router)
app.include_router(internal.router)


@app.get("/")
async def root():
    return {
        "name": "Yono Booking Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }
