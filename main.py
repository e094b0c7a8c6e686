"""
main.py
FastAPI application entry point.
Registers all routers, middleware, startup/shutdown events.

Production-ready features:
- Structured JSON logging
- Business errors rendered as {detail, code}
- Redis-backed rate limiting for unauthenticated callers (fails open)
- Prometheus metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.database import close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.errors.errors import BusinessError
from shared.schemas.schemas import ErrorResponse

# Service routers
from services.case.router import router as case_router
from services.notification.router import router as notification_router
from services.opinion.router import router as opinion_router
from services.ops.router import router as ops_router
from services.payout.router import router as payout_router
from services.practitioner.router import router as practitioner_router
from services.rating.router import router as rating_router
from services.routing.router import router as routing_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.APP_ENV)

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Legal Case Marketplace API

Routing and settlement engine for legal-opinion cases:
- **Routing**: ranked practitioner suggestions by expertise and city
- **Cases**: assignment, accept/decline, reassignment, completion
- **Opinions**: submission, operator review, delivery to the customer
- **Ratings**: one rating per delivered case, lifetime average
- **Payouts**: floor commission, 7-day auto-confirm, batch settlement via RazorpayX
- **Ops**: verification queue, commission and expertise management, dashboards

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.

### Roles
- `CUSTOMER`: view delivered opinions, rate cases
- `PRACTITIONER`: accept/decline cases, submit opinions, view earnings
- `OPERATOR`: assignment, review, verification, payouts
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (outermost first) ───────────────────────────────
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for distributed tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP limit for unauthenticated callers. Bearer traffic is limited
        upstream; health, metrics, docs and the gateway webhook are never limited.
        """
        skip_paths = {"/health", "/payouts/webhook", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths or request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        from config.redis_client import redis_client
        if redis_client:
            client_ip = request.client.host if request.client else "unknown"
            try:
                allowed = await RedisCache(redis_client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
            except Exception as exc:
                # Fail open when Redis is unavailable
                logger.error("Rate limit check failed: %s", exc)
                allowed = True
            if not allowed:
                logger.warning("Rate limit exceeded for IP %s", client_ip)
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded. Please slow down.", "code": "RATE_LIMITED"},
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError):
        level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        logger.log(level, "[%s] %s: %s", getattr(request.state, "request_id", None), exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(detail=exc.message, code=exc.code).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error("[%s] Unhandled exception: %s", request_id, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG else "An internal server error occurred",
                "request_id": request_id,
            },
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from config.redis_client import redis_client
        from sqlalchemy import text
        from config.database import AsyncSessionLocal

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.exception("Health check: database unreachable")
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.exception("Health check: redis unreachable")
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    # Register all service routers
    app.include_router(practitioner_router)
    app.include_router(routing_router)
    app.include_router(case_router)
    app.include_router(opinion_router)
    app.include_router(rating_router)
    app.include_router(payout_router)
    app.include_router(ops_router)
    app.include_router(notification_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
