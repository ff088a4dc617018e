"""FastAPI application for the Hunt gateway"""
import sys
from pathlib import Path

# Add project root to Python path when running from backend/ directory
# This allows imports from gateway/ to work
backend_dir = Path(__file__).parent
project_root = backend_dir.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import os
import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from gateway.api_client import CompetitionClient
from gateway.api_config import CompetitionSettings, SecuritySettings
from gateway.config import HuntConfig
from gateway.dedup import RunIdCache
from gateway.errors import GatewayError, RateLimited
from gateway.ratelimit import RateLimiter
from database import get_db, execute_query, DatabaseConnection
from engine.location import LocationValidator
from engine.claims import ClaimArbiter
from engine.spawns import SpawnManager
from engine.scores import ScoreBridge
from routers import hunt, nodes, competitions, admin

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Environment check
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development").lower() == "production"

# Request size limit (in bytes); every hunt body is small JSON
MAX_REQUEST_SIZE = 10 * 1024

# Requests per minute per client IP
RATE_LIMITS = {
    "location": 120,
    "catch": 60,
    "spawn": 10,
    "submit-score": 30,
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # HSTS (only in production with HTTPS)
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Limit request body size to prevent DoS attacks"""

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")

        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content={"error": "VALIDATION_ERROR", "detail": "Invalid Content-Length header"}
                )

            if size > MAX_REQUEST_SIZE:
                client_host = request.client.host if request.client else "unknown"
                logger.warning(
                    f"Request too large: {size} bytes from {client_host} to {request.url.path}"
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": "REQUEST_TOO_LARGE",
                        "detail": f"Request body too large. Maximum size: {MAX_REQUEST_SIZE} bytes"
                    }
                )

        return await call_next(request)


def get_allowed_origins() -> list:
    """Get allowed CORS origins from environment"""
    env = os.getenv("ENVIRONMENT", "development").lower()

    if env == "production":
        origins_str = os.getenv("ALLOWED_ORIGINS", "")
        if origins_str:
            origins = [origin.strip() for origin in origins_str.split(",")]
            logger.info(f"Production CORS origins: {origins}")
            return origins
        logger.warning("Production mode but no ALLOWED_ORIGINS set!")
        return []

    logger.info("Development mode: allowing common localhost origins")
    return [
        "http://localhost:3000",
        "http://localhost:8081",  # Expo web
        "http://localhost:19006",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8081",
    ]


async def run_sweeper(app: FastAPI) -> None:
    """Expire stale spawns/reservations every sweep interval; purge old rows hourly"""
    config: HuntConfig = app.state.hunt_config
    manager: SpawnManager = app.state.spawn_manager
    grace = config.claims.collect_grace_s
    # Honour the same connection override the routes use
    session = contextmanager(app.dependency_overrides.get(get_db, get_db))
    since_purge = 0.0

    def sweep_once(purge: bool) -> None:
        with session() as db:
            manager.sweep_expired(db, collect_grace_s=grace)
            if purge:
                manager.purge_terminal(db)

    while True:
        await asyncio.sleep(config.sweep_interval_s)
        since_purge += config.sweep_interval_s
        purge = since_purge >= config.purge_interval_s
        try:
            await run_in_threadpool(sweep_once, purge)
            if purge:
                since_purge = 0.0
        except Exception as e:
            # Keep sweeping; claims stay correct without it
            logger.error(f"Sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if app.state.hunt_config.sweep_interval_s > 0:
        sweeper = asyncio.create_task(run_sweeper(app))
        logger.info(f"Spawn sweeper running every {app.state.hunt_config.sweep_interval_s:.0f}s")
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        await app.state.competition_client.close()


def create_app(
    hunt_config: Optional[HuntConfig] = None,
    competition_settings: Optional[CompetitionSettings] = None,
    security_settings: Optional[SecuritySettings] = None,
    run_id_cache: Optional[RunIdCache] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rate_limits: Optional[dict] = None
) -> FastAPI:
    """
    Build the gateway application.

    Configuration defaults to the environment; tests pass explicit values and
    an httpx transport standing in for the competition service.
    """
    hunt_config = hunt_config or HuntConfig.from_env()
    competition_settings = competition_settings or CompetitionSettings.from_env()
    security_settings = security_settings or SecuritySettings.from_env()

    app = FastAPI(
        title="Hunt Gateway API",
        description="Location integrity, atomic claims and competition score bridge for Hunt",
        version="1.0.0",
        lifespan=lifespan
    )

    client = CompetitionClient(competition_settings, transport=transport)
    app.state.hunt_config = hunt_config
    app.state.security_settings = security_settings
    app.state.competition_client = client
    app.state.location_validator = LocationValidator(hunt_config.location)
    app.state.claim_arbiter = ClaimArbiter(hunt_config.claims)
    app.state.spawn_manager = SpawnManager(hunt_config.spawns)
    app.state.score_bridge = ScoreBridge(
        competition_settings, client, run_id_cache if run_id_cache is not None else RunIdCache()
    )
    app.state.rate_limiter = RateLimiter(rate_limits or RATE_LIMITS)

    if not competition_settings.shared_secret:
        logger.warning("MOBILE_API_SECRET not set: competition routes will refuse traffic")
    if not security_settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set: admin routes will refuse traffic")

    allowed_origins = get_allowed_origins()

    # Security middleware (order matters - security headers should be last in chain)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins if allowed_origins else ["*"],
        allow_credentials=bool(allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    app.include_router(hunt.router)
    app.include_router(nodes.router)
    app.include_router(competitions.router)
    app.include_router(admin.router)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # 422 is reserved for location rejections
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in errors
        ) or "Invalid request"
        return JSONResponse(status_code=400, content={"error": "VALIDATION_ERROR", "detail": detail})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler - sanitizes errors in production.
        """
        logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

        if IS_PRODUCTION:
            return JSONResponse(
                status_code=500,
                content={"error": "INTERNAL_ERROR", "detail": "Internal server error"}
            )
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "detail": str(exc),
                "type": type(exc).__name__
            }
        )

    @app.get("/")
    async def root():
        return {
            "service": "Hunt Gateway",
            "version": "1.0.0",
            "status": "online"
        }

    @app.get("/api/health")
    def health_check(db: DatabaseConnection = Depends(get_db)):
        """Health check endpoint"""
        try:
            execute_query(db, "SELECT 1")
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {str(e)}"

        return {
            "status": "healthy",
            "database": db_status
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    uvicorn.run(app, host=host, port=port)
