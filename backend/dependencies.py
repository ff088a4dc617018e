"""FastAPI dependencies: components from app.state and caller identity checks

Components are built once in main.create_app() and stored on app.state; tests
swap them through app.dependency_overrides or by building their own app.
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, Request

from gateway.api_client import CompetitionClient
from gateway.api_config import SecuritySettings
from gateway.auth import parse_bearer, verify_session_token
from gateway.config import HuntConfig
from gateway.errors import Unauthorized, RateLimited
from gateway.ratelimit import RateLimiter
from engine.location import LocationValidator
from engine.claims import ClaimArbiter
from engine.spawns import SpawnManager
from engine.scores import ScoreBridge

logger = logging.getLogger(__name__)


def get_hunt_config(request: Request) -> HuntConfig:
    return request.app.state.hunt_config


def get_security_settings(request: Request) -> SecuritySettings:
    return request.app.state.security_settings


def get_location_validator(request: Request) -> LocationValidator:
    return request.app.state.location_validator


def get_claim_arbiter(request: Request) -> ClaimArbiter:
    return request.app.state.claim_arbiter


def get_spawn_manager(request: Request) -> SpawnManager:
    return request.app.state.spawn_manager


def get_competition_client(request: Request) -> CompetitionClient:
    return request.app.state.competition_client


def get_score_bridge(request: Request) -> ScoreBridge:
    return request.app.state.score_bridge


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_client_ip(request: Request) -> str:
    """Extract client IP address"""
    # Check for forwarded IP (from proxy/load balancer)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(route: str):
    """Dependency factory enforcing the per-route request limit"""
    def check(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        allowed, retry_after = limiter.check(route, get_client_ip(request))
        if not allowed:
            raise RateLimited(retry_after)
    return check


def require_wallet(x_wallet_address: Optional[str] = Header(None)) -> str:
    """Wallet identity from the x-wallet-address header"""
    if not x_wallet_address or not x_wallet_address.strip():
        raise Unauthorized("WALLET_REQUIRED", "Wallet address required")
    return x_wallet_address.strip()


def require_admin(
    x_admin_api_key: Optional[str] = Header(None),
    x_admin_secret: Optional[str] = Header(None),
    settings: SecuritySettings = Depends(get_security_settings)
) -> None:
    """Admin key check; refuses with 503 when no key is configured"""
    expected = settings.require_admin_key()
    provided = x_admin_api_key or x_admin_secret
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Admin request with missing or invalid key")
        raise Unauthorized("ADMIN_UNAUTHORIZED", "Invalid admin credentials")


def require_session(
    authorization: Optional[str] = Header(None),
    settings: SecuritySettings = Depends(get_security_settings)
) -> str:
    """Wallet address vouched for by a bearer session token"""
    secret = settings.require_session_secret()
    token = parse_bearer(authorization)
    if token is None:
        logger.warning("Authenticated route called without bearer token")
        raise Unauthorized("AUTH_REQUIRED", "Authorization bearer token required")

    wallet_address, error = verify_session_token(secret, token, max_age=settings.session_ttl_s)
    if wallet_address is None:
        logger.warning(f"Session token rejected: {error}")
        raise Unauthorized("INVALID_SESSION", error)
    return wallet_address
