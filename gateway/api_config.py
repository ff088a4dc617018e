"""Configuration for the external competition service and gateway secrets"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

DEFAULT_WEBAPP_URL = "https://roachy.games"
DEFAULT_APP_ID = "roachy-games-mobile"


@dataclass(frozen=True)
class CompetitionSettings:
    """Competition bridge settings"""

    # Base URL of the competition service
    base_url: str = DEFAULT_WEBAPP_URL

    # Shared HMAC secret; None means the bridge refuses to operate
    shared_secret: Optional[str] = None

    # Sent as X-Roachy-App-Id
    app_id: str = DEFAULT_APP_ID

    # Timeout for outbound requests (seconds)
    timeout: float = 10.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CompetitionSettings":
        env = os.environ if env is None else env
        return cls(
            base_url=env.get("WEBAPP_URL", DEFAULT_WEBAPP_URL),
            shared_secret=env.get("MOBILE_API_SECRET") or None,
            app_id=env.get("COMPETITION_APP_ID", DEFAULT_APP_ID),
            timeout=float(env.get("COMPETITION_TIMEOUT_SECONDS", "10.0")),
        )

    def get_base_url(self) -> str:
        return self.base_url.rstrip("/")

    def require_secret(self) -> str:
        """Shared secret, or ConfigurationError when unset"""
        if not self.shared_secret:
            raise ConfigurationError(
                "COMPETITION_API_NOT_CONFIGURED",
                "Competition API not configured (MOBILE_API_SECRET missing)"
            )
        return self.shared_secret


@dataclass(frozen=True)
class SecuritySettings:
    """Secrets guarding authenticated and admin-only routes"""
    session_secret: Optional[str] = None
    admin_api_key: Optional[str] = None
    session_ttl_s: int = 24 * 60 * 60

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SecuritySettings":
        env = os.environ if env is None else env
        return cls(
            session_secret=env.get("SESSION_SECRET") or None,
            admin_api_key=env.get("ADMIN_API_KEY") or None,
            session_ttl_s=int(env.get("SESSION_TTL_SECONDS", str(24 * 60 * 60))),
        )

    def require_session_secret(self) -> str:
        if not self.session_secret:
            raise ConfigurationError("AUTH_NOT_CONFIGURED", "Session authentication not configured")
        return self.session_secret

    def require_admin_key(self) -> str:
        if not self.admin_api_key:
            raise ConfigurationError("ADMIN_NOT_CONFIGURED", "Admin API not configured")
        return self.admin_api_key
