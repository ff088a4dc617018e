"""HTTP client for the external competition service"""
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .api_config import CompetitionSettings
from .errors import UpstreamRejected, UpstreamUnavailable

logger = logging.getLogger(__name__)

MOBILE_PREFIX = "/api/mobile/competitions"


class CompetitionClient:
    """
    Async client for the competition service using httpx.

    Every failure mode surfaces as an exception: timeouts, unreachable hosts and
    malformed answers raise UpstreamUnavailable, well-formed error answers raise
    UpstreamRejected. A caller never receives partial data.
    """

    def __init__(self, settings: CompetitionSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.get_base_url()
        self.timeout = settings.timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=20),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        require_object: bool = False
    ) -> Tuple[int, Any]:
        """
        Make a request and return (status_code, parsed JSON body).

        Args:
            method: HTTP method
            endpoint: Path under the base URL
            data: JSON body (POST only)
            headers: Extra request headers
            require_object: Reject 2xx bodies that are not JSON objects
        """
        client = self._get_client()
        try:
            response = await client.request(method, endpoint, json=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Competition API timeout on {endpoint}: {e}")
            raise UpstreamUnavailable(
                "UPSTREAM_TIMEOUT", "Competition server timed out", status_code=504
            )
        except httpx.HTTPError as e:
            logger.error(f"Competition API connection error on {endpoint}: {e}")
            raise UpstreamUnavailable(
                "UPSTREAM_UNAVAILABLE", "Failed to connect to competition server"
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.error(f"Non-JSON response from {endpoint}: {content_type or 'no content type'}")
            raise UpstreamUnavailable(
                "INVALID_UPSTREAM_RESPONSE", "Invalid response from competition server"
            )

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"JSON parse error from {endpoint}: {e}")
            raise UpstreamUnavailable("INVALID_UPSTREAM_RESPONSE", "Invalid JSON response")

        if not response.is_success:
            message = "Request failed"
            if isinstance(result, dict):
                if isinstance(result.get("error"), str):
                    message = result["error"]
                elif isinstance(result.get("message"), str):
                    message = result["message"]
            logger.warning(f"Competition API rejected {method} {endpoint}: {response.status_code} {message}")
            raise UpstreamRejected(response.status_code, message)

        if require_object and not isinstance(result, dict):
            logger.error(f"Unexpected JSON shape from {endpoint}: {type(result).__name__}")
            raise UpstreamUnavailable(
                "INVALID_UPSTREAM_RESPONSE", "Malformed response from competition server"
            )

        return response.status_code, result

    async def get_active(self) -> Tuple[int, Any]:
        return await self._request("GET", f"{MOBILE_PREFIX}/active")

    async def get_competition(self, competition_id: str) -> Tuple[int, Any]:
        return await self._request("GET", f"{MOBILE_PREFIX}/{competition_id}")

    async def get_leaderboard(self, competition_id: str) -> Tuple[int, Any]:
        return await self._request("GET", f"{MOBILE_PREFIX}/{competition_id}/leaderboard")

    async def get_winners(self, competition_id: str) -> Tuple[int, Any]:
        return await self._request("GET", f"{MOBILE_PREFIX}/{competition_id}/winners")

    async def submit_score(
        self,
        payload: Dict[str, Any],
        timestamp: str,
        signature: str
    ) -> Tuple[int, Dict[str, Any]]:
        """Forward a signed score submission"""
        headers = {
            "X-Roachy-Timestamp": timestamp,
            "X-Roachy-Signature": signature,
            "X-Roachy-App-Id": self.settings.app_id,
        }
        return await self._request(
            "POST",
            f"{MOBILE_PREFIX}/submit-score",
            data=payload,
            headers=headers,
            require_object=True,
        )
