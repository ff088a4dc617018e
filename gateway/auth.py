"""Bearer session tokens for authenticated routes"""
import hmac
import hashlib
import time
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 24 * 60 * 60


def _sign(secret: str, message: str) -> str:
    return hmac.new(
        secret.encode(),
        message.encode(),
        hashlib.sha256
    ).hexdigest()


def issue_session_token(secret: str, wallet_address: str, issued_at: Optional[int] = None) -> str:
    """
    Issue a session token for an authenticated wallet.

    Token format: timestamp|wallet_address|signature

    Args:
        secret: Session signing secret
        wallet_address: Identity the token vouches for
        issued_at: Issue time in epoch seconds (defaults to now)

    Returns:
        Session token string
    """
    if not secret:
        raise ValueError("Cannot issue session tokens without a secret")
    if not wallet_address or "|" in wallet_address:
        raise ValueError("Invalid wallet address for session token")

    timestamp = str(int(time.time() if issued_at is None else issued_at))
    signature = _sign(secret, f"{timestamp}|{wallet_address}")
    return f"{timestamp}|{wallet_address}|{signature}"


def verify_session_token(
    secret: str,
    token: str,
    max_age: int = DEFAULT_TOKEN_TTL,
    now: Optional[float] = None
) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate a session token.

    Returns:
        Tuple of (wallet_address, error_message); wallet_address is None on failure
    """
    if not token:
        return None, "Session token missing"

    try:
        timestamp_str, wallet_address, provided_signature = token.split("|")
        timestamp = int(timestamp_str)
    except ValueError:
        return None, "Invalid session token format"

    current_time = int(time.time() if now is None else now)
    age = current_time - timestamp

    if age > max_age:
        return None, f"Session token expired (age: {age}s, max: {max_age}s)"

    if age < 0:
        return None, "Session token timestamp is in the future"

    expected_signature = _sign(secret, f"{timestamp_str}|{wallet_address}")

    # Constant-time comparison
    if not hmac.compare_digest(provided_signature.encode(), expected_signature.encode()):
        return None, "Session token signature invalid"

    return wallet_address, None


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' header"""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None
