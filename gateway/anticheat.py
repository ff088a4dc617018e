"""Anti-cheat primitives: location plausibility and score-submission signing"""
import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from .config import LocationPolicy
from .geo import haversine_meters, implied_speed_mps

logger = logging.getLogger(__name__)

ACCURACY_TOO_LOW = "LOCATION_ACCURACY_TOO_LOW"
JUMP_REJECTED = "LOCATION_JUMP_REJECTED"

# Receivers reject signatures whose timestamp drifts further than this from their clock
SIGNATURE_FRESHNESS_SECONDS = 300


def check_location_plausibility(
    policy: LocationPolicy,
    accuracy: float,
    new_lat: float,
    new_lng: float,
    previous: Optional[Tuple[float, float, float]] = None,
    now: float = 0.0
) -> Tuple[Optional[str], Optional[str]]:
    """
    Decide whether a location reading is physically plausible.

    Args:
        policy: Accuracy ceiling and maximum travel speed
        accuracy: Reported horizontal accuracy in meters
        new_lat: Reported latitude
        new_lng: Reported longitude
        previous: (lat, lng, server_time) of the last accepted reading, if any
        now: Current server time in epoch seconds

    Returns:
        Tuple of (reason_code, message); both None when the reading is accepted
    """
    if accuracy >= policy.max_accuracy_m:
        return ACCURACY_TOO_LOW, (
            f"Location accuracy {accuracy:.0f}m exceeds limit of {policy.max_accuracy_m:.0f}m"
        )

    if previous is None:
        return None, None

    prev_lat, prev_lng, prev_time = previous
    distance = haversine_meters(prev_lat, prev_lng, new_lat, new_lng)
    # Server-observed elapsed time only; client clocks are not trusted here
    elapsed = now - prev_time
    speed = implied_speed_mps(distance, elapsed)

    if speed > policy.max_speed_mps:
        return JUMP_REJECTED, (
            f"Moved {distance:.0f}m in {max(elapsed, 0.0):.1f}s "
            f"(limit {policy.max_speed_mps:.1f} m/s)"
        )

    return None, None


def format_signature_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing Z"""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_canonical_message(timestamp: str, competition_id: str, wallet_address: str, score: int) -> str:
    return f"{timestamp}:{competition_id}:{wallet_address}:{score}"


def generate_submission_signature(
    secret: str,
    timestamp: str,
    competition_id: str,
    wallet_address: str,
    score: int
) -> str:
    """
    Generate HMAC signature for a competition score submission.

    Args:
        secret: Shared secret with the competition service
        timestamp: Value sent in X-Roachy-Timestamp
        competition_id: Competition identifier
        wallet_address: Submitting wallet
        score: Submitted score

    Returns:
        Hex-encoded HMAC-SHA256 signature
    """
    if not secret:
        raise ValueError("Cannot sign submission without a shared secret")

    message = build_canonical_message(timestamp, competition_id, wallet_address, score)
    return hmac.new(
        secret.encode(),
        message.encode(),
        hashlib.sha256
    ).hexdigest()


def verify_submission_signature(
    secret: str,
    timestamp: str,
    competition_id: str,
    wallet_address: str,
    score: int,
    provided_signature: str,
    now: Optional[datetime] = None,
    max_skew_seconds: int = SIGNATURE_FRESHNESS_SECONDS
) -> Tuple[bool, Optional[str]]:
    """
    Verify a submission signature the way the competition service does.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        signed_at = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return False, "Invalid signature timestamp"

    if signed_at.tzinfo is None:
        signed_at = signed_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    skew = abs((now - signed_at).total_seconds())
    if skew > max_skew_seconds:
        return False, f"Signature timestamp outside freshness window ({skew:.0f}s > {max_skew_seconds}s)"

    expected = generate_submission_signature(secret, timestamp, competition_id, wallet_address, score)

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest((provided_signature or "").encode(), expected.encode()):
        return False, "Signature mismatch"

    return True, None
