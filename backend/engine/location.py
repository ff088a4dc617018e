"""
Location Validator - anti-teleport and accuracy gate for player positions

Sole write path for player_locations. A ping is checked against the last
accepted position using server-observed elapsed time; the write itself is an
optimistic conditional update so two racing pings for one wallet cannot both
build on the same previous position.
"""
import time
import logging
from typing import Callable, Optional, Tuple

from gateway.anticheat import check_location_plausibility
from gateway.config import LocationPolicy
from gateway.errors import ClaimConflict, LocationRejected, ValidationError
from gateway.geo import is_valid_coordinate
from database import DatabaseConnection, execute_query
from models import PlayerLocation, AnomalyFlag

logger = logging.getLogger(__name__)


def record_anomaly(conn: DatabaseConnection, wallet_address: str, reason: str,
                   detail: Optional[str], flagged_at: float) -> None:
    """Record a plausibility rejection for admin review"""
    execute_query(conn, """
        INSERT INTO anomaly_flags (wallet_address, reason, detail, flagged_at)
        VALUES (?, ?, ?, ?)
    """, (wallet_address, reason, detail, flagged_at))
    conn.commit()


def get_anomaly_flags(conn: DatabaseConnection, wallet_address: str, limit: int = 50) -> list:
    cursor = execute_query(conn, """
        SELECT * FROM anomaly_flags
        WHERE wallet_address = ?
        ORDER BY flagged_at DESC, id DESC
        LIMIT ?
    """, (wallet_address, limit))
    return [AnomalyFlag.from_row(row) for row in cursor.fetchall()]


def get_player_location(conn: DatabaseConnection, wallet_address: str) -> Optional[PlayerLocation]:
    cursor = execute_query(conn, "SELECT * FROM player_locations WHERE wallet_address = ?", (wallet_address,))
    row = cursor.fetchone()
    return PlayerLocation.from_row(row) if row else None


class LocationValidator:
    """Validates and persists player location pings"""

    def __init__(self, policy: LocationPolicy, clock: Callable[[], float] = time.time):
        self.policy = policy
        self.clock = clock

    def validate_location(
        self,
        conn: DatabaseConnection,
        wallet_address: str,
        latitude: float,
        longitude: float,
        accuracy: float,
        client_timestamp: Optional[float] = None,
        display_name: Optional[str] = None
    ) -> Tuple[PlayerLocation, bool]:
        """
        Accept or reject a location ping.

        Args:
            conn: Database connection
            wallet_address: Authenticated wallet identity
            latitude: WGS84 latitude in degrees
            longitude: WGS84 longitude in degrees
            accuracy: Reported horizontal accuracy in meters
            client_timestamp: Client epoch milliseconds (stored for logs only)
            display_name: Optional display name

        Returns:
            Tuple of (stored PlayerLocation, created) where created is True for a first fix

        Raises:
            ValidationError: Malformed input
            LocationRejected: LOCATION_ACCURACY_TOO_LOW or LOCATION_JUMP_REJECTED
        """
        if not wallet_address:
            raise ValidationError(detail="walletAddress is required")
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "latitude/longitude out of range")
        if accuracy < 0:
            raise ValidationError(detail="accuracy must be non-negative")

        for attempt in range(self.policy.max_write_attempts):
            now = self.clock()
            previous = get_player_location(conn, wallet_address)
            prior = None
            if previous is not None:
                prior = (previous.latitude, previous.longitude, previous.last_update_server_time)

            reason, message = check_location_plausibility(
                self.policy, accuracy, latitude, longitude, prior, now
            )
            if reason:
                logger.warning(f"Location rejected for {wallet_address[-8:]}: {reason} ({message})")
                record_anomaly(conn, wallet_address, reason, message, now)
                raise LocationRejected(reason, message)

            if previous is None:
                location = PlayerLocation(
                    wallet_address=wallet_address,
                    latitude=latitude,
                    longitude=longitude,
                    accuracy=accuracy,
                    last_update_server_time=now,
                    last_update_timestamp=client_timestamp,
                    display_name=display_name,
                )
                cursor = execute_query(conn, """
                    INSERT INTO player_locations (wallet_address, display_name, latitude, longitude,
                                                  accuracy, last_update_timestamp,
                                                  last_update_server_time, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (wallet_address) DO NOTHING
                """, (wallet_address, display_name, latitude, longitude, accuracy,
                      client_timestamp, now, now))
                if cursor.rowcount == 1:
                    conn.commit()
                    logger.info(f"First location fix for {wallet_address[-8:]}")
                    return location, True
            else:
                # Never move server time backwards, even if the clock does
                server_time = max(now, previous.last_update_server_time)
                cursor = execute_query(conn, """
                    UPDATE player_locations
                    SET latitude = ?, longitude = ?, accuracy = ?, last_update_timestamp = ?,
                        last_update_server_time = ?, display_name = COALESCE(?, display_name)
                    WHERE wallet_address = ? AND last_update_server_time = ?
                """, (latitude, longitude, accuracy, client_timestamp, server_time,
                      display_name, wallet_address, previous.last_update_server_time))
                if cursor.rowcount == 1:
                    conn.commit()
                    return PlayerLocation(
                        wallet_address=wallet_address,
                        latitude=latitude,
                        longitude=longitude,
                        accuracy=accuracy,
                        last_update_server_time=server_time,
                        last_update_timestamp=client_timestamp,
                        display_name=display_name or previous.display_name,
                    ), False

            conn.commit()
            logger.info(f"Concurrent location write for {wallet_address[-8:]}, retrying (attempt {attempt + 1})")

        raise ClaimConflict("LOCATION_UPDATE_CONFLICT", "Location changed concurrently, retry the update")
