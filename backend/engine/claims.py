"""
Claim Arbiter - single-winner claims on spawns and map-node reservations

Every state transition is one conditional UPDATE whose WHERE clause restates
the precondition (status, expiry, current holder). The statement's rowcount
decides the winner; reads before the write only pick the error to report.
No application-level lock is taken.
"""
import time
import uuid
import logging
from typing import Callable, Optional

from gateway.config import ClaimPolicy, CATCH_QUALITIES
from gateway.errors import ClaimConflict, NotFound, ValidationError
from gateway.geo import haversine_meters
from database import DatabaseConnection, execute_query
from models import (
    SpawnRecord, MapNode, ReservationRecord,
    AVAILABLE, CLAIMED, EXPIRED, RESERVED, ARRIVED, COLLECTED,
)

logger = logging.getLogger(__name__)

SPAWN_ALREADY_CLAIMED = "SPAWN_ALREADY_CLAIMED_OR_EXPIRED"


def get_spawn(conn: DatabaseConnection, spawn_id: str) -> Optional[SpawnRecord]:
    cursor = execute_query(conn, "SELECT * FROM spawns WHERE id = ?", (spawn_id,))
    row = cursor.fetchone()
    return SpawnRecord.from_row(row) if row else None


def get_node(conn: DatabaseConnection, node_id: str) -> Optional[MapNode]:
    cursor = execute_query(conn, "SELECT * FROM map_nodes WHERE id = ?", (node_id,))
    row = cursor.fetchone()
    return MapNode.from_row(row) if row else None


def get_reservation(conn: DatabaseConnection, reservation_id: str,
                    wallet_address: Optional[str] = None) -> Optional[ReservationRecord]:
    """Reservation joined with its node's quality, optionally scoped to a wallet"""
    sql = """
        SELECT r.*, n.quality AS quality
        FROM node_reservations r
        JOIN map_nodes n ON n.id = r.node_id
        WHERE r.id = ?
    """
    params = (reservation_id,)
    if wallet_address is not None:
        sql += " AND r.wallet_address = ?"
        params = (reservation_id, wallet_address)
    row = execute_query(conn, sql, params).fetchone()
    return ReservationRecord.from_row(row) if row else None


class ClaimArbiter:
    """Atomic spawn claims and the RESERVED -> ARRIVED -> COLLECTED state machine"""

    def __init__(self, policy: ClaimPolicy, clock: Callable[[], float] = time.time):
        self.policy = policy
        self.clock = clock

    # ------------------------------------------------------------------
    # Spawns
    # ------------------------------------------------------------------

    def claim_spawn(
        self,
        conn: DatabaseConnection,
        actor_id: str,
        spawn_id: str,
        catch_quality: str = "good",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ) -> SpawnRecord:
        """
        Claim a spawn for actor_id.

        Exactly one of any number of concurrent callers wins. Losers, and
        callers targeting an expired spawn, get SPAWN_ALREADY_CLAIMED_OR_EXPIRED.

        Raises:
            ValidationError: Unknown catch quality, or TOO_FAR_FROM_TARGET
            NotFound: SPAWN_NOT_FOUND
            ClaimConflict: SPAWN_ALREADY_CLAIMED_OR_EXPIRED
        """
        quality = (catch_quality or "").lower()
        if quality not in CATCH_QUALITIES:
            raise ValidationError(
                "INVALID_CATCH_QUALITY",
                f"catchQuality must be one of {', '.join(CATCH_QUALITIES)}"
            )

        if latitude is not None and longitude is not None:
            spawn = get_spawn(conn, spawn_id)
            if spawn is None:
                raise NotFound("SPAWN_NOT_FOUND", "Spawn not found")
            distance = haversine_meters(latitude, longitude, spawn.latitude, spawn.longitude)
            if distance > self.policy.catch_distance_m:
                raise ValidationError(
                    "TOO_FAR_FROM_TARGET",
                    f"Too far from spawn ({distance:.0f}m > {self.policy.catch_distance_m:.0f}m)"
                )

        now = self.clock()
        cursor = execute_query(conn, """
            UPDATE spawns
            SET claim_status = ?, claimed_by = ?, claimed_at = ?, catch_quality = ?
            WHERE id = ? AND claim_status = ? AND expires_at > ?
        """, (CLAIMED, actor_id, now, quality, spawn_id, AVAILABLE, now))
        won = cursor.rowcount == 1
        conn.commit()

        if not won:
            if get_spawn(conn, spawn_id) is None:
                raise NotFound("SPAWN_NOT_FOUND", "Spawn not found")
            logger.debug(f"Claim conflict on spawn {spawn_id} for {actor_id[-8:]}")
            raise ClaimConflict(SPAWN_ALREADY_CLAIMED, "Spawn already claimed or expired")

        logger.info(f"Spawn {spawn_id} claimed by {actor_id[-8:]} ({quality})")
        return get_spawn(conn, spawn_id)

    # ------------------------------------------------------------------
    # Node reservations
    # ------------------------------------------------------------------

    def reserve(self, conn: DatabaseConnection, wallet_address: str, node_id: str) -> ReservationRecord:
        """
        Place a hold on a map node.

        Wallet-owned nodes (personal and event drops) can only be held by
        their owner; other wallets see NODE_NOT_FOUND. Shared hotspot nodes
        go to whoever wins the conditional update.

        Re-reserving a node the wallet already holds returns the live
        reservation. Winning a new node releases the wallet's other RESERVED
        hold, so a wallet holds at most one.

        Raises:
            NotFound: NODE_NOT_FOUND
            ClaimConflict: NODE_EXPIRED, NODE_ALREADY_COLLECTED, NODE_ALREADY_RESERVED
        """
        now = self.clock()
        node = get_node(conn, node_id)
        if node is None or not node.is_visible_to(wallet_address):
            raise NotFound("NODE_NOT_FOUND", "Node not found")
        if node.collected_by is not None:
            raise ClaimConflict("NODE_ALREADY_COLLECTED", "Node already collected")
        if node.expires_at <= now:
            raise ClaimConflict("NODE_EXPIRED", "Node expired")

        if node.is_held(now) and node.reserved_by == wallet_address:
            existing = get_reservation(conn, node.active_reservation_id, wallet_address)
            if existing is not None and existing.status in (RESERVED, ARRIVED):
                return existing

        reservation_id = str(uuid.uuid4())
        reserved_until = now + self.policy.reservation_ttl_s

        cursor = execute_query(conn, """
            UPDATE map_nodes
            SET active_reservation_id = ?, reserved_by = ?, reserved_until = ?
            WHERE id = ? AND collected_by IS NULL AND expires_at > ?
              AND (wallet_address IS NULL OR wallet_address = ?)
              AND (active_reservation_id IS NULL OR reserved_until IS NULL OR reserved_until <= ?)
        """, (reservation_id, wallet_address, reserved_until, node_id, now, wallet_address, now))
        if cursor.rowcount != 1:
            conn.commit()
            logger.debug(f"Reserve conflict on node {node_id} for {wallet_address[-8:]}")
            raise ClaimConflict("NODE_ALREADY_RESERVED", "Node is reserved by another player")

        # The hold we displaced (elapsed by construction) can no longer progress
        if node.active_reservation_id:
            execute_query(conn, """
                UPDATE node_reservations SET status = ?
                WHERE id = ? AND status IN (?, ?)
            """, (EXPIRED, node.active_reservation_id, RESERVED, ARRIVED))

        execute_query(conn, """
            INSERT INTO node_reservations (id, node_id, wallet_address, status,
                                           reserved_at, reserved_until)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (reservation_id, node_id, wallet_address, RESERVED, now, reserved_until))

        self._release_other_holds(conn, wallet_address, keep_reservation_id=reservation_id)
        conn.commit()

        logger.info(f"{wallet_address[-8:]} reserved node {node_id[-8:]} until {reserved_until:.0f}")
        return ReservationRecord(
            id=reservation_id,
            node_id=node_id,
            wallet_address=wallet_address,
            status=RESERVED,
            reserved_at=now,
            reserved_until=reserved_until,
            quality=node.quality,
        )

    def _release_other_holds(self, conn: DatabaseConnection, wallet_address: str,
                             keep_reservation_id: str) -> None:
        cursor = execute_query(conn, """
            SELECT id, node_id FROM node_reservations
            WHERE wallet_address = ? AND status = ? AND id != ?
        """, (wallet_address, RESERVED, keep_reservation_id))
        for row in cursor.fetchall():
            released = execute_query(conn, """
                UPDATE node_reservations SET status = ?
                WHERE id = ? AND status = ?
            """, (EXPIRED, row['id'], RESERVED))
            if released.rowcount == 1:
                execute_query(conn, """
                    UPDATE map_nodes
                    SET active_reservation_id = NULL, reserved_by = NULL, reserved_until = NULL
                    WHERE id = ? AND active_reservation_id = ?
                """, (row['node_id'], row['id']))
                logger.info(f"Released previous reservation {row['id']} for {wallet_address[-8:]}")

    def _conflict_for(self, reservation: ReservationRecord, expected_status: str) -> ClaimConflict:
        if reservation.status != expected_status:
            return ClaimConflict(
                "INVALID_RESERVATION_STATE",
                f"Reservation is {reservation.status}, expected {expected_status}"
            )
        return ClaimConflict("RESERVATION_EXPIRED", "Reservation hold has elapsed")

    def arrive(
        self,
        conn: DatabaseConnection,
        wallet_address: str,
        reservation_id: str,
        latitude: Optional[float],
        longitude: Optional[float]
    ) -> ReservationRecord:
        """
        Confirm the player reached the reserved node (RESERVED -> ARRIVED).

        The node hold is extended by the collect grace window.

        Raises:
            ValidationError: Missing coordinates or TOO_FAR_FROM_TARGET
            NotFound: RESERVATION_NOT_FOUND
            ClaimConflict: INVALID_RESERVATION_STATE, RESERVATION_EXPIRED
        """
        if latitude is None or longitude is None:
            raise ValidationError(detail="lat and lng are required")

        now = self.clock()
        reservation = get_reservation(conn, reservation_id, wallet_address)
        if reservation is None:
            raise NotFound("RESERVATION_NOT_FOUND", "Reservation not found")
        node = get_node(conn, reservation.node_id)
        if (reservation.status != RESERVED or reservation.reserved_until <= now
                or node is None or node.expires_at <= now):
            raise self._conflict_for(reservation, RESERVED)

        distance = haversine_meters(latitude, longitude, node.latitude, node.longitude)
        if distance > self.policy.arrival_distance_m:
            raise ValidationError(
                "TOO_FAR_FROM_TARGET",
                f"Too far from node ({distance:.0f}m > {self.policy.arrival_distance_m:.0f}m)"
            )

        hold_until = max(now, reservation.reserved_until) + self.policy.collect_grace_s
        cursor = execute_query(conn, """
            UPDATE node_reservations
            SET status = ?, arrived_at = ?, reserved_until = ?
            WHERE id = ? AND wallet_address = ? AND status = ? AND reserved_until > ?
              AND node_id IN (SELECT id FROM map_nodes WHERE expires_at > ?)
        """, (ARRIVED, now, hold_until, reservation_id, wallet_address, RESERVED, now, now))
        if cursor.rowcount != 1:
            conn.commit()
            current = get_reservation(conn, reservation_id, wallet_address)
            raise self._conflict_for(current or reservation, RESERVED)

        execute_query(conn, """
            UPDATE map_nodes SET reserved_until = ?
            WHERE id = ? AND active_reservation_id = ?
        """, (hold_until, reservation.node_id, reservation_id))
        conn.commit()

        logger.info(f"{wallet_address[-8:]} arrived at node {reservation.node_id[-8:]} ({distance:.0f}m)")
        reservation.status = ARRIVED
        reservation.arrived_at = now
        reservation.reserved_until = hold_until
        return reservation

    def collect(self, conn: DatabaseConnection, wallet_address: str, reservation_id: str) -> ReservationRecord:
        """
        Collect an arrived-at node (ARRIVED -> COLLECTED, terminal).

        The hold set at arrival must still be live, and the node must not be
        more than collect_grace_s past its own expiry. A stale ARRIVED
        reservation the sweeper has not reached yet fails like a swept one.

        Raises:
            NotFound: RESERVATION_NOT_FOUND
            ClaimConflict: INVALID_RESERVATION_STATE, RESERVATION_EXPIRED
        """
        now = self.clock()
        grace = self.policy.collect_grace_s
        reservation = get_reservation(conn, reservation_id, wallet_address)
        if reservation is None:
            raise NotFound("RESERVATION_NOT_FOUND", "Reservation not found")
        if reservation.status != ARRIVED:
            raise self._conflict_for(reservation, ARRIVED)

        cursor = execute_query(conn, """
            UPDATE node_reservations SET status = ?, collected_at = ?
            WHERE id = ? AND wallet_address = ? AND status = ? AND reserved_until > ?
        """, (COLLECTED, now, reservation_id, wallet_address, ARRIVED, now))
        if cursor.rowcount != 1:
            conn.commit()
            current = get_reservation(conn, reservation_id, wallet_address)
            logger.debug(f"Collect of reservation {reservation_id} by {wallet_address[-8:]} missed")
            raise self._conflict_for(current or reservation, ARRIVED)

        cursor = execute_query(conn, """
            UPDATE map_nodes
            SET collected_by = ?, collected_at = ?, reserved_until = NULL
            WHERE id = ? AND collected_by IS NULL AND active_reservation_id = ?
              AND expires_at + ? > ?
        """, (wallet_address, now, reservation.node_id, reservation_id, grace, now))
        if cursor.rowcount != 1:
            # Hold was taken over or the node lapsed; undo our half
            execute_query(conn, """
                UPDATE node_reservations SET status = ?, collected_at = NULL
                WHERE id = ? AND status = ?
            """, (EXPIRED, reservation_id, COLLECTED))
            conn.commit()
            logger.warning(f"Collect of node {reservation.node_id} by {wallet_address[-8:]} lost its hold")
            raise ClaimConflict("RESERVATION_EXPIRED", "Reservation hold has elapsed")
        conn.commit()

        logger.info(f"{wallet_address[-8:]} collected node {reservation.node_id[-8:]} ({reservation.quality})")
        reservation.status = COLLECTED
        reservation.collected_at = now
        return reservation
