"""
Spawn Lifecycle Manager - creation, nearby queries, expiry sweeps and purges

Spawns and map nodes are ephemeral. Sweeping only moves records that are
already past their deadline and relies on the Claim Arbiter's conditional
writes for correctness, so it can run alongside live claims.
"""
import math
import time
import uuid
import random
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from gateway.config import (
    SpawnPolicy, EventWindow, SPAWN_TEMPLATES, NODE_QUALITY_WEIGHTS, HOTSPOT_QUALITY_WEIGHTS,
    PERSONAL_DISTANCE_BUCKETS,
)
from gateway.errors import ValidationError
from gateway.geo import (
    bounding_box, haversine_meters, is_valid_coordinate, random_point_in_radius, region_key,
)
from database import DatabaseConnection, execute_query
from models import (
    SpawnRecord, MapNode,
    AVAILABLE, CLAIMED, EXPIRED, RESERVED, ARRIVED, COLLECTED,
    NODE_TYPE_PERSONAL, NODE_TYPE_HOTSPOT, NODE_TYPE_EVENT,
)

logger = logging.getLogger(__name__)


def weighted_choice(rng: random.Random, weights: Dict[str, float]) -> str:
    """Cumulative roll over an ordered weight table"""
    roll = rng.random() * sum(weights.values())
    cumulative = 0.0
    for key, weight in weights.items():
        cumulative += weight
        if roll < cumulative:
            return key
    return list(weights)[-1]


class SpawnManager:
    """Creates, lists and expires spawns and map nodes"""

    def __init__(self, policy: SpawnPolicy, rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.time):
        self.policy = policy
        self.rng = rng or random.Random()
        self.clock = clock

    def roll_rarity(self) -> str:
        return weighted_choice(self.rng, self.policy.rarity_rates)

    def create_spawn(self, conn: DatabaseConnection, latitude: float, longitude: float,
                     rarity: Optional[str] = None) -> SpawnRecord:
        """Create one AVAILABLE spawn at the given point"""
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "latitude/longitude out of range")
        if rarity is None:
            rarity = self.roll_rarity()
        elif rarity not in self.policy.rarity_rates:
            raise ValidationError("INVALID_RARITY", f"Unknown rarity: {rarity}")

        name, creature_class = self.rng.choice(SPAWN_TEMPLATES)
        now = self.clock()
        spawn = SpawnRecord(
            id=str(uuid.uuid4()),
            latitude=latitude,
            longitude=longitude,
            rarity=rarity,
            name=name,
            creature_class=creature_class,
            created_at=now,
            expires_at=now + self.rng.uniform(self.policy.ttl_min_s, self.policy.ttl_max_s),
        )
        execute_query(conn, """
            INSERT INTO spawns (id, latitude, longitude, rarity, name, creature_class,
                                created_at, expires_at, claim_status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (spawn.id, spawn.latitude, spawn.longitude, spawn.rarity, spawn.name,
              spawn.creature_class, spawn.created_at, spawn.expires_at, AVAILABLE))
        conn.commit()
        return spawn

    def create_spawns_around(self, conn: DatabaseConnection, latitude: float, longitude: float,
                             count: int = 1) -> List[SpawnRecord]:
        """Scatter spawns around a player: the first close by, the rest wider"""
        if not 1 <= count <= self.policy.max_spawns_per_request:
            raise ValidationError(
                detail=f"count must be between 1 and {self.policy.max_spawns_per_request}"
            )
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "latitude/longitude out of range")

        spawns = []
        for i in range(count):
            radius = self.policy.first_spawn_radius_m if i == 0 else self.policy.spawn_radius_m
            lat, lng = random_point_in_radius(latitude, longitude, 0.0, radius, self.rng)
            spawns.append(self.create_spawn(conn, lat, lng))

        logger.info(f"Created {len(spawns)} spawns around ({latitude:.5f}, {longitude:.5f})")
        return spawns

    def nearby(self, conn: DatabaseConnection, latitude: float, longitude: float,
               radius_m: float) -> List[SpawnRecord]:
        """
        AVAILABLE, unexpired spawns within radius_m, nearest first.

        A bounding box narrows the SQL scan; haversine decides membership.
        """
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "latitude/longitude out of range")
        if not (radius_m > 0 and math.isfinite(radius_m)):
            raise ValidationError(detail="radius must be positive")
        radius_m = min(radius_m, self.policy.max_nearby_radius_m)

        now = self.clock()
        min_lat, max_lat, min_lng, max_lng = bounding_box(latitude, longitude, radius_m)
        sql = """
            SELECT * FROM spawns
            WHERE claim_status = ? AND expires_at > ?
              AND latitude BETWEEN ? AND ?
        """
        params: Tuple = (AVAILABLE, now, min_lat, max_lat)
        if max_lng - min_lng >= 360:
            pass  # near a pole every longitude qualifies
        elif min_lng < -180 or max_lng > 180:
            # Box wraps the antimeridian
            sql += " AND (longitude >= ? OR longitude <= ?)"
            params += ((min_lng + 360) if min_lng < -180 else min_lng,
                       (max_lng - 360) if max_lng > 180 else max_lng)
        else:
            sql += " AND longitude BETWEEN ? AND ?"
            params += (min_lng, max_lng)

        results = []
        for row in execute_query(conn, sql, params).fetchall():
            spawn = SpawnRecord.from_row(row)
            distance = haversine_meters(latitude, longitude, spawn.latitude, spawn.longitude)
            if distance <= radius_m:
                spawn.distance_m = distance
                results.append(spawn)

        results.sort(key=lambda s: s.distance_m)
        return results[:self.policy.max_nearby_results]

    def sweep_expired(self, conn: DatabaseConnection, now: Optional[float] = None,
                      collect_grace_s: float = 0.0) -> int:
        """
        Expire everything past its deadline.

        Spawns: AVAILABLE -> EXPIRED. Reservations: holds that elapsed, RESERVED
        ones whose node expired, ARRIVED ones whose node expired more than
        collect_grace_s ago. Node holds pointing at expired reservations are
        cleared.

        Returns:
            Number of spawns expired
        """
        now = self.clock() if now is None else now

        cursor = execute_query(conn, """
            UPDATE spawns SET claim_status = ?
            WHERE claim_status = ? AND expires_at <= ?
        """, (EXPIRED, AVAILABLE, now))
        expired_spawns = cursor.rowcount

        cursor = execute_query(conn, """
            UPDATE node_reservations SET status = ?
            WHERE (status IN (?, ?) AND reserved_until <= ?)
               OR (status = ? AND node_id IN (SELECT id FROM map_nodes WHERE expires_at <= ?))
               OR (status = ? AND node_id IN (SELECT id FROM map_nodes WHERE expires_at <= ?))
        """, (EXPIRED, RESERVED, ARRIVED, now, RESERVED, now, ARRIVED, now - collect_grace_s))
        expired_reservations = cursor.rowcount

        execute_query(conn, """
            UPDATE map_nodes
            SET active_reservation_id = NULL, reserved_by = NULL, reserved_until = NULL
            WHERE collected_by IS NULL AND active_reservation_id IN (
                SELECT id FROM node_reservations WHERE status = ?
            )
        """, (EXPIRED,))
        conn.commit()

        if expired_spawns or expired_reservations:
            logger.info(f"Sweep expired {expired_spawns} spawns and {expired_reservations} reservations")
        return expired_spawns

    def purge_terminal(self, conn: DatabaseConnection, older_than_seconds: Optional[float] = None) -> int:
        """
        Delete terminal spawns and dead nodes older than the retention window.

        Returns:
            Number of spawn and node rows deleted
        """
        retention = self.policy.retention_s if older_than_seconds is None else older_than_seconds
        cutoff = self.clock() - retention

        cursor = execute_query(conn, """
            DELETE FROM spawns
            WHERE claim_status IN (?, ?) AND expires_at <= ?
        """, (CLAIMED, EXPIRED, cutoff))
        deleted = cursor.rowcount

        execute_query(conn, """
            DELETE FROM node_reservations
            WHERE node_id IN (SELECT id FROM map_nodes WHERE expires_at <= ?)
        """, (cutoff,))
        cursor = execute_query(conn, "DELETE FROM map_nodes WHERE expires_at <= ?", (cutoff,))
        deleted += cursor.rowcount
        conn.commit()

        if deleted:
            logger.info(f"Purged {deleted} terminal spawn/node rows older than {retention:.0f}s")
        return deleted

    # ------------------------------------------------------------------
    # Map nodes
    # ------------------------------------------------------------------

    def _pick_distance(self) -> float:
        weights = {i: bucket[2] for i, bucket in enumerate(PERSONAL_DISTANCE_BUCKETS)}
        low, high, _ = PERSONAL_DISTANCE_BUCKETS[weighted_choice(self.rng, weights)]
        return self.rng.uniform(low, high)

    def _insert_node(self, conn: DatabaseConnection, node: MapNode) -> bool:
        """Insert a node unless its id already exists; True when this call created it"""
        cursor = execute_query(conn, """
            INSERT INTO map_nodes (id, node_type, wallet_address, latitude, longitude,
                                   quality, created_at, expires_at, region_key, group_id, event_key)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO NOTHING
        """, (node.id, node.node_type, node.wallet_address, node.latitude, node.longitude,
              node.quality, node.created_at, node.expires_at, node.region_key,
              node.group_id, node.event_key))
        return cursor.rowcount == 1

    def ensure_personal_nodes(self, conn: DatabaseConnection, wallet_address: str,
                              latitude: float, longitude: float) -> List[MapNode]:
        """Top the wallet up to personal_nodes_active live, uncollected nodes"""
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "lat/lng out of range")

        now = self.clock()
        live = execute_query(conn, """
            SELECT COUNT(*) AS live FROM map_nodes
            WHERE wallet_address = ? AND node_type = ? AND expires_at > ? AND collected_by IS NULL
        """, (wallet_address, NODE_TYPE_PERSONAL, now)).fetchone()["live"]

        region = region_key(latitude, longitude, self.policy.region_size_km)
        created = []
        for _ in range(max(0, self.policy.personal_nodes_active - live)):
            distance = self._pick_distance()
            lat, lng = random_point_in_radius(latitude, longitude, distance, distance, self.rng)
            node = MapNode(
                id=str(uuid.uuid4()),
                node_type=NODE_TYPE_PERSONAL,
                latitude=lat,
                longitude=lng,
                quality=weighted_choice(self.rng, NODE_QUALITY_WEIGHTS),
                created_at=now,
                expires_at=now + self.policy.node_ttl_s,
                wallet_address=wallet_address,
                region_key=region,
            )
            self._insert_node(conn, node)
            created.append(node)
        conn.commit()

        if created:
            logger.info(f"Spawned {len(created)} personal nodes for {wallet_address[-8:]}")
        return created

    # ------------------------------------------------------------------
    # Hotspots and event nodes
    # ------------------------------------------------------------------

    def ensure_hotspots(self, conn: DatabaseConnection, latitude: float,
                        longitude: float) -> List[MapNode]:
        """
        Make sure the player's region has its shared hotspot clusters.

        Hotspots belong to no wallet: every player in the region sees the same
        nodes and the first reservation wins. A region is refilled only once all
        of its hotspot nodes have expired.

        Group ids are derived from the region and the current hotspot period, so
        two requests racing to fill one region insert each group once; the
        loser of a group's first insert leaves that group alone.

        Returns:
            Nodes created by this call
        """
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "lat/lng out of range")

        policy = self.policy
        now = self.clock()
        region = region_key(latitude, longitude, policy.region_size_km)
        live = execute_query(conn, """
            SELECT COUNT(*) AS live FROM map_nodes
            WHERE node_type = ? AND region_key = ? AND expires_at > ?
        """, (NODE_TYPE_HOTSPOT, region, now)).fetchone()["live"]
        if live > 0:
            return []

        period = int(now // policy.hotspot_ttl_s)
        created = []
        for h in range(policy.hotspots_per_region):
            group_id = f"{region}_HS{h}_{period}"
            anchor_lat, anchor_lng = random_point_in_radius(
                latitude, longitude, policy.hotspot_anchor_min_m, policy.hotspot_anchor_max_m, self.rng
            )
            for n in range(policy.nodes_per_hotspot):
                lat, lng = random_point_in_radius(
                    anchor_lat, anchor_lng, 0.0, policy.hotspot_cluster_radius_m, self.rng
                )
                node = MapNode(
                    id=f"{group_id}_{n}",
                    node_type=NODE_TYPE_HOTSPOT,
                    latitude=lat,
                    longitude=lng,
                    quality=weighted_choice(self.rng, HOTSPOT_QUALITY_WEIGHTS),
                    created_at=now,
                    expires_at=now + policy.hotspot_ttl_s,
                    region_key=region,
                    group_id=group_id,
                )
                if not self._insert_node(conn, node):
                    break
                created.append(node)
        conn.commit()

        if created:
            logger.info(f"Created {len(created)} hotspot nodes in region {region}")
        return created

    def active_event_window(self, now: Optional[float] = None) -> Optional[Tuple[EventWindow, str]]:
        """The event window open at now and its per-day key (e.g. NIGHT_HUNT_20250614)"""
        now = self.clock() if now is None else now
        local = datetime.fromtimestamp(now, tz=timezone(timedelta(hours=self.policy.event_utc_offset_h)))
        for window in self.policy.event_windows:
            if window.contains(local.hour):
                return window, f"{window.key}_{local:%Y%m%d}"
        return None

    def ensure_event_nodes(self, conn: DatabaseConnection, wallet_address: str,
                           latitude: float, longitude: float) -> List[MapNode]:
        """Drop this wallet's event nodes while an event window is open, once per event day"""
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("INVALID_COORDINATES", "lat/lng out of range")

        active = self.active_event_window()
        if active is None:
            return []
        window, event_key = active

        existing = execute_query(conn, """
            SELECT COUNT(*) AS dropped FROM map_nodes
            WHERE wallet_address = ? AND node_type = ? AND event_key = ?
        """, (wallet_address, NODE_TYPE_EVENT, event_key)).fetchone()["dropped"]
        if existing >= window.drops:
            return []

        now = self.clock()
        region = region_key(latitude, longitude, self.policy.region_size_km)
        created = []
        for i in range(window.drops):
            lat, lng = random_point_in_radius(latitude, longitude, window.min_m, window.max_m, self.rng)
            node = MapNode(
                # Stable per (wallet, event day, slot) so repeated polls never over-drop
                id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"{wallet_address}/{event_key}/{i}")),
                node_type=NODE_TYPE_EVENT,
                latitude=lat,
                longitude=lng,
                quality=window.quality,
                created_at=now,
                expires_at=now + window.ttl_s,
                wallet_address=wallet_address,
                region_key=region,
                event_key=event_key,
            )
            if self._insert_node(conn, node):
                created.append(node)
        conn.commit()

        if created:
            logger.info(f"Dropped {len(created)} {event_key} event nodes for {wallet_address[-8:]}")
        return created

    def nodes_for_wallet(self, conn: DatabaseConnection, wallet_address: str,
                         latitude: float, longitude: float,
                         radius_m: Optional[float] = None) -> Dict[str, List[dict]]:
        """
        Live nodes around the player with this wallet's reservation status.

        Returns {"personalNodes", "hotspots", "events"}, each nearest first.
        Hotspots come from the player's region; ones another wallet already
        collected are left out.
        """
        radius_m = radius_m or self.policy.max_nearby_radius_m
        now = self.clock()
        region = region_key(latitude, longitude, self.policy.region_size_km)
        cursor = execute_query(conn, """
            SELECT * FROM map_nodes
            WHERE expires_at > ?
              AND ((wallet_address = ? AND node_type IN (?, ?))
                   OR (node_type = ? AND region_key = ?))
        """, (now, wallet_address, NODE_TYPE_PERSONAL, NODE_TYPE_EVENT, NODE_TYPE_HOTSPOT, region))
        nodes = [MapNode.from_row(row) for row in cursor.fetchall()]

        cursor = execute_query(conn, """
            SELECT id, node_id, status, reserved_until FROM node_reservations
            WHERE wallet_address = ? AND status IN (?, ?, ?)
        """, (wallet_address, RESERVED, ARRIVED, COLLECTED))
        by_node = {row['node_id']: row for row in cursor.fetchall()}

        grouped: Dict[str, List[dict]] = {"personalNodes": [], "hotspots": [], "events": []}
        sections = {
            NODE_TYPE_PERSONAL: "personalNodes",
            NODE_TYPE_HOTSPOT: "hotspots",
            NODE_TYPE_EVENT: "events",
        }
        for node in nodes:
            if node.collected_by is not None and node.collected_by != wallet_address:
                continue
            distance = haversine_meters(latitude, longitude, node.latitude, node.longitude)
            if distance > radius_m:
                continue
            entry = node.to_dict()
            entry['distance'] = round(distance, 1)
            reservation = by_node.get(node.id)
            if reservation is not None:
                entry['status'] = reservation['status']
                entry['reservationId'] = reservation['id']
                entry['reservedUntil'] = float(reservation['reserved_until'])
            elif node.collected_by is not None:
                entry['status'] = COLLECTED
            elif node.is_held(now):
                entry['status'] = "RESERVED_BY_OTHER"
            else:
                entry['status'] = AVAILABLE
            grouped[sections[node.node_type]].append(entry)

        for entries in grouped.values():
            entries.sort(key=lambda e: e['distance'])
        return grouped
