"""Hunt policy configuration

Policy values are tunable: defaults match observed production behaviour
(teleport over ~9 km in 1 s rejected, 150 m accuracy rejected, 10 m accepted)
and every one can be overridden from the environment at startup.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

# Spawn rarity draw (reward table). Order matters for the cumulative roll.
RARITY_RATES: Dict[str, float] = {
    "common": 0.60,
    "uncommon": 0.25,
    "rare": 0.10,
    "epic": 0.04,
    "legendary": 0.01,
}

# (name, creature_class) pairs a spawn is drawn from
SPAWN_TEMPLATES: Tuple[Tuple[str, str], ...] = (
    ("Scuttler", "tank"),
    ("Shadow Runner", "assassin"),
    ("Mystic Crawler", "mage"),
    ("Healer Bug", "support"),
    ("Armor Beetle", "tank"),
    ("Night Striker", "assassin"),
    ("Arcane Roach", "mage"),
    ("Guardian Roach", "support"),
)

NODE_QUALITY_WEIGHTS: Dict[str, float] = {
    "POOR": 0.30,
    "GOOD": 0.50,
    "EXCELLENT": 0.20,
}

# (min_m, max_m, weight) buckets for personal node placement
PERSONAL_DISTANCE_BUCKETS: Tuple[Tuple[float, float, float], ...] = (
    (50.0, 150.0, 0.3),
    (150.0, 300.0, 0.4),
    (300.0, 600.0, 0.3),
)

# Shared hotspot clusters lean towards better nodes
HOTSPOT_QUALITY_WEIGHTS: Dict[str, float] = {
    "GOOD": 0.30,
    "GREAT": 0.50,
    "EXCELLENT": 0.20,
}


@dataclass(frozen=True)
class EventWindow:
    """Daily local-time window in which each player gets bonus event nodes"""
    key: str
    start_hour: int
    end_hour: int
    drops: int
    min_m: float
    max_m: float
    ttl_s: float
    quality: str

    def __post_init__(self):
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError(f"{self.key}: hours must satisfy 0 <= start < end <= 24")
        if self.drops < 1:
            raise ValueError(f"{self.key}: drops must be at least 1")
        if not 0 <= self.min_m <= self.max_m:
            raise ValueError(f"{self.key}: distance range must satisfy 0 <= min <= max")

    def contains(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour


EVENT_WINDOWS: Tuple[EventWindow, ...] = (
    EventWindow("NIGHT_HUNT", 20, 23, drops=3, min_m=100.0, max_m=400.0,
                ttl_s=3 * 60 * 60, quality="EXCELLENT"),
    EventWindow("LUNCH_RUSH", 11, 13, drops=2, min_m=50.0, max_m=300.0,
                ttl_s=2 * 60 * 60, quality="GREAT"),
)

# Accepted catch grades, best first
CATCH_QUALITIES: Tuple[str, ...] = ("perfect", "great", "good")


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


@dataclass(frozen=True)
class LocationPolicy:
    """Location Validator thresholds"""
    max_accuracy_m: float = 100.0
    max_speed_mps: float = 50.0
    # Optimistic-write retries when two pings for one wallet race
    max_write_attempts: int = 3

    def __post_init__(self):
        if self.max_accuracy_m <= 0:
            raise ValueError("max_accuracy_m must be positive")
        if self.max_speed_mps <= 0:
            raise ValueError("max_speed_mps must be positive")
        if self.max_write_attempts < 1:
            raise ValueError("max_write_attempts must be at least 1")


@dataclass(frozen=True)
class ClaimPolicy:
    """Claim Arbiter thresholds (spawn catches and node reservations)"""
    catch_distance_m: float = 100.0
    reservation_ttl_s: float = 8 * 60
    arrival_distance_m: float = 50.0
    collect_grace_s: float = 60.0

    def __post_init__(self):
        for name in ("catch_distance_m", "reservation_ttl_s", "arrival_distance_m"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.collect_grace_s < 0:
            raise ValueError("collect_grace_s must be non-negative")


@dataclass(frozen=True)
class SpawnPolicy:
    """Spawn Lifecycle Manager settings"""
    ttl_min_s: float = 15 * 60
    ttl_max_s: float = 30 * 60
    first_spawn_radius_m: float = 50.0
    spawn_radius_m: float = 200.0
    max_spawns_per_request: int = 10
    max_nearby_results: int = 20
    max_nearby_radius_m: float = 5000.0
    personal_nodes_active: int = 5
    node_ttl_s: float = 30 * 60
    region_size_km: float = 5.0
    hotspots_per_region: int = 2
    nodes_per_hotspot: int = 4
    hotspot_anchor_min_m: float = 200.0
    hotspot_anchor_max_m: float = 800.0
    hotspot_cluster_radius_m: float = 100.0
    hotspot_ttl_s: float = 60 * 60
    # Event windows are defined in this fixed local offset (Asia/Manila)
    event_utc_offset_h: float = 8.0
    event_windows: Tuple[EventWindow, ...] = EVENT_WINDOWS
    retention_s: float = 7 * 24 * 60 * 60
    rarity_rates: Dict[str, float] = field(default_factory=lambda: dict(RARITY_RATES))

    def __post_init__(self):
        if not 0 < self.ttl_min_s <= self.ttl_max_s:
            raise ValueError("spawn TTL range must satisfy 0 < min <= max")
        total = sum(self.rarity_rates.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"rarity rates must sum to 1.0, got {total}")
        if self.region_size_km <= 0:
            raise ValueError("region_size_km must be positive")
        if self.hotspots_per_region < 0 or self.nodes_per_hotspot < 1:
            raise ValueError("hotspot counts must be non-negative with at least one node per hotspot")
        if self.hotspot_ttl_s <= 0:
            raise ValueError("hotspot_ttl_s must be positive")


@dataclass(frozen=True)
class HuntConfig:
    """All hunt policies, built once at startup and injected into components"""
    location: LocationPolicy = field(default_factory=LocationPolicy)
    claims: ClaimPolicy = field(default_factory=ClaimPolicy)
    spawns: SpawnPolicy = field(default_factory=SpawnPolicy)
    sweep_interval_s: float = 60.0
    purge_interval_s: float = 60 * 60

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "HuntConfig":
        env = os.environ if env is None else env
        return cls(
            location=LocationPolicy(
                max_accuracy_m=_env_float(env, "HUNT_MAX_ACCURACY_METERS", 100.0),
                max_speed_mps=_env_float(env, "HUNT_MAX_SPEED_MPS", 50.0),
            ),
            claims=ClaimPolicy(
                catch_distance_m=_env_float(env, "HUNT_CATCH_DISTANCE_METERS", 100.0),
                reservation_ttl_s=_env_float(env, "HUNT_RESERVATION_TTL_SECONDS", 8 * 60),
                arrival_distance_m=_env_float(env, "HUNT_ARRIVAL_DISTANCE_METERS", 50.0),
                collect_grace_s=_env_float(env, "HUNT_COLLECT_GRACE_SECONDS", 60.0),
            ),
            spawns=SpawnPolicy(
                ttl_min_s=_env_float(env, "HUNT_SPAWN_TTL_MIN_SECONDS", 15 * 60),
                ttl_max_s=_env_float(env, "HUNT_SPAWN_TTL_MAX_SECONDS", 30 * 60),
            ),
            sweep_interval_s=_env_float(env, "SWEEP_INTERVAL_SECONDS", 60.0),
        )
