"""Data models for the Hunt gateway API"""
import math
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple

from gateway.errors import ValidationError

# Spawn claim states
AVAILABLE = "AVAILABLE"
CLAIMED = "CLAIMED"
EXPIRED = "EXPIRED"

# Reservation states
RESERVED = "RESERVED"
ARRIVED = "ARRIVED"
COLLECTED = "COLLECTED"

NODE_TYPE_PERSONAL = "PERSONAL"
NODE_TYPE_HOTSPOT = "HOTSPOT"
NODE_TYPE_EVENT = "EVENT"


def _get(row, key: str, default=None):
    """Read a column from sqlite3.Row or a RealDictRow"""
    try:
        value = row[key]
    except (KeyError, IndexError):
        return default
    return default if value is None else value


def _opt_float(value) -> Optional[float]:
    return None if value is None else float(value)


def require_string(payload: Dict[str, Any], key: str, max_length: int = 255) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(detail=f"{key} is required")
    if len(value) > max_length:
        raise ValidationError(detail=f"{key} too long (max {max_length} characters)")
    return value.strip()


def require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload.get(key)
    # bool is an int subclass; "true" is not a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(detail=f"{key} must be a number")
    if not math.isfinite(value):
        raise ValidationError(detail=f"{key} must be finite")
    return float(value)


def optional_number(payload: Dict[str, Any], key: str) -> Optional[float]:
    if payload.get(key) is None:
        return None
    return require_number(payload, key)


@dataclass
class PlayerLocation:
    """Last accepted position of a wallet"""
    wallet_address: str
    latitude: float
    longitude: float
    accuracy: float
    last_update_server_time: float
    last_update_timestamp: Optional[float] = None
    display_name: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'PlayerLocation':
        return cls(
            wallet_address=str(row['wallet_address']),
            latitude=float(row['latitude']),
            longitude=float(row['longitude']),
            accuracy=float(row['accuracy']),
            last_update_server_time=float(row['last_update_server_time']),
            last_update_timestamp=_opt_float(_get(row, 'last_update_timestamp')),
            display_name=_get(row, 'display_name'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'walletAddress': self.wallet_address,
            'displayName': self.display_name,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy': self.accuracy,
            'lastUpdateTimestamp': self.last_update_timestamp,
            'lastUpdateServerTime': self.last_update_server_time,
        }


@dataclass
class LocationUpdate:
    """POST /api/hunt/location body"""
    wallet_address: str
    latitude: float
    longitude: float
    accuracy: float
    timestamp: Optional[float] = None
    display_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'LocationUpdate':
        display_name = payload.get('displayName')
        if display_name is not None and not isinstance(display_name, str):
            raise ValidationError(detail="displayName must be a string")
        accuracy = require_number(payload, 'accuracy')
        if accuracy < 0:
            raise ValidationError(detail="accuracy must be non-negative")
        return cls(
            wallet_address=require_string(payload, 'walletAddress'),
            latitude=require_number(payload, 'latitude'),
            longitude=require_number(payload, 'longitude'),
            accuracy=accuracy,
            timestamp=optional_number(payload, 'timestamp'),
            display_name=display_name.strip()[:100] if display_name else None,
        )


@dataclass
class SpawnRecord:
    """Ephemeral, location-anchored collectible"""
    id: str
    latitude: float
    longitude: float
    rarity: str
    name: str
    creature_class: str
    created_at: float
    expires_at: float
    claim_status: str = AVAILABLE
    claimed_by: Optional[str] = None
    claimed_at: Optional[float] = None
    catch_quality: Optional[str] = None
    # Filled by nearby queries only
    distance_m: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> 'SpawnRecord':
        return cls(
            id=str(row['id']),
            latitude=float(row['latitude']),
            longitude=float(row['longitude']),
            rarity=str(row['rarity']),
            name=str(row['name']),
            creature_class=str(row['creature_class']),
            created_at=float(row['created_at']),
            expires_at=float(row['expires_at']),
            claim_status=str(row['claim_status']),
            claimed_by=_get(row, 'claimed_by'),
            claimed_at=_opt_float(_get(row, 'claimed_at')),
            catch_quality=_get(row, 'catch_quality'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'rarity': self.rarity,
            'name': self.name,
            'creatureClass': self.creature_class,
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'claimStatus': self.claim_status,
            'claimedBy': self.claimed_by,
            'claimedAt': self.claimed_at,
            'catchQuality': self.catch_quality,
        }
        if self.distance_m is not None:
            data['distance'] = round(self.distance_m, 1)
        return data


@dataclass
class CatchRequest:
    """POST /api/hunt/catch body"""
    wallet_address: str
    spawn_id: str
    catch_quality: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'CatchRequest':
        latitude = optional_number(payload, 'latitude')
        longitude = optional_number(payload, 'longitude')
        if (latitude is None) != (longitude is None):
            raise ValidationError(detail="latitude and longitude must be sent together")
        quality = payload.get('catchQuality', 'good')
        if not isinstance(quality, str):
            raise ValidationError("INVALID_CATCH_QUALITY", "catchQuality must be a string")
        return cls(
            wallet_address=require_string(payload, 'walletAddress'),
            spawn_id=require_string(payload, 'spawnId'),
            catch_quality=quality.strip().lower(),
            latitude=latitude,
            longitude=longitude,
        )


@dataclass
class MapNode:
    """Reservable map node"""
    id: str
    node_type: str
    latitude: float
    longitude: float
    quality: str
    created_at: float
    expires_at: float
    wallet_address: Optional[str] = None
    active_reservation_id: Optional[str] = None
    reserved_by: Optional[str] = None
    reserved_until: Optional[float] = None
    collected_by: Optional[str] = None
    collected_at: Optional[float] = None
    region_key: Optional[str] = None
    group_id: Optional[str] = None
    event_key: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'MapNode':
        return cls(
            id=str(row['id']),
            node_type=str(row['node_type']),
            latitude=float(row['latitude']),
            longitude=float(row['longitude']),
            quality=str(row['quality']),
            created_at=float(row['created_at']),
            expires_at=float(row['expires_at']),
            wallet_address=_get(row, 'wallet_address'),
            active_reservation_id=_get(row, 'active_reservation_id'),
            reserved_by=_get(row, 'reserved_by'),
            reserved_until=_opt_float(_get(row, 'reserved_until')),
            collected_by=_get(row, 'collected_by'),
            collected_at=_opt_float(_get(row, 'collected_at')),
            region_key=_get(row, 'region_key'),
            group_id=_get(row, 'group_id'),
            event_key=_get(row, 'event_key'),
        )

    def is_held(self, now: float) -> bool:
        return (
            self.active_reservation_id is not None
            and self.reserved_until is not None
            and self.reserved_until > now
        )

    def is_visible_to(self, wallet_address: str) -> bool:
        """Shared nodes are open to everyone; owned nodes only to their owner"""
        return self.wallet_address is None or self.wallet_address == wallet_address

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'nodeType': self.node_type,
            'lat': self.latitude,
            'lng': self.longitude,
            'quality': self.quality,
            'expiresAt': self.expires_at,
        }
        if self.group_id is not None:
            data['groupId'] = self.group_id
        if self.event_key is not None:
            data['eventKey'] = self.event_key
        return data


@dataclass
class ReservationRecord:
    """Time-bounded hold on a map node"""
    id: str
    node_id: str
    wallet_address: str
    status: str
    reserved_at: float
    reserved_until: float
    arrived_at: Optional[float] = None
    collected_at: Optional[float] = None
    # Node quality, joined in for collect responses
    quality: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'ReservationRecord':
        return cls(
            id=str(row['id']),
            node_id=str(row['node_id']),
            wallet_address=str(row['wallet_address']),
            status=str(row['status']),
            reserved_at=float(row['reserved_at']),
            reserved_until=float(row['reserved_until']),
            arrived_at=_opt_float(_get(row, 'arrived_at')),
            collected_at=_opt_float(_get(row, 'collected_at')),
            quality=_get(row, 'quality'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'reservationId': self.id,
            'nodeId': self.node_id,
            'status': self.status,
            'reservedUntil': self.reserved_until,
        }
        if self.arrived_at is not None:
            data['arrivedAt'] = self.arrived_at
        if self.collected_at is not None:
            data['collectedAt'] = self.collected_at
        if self.quality is not None:
            data['quality'] = self.quality
        return data


@dataclass
class ScoreSubmission:
    """Competition score submission"""
    competition_id: str
    wallet_address: str
    display_name: str
    score: int
    run_id: str
    power_ups_used: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ScoreSubmission':
        """Build from the camelCase request body; raises ValidationError"""
        missing = [
            key for key in ('competitionId', 'walletAddress', 'displayName', 'runId')
            if not isinstance(payload.get(key), str) or not payload.get(key).strip()
        ]
        if missing or 'score' not in payload:
            raise ValidationError(detail="Missing required fields")

        score = payload['score']
        if isinstance(score, float) and score.is_integer():
            score = int(score)
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ValidationError(detail="Invalid score")

        power_ups = payload.get('powerUpsUsed')
        if power_ups is None:
            power_ups = []
        if not isinstance(power_ups, list) or not all(isinstance(p, str) for p in power_ups):
            raise ValidationError(detail="powerUpsUsed must be a list of strings")

        return cls(
            competition_id=payload['competitionId'].strip(),
            wallet_address=payload['walletAddress'].strip(),
            display_name=payload['displayName'].strip(),
            score=score,
            run_id=payload['runId'].strip(),
            power_ups_used=list(power_ups),
        )

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.competition_id, self.run_id)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'competitionId': self.competition_id,
            'walletAddress': self.wallet_address,
            'displayName': self.display_name,
            'score': self.score,
            'runId': self.run_id,
            'powerUpsUsed': self.power_ups_used,
        }


@dataclass
class ScoreAccepted:
    """Upstream confirmation of a score submission"""
    status_code: int
    rank: Optional[int] = None
    is_new_high_score: bool = False
    body: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.body)
        data.setdefault('success', True)
        data['rank'] = self.rank
        data['isNewHighScore'] = self.is_new_high_score
        return data


@dataclass
class AnomalyFlag:
    """Recorded physical-plausibility rejection"""
    wallet_address: str
    reason: str
    detail: Optional[str]
    flagged_at: float

    @classmethod
    def from_row(cls, row) -> 'AnomalyFlag':
        return cls(
            wallet_address=str(row['wallet_address']),
            reason=str(row['reason']),
            detail=_get(row, 'detail'),
            flagged_at=float(row['flagged_at']),
        )
