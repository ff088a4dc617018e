"""Hunt API endpoints: location pings, spawns and catches"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, Response

from gateway.errors import ValidationError
from database import get_db, DatabaseConnection
from models import LocationUpdate, CatchRequest, require_number
from dependencies import (
    get_location_validator, get_claim_arbiter, get_spawn_manager, rate_limit, require_admin,
)
from engine.location import LocationValidator
from engine.claims import ClaimArbiter
from engine.spawns import SpawnManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hunt", tags=["hunt"])


@router.post("/location")
def update_location(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    db: DatabaseConnection = Depends(get_db),
    validator: LocationValidator = Depends(get_location_validator),
    _: None = Depends(rate_limit("location"))
):
    """
    Report the player's position.

    Body: walletAddress, latitude, longitude, accuracy, timestamp (epoch ms, optional),
    displayName (optional).

    Returns 201 for a wallet's first fix, 200 for an update. Implausible readings
    are answered with 422 and LOCATION_ACCURACY_TOO_LOW or LOCATION_JUMP_REJECTED.
    """
    update = LocationUpdate.from_payload(payload)
    location, created = validator.validate_location(
        db,
        update.wallet_address,
        update.latitude,
        update.longitude,
        update.accuracy,
        client_timestamp=update.timestamp,
        display_name=update.display_name,
    )
    response.status_code = 201 if created else 200
    return {"success": True, "location": location.to_dict()}


@router.get("/spawns")
def get_nearby_spawns(
    latitude: float = Query(...),
    longitude: float = Query(...),
    radius: float = Query(500.0, gt=0),
    db: DatabaseConnection = Depends(get_db),
    spawns: SpawnManager = Depends(get_spawn_manager)
):
    """Available spawns within radius meters (capped at 5000), nearest first"""
    nearby = spawns.nearby(db, latitude, longitude, radius)
    return {"spawns": [s.to_dict() for s in nearby], "count": len(nearby)}


@router.post("/spawn")
def spawn_around_player(
    payload: Dict[str, Any] = Body(...),
    db: DatabaseConnection = Depends(get_db),
    spawns: SpawnManager = Depends(get_spawn_manager),
    _: None = Depends(rate_limit("spawn"))
):
    """Create 1-10 spawns around a position (first within 50 m, the rest within 200 m)"""
    latitude = require_number(payload, "latitude")
    longitude = require_number(payload, "longitude")
    count = payload.get("count", 1)
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(detail="count must be an integer")

    created = spawns.create_spawns_around(db, latitude, longitude, count)
    return {"success": True, "spawns": [s.to_dict() for s in created]}


@router.post("/test-spawn")
def create_test_spawn(
    payload: Dict[str, Any] = Body(...),
    db: DatabaseConnection = Depends(get_db),
    spawns: SpawnManager = Depends(get_spawn_manager),
    _: None = Depends(require_admin)
):
    """Admin: create one spawn at an exact point, optionally forcing its rarity"""
    latitude = require_number(payload, "latitude")
    longitude = require_number(payload, "longitude")
    rarity = payload.get("rarity")
    if rarity is not None and not isinstance(rarity, str):
        raise ValidationError("INVALID_RARITY", "rarity must be a string")

    spawn = spawns.create_spawn(db, latitude, longitude, rarity.lower() if rarity else None)
    logger.info(f"Test spawn {spawn.id} ({spawn.rarity}) created at ({latitude:.5f}, {longitude:.5f})")
    return {"success": True, "spawn": spawn.to_dict()}


@router.post("/catch")
def catch_spawn(
    payload: Dict[str, Any] = Body(...),
    db: DatabaseConnection = Depends(get_db),
    arbiter: ClaimArbiter = Depends(get_claim_arbiter),
    _: None = Depends(rate_limit("catch"))
):
    """
    Attempt to catch a spawn.

    Exactly one concurrent attempt wins; the rest get 409 SPAWN_ALREADY_CLAIMED_OR_EXPIRED.
    Reward application is left to the caller.
    """
    request = CatchRequest.from_payload(payload)
    spawn = arbiter.claim_spawn(
        db,
        request.wallet_address,
        request.spawn_id,
        catch_quality=request.catch_quality,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return {"success": True, "spawn": spawn.to_dict(), "catchQuality": spawn.catch_quality}
