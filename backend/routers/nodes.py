"""Map node endpoints: node listing and the reservation state machine"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query

from database import get_db, DatabaseConnection
from models import require_string, optional_number
from dependencies import get_claim_arbiter, get_spawn_manager, require_wallet
from engine.claims import ClaimArbiter
from engine.spawns import SpawnManager

router = APIRouter(tags=["nodes"])


@router.get("/api/map/nodes")
def get_map_nodes(
    lat: float = Query(...),
    lng: float = Query(...),
    wallet_address: str = Depends(require_wallet),
    db: DatabaseConnection = Depends(get_db),
    spawns: SpawnManager = Depends(get_spawn_manager)
):
    """Personal, hotspot and event nodes around the player, topped up as needed"""
    spawns.ensure_personal_nodes(db, wallet_address, lat, lng)
    spawns.ensure_hotspots(db, lat, lng)
    spawns.ensure_event_nodes(db, wallet_address, lat, lng)
    return spawns.nodes_for_wallet(db, wallet_address, lat, lng)


@router.post("/api/nodes/reserve")
def reserve_node(
    payload: Dict[str, Any] = Body(...),
    wallet_address: str = Depends(require_wallet),
    db: DatabaseConnection = Depends(get_db),
    arbiter: ClaimArbiter = Depends(get_claim_arbiter)
):
    """Hold a node for the reservation TTL"""
    node_id = require_string(payload, "nodeId")
    reservation = arbiter.reserve(db, wallet_address, node_id)
    return reservation.to_dict()


@router.post("/api/nodes/arrive")
def arrive_at_node(
    payload: Dict[str, Any] = Body(...),
    wallet_address: str = Depends(require_wallet),
    db: DatabaseConnection = Depends(get_db),
    arbiter: ClaimArbiter = Depends(get_claim_arbiter)
):
    """Confirm the player is standing at the reserved node"""
    reservation_id = require_string(payload, "reservationId")
    reservation = arbiter.arrive(
        db,
        wallet_address,
        reservation_id,
        optional_number(payload, "lat"),
        optional_number(payload, "lng"),
    )
    return reservation.to_dict()


@router.post("/api/nodes/collect")
def collect_node(
    payload: Dict[str, Any] = Body(...),
    wallet_address: str = Depends(require_wallet),
    db: DatabaseConnection = Depends(get_db),
    arbiter: ClaimArbiter = Depends(get_claim_arbiter)
):
    """Collect an arrived-at node; reward application is left to the caller"""
    reservation_id = require_string(payload, "reservationId")
    reservation = arbiter.collect(db, wallet_address, reservation_id)
    return {"success": True, **reservation.to_dict()}
