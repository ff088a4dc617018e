"""Admin-only hunt endpoints"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from gateway.errors import ValidationError
from database import get_db, DatabaseConnection, execute_query, HUNT_TABLES
from dependencies import require_admin
from engine.location import get_anomaly_flags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

WIPE_CONFIRM = "wipe"
WIPE_CONFIRM_PHRASE = "I_UNDERSTAND_THIS_DELETES_HUNT_DATA"


def _is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes")


def count_hunt_rows(db: DatabaseConnection) -> Dict[str, int]:
    counts = {}
    for table in HUNT_TABLES:
        cursor = execute_query(db, f"SELECT COUNT(*) AS total FROM {table}")
        counts[table] = int(cursor.fetchone()['total'])
    return counts


@router.post("/hunt/wipe")
def wipe_hunt_data(
    payload: Dict[str, Any] = Body(default={}),
    dry_run: Optional[str] = Query(None, alias="dryRun"),
    db: DatabaseConnection = Depends(get_db),
    _: None = Depends(require_admin)
):
    """
    Delete all hunt data.

    Requires both {"confirm": "wipe"} and the exact confirm2 phrase, even for
    a dry run. ?dryRun=1 reports the row counts and deletes nothing.
    """
    if payload.get("confirm") != WIPE_CONFIRM or payload.get("confirm2") != WIPE_CONFIRM_PHRASE:
        raise ValidationError(
            "CONFIRMATION_REQUIRED",
            f'Send {{"confirm": "{WIPE_CONFIRM}", "confirm2": "{WIPE_CONFIRM_PHRASE}"}} to wipe hunt data'
        )

    counts = count_hunt_rows(db)
    if _is_truthy(dry_run):
        logger.info(f"Hunt wipe dry run: {counts}")
        return {"success": True, "dryRun": True, "counts": counts}

    for table in HUNT_TABLES:
        execute_query(db, f"DELETE FROM {table}")
    db.commit()

    logger.warning(f"Hunt data wiped: {counts}")
    return {"success": True, "dryRun": False, "deleted": counts}


@router.get("/hunt/anomalies")
def list_anomaly_flags(
    wallet_address: str = Query(..., alias="walletAddress", min_length=1),
    limit: int = Query(50, ge=1, le=500),
    db: DatabaseConnection = Depends(get_db),
    _: None = Depends(require_admin)
):
    """Recent location rejections recorded for a wallet"""
    flags = get_anomaly_flags(db, wallet_address, limit)
    return {
        "walletAddress": wallet_address,
        "flags": [
            {"reason": f.reason, "detail": f.detail, "flaggedAt": f.flagged_at}
            for f in flags
        ],
    }
