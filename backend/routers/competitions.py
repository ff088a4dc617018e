"""Competition endpoints proxied to the external competition service"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response
from fastapi.responses import JSONResponse

from gateway.api_client import CompetitionClient
from gateway.errors import Forbidden
from models import ScoreSubmission
from dependencies import get_competition_client, get_score_bridge, rate_limit, require_session
from engine.scores import ScoreBridge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/competitions", tags=["competitions"])


def _ensure_configured(client: CompetitionClient) -> None:
    # Reads are unsigned, but an unconfigured bridge serves nothing
    client.settings.require_secret()


@router.get("/active")
async def get_active_competitions(client: CompetitionClient = Depends(get_competition_client)):
    _ensure_configured(client)
    status, data = await client.get_active()
    return JSONResponse(status_code=status, content=data)


@router.post("/submit-score")
async def submit_score(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    session_wallet: str = Depends(require_session),
    bridge: ScoreBridge = Depends(get_score_bridge),
    _: None = Depends(rate_limit("submit-score"))
):
    """
    Submit a competition score.

    Requires a bearer session token for the submitting wallet. The request is
    HMAC-signed and forwarded; a (competitionId, runId) pair is accepted once.
    """
    submission = ScoreSubmission.from_payload(payload)
    if submission.wallet_address != session_wallet:
        logger.warning(
            f"Score submission for {submission.wallet_address[-8:]} "
            f"by session of {session_wallet[-8:]}"
        )
        raise Forbidden("WALLET_MISMATCH", "Cannot submit scores for another wallet")

    accepted = await bridge.submit(submission)
    response.status_code = accepted.status_code
    return accepted.to_dict()


@router.get("/{competition_id}")
async def get_competition(competition_id: str, client: CompetitionClient = Depends(get_competition_client)):
    _ensure_configured(client)
    status, data = await client.get_competition(competition_id)
    return JSONResponse(status_code=status, content=data)


@router.get("/{competition_id}/leaderboard")
async def get_competition_leaderboard(
    competition_id: str,
    client: CompetitionClient = Depends(get_competition_client)
):
    _ensure_configured(client)
    status, data = await client.get_leaderboard(competition_id)
    return JSONResponse(status_code=status, content=data)


@router.get("/{competition_id}/winners")
async def get_competition_winners(
    competition_id: str,
    client: CompetitionClient = Depends(get_competition_client)
):
    _ensure_configured(client)
    status, data = await client.get_winners(competition_id)
    return JSONResponse(status_code=status, content=data)
