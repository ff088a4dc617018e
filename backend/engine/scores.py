"""
Competition Score Bridge - validate, dedup, sign and forward score submissions

A (competitionId, runId) pair enters the run-id cache only after the
competition service confirms it (200/201), so a failed attempt can be retried
with the same runId. Pairs currently being forwarded are held in an in-flight
set so two concurrent submissions of one run cannot both reach the upstream.
"""
import logging
from typing import Any, Dict, List, Optional, Set

from gateway.anticheat import format_signature_timestamp, generate_submission_signature
from gateway.api_client import CompetitionClient
from gateway.api_config import CompetitionSettings
from gateway.dedup import RunIdCache
from gateway.errors import ClaimConflict, DuplicateRun
from models import ScoreSubmission, ScoreAccepted

logger = logging.getLogger(__name__)

ACCEPTED_STATUSES = (200, 201)


class ScoreBridge:
    """Forwards signed score submissions to the competition service"""

    def __init__(self, settings: CompetitionSettings, client: CompetitionClient, cache: RunIdCache):
        self.settings = settings
        self.client = client
        self.cache = cache
        self._in_flight: Set[str] = set()

    async def submit_score(
        self,
        competition_id: str,
        wallet_address: str,
        display_name: str,
        score: int,
        run_id: str,
        power_ups_used: Optional[List[str]] = None
    ) -> ScoreAccepted:
        """Validate raw fields and forward; see submit()"""
        submission = ScoreSubmission.from_payload({
            'competitionId': competition_id,
            'walletAddress': wallet_address,
            'displayName': display_name,
            'score': score,
            'runId': run_id,
            'powerUpsUsed': power_ups_used,
        })
        return await self.submit(submission)

    async def submit(self, submission: ScoreSubmission) -> ScoreAccepted:
        """
        Forward a validated submission.

        Raises:
            ConfigurationError: Shared secret missing (nothing is sent)
            DuplicateRun: Run already accepted (nothing is sent)
            ClaimConflict: SUBMISSION_IN_PROGRESS
            UpstreamUnavailable / UpstreamRejected: from the competition client
        """
        secret = self.settings.require_secret()

        key = RunIdCache.make_key(*submission.dedup_key)
        if key in self.cache:
            logger.info(f"Duplicate runId rejected: {key}")
            raise DuplicateRun(detail="Score already submitted for this run")
        if key in self._in_flight:
            logger.info(f"Concurrent submission rejected: {key}")
            raise ClaimConflict("SUBMISSION_IN_PROGRESS", "Score for this run is already being submitted")

        self._in_flight.add(key)
        try:
            timestamp = format_signature_timestamp()
            signature = generate_submission_signature(
                secret, timestamp, submission.competition_id,
                submission.wallet_address, submission.score
            )
            status, body = await self.client.submit_score(submission.to_payload(), timestamp, signature)
        finally:
            self._in_flight.discard(key)

        if status in ACCEPTED_STATUSES:
            self.cache.add(key)
        logger.info(
            f"Score {submission.score} for {submission.wallet_address[-8:]} "
            f"in {submission.competition_id} accepted ({status})"
        )
        return _to_accepted(status, body)


def _to_accepted(status: int, body: Dict[str, Any]) -> ScoreAccepted:
    rank = body.get('rank')
    if isinstance(rank, bool) or not isinstance(rank, int):
        rank = None
    return ScoreAccepted(
        status_code=status,
        rank=rank,
        is_new_high_score=body.get('isNewHighScore') is True,
        body=body,
    )
