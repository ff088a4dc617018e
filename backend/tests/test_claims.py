"""Tests for atomic spawn claims"""
import threading

import pytest

from conftest import MANILA
from database import Database
from engine.claims import ClaimArbiter, get_spawn
from gateway.errors import ClaimConflict, NotFound, ValidationError
from gateway.geo import offset_point

PLAYER_A = "0xPlayerA00000000001"
PLAYER_B = "0xPlayerB00000000002"


class TestSpawnClaim:

    def test_claim_marks_spawn(self, arbiter, db_connection, spawn, clock):
        claimed = arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id, "perfect")

        assert claimed.claim_status == "CLAIMED"
        assert claimed.claimed_by == PLAYER_A
        assert claimed.claimed_at == clock()
        assert claimed.catch_quality == "perfect"

    def test_second_claim_conflicts(self, arbiter, db_connection, spawn):
        arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

        with pytest.raises(ClaimConflict) as exc:
            arbiter.claim_spawn(db_connection, PLAYER_B, spawn.id)

        assert exc.value.code == "SPAWN_ALREADY_CLAIMED_OR_EXPIRED"
        assert exc.value.status_code == 409
        assert get_spawn(db_connection, spawn.id).claimed_by == PLAYER_A

    def test_same_player_cannot_claim_twice(self, arbiter, db_connection, spawn):
        arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

        with pytest.raises(ClaimConflict):
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

    def test_expired_spawn_cannot_be_claimed(self, arbiter, db_connection, spawn, clock):
        clock.now = spawn.expires_at + 1

        with pytest.raises(ClaimConflict) as exc:
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

        assert exc.value.code == "SPAWN_ALREADY_CLAIMED_OR_EXPIRED"
        assert get_spawn(db_connection, spawn.id).claim_status == "AVAILABLE"

    def test_claim_at_expiry_instant_rejected(self, arbiter, db_connection, spawn, clock):
        clock.now = spawn.expires_at

        with pytest.raises(ClaimConflict):
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

    def test_swept_spawn_cannot_be_claimed(self, arbiter, spawn_manager, db_connection, spawn, clock):
        clock.now = spawn.expires_at + 1
        spawn_manager.sweep_expired(db_connection)
        clock.now = spawn.created_at

        with pytest.raises(ClaimConflict):
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id)

    def test_unknown_spawn(self, arbiter, db_connection):
        with pytest.raises(NotFound) as exc:
            arbiter.claim_spawn(db_connection, PLAYER_A, "no-such-spawn")
        assert exc.value.code == "SPAWN_NOT_FOUND"

    def test_invalid_quality_rejected_without_claiming(self, arbiter, db_connection, spawn):
        with pytest.raises(ValidationError) as exc:
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id, "legendary")

        assert exc.value.code == "INVALID_CATCH_QUALITY"
        assert get_spawn(db_connection, spawn.id).claim_status == "AVAILABLE"

    def test_quality_is_case_insensitive(self, arbiter, db_connection, spawn):
        claimed = arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id, "GREAT")
        assert claimed.catch_quality == "great"


class TestClaimProximity:

    def test_close_enough(self, arbiter, db_connection, spawn):
        lat, lng = offset_point(spawn.latitude, spawn.longitude, 60.0, 180.0)
        claimed = arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id, latitude=lat, longitude=lng)
        assert claimed.claimed_by == PLAYER_A

    def test_too_far(self, arbiter, db_connection, spawn):
        lat, lng = offset_point(spawn.latitude, spawn.longitude, 1000.0, 0.0)

        with pytest.raises(ValidationError) as exc:
            arbiter.claim_spawn(db_connection, PLAYER_A, spawn.id, latitude=lat, longitude=lng)

        assert exc.value.code == "TOO_FAR_FROM_TARGET"
        assert get_spawn(db_connection, spawn.id).claim_status == "AVAILABLE"

    def test_unknown_spawn_with_coordinates(self, arbiter, db_connection):
        with pytest.raises(NotFound):
            arbiter.claim_spawn(db_connection, PLAYER_A, "missing", latitude=MANILA[0], longitude=MANILA[1])


class TestConcurrentClaims:
    """N players race for one spawn; exactly one wins"""

    @pytest.mark.parametrize("contenders", [2, 5, 10])
    def test_exactly_one_winner(self, temp_db, db_connection, spawn, hunt_config, clock, contenders):
        # One connection per player, as separate requests would have
        databases = [Database(temp_db.db_path) for _ in range(contenders)]
        connections = [db.connect() for db in databases]
        barrier = threading.Barrier(contenders)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt(index):
            arbiter = ClaimArbiter(hunt_config.claims, clock=clock)
            barrier.wait()
            try:
                arbiter.claim_spawn(connections[index], f"0xPlayer{index:04d}", spawn.id)
                outcome = "won"
            except ClaimConflict as e:
                outcome = e.code
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(contenders)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        for db in databases:
            db.close()

        assert len(outcomes) == contenders
        assert outcomes.count("won") == 1
        assert outcomes.count("SPAWN_ALREADY_CLAIMED_OR_EXPIRED") == contenders - 1

        stored = get_spawn(db_connection, spawn.id)
        assert stored.claim_status == "CLAIMED"
        assert stored.claimed_by.startswith("0xPlayer")
