"""Pytest configuration and fixtures for backend tests"""
import pytest
import random
import tempfile
import os
import sys
from pathlib import Path

import httpx
from fastapi.testclient import TestClient

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
project_root = backend_dir.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from gateway.api_config import CompetitionSettings, SecuritySettings
from gateway.auth import issue_session_token
from gateway.config import HuntConfig
from gateway.dedup import RunIdCache
from database import Database, get_db, execute_query
from engine.location import LocationValidator
from engine.claims import ClaimArbiter
from engine.spawns import SpawnManager
from main import create_app

ADMIN_KEY = "test-admin-key"
SESSION_SECRET = "test-session-secret"
SHARED_SECRET = "test-shared-secret"
UPSTREAM_URL = "https://competitions.test"

# Manila, the reference scenario
MANILA = (14.5995, 120.9842)


class FakeClock:
    """Controllable epoch-seconds clock"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeCompetitionService:
    """Stands in for the competition service behind an httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.responder = self.default_responder

    @staticmethod
    def default_responder(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"success": True, "rank": 3, "isNewHighScore": True})
        return httpx.Response(200, json={"competitions": [{"id": "comp-1", "status": "active"}]})

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.responder(request)

    @property
    def submissions(self):
        return [r for r in self.requests if r.method == "POST"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def insert_node(conn, latitude, longitude, expires_at, node_id="node-1",
                wallet_address=None, quality="GOOD", created_at=None, node_type="PERSONAL"):
    """Insert a map node directly"""
    execute_query(conn, """
        INSERT INTO map_nodes (id, node_type, wallet_address, latitude, longitude,
                               quality, created_at, expires_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (node_id, node_type, wallet_address, latitude, longitude, quality,
          created_at if created_at is not None else expires_at - 1800, expires_at))
    conn.commit()
    return node_id


def db_override(db):
    """get_db replacement handing each request its own connection to db"""
    def override_get_db():
        with db.session() as conn:
            yield conn
    return override_get_db


@pytest.fixture
def temp_db():
    """Create a temporary database for testing"""
    fd, temp_path = tempfile.mkstemp(suffix='.db')
    os.close(fd)

    db = Database(temp_path)

    yield db

    db.close()
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def db_connection(temp_db):
    """Get database connection from temp database"""
    conn = temp_db.connect()
    yield conn
    # Connection will be closed by temp_db fixture


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hunt_config():
    # Sweeper off; tests drive sweeps explicitly
    return HuntConfig(sweep_interval_s=0)


@pytest.fixture
def validator(hunt_config, clock):
    return LocationValidator(hunt_config.location, clock=clock)


@pytest.fixture
def arbiter(hunt_config, clock):
    return ClaimArbiter(hunt_config.claims, clock=clock)


@pytest.fixture
def spawn_manager(hunt_config, clock):
    return SpawnManager(hunt_config.spawns, rng=random.Random(42), clock=clock)


@pytest.fixture
def competition_settings():
    return CompetitionSettings(base_url=UPSTREAM_URL, shared_secret=SHARED_SECRET, timeout=2.0)


@pytest.fixture
def security_settings():
    return SecuritySettings(session_secret=SESSION_SECRET, admin_api_key=ADMIN_KEY)


@pytest.fixture
def upstream():
    return FakeCompetitionService()


@pytest.fixture
def run_id_cache():
    return RunIdCache()


@pytest.fixture
def app(hunt_config, competition_settings, security_settings, run_id_cache, upstream, clock):
    """Gateway app with test settings and a fake competition service"""
    application = create_app(
        hunt_config=hunt_config,
        competition_settings=competition_settings,
        security_settings=security_settings,
        run_id_cache=run_id_cache,
        transport=upstream.transport(),
    )
    application.state.location_validator.clock = clock
    application.state.claim_arbiter.clock = clock
    application.state.spawn_manager.clock = clock
    application.state.spawn_manager.rng = random.Random(7)
    return application


@pytest.fixture
def client(app, temp_db):
    """FastAPI test client with temporary database"""
    app.dependency_overrides[get_db] = db_override(temp_db)

    test_client = TestClient(app)
    yield test_client
    test_client.close()

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer headers for a wallet"""
    def make(wallet_address: str):
        token = issue_session_token(SESSION_SECRET, wallet_address)
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def admin_headers():
    return {"x-admin-api-key": ADMIN_KEY}


@pytest.fixture
def spawn(spawn_manager, db_connection):
    """A fresh AVAILABLE spawn at Manila"""
    return spawn_manager.create_spawn(db_connection, *MANILA)
