"""Tests for database setup and query helpers"""
import sqlite3

import pytest

import database
from database import Database, HUNT_TABLES, execute_query, get_db, get_db_placeholder


class TestDatabaseConnection:
    """Tests for database connection management"""

    def test_database_connection(self, temp_db):
        conn = temp_db.connect()
        result = execute_query(conn, "SELECT 1").fetchone()
        assert result[0] == 1

    def test_connection_is_reused(self, temp_db):
        assert temp_db.connect() is temp_db.connect()

    def test_database_close(self, temp_db):
        temp_db.connect()
        temp_db.close()
        assert temp_db.adapter.conn is None

    def test_database_context_manager(self, temp_db):
        with temp_db as conn:
            assert execute_query(conn, "SELECT 1").fetchone()[0] == 1

    @pytest.mark.parametrize("url,path", [
        ("sqlite:///hunt.db", "hunt.db"),
        ("sqlite://hunt.db", "hunt.db"),
        ("hunt.db", "hunt.db"),
    ])
    def test_sqlite_url_parsing(self, url, path):
        db = Database(url)
        assert db.db_type == "sqlite"
        assert db.db_path == path
        assert db.get_placeholder() == "?"

    def test_in_memory_database(self):
        db = Database(":memory:")
        try:
            conn = db.connect()
            assert execute_query(conn, "SELECT COUNT(*) FROM spawns").fetchone()[0] == 0
        finally:
            db.close()


class TestSessions:
    """Per-request connections handed out by get_db"""

    def test_open_returns_fresh_connection(self, temp_db):
        first, second = temp_db.open(), temp_db.open()
        try:
            assert first is not second
            assert first is not temp_db.connect()
            assert execute_query(first, "SELECT COUNT(*) FROM spawns").fetchone()[0] == 0
        finally:
            first.close()
            second.close()

    def test_session_closes_connection(self, temp_db):
        with temp_db.session() as conn:
            assert execute_query(conn, "SELECT 1").fetchone()[0] == 1

        with pytest.raises(sqlite3.ProgrammingError):
            execute_query(conn, "SELECT 1")

    def test_session_sees_committed_writes(self, temp_db, db_connection):
        execute_query(db_connection, """
            INSERT INTO spawns (id, latitude, longitude, rarity, name, creature_class, created_at, expires_at)
            VALUES ('s1', 0, 0, 'common', 'Scuttler', 'tank', 1, 2)
        """)
        db_connection.commit()

        with temp_db.session() as conn:
            assert execute_query(conn, "SELECT COUNT(*) FROM spawns").fetchone()[0] == 1

    def test_session_discards_uncommitted_work(self, temp_db, db_connection):
        with temp_db.session() as conn:
            execute_query(conn, """
                INSERT INTO spawns (id, latitude, longitude, rarity, name, creature_class, created_at, expires_at)
                VALUES ('s1', 0, 0, 'common', 'Scuttler', 'tank', 1, 2)
            """)

        assert execute_query(db_connection, "SELECT COUNT(*) FROM spawns").fetchone()[0] == 0

    def test_in_memory_session_shares_connection(self):
        db = Database(":memory:")
        try:
            with db.session() as conn:
                assert conn is db.connect()
            assert execute_query(db.connect(), "SELECT 1").fetchone()[0] == 1
        finally:
            db.close()

    def test_get_db_yields_then_closes(self, temp_db, monkeypatch):
        monkeypatch.setattr(database, "_db_instance", temp_db)

        provider = get_db()
        conn = next(provider)
        assert conn is not temp_db.connect()
        assert execute_query(conn, "SELECT 1").fetchone()[0] == 1

        with pytest.raises(StopIteration):
            next(provider)
        with pytest.raises(sqlite3.ProgrammingError):
            execute_query(conn, "SELECT 1")


class TestDatabaseSchema:

    def test_hunt_tables_exist(self, db_connection):
        rows = execute_query(db_connection, "SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        names = {row["name"] for row in rows}
        assert set(HUNT_TABLES) <= names

    def test_spawn_defaults_to_available(self, db_connection):
        execute_query(db_connection, """
            INSERT INTO spawns (id, latitude, longitude, rarity, name, creature_class, created_at, expires_at)
            VALUES ('s1', 0, 0, 'common', 'Scuttler', 'tank', 1, 2)
        """)
        db_connection.commit()
        row = execute_query(db_connection, "SELECT claim_status FROM spawns WHERE id = 's1'").fetchone()
        assert row["claim_status"] == "AVAILABLE"

    def test_player_location_unique_per_wallet(self, db_connection):
        insert = """
            INSERT INTO player_locations (wallet_address, latitude, longitude, accuracy,
                                          last_update_server_time, created_at)
            VALUES (?, 0, 0, 5, 1, 1)
        """
        execute_query(db_connection, insert, ("0xA",))
        with pytest.raises(sqlite3.IntegrityError):
            execute_query(db_connection, insert, ("0xA",))
        db_connection.rollback()

    def test_schema_init_is_idempotent(self, temp_db):
        conn = temp_db.connect()
        temp_db.adapter.init_schema(conn)
        assert execute_query(conn, "SELECT COUNT(*) FROM map_nodes").fetchone()[0] == 0

    def test_old_map_nodes_table_upgraded(self, tmp_path):
        path = str(tmp_path / "old.db")
        old = sqlite3.connect(path)
        old.execute("""
            CREATE TABLE map_nodes (
                id TEXT PRIMARY KEY, node_type TEXT NOT NULL DEFAULT 'PERSONAL',
                wallet_address TEXT, latitude REAL NOT NULL, longitude REAL NOT NULL,
                quality TEXT NOT NULL, created_at REAL NOT NULL, expires_at REAL NOT NULL,
                active_reservation_id TEXT, reserved_by TEXT, reserved_until REAL,
                collected_by TEXT, collected_at REAL
            )
        """)
        old.commit()
        old.close()

        db = Database(path)
        try:
            rows = execute_query(db.connect(), "PRAGMA table_info(map_nodes)").fetchall()
            assert {"region_key", "group_id", "event_key"} <= {row["name"] for row in rows}
        finally:
            db.close()


class TestQueryHelpers:

    def test_placeholder_for_sqlite_connection(self, db_connection):
        assert get_db_placeholder(db_connection) == "?"

    def test_placeholder_for_other_connections(self):
        class FakePgConnection:
            pass

        assert get_db_placeholder(FakePgConnection()) == "%s"

    def test_conditional_update_rowcount(self, db_connection):
        """Single-winner writes rely on rowcount of a guarded UPDATE"""
        execute_query(db_connection, """
            INSERT INTO spawns (id, latitude, longitude, rarity, name, creature_class, created_at, expires_at)
            VALUES ('s1', 0, 0, 'common', 'Scuttler', 'tank', 1, 100)
        """)
        db_connection.commit()

        guarded = """
            UPDATE spawns SET claim_status = 'CLAIMED', claimed_by = ?
            WHERE id = 's1' AND claim_status = 'AVAILABLE'
        """
        assert execute_query(db_connection, guarded, ("0xA",)).rowcount == 1
        assert execute_query(db_connection, guarded, ("0xB",)).rowcount == 0
        db_connection.commit()

    def test_insert_on_conflict_do_nothing_rowcount(self, db_connection):
        insert = """
            INSERT INTO player_locations (wallet_address, latitude, longitude, accuracy,
                                          last_update_server_time, created_at)
            VALUES (?, 0, 0, 5, 1, 1)
            ON CONFLICT (wallet_address) DO NOTHING
        """
        assert execute_query(db_connection, insert, ("0xA",)).rowcount == 1
        assert execute_query(db_connection, insert, ("0xA",)).rowcount == 0
        db_connection.commit()

    def test_errors_propagate(self, db_connection):
        with pytest.raises(sqlite3.OperationalError):
            execute_query(db_connection, "SELECT * FROM no_such_table")
