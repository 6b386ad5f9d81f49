"""Tests for the shared SQLite layer."""

import sqlite3

import pytest

from claims.database import Database, chunked
from claims.profile_directory import ProfileDirectory
from domain.errors import TransientStorageError
from domain.models import OwnerProfile


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path), "shared.db", timeout=0.05)
    database.create_schema(["CREATE TABLE IF NOT EXISTS samples (value INTEGER)"])
    return database


def _count(db):
    with db.connect() as conn:
        return conn.execute("SELECT COUNT(*) FROM samples").fetchone()[0]


def test_locked_database_is_transient(db):
    """A writer held elsewhere surfaces as TransientStorageError, not sqlite3."""
    holder = sqlite3.connect(str(db.db_path), isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(TransientStorageError) as excinfo:
            with db.transaction() as conn:
                conn.execute("INSERT INTO samples VALUES (1)")
        assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    # Retry succeeds once the lock is gone
    with db.transaction() as conn:
        conn.execute("INSERT INTO samples VALUES (1)")
    assert _count(db) == 1


def test_failed_transaction_rolls_back(db):
    with pytest.raises(ValueError):
        with db.transaction() as conn:
            conn.execute("INSERT INTO samples VALUES (1)")
            raise ValueError("abort")
    assert _count(db) == 0


def test_chunked():
    items = [str(i) for i in range(1201)]
    chunks = list(chunked(items))
    assert [len(c) for c in chunks] == [500, 500, 201]
    assert sum(chunks, []) == items
    assert list(chunked([])) == []


def test_profile_lookup_beyond_parameter_limit(db):
    """More ids than SQLite accepts in one IN (...) list."""
    profiles = ProfileDirectory(db)
    for user_id in ("owner-1", "owner-2"):
        profiles.upsert_profile(OwnerProfile(user_id=user_id, name=user_id))

    wanted = [f"ghost-{i}" for i in range(1200)] + ["owner-1", "owner-2"]
    found = profiles.get_profiles(wanted)

    assert sorted(found) == ["owner-1", "owner-2"]
    assert found["owner-2"].name == "owner-2"
