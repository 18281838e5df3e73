"""Tests for database initialization and the demo caseload seed."""

import json

from app import database
from app.database import PostgresAdapter, _seed_demo_caseload, _sqlite_path_from_url


async def test_init_creates_tables(db):
    rows = await db.fetch_all("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = [row[0] for row in rows]
    for table in ("alerts", "beneficiaries", "health_logs", "users", "visits"):
        assert table in tables


async def test_alert_defaults(db):
    await db.execute(
        "INSERT INTO alerts (id, severity_level, alert_type, description, created_at) VALUES (?, ?, ?, ?, ?)",
        ("alert-1", "high", "severe_pain", "Pain since morning", "2026-10-18T09:00:00+00:00"),
    )
    await db.commit()

    row = await db.fetch_one("SELECT * FROM alerts WHERE id = ?", ("alert-1",))
    assert row["status"] == "open"
    assert row["ai_detected"] == 0
    assert row["follow_up_required"] == 1
    assert row["resolved_at"] is None


async def test_symptoms_stored_as_json(db):
    await db.execute(
        "INSERT INTO alerts (id, severity_level, alert_type, description, symptoms_reported, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        ("alert-2", "critical", "red_flag_symptom", "Bleeding", json.dumps({"list": ["bleeding"]}), "2026-10-18"),
    )
    await db.commit()

    row = await db.fetch_one("SELECT symptoms_reported FROM alerts WHERE id = ?", ("alert-2",))
    assert json.loads(row["symptoms_reported"]) == {"list": ["bleeding"]}


async def test_demo_seed_is_idempotent(db):
    await _seed_demo_caseload(db)
    await _seed_demo_caseload(db)

    beneficiaries = await db.fetch_all("SELECT id FROM beneficiaries WHERE asha_worker_id = ?", ("demo-asha",))
    assert len(beneficiaries) == 3
    visits = await db.fetch_all("SELECT id FROM visits")
    assert len(visits) == 2


async def test_close_db_resets_connection(db):
    await database.close_db()
    assert database._db is None


def test_sqlite_path_from_url():
    assert _sqlite_path_from_url("sqlite:///asha.db") == "asha.db"
    assert _sqlite_path_from_url("sqlite:////var/lib/asha.db") == "/var/lib/asha.db"
    assert _sqlite_path_from_url("sqlite://") == ""


def test_postgres_placeholders():
    query = "SELECT * FROM alerts WHERE dedupe_key = ? AND created_at >= ?"
    assert PostgresAdapter._translate_query(query) == (
        "SELECT * FROM alerts WHERE dedupe_key = $1 AND created_at >= $2"
    )
    assert PostgresAdapter._translate_query("SELECT $1") == "SELECT $1"
