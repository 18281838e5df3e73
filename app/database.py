from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable, Sequence
from urllib.parse import urlparse

import aiosqlite

from app.config import DATABASE_MAX_CONNECTIONS, DATABASE_PATH, DATABASE_URL, SEED_DEMO_DATA

try:  # Optional: only required when DATABASE_URL points at Postgres
    import asyncpg  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    asyncpg = None

logger = logging.getLogger(__name__)


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def executescript(self, script: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> None:
        await self.conn.execute(query, params or ())

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        await self.conn.executemany(query, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()

    async def executescript(self, script: str) -> None:
        await self.conn.executescript(script)


@dataclass
class PostgresAdapter(DatabaseAdapter):
    pool: "asyncpg.Pool"  # type: ignore[name-defined]
    engine: str = "postgres"

    @staticmethod
    def _translate_query(query: str) -> str:
        # Convert SQLite-style ? placeholders to asyncpg-style $1, $2, ...
        if "$1" in query:
            return query
        idx = 1
        out = []
        for ch in query:
            if ch == "?":
                out.append(f"${idx}")
                idx += 1
            else:
                out.append(ch)
        return "".join(out)

    async def execute(self, query: str, params: Sequence | None = None) -> None:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            await conn.execute(q, *(params or ()))

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            await conn.executemany(q, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(q, *(params or ()))

    async def fetch_all(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetch(q, *(params or ()))

    async def commit(self) -> None:
        # asyncpg autocommits per statement unless an explicit transaction is used.
        return

    async def close(self) -> None:
        await self.pool.close()

    async def executescript(self, script: str) -> None:
        # Not supported for Postgres; callers should split statements.
        raise NotImplementedError


_db: DatabaseAdapter | None = None


async def get_db() -> DatabaseAdapter:
    global _db
    if _db is None:
        if DATABASE_URL:
            if DATABASE_URL.startswith("sqlite"):
                sqlite_path = _sqlite_path_from_url(DATABASE_URL) or DATABASE_PATH
                conn = await aiosqlite.connect(sqlite_path)
                conn.row_factory = aiosqlite.Row
                _db = SQLiteAdapter(conn)
                logger.info("Connected to SQLite database at %s", sqlite_path)
            else:
                if asyncpg is None:
                    raise RuntimeError(
                        "DATABASE_URL is set but asyncpg is not installed. "
                        "Install asyncpg or unset DATABASE_URL."
                    )
                pool = await asyncpg.create_pool(
                    dsn=DATABASE_URL,
                    min_size=1,
                    max_size=DATABASE_MAX_CONNECTIONS,
                )
                _db = PostgresAdapter(pool)
                logger.info("Connected to Postgres database")
        else:
            conn = await aiosqlite.connect(DATABASE_PATH)
            conn.row_factory = aiosqlite.Row
            _db = SQLiteAdapter(conn)
            logger.info("Connected to SQLite database at %s", DATABASE_PATH)
    return _db


def _sqlite_path_from_url(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path or ""
    if not path or path == "/":
        return ""
    # sqlite:////absolute/path.db -> keep absolute path
    if url.startswith("sqlite:////"):
        return path
    # sqlite:///relative.db -> strip leading slash
    if path.startswith("/"):
        return path[1:]
    return path


SQLITE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        full_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        phone TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS beneficiaries (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        full_name TEXT NOT NULL,
        asha_worker_id TEXT,
        linked_responder_id TEXT,
        is_currently_pregnant INTEGER DEFAULT 0,
        current_pregnancy_week INTEGER,
        is_high_risk INTEGER DEFAULT 0,
        anemia_status TEXT,
        previous_complications TEXT,
        last_hemoglobin_level REAL,
        location TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    CREATE INDEX IF NOT EXISTS idx_beneficiaries_worker ON beneficiaries (asha_worker_id);

    CREATE TABLE IF NOT EXISTS health_logs (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT NOT NULL,
        is_red_flag INTEGER DEFAULT 0,
        symptom_severity TEXT,
        ai_risk_score REAL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (beneficiary_id) REFERENCES beneficiaries(id)
    );

    CREATE TABLE IF NOT EXISTS visits (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT NOT NULL,
        asha_worker_id TEXT,
        completed_date TEXT,
        referral_made INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        FOREIGN KEY (beneficiary_id) REFERENCES beneficiaries(id)
    );

    CREATE TABLE IF NOT EXISTS alerts (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT,
        responder_id TEXT,
        triggered_by_user_id TEXT,
        severity_level TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        description TEXT NOT NULL,
        symptoms_reported TEXT,
        voice_transcription TEXT,
        ai_detected INTEGER DEFAULT 0,
        ai_confidence_score REAL,
        location TEXT,
        follow_up_required INTEGER DEFAULT 1,
        dedupe_key TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        acknowledged_at TEXT,
        resolved_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_alerts_dedupe ON alerts (dedupe_key, status, created_at);
"""

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        full_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        phone TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS beneficiaries (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        full_name TEXT NOT NULL,
        asha_worker_id TEXT,
        linked_responder_id TEXT,
        is_currently_pregnant INTEGER DEFAULT 0,
        current_pregnancy_week INTEGER,
        is_high_risk INTEGER DEFAULT 0,
        anemia_status TEXT,
        previous_complications TEXT,
        last_hemoglobin_level DOUBLE PRECISION,
        location TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_beneficiaries_worker ON beneficiaries (asha_worker_id);",
    """
    CREATE TABLE IF NOT EXISTS health_logs (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT NOT NULL REFERENCES beneficiaries(id),
        is_red_flag INTEGER DEFAULT 0,
        symptom_severity TEXT,
        ai_risk_score DOUBLE PRECISION,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS visits (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT NOT NULL REFERENCES beneficiaries(id),
        asha_worker_id TEXT,
        completed_date TEXT,
        referral_made INTEGER DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS alerts (
        id TEXT PRIMARY KEY,
        beneficiary_id TEXT,
        responder_id TEXT,
        triggered_by_user_id TEXT,
        severity_level TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        description TEXT NOT NULL,
        symptoms_reported TEXT,
        voice_transcription TEXT,
        ai_detected INTEGER DEFAULT 0,
        ai_confidence_score DOUBLE PRECISION,
        location TEXT,
        follow_up_required INTEGER DEFAULT 1,
        dedupe_key TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        acknowledged_at TEXT,
        resolved_at TEXT
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_alerts_dedupe ON alerts (dedupe_key, status, created_at);",
]


async def init_db() -> None:
    db = await get_db()

    if db.engine == "sqlite":
        await db.executescript(SQLITE_SCHEMA)
    else:
        for stmt in POSTGRES_SCHEMA:
            await db.execute(stmt)

    await db.commit()

    if SEED_DEMO_DATA:
        await _seed_demo_caseload(db)


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _seed_demo_caseload(db: DatabaseAdapter) -> None:
    """Seed one ASHA worker, a responder and a small caseload for local previews."""
    existing = await db.fetch_one("SELECT id FROM users WHERE id = ?", ("demo-asha",))
    if existing:
        return

    now = datetime.now(UTC)

    await db.executemany(
        "INSERT INTO users (id, full_name, role, phone) VALUES (?, ?, ?, ?)",
        [
            ("demo-asha", "Kamla Yadav", "asha_worker", "+91-90000-00001"),
            ("demo-sunita", "Sunita Devi", "user", None),
            ("demo-meena", "Meena Kumari", "user", None),
            ("demo-radha", "Radha Sharma", "user", None),
        ],
    )

    await db.executemany(
        """INSERT INTO beneficiaries (
            id, user_id, full_name, asha_worker_id, linked_responder_id,
            is_currently_pregnant, current_pregnancy_week, is_high_risk,
            anemia_status, previous_complications, last_hemoglobin_level, location
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            ("ben-sunita", "demo-sunita", "Sunita Devi", "demo-asha", "demo-asha",
             1, 32, 1, "moderate", "Pre-eclampsia in first pregnancy", 9.2, "Rampur, Barabanki"),
            ("ben-meena", "demo-meena", "Meena Kumari", "demo-asha", "demo-asha",
             1, 18, 0, "mild", None, 10.8, "Rampur, Barabanki"),
            ("ben-radha", "demo-radha", "Radha Sharma", "demo-asha", None,
             0, None, 0, "none", None, 12.1, "Sitapur Road, Barabanki"),
        ],
    )

    await db.executemany(
        "INSERT INTO visits (id, beneficiary_id, asha_worker_id, completed_date, referral_made, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            ("visit-sunita-1", "ben-sunita", "demo-asha",
             (now - timedelta(days=41)).date().isoformat(), 0, (now - timedelta(days=41)).isoformat()),
            ("visit-meena-1", "ben-meena", "demo-asha",
             (now - timedelta(days=9)).date().isoformat(), 0, (now - timedelta(days=9)).isoformat()),
        ],
    )

    await db.executemany(
        "INSERT INTO health_logs (id, beneficiary_id, is_red_flag, symptom_severity, ai_risk_score, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            ("log-sunita-1", "ben-sunita", 1, "severe", 72.0, (now - timedelta(days=3)).isoformat()),
            ("log-meena-1", "ben-meena", 0, "mild", 20.0, (now - timedelta(days=5)).isoformat()),
        ],
    )
    await db.commit()
    logger.info("Seeded demo caseload")
