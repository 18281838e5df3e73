"""Read/write access to beneficiaries, health logs, visits and alerts.

Every function goes through ``get_db()`` so the same code runs on SQLite
and Postgres. Driver errors are re-raised as ``StoreError``.
"""

import functools
import json
import logging

from app.database import get_db
from app.errors import StoreError
from app.models.alert import Alert
from app.models.beneficiary import Beneficiary
from app.models.risk import HealthLog, VisitRecord

logger = logging.getLogger(__name__)


def _store_op(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except StoreError:
            raise
        except Exception as e:
            logger.error("Store operation %s failed: %s", func.__name__, e)
            raise StoreError(f"{func.__name__} failed: {e}") from e

    return wrapper


def _beneficiary_from_row(row) -> Beneficiary:
    data = dict(row)
    return Beneficiary(
        id=data["id"],
        full_name=data["full_name"],
        asha_worker_id=data.get("asha_worker_id"),
        linked_responder_id=data.get("linked_responder_id"),
        user_id=data.get("user_id"),
        is_currently_pregnant=bool(data.get("is_currently_pregnant")),
        current_pregnancy_week=data.get("current_pregnancy_week"),
        is_high_risk=bool(data.get("is_high_risk")),
        anemia_status=data.get("anemia_status"),
        previous_complications=data.get("previous_complications"),
        last_hemoglobin_level=data.get("last_hemoglobin_level"),
        location=data.get("location"),
    )


def _alert_from_row(row) -> Alert:
    data = dict(row)
    symptoms = None
    if data.get("symptoms_reported"):
        try:
            symptoms = json.loads(data["symptoms_reported"])
        except json.JSONDecodeError:
            logger.debug("Unreadable symptoms_reported on alert %s", data["id"])
    return Alert(
        id=data["id"],
        beneficiary_id=data.get("beneficiary_id"),
        responder_id=data.get("responder_id"),
        triggered_by_user_id=data.get("triggered_by_user_id"),
        severity_level=data["severity_level"],
        alert_type=data["alert_type"],
        status=data["status"],
        description=data["description"],
        symptoms_reported=symptoms,
        voice_transcription=data.get("voice_transcription"),
        ai_detected=bool(data.get("ai_detected")),
        ai_confidence_score=data.get("ai_confidence_score"),
        location=data.get("location"),
        follow_up_required=bool(data.get("follow_up_required")),
        dedupe_key=data.get("dedupe_key"),
        created_at=str(data["created_at"]),
        updated_at=data.get("updated_at"),
    )


@_store_op
async def list_caseload(asha_worker_id: str, limit: int = 20) -> list[Beneficiary]:
    """Return the worker's assigned beneficiaries in store order."""
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT * FROM beneficiaries WHERE asha_worker_id = ? ORDER BY created_at, id LIMIT ?",
        (asha_worker_id, limit),
    )
    return [_beneficiary_from_row(row) for row in rows]


@_store_op
async def get_beneficiary(beneficiary_id: str) -> Beneficiary | None:
    db = await get_db()
    row = await db.fetch_one("SELECT * FROM beneficiaries WHERE id = ?", (beneficiary_id,))
    return _beneficiary_from_row(row) if row else None


@_store_op
async def get_beneficiary_for_user(user_id: str) -> Beneficiary | None:
    """Look up the beneficiary profile owned by a signed-in user."""
    db = await get_db()
    row = await db.fetch_one("SELECT * FROM beneficiaries WHERE user_id = ?", (user_id,))
    return _beneficiary_from_row(row) if row else None


@_store_op
async def user_exists(user_id: str) -> bool:
    db = await get_db()
    row = await db.fetch_one("SELECT id FROM users WHERE id = ?", (user_id,))
    return row is not None


@_store_op
async def recent_health_logs(beneficiary_id: str, limit: int = 10) -> list[HealthLog]:
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT is_red_flag, symptom_severity, ai_risk_score, created_at FROM health_logs "
        "WHERE beneficiary_id = ? ORDER BY created_at DESC LIMIT ?",
        (beneficiary_id, limit),
    )
    return [
        HealthLog(
            is_red_flag=bool(row["is_red_flag"]),
            symptom_severity=row["symptom_severity"],
            ai_risk_score=row["ai_risk_score"],
            created_at=str(row["created_at"]),
        )
        for row in rows
    ]


@_store_op
async def recent_visits(beneficiary_id: str, limit: int = 5) -> list[VisitRecord]:
    """Most recent visit records first, completed or not."""
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT completed_date, referral_made FROM visits "
        "WHERE beneficiary_id = ? ORDER BY created_at DESC LIMIT ?",
        (beneficiary_id, limit),
    )
    return [
        VisitRecord(completed_date=row["completed_date"], referral_made=bool(row["referral_made"]))
        for row in rows
    ]


@_store_op
async def insert_alert(alert: Alert) -> Alert:
    db = await get_db()
    await db.execute(
        """INSERT INTO alerts (
            id, beneficiary_id, responder_id, triggered_by_user_id, severity_level,
            alert_type, status, description, symptoms_reported, voice_transcription,
            ai_detected, ai_confidence_score, location, follow_up_required, dedupe_key,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            alert.id,
            alert.beneficiary_id,
            alert.responder_id,
            alert.triggered_by_user_id,
            alert.severity_level,
            alert.alert_type,
            alert.status,
            alert.description,
            json.dumps(alert.symptoms_reported) if alert.symptoms_reported is not None else None,
            alert.voice_transcription,
            int(alert.ai_detected),
            alert.ai_confidence_score,
            alert.location,
            int(alert.follow_up_required),
            alert.dedupe_key,
            alert.created_at,
            alert.updated_at or alert.created_at,
        ),
    )
    await db.commit()
    return alert


@_store_op
async def find_open_alert(dedupe_key: str, created_after: str) -> Alert | None:
    """Newest open alert with this dedupe key created after the ISO timestamp."""
    db = await get_db()
    row = await db.fetch_one(
        "SELECT * FROM alerts WHERE dedupe_key = ? AND status = 'open' AND created_at >= ? "
        "ORDER BY created_at DESC LIMIT 1",
        (dedupe_key, created_after),
    )
    return _alert_from_row(row) if row else None


@_store_op
async def get_alert(alert_id: str) -> Alert | None:
    db = await get_db()
    row = await db.fetch_one("SELECT * FROM alerts WHERE id = ?", (alert_id,))
    return _alert_from_row(row) if row else None


@_store_op
async def update_alert_status(alert_id: str, status: str, now: str) -> None:
    db = await get_db()
    stamp_column = {"acknowledged": "acknowledged_at", "resolved": "resolved_at"}.get(status)
    if stamp_column:
        await db.execute(
            f"UPDATE alerts SET status = ?, updated_at = ?, {stamp_column} = ? WHERE id = ?",
            (status, now, now, alert_id),
        )
    else:
        await db.execute(
            "UPDATE alerts SET status = ?, updated_at = ? WHERE id = ?",
            (status, now, alert_id),
        )
    await db.commit()
