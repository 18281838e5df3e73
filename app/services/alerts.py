"""Alert escalation, manual alert creation and status transitions."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

from app import config
from app.errors import InvalidInput, NotFound, ProfileNotFound, Unauthenticated
from app.models.alert import Alert, AlertCreate, EscalationOutcome, EscalationSignal
from app.models.beneficiary import Beneficiary
from app.models.risk import RedFlagResult, RiskAssessment
from app.services import repository
from app.services.event_bus import NotificationBus, notification_bus

logger = logging.getLogger(__name__)

ALERT_CREATED_MESSAGE = "Emergency alert created successfully. Help is on the way."
ALERT_CREATED_MESSAGE_HINDI = "इमरजेंसी अलर्ट भेज दिया गया है। मदद आ रही है।"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "open": {"acknowledged", "resolved"},
    "acknowledged": {"resolved"},
    "resolved": set(),
}


def severity_for_score(score: float) -> str:
    return "critical" if score >= 80 else "high"


def dedupe_key(beneficiary_id: str, alert_type: str) -> str:
    return f"{beneficiary_id}:{alert_type}"


def describe(signal: EscalationSignal) -> str:
    prefix = "Red flag detected" if signal.is_red_flag else f"High risk score {signal.score:.0f}"
    if not signal.reasons:
        return prefix
    return f"{prefix}: {', '.join(signal.reasons)}"


def escalation_signal(
    red_flag: RedFlagResult | None,
    risk: RiskAssessment | None,
    threshold: int | None = None,
    symptoms: list[str] | None = None,
) -> EscalationSignal | None:
    """Pick the signal that warrants an alert, if any.

    A model red flag wins over the deterministic score.
    """
    threshold = config.ALERT_RISK_THRESHOLD if threshold is None else threshold
    if red_flag is not None and red_flag.is_red_flag:
        return EscalationSignal(
            is_red_flag=True, score=red_flag.risk_score, reasons=red_flag.reasons, symptoms=symptoms or []
        )
    if risk is not None and risk.score > threshold:
        return EscalationSignal(
            is_red_flag=False, score=risk.score, reasons=risk.reasons, symptoms=symptoms or []
        )
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlertManager:
    def __init__(self, bus: NotificationBus | None = None, dedupe_window_minutes: int | None = None) -> None:
        self.bus = bus or notification_bus
        if dedupe_window_minutes is None:
            dedupe_window_minutes = config.ALERT_DEDUPE_WINDOW_MINUTES
        self.dedupe_window = timedelta(minutes=dedupe_window_minutes)
        # serializes the dedupe check with the insert inside this process
        self._escalation_lock = asyncio.Lock()

    async def _notify(self, alert: Alert) -> str | None:
        if not alert.responder_id:
            logger.info("Alert %s has no linked responder; nobody to notify", alert.id)
            return None
        await self.bus.publish(
            alert.responder_id,
            {
                "type": "alert.notify",
                "alert_id": alert.id,
                "beneficiary_id": alert.beneficiary_id,
                "severity_level": alert.severity_level,
                "alert_type": alert.alert_type,
                "description": alert.description,
                "created_at": alert.created_at,
            },
        )
        return alert.responder_id

    async def escalate(
        self,
        signal: EscalationSignal,
        beneficiary: Beneficiary,
        triggered_by_user_id: str | None = None,
        voice_transcription: str | None = None,
    ) -> EscalationOutcome:
        """Create one open alert for the signal unless an equivalent one is still open."""
        key = dedupe_key(beneficiary.id, signal.alert_type)
        now = _now()

        async with self._escalation_lock:
            if self.dedupe_window > timedelta(0):
                existing = await repository.find_open_alert(key, (now - self.dedupe_window).isoformat())
                if existing is not None:
                    logger.info("Escalation for %s folded into open alert %s", beneficiary.id, existing.id)
                    return EscalationOutcome(
                        alert_created=False,
                        alert_id=existing.id,
                        severity_level=existing.severity_level,
                        deduplicated=True,
                    )

            alert = Alert(
                id=str(uuid.uuid4()),
                beneficiary_id=beneficiary.id,
                responder_id=beneficiary.linked_responder_id,
                triggered_by_user_id=triggered_by_user_id,
                severity_level=severity_for_score(signal.score),
                alert_type=signal.alert_type,
                status="open",
                description=describe(signal),
                symptoms_reported={"list": signal.symptoms} if signal.symptoms else None,
                voice_transcription=voice_transcription,
                ai_detected=True,
                ai_confidence_score=round(signal.score / 100, 4),
                location=beneficiary.location,
                dedupe_key=key,
                created_at=now.isoformat(),
            )
            await repository.insert_alert(alert)

        logger.info("Created %s alert %s for beneficiary %s", alert.severity_level, alert.id, beneficiary.id)
        notified = await self._notify(alert)
        return EscalationOutcome(
            alert_created=True,
            alert_id=alert.id,
            severity_level=alert.severity_level,
            notified_responder_id=notified,
        )

    async def create_manual(self, payload: AlertCreate, user_id: str | None) -> Alert:
        """Create an alert raised directly by a signed-in user (SOS button)."""
        if not payload.severity_level or not payload.alert_type or not payload.description:
            raise InvalidInput("Missing required fields: severity_level, alert_type, description")
        if not user_id:
            raise Unauthenticated()
        if not await repository.user_exists(user_id):
            raise ProfileNotFound("User profile not found")

        profile = await repository.get_beneficiary_for_user(user_id)
        location = payload.location or payload.location_address
        if not location and payload.location_lat is not None and payload.location_lng is not None:
            location = f"{payload.location_lat},{payload.location_lng}"

        alert = Alert(
            id=str(uuid.uuid4()),
            beneficiary_id=profile.id if profile else None,
            responder_id=profile.linked_responder_id if profile else None,
            triggered_by_user_id=user_id,
            severity_level=payload.severity_level,
            alert_type=payload.alert_type,
            status="open",
            description=payload.description,
            symptoms_reported=payload.symptoms_reported,
            voice_transcription=payload.voice_transcription,
            location=location or (profile.location if profile else None),
            created_at=_now().isoformat(),
        )
        await repository.insert_alert(alert)
        logger.info("User %s raised %s alert %s", user_id, alert.severity_level, alert.id)
        await self._notify(alert)
        return alert

    async def update_status(self, alert_id: str, status: str) -> Alert:
        alert = await repository.get_alert(alert_id)
        if alert is None:
            raise NotFound(f"Alert {alert_id} not found")
        if status not in ALLOWED_TRANSITIONS.get(alert.status, set()):
            raise InvalidInput(f"Cannot move alert from {alert.status} to {status}")

        await repository.update_alert_status(alert_id, status, _now().isoformat())
        logger.info("Alert %s: %s -> %s", alert_id, alert.status, status)
        updated = await repository.get_alert(alert_id)
        return updated or alert


_manager: AlertManager | None = None


def get_alert_manager() -> AlertManager:
    global _manager
    if _manager is None:
        _manager = AlertManager()
    return _manager
