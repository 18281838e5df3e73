from typing import Any, Literal

from pydantic import BaseModel, Field

AlertSeverity = Literal["low", "medium", "high", "critical", "emergency"]
AlertStatus = Literal["open", "acknowledged", "resolved"]
AlertType = Literal[
    "emergency_sos",
    "red_flag_symptom",
    "missed_checkup",
    "abnormal_vitals",
    "mental_health_concern",
    "severe_bleeding",
    "severe_pain",
]


class Alert(BaseModel):
    id: str
    beneficiary_id: str | None = None
    responder_id: str | None = None
    triggered_by_user_id: str | None = None
    severity_level: AlertSeverity
    alert_type: AlertType
    status: AlertStatus = "open"
    description: str
    symptoms_reported: dict[str, Any] | None = None
    voice_transcription: str | None = None
    ai_detected: bool = False
    ai_confidence_score: float | None = Field(None, ge=0.0, le=1.0)
    location: str | None = None
    follow_up_required: bool = True
    dedupe_key: str | None = None
    created_at: str
    updated_at: str | None = None


class EscalationSignal(BaseModel):
    """A risk signal that may warrant an alert.

    ``score`` is on the 0-100 scale of whichever engine produced it.
    """

    is_red_flag: bool = False
    score: float = Field(0.0, ge=0.0, le=100.0)
    reasons: list[str] = []
    alert_type: AlertType = "red_flag_symptom"
    symptoms: list[str] = []


class EscalationOutcome(BaseModel):
    alert_created: bool = False
    alert_id: str | None = None
    severity_level: AlertSeverity | None = None
    deduplicated: bool = False
    notified_responder_id: str | None = None


class AlertCreate(BaseModel):
    severity_level: AlertSeverity | None = None
    alert_type: AlertType | None = None
    description: str | None = None
    symptoms_reported: dict[str, Any] | None = None
    voice_transcription: str | None = None
    location: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None
    location_address: str | None = None


class AlertSummary(BaseModel):
    id: str
    severity_level: AlertSeverity
    status: AlertStatus
    created_at: str


class AlertCreateResponse(BaseModel):
    success: bool = True
    alert: AlertSummary
    message: str
    message_hindi: str


class AlertStatusUpdate(BaseModel):
    status: AlertStatus
