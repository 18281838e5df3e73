from typing import Literal

from pydantic import BaseModel, Field

RiskLevel = Literal["low", "medium", "high", "critical"]


class RiskProfile(BaseModel):
    """Beneficiary fields consumed by the deterministic risk score."""

    is_high_risk: bool = False
    anemia_status: str | None = None  # none, mild, moderate, severe, unknown
    previous_complications: str | None = None
    current_pregnancy_week: int | None = None
    last_hemoglobin_level: float | None = None


class HealthLog(BaseModel):
    is_red_flag: bool = False
    symptom_severity: str | None = None
    ai_risk_score: float | None = None
    created_at: str = ""


class VisitRecord(BaseModel):
    completed_date: str | None = None
    referral_made: bool = False


class RiskAssessment(BaseModel):
    score: int = Field(0, ge=0, le=100)
    level: RiskLevel = "low"
    color: str = ""
    reasons: list[str] = []


class RedFlagRequest(BaseModel):
    symptoms: list[str] | None = None
    isPregnant: bool = False
    pregnancyWeek: int | None = None
    user_id: str | None = None


class RedFlagResult(BaseModel):
    is_red_flag: bool = False
    risk_score: float = Field(0.0, ge=0.0, le=100.0)
    reasons: list[str] = []
    recommended_action: str = ""
    source: Literal["model", "keyword_screen"] = "model"
