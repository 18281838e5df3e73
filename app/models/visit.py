from typing import Literal

from pydantic import BaseModel, Field

from app.models.alert import EscalationOutcome
from app.models.beneficiary import BeneficiaryMatch, ResolutionResult
from app.models.risk import RedFlagResult, RiskAssessment


class VisitVitals(BaseModel):
    systolic: int | None = None
    diastolic: int | None = None
    weight_kg: float | None = None
    temperature_c: float | None = None


class ExtractedVisit(BaseModel):
    """Structured home-visit record extracted from a worker's spoken notes."""

    patient_name: str | None = None
    visit_type: Literal["routine_checkup", "follow_up", "emergency"] | None = None
    symptoms: list[str] = []
    symptom_severity: Literal["mild", "moderate", "severe"] | None = None
    vitals: VisitVitals = VisitVitals()
    services_provided: list[str] = []
    medicines_distributed: list[str] = []
    counseling_topics: list[str] = []
    observations: str | None = None
    concerns_noted: str | None = None
    follow_up_required: bool = False
    next_visit_date: str | None = None
    referral_needed: bool = False
    referral_reason: str | None = None
    extraction_confidence: float | None = Field(None, ge=0.0, le=1.0)

    def has_vitals(self) -> bool:
        v = self.vitals
        return any(x is not None for x in (v.systolic, v.diastolic, v.weight_kg, v.temperature_c))


class ProcessRequest(BaseModel):
    transcription: str = ""
    asha_worker_id: str | None = None


class ProcessResponse(BaseModel):
    extracted_data: ExtractedVisit
    beneficiary: BeneficiaryMatch | None = None
    resolution: ResolutionResult
    transcription: str
    needs_manual_review: bool
    missing_fields: list[str] = []
    follow_up_question: str | None = None
    is_complete: bool = False


class VoicePipelineResponse(ProcessResponse):
    """Full audio-to-alert run for one recorded visit."""

    language: str | None = None
    confidence: float = 0.0
    duration_seconds: float | None = None
    red_flag: RedFlagResult | None = None
    risk: RiskAssessment | None = None
    escalation: EscalationOutcome | None = None
