from enum import Enum

from pydantic import BaseModel


class Beneficiary(BaseModel):
    """A caseload entry as read from the beneficiaries table."""

    id: str
    full_name: str
    asha_worker_id: str | None = None
    linked_responder_id: str | None = None
    user_id: str | None = None
    is_currently_pregnant: bool = False
    current_pregnancy_week: int | None = None
    is_high_risk: bool = False
    anemia_status: str | None = None
    previous_complications: str | None = None
    last_hemoglobin_level: float | None = None
    location: str | None = None


class BeneficiaryMatch(BaseModel):
    id: str
    full_name: str


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"
    NO_NAME_EXTRACTED = "no_name_extracted"


class ResolutionResult(BaseModel):
    status: ResolutionStatus
    beneficiary_id: str | None = None
    candidate_ids: list[str] = []

    @classmethod
    def resolved(cls, beneficiary_id: str) -> "ResolutionResult":
        return cls(status=ResolutionStatus.RESOLVED, beneficiary_id=beneficiary_id)

    @classmethod
    def ambiguous(cls, candidate_ids: list[str]) -> "ResolutionResult":
        return cls(status=ResolutionStatus.AMBIGUOUS, candidate_ids=candidate_ids)

    @classmethod
    def not_found(cls) -> "ResolutionResult":
        return cls(status=ResolutionStatus.NOT_FOUND)

    @classmethod
    def no_name(cls) -> "ResolutionResult":
        return cls(status=ResolutionStatus.NO_NAME_EXTRACTED)
