from fastapi import APIRouter

from app.models.risk import RiskAssessment
from app.services.pipeline import beneficiary_risk

router = APIRouter(prefix="/api/beneficiaries", tags=["beneficiaries"])


@router.get("/{beneficiary_id}/risk", response_model=RiskAssessment)
async def get_beneficiary_risk(beneficiary_id: str):
    """Current deterministic risk score, computed fresh from the store."""
    return await beneficiary_risk(beneficiary_id)
