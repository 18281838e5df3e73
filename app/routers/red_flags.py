from fastapi import APIRouter, Depends

from app.models.risk import RedFlagRequest
from app.services.pipeline import VoicePipeline, get_pipeline

router = APIRouter(prefix="/api/ai", tags=["red-flags"])


@router.post("/red-flag-detect")
async def red_flag_detect(body: RedFlagRequest, pipeline: VoicePipeline = Depends(get_pipeline)):
    """Classify reported symptoms and raise an alert when they are a red flag."""
    result, outcome = await pipeline.detect_red_flags(body)
    response = {
        "isRedFlag": result.is_red_flag,
        "riskScore": result.risk_score,
        "reasons": result.reasons,
        "recommendation": result.recommended_action,
        "source": result.source,
        "alert_created": outcome.alert_created,
    }
    if outcome.alert_id:
        response["alert_id"] = outcome.alert_id
        response["deduplicated"] = outcome.deduplicated
    return response
