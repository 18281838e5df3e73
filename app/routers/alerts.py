from fastapi import APIRouter, Depends, Header

from app.models.alert import (
    Alert,
    AlertCreate,
    AlertCreateResponse,
    AlertStatusUpdate,
    AlertSummary,
)
from app.services.alerts import (
    ALERT_CREATED_MESSAGE,
    ALERT_CREATED_MESSAGE_HINDI,
    AlertManager,
    get_alert_manager,
)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.post("/create", response_model=AlertCreateResponse, status_code=201)
async def create_alert(
    body: AlertCreate,
    x_user_id: str | None = Header(None),
    alerts: AlertManager = Depends(get_alert_manager),
):
    """Raise an alert on behalf of the signed-in user.

    Caller identity comes from the ``X-User-Id`` header set by the upstream
    auth layer.
    """
    alert = await alerts.create_manual(body, x_user_id)
    return AlertCreateResponse(
        alert=AlertSummary(
            id=alert.id,
            severity_level=alert.severity_level,
            status=alert.status,
            created_at=alert.created_at,
        ),
        message=ALERT_CREATED_MESSAGE,
        message_hindi=ALERT_CREATED_MESSAGE_HINDI,
    )


@router.patch("/{alert_id}/status", response_model=Alert)
async def update_alert_status(
    alert_id: str,
    body: AlertStatusUpdate,
    alerts: AlertManager = Depends(get_alert_manager),
):
    return await alerts.update_status(alert_id, body.status)
