"""
Check-in Router
Landing endpoint for scanned QR links and check-in submission
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
import structlog

from app.dependencies import get_checkin_service, get_token_service
from app.models.api_schemas import CheckinResponse, CheckinSubmission, ErrorBody
from app.services.checkin_service import (
    CheckinCode,
    CheckinOutcome,
    CheckinPersistenceError,
    CheckinRequest,
    CheckinService,
)
from app.services.monitoring import get_correlation_id
from app.services.token_service import TokenService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["checkin"])


def _error_response(outcome: CheckinOutcome, event_id: str) -> JSONResponse:
    status_code = 404 if outcome.code == CheckinCode.EVENT_NOT_FOUND else 400
    body = CheckinResponse(
        success=False,
        event_id=event_id,
        error=ErrorBody(
            code=outcome.code,
            message=outcome.message,
            action=outcome.action,
            details=outcome.details,
        ),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))


@router.get("/checkin")
async def open_checkin_link(
    event: str = Query(..., min_length=1, description="Event identifier"),
    token: str = Query(..., min_length=1, description="Opaque QR token"),
    ts: Optional[int] = Query(None, description="Issue timestamp (informational)"),
    service: Optional[TokenService] = Depends(get_token_service)
):
    """
    Validate a scanned QR link before the check-in form is shown

    Does not consume the token. Returns the time left to submit.
    """
    if service is None:
        raise HTTPException(status_code=503, detail="Token cache not configured")

    result = service.validate(token, event)
    if not result.is_valid:
        return _error_response(CheckinService.validation_failure(result, event), event)

    return {
        "success": True,
        "eventId": event,
        "issuedAt": result.issued_at,
        "expiresAt": result.expires_at,
        "timeRemaining": result.time_remaining,
    }


@router.post("/api/v1/checkin", response_model=CheckinResponse, response_model_exclude_none=True)
async def submit_checkin(
    submission: CheckinSubmission,
    request: Request,
    service: Optional[CheckinService] = Depends(get_checkin_service)
):
    """
    Submit a check-in

    This endpoint:
    1. Validates the QR token for the event
    2. Checks the event is active and the location is inside its geofence
    3. Consumes the token (single use)
    4. Stores the check-in record

    Returns:
        CheckinResponse; 400/404 with an error code on rejection, 500 if the record cannot be stored
    """
    if service is None:
        raise HTTPException(status_code=503, detail="Check-in service not configured")

    checkin_request = CheckinRequest(
        event_id=submission.event_id,
        qr_token=submission.qr_token,
        user_data=submission.user_data,
        latitude=submission.location.latitude if submission.location else None,
        longitude=submission.location.longitude if submission.location else None,
        accuracy=submission.location.accuracy if submission.location else None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    try:
        outcome = service.submit(checkin_request)
    except CheckinPersistenceError:
        body = CheckinResponse(
            success=False,
            event_id=submission.event_id,
            error=ErrorBody(code="CHECKIN_SUBMISSION_ERROR", message="Failed to process check-in submission"),
        )
        return JSONResponse(status_code=500, content=body.model_dump(by_alias=True, exclude_none=True))

    if not outcome.success:
        logger.info(
            "checkin_request_rejected",
            event_id=submission.event_id,
            code=outcome.code,
            correlation_id=get_correlation_id()
        )
        return _error_response(outcome, submission.event_id)

    return CheckinResponse(
        success=True,
        message=outcome.message,
        checkin_id=outcome.checkin_id,
        event_id=submission.event_id,
        location_verified=outcome.location_verified,
        distance_meters=outcome.distance_meters,
        warning=outcome.warning,
    )
