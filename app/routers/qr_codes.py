"""
QR Code API Router
Issues check-in codes and exposes cache diagnostics for operational tooling
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
import structlog

from app.dependencies import get_token_service
from app.models.api_schemas import GenerateTokenRequest, TokenRecordResponse
from app.services.token_service import GenerationError, TokenRecord, TokenService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/events/{event_id}/qr", tags=["qr"])


def _require(service: Optional[TokenService]) -> TokenService:
    if service is None:
        raise HTTPException(status_code=503, detail="Token cache not configured")
    return service


def _issue(service: TokenService, event_id: str, request: Optional[GenerateTokenRequest]) -> TokenRecordResponse:
    request = request or GenerateTokenRequest()
    try:
        if request.format == "svg":
            record: TokenRecord = service.generate_svg(event_id, request.ttl_seconds)
        else:
            record = service.generate(event_id, request.ttl_seconds)
    except GenerationError:
        raise HTTPException(
            status_code=500,
            detail={"code": "QR_GENERATION_FAILED", "message": "Failed to generate QR code"}
        )

    return TokenRecordResponse(**record.to_dict())


@router.post("", response_model=TokenRecordResponse, response_model_exclude_none=True)
async def generate_qr_code(
    event_id: str,
    request: Optional[GenerateTokenRequest] = None,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """
    Issue a new check-in code for an event

    Args:
        event_id: Event identifier
        request: Optional lifetime and image format

    Returns:
        Token, check-in URL, timestamps and QR image
    """
    return _issue(_require(service), event_id, request)


@router.post("/refresh", response_model=TokenRecordResponse, response_model_exclude_none=True)
async def refresh_qr_code(
    event_id: str,
    request: Optional[GenerateTokenRequest] = None,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """Replace the displayed code with a new, independent one"""
    return _issue(_require(service), event_id, request)


@router.get("/active")
async def get_active_qr_code(
    event_id: str,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """
    Most recently issued code that has not yet expired

    Raises:
        404: No live code for this event
    """
    entry = _require(service).get_active(event_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="No active QR code for event")
    return entry


@router.get("/stats")
async def get_qr_stats(
    event_id: str,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """Cache statistics (total / active / expired) for an event"""
    return _require(service).cache_stats(event_id)


@router.post("/cleanup")
async def cleanup_expired_qr_codes(
    event_id: str,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """Delete expired cache entries for an event"""
    cleaned = _require(service).cleanup_expired(event_id)
    logger.info("qr_cleanup_requested", event_id=event_id, cleaned=cleaned)
    return {"eventId": event_id, "cleaned": cleaned}


@router.delete("")
async def flush_qr_codes(
    event_id: str,
    service: Optional[TokenService] = Depends(get_token_service)
):
    """Invalidate every cached code of an event"""
    deleted = _require(service).flush_event(event_id)
    logger.info("qr_flush_requested", event_id=event_id, deleted=deleted)
    return {"eventId": event_id, "deleted": deleted}
