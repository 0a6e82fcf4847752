"""
Pydantic schemas for the QR token and check-in API
"""

from typing import Any, Dict, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class GenerateTokenRequest(BaseModel):
    """
    Request body for issuing or refreshing an event's check-in code
    """
    ttl_seconds: Optional[int] = Field(
        None,
        alias="ttlSeconds",
        ge=0,
        le=86400,
        description="Token lifetime in seconds (defaults to QR_EXPIRATION_SECONDS)"
    )
    format: Literal["png", "svg"] = Field("png", description="QR image format to include")

    model_config = {"populate_by_name": True}


class TokenRecordResponse(BaseModel):
    """
    Freshly issued check-in code
    """
    event_id: str = Field(..., alias="eventId")
    token: str
    checkin_url: str = Field(..., alias="checkinUrl")
    issued_at: int = Field(..., alias="issuedAt")
    expires_at: int = Field(..., alias="expiresAt")
    expiration_seconds: int = Field(..., alias="expirationSeconds")
    qr_code_image: Optional[str] = Field(None, alias="qrCodeImage")
    qr_code_svg: Optional[str] = Field(None, alias="qrCodeSvg")
    cached: bool

    model_config = {"populate_by_name": True}


class UserData(BaseModel):
    """
    Attendee fields submitted with a check-in

    Unknown keys are kept and stored alongside the known ones.
    """
    name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    id_number: str = Field(..., alias="idNumber", max_length=50)
    selfie_url: Optional[str] = Field(None, alias="selfieUrl", max_length=500)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("name", "id_number")
    @classmethod
    def require_text(cls, v):
        """Reject blank values; surrounding whitespace is dropped."""
        v = v.strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("selfie_url")
    @classmethod
    def require_http_url(cls, v):
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be a valid http(s) URL")
        return v


class LocationPayload(BaseModel):
    """Submitter position as reported by the browser"""
    latitude: float
    longitude: float
    accuracy: Optional[float] = Field(None, ge=0, description="Reported accuracy radius in meters")


class CheckinSubmission(BaseModel):
    """
    Check-in form submission
    """
    event_id: str = Field(..., alias="eventId", min_length=1, description="Event being checked into")
    qr_token: str = Field(..., alias="qrToken", min_length=1, description="Opaque token from the scanned QR code")
    user_data: Dict[str, Any] = Field(..., alias="userData", description="Submitted attendee fields")
    location: Optional[LocationPayload] = None

    model_config = {"populate_by_name": True}


class ErrorBody(BaseModel):
    """Machine-readable error; message is fixed text keyed by code"""
    code: str
    message: str
    action: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class CheckinResponse(BaseModel):
    """
    Response returned from the check-in endpoint
    """
    success: bool
    message: Optional[str] = None
    checkin_id: Optional[Any] = Field(None, alias="checkinId")
    event_id: Optional[str] = Field(None, alias="eventId")
    location_verified: bool = Field(False, alias="locationVerified")
    distance_meters: Optional[int] = Field(None, alias="distanceMeters")
    warning: Optional[str] = None
    error: Optional[ErrorBody] = None

    model_config = {"populate_by_name": True}
