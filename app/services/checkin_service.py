"""
Check-in Service

Orchestrates a check-in submission:
0. Validate the submitted attendee fields and location accuracy
1. Validate the QR token for the claimed event
2. Look up the event (must exist and be active)
3. Corroborate the submitted location against the event geofence
4. Atomically consume the token (SET NX) - the single-use decision
5. Persist the check-in record; on failure the consume is rolled back
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.api_schemas import UserData
from app.models.checkin_record import CheckinRecord
from app.services.event_provider import EventProvider
from app.services.geofence import GeofenceError, check_location
from app.services.monitoring.error_tracking import add_breadcrumb
from app.services.token_cache import DEFAULT_CONSUMED_TTL_SECONDS, token_prefix
from app.services.token_service import TokenService, ValidationCode, ValidationResult

logger = structlog.get_logger(__name__)


class CheckinCode:
    """Check-in failure codes beyond token validation codes."""
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    EVENT_INACTIVE = "EVENT_INACTIVE"
    OUTSIDE_GEOFENCE = "OUTSIDE_GEOFENCE"
    INVALID_LOCATION = "INVALID_LOCATION"
    INVALID_USER_DATA = "INVALID_USER_DATA"


# code -> (user-facing message, suggested client action)
CHECKIN_MESSAGES: Dict[str, tuple] = {
    ValidationCode.QR_NOT_FOUND: ("QR code has expired. Please scan a new code.", "refresh_qr"),
    ValidationCode.QR_EXPIRED: ("QR code has expired. Please scan a new code.", "refresh_qr"),
    ValidationCode.QR_ALREADY_USED: ("This QR code has already been used. Please scan a new code.", "refresh_qr"),
    ValidationCode.INVALID_EVENT: ("QR code is not valid for this event.", "scan_new_qr"),
    ValidationCode.QR_CORRUPTED: ("QR code is not valid. Please scan a new code.", "scan_new_qr"),
    CheckinCode.EVENT_NOT_FOUND: ("Event not found.", None),
    CheckinCode.EVENT_INACTIVE: ("Event is not currently active.", None),
    CheckinCode.OUTSIDE_GEOFENCE: (
        "You are outside the event area. Please move closer to the event location.",
        "move_closer",
    ),
    CheckinCode.INVALID_LOCATION: ("The submitted location is not valid.", "retry_location"),
    CheckinCode.INVALID_USER_DATA: ("Please check the submitted details.", "fix_form"),
}

LOCATION_SKIPPED_WARNING = "Location not provided - incomplete verification"
NO_GEOFENCE_WARNING = "Event has no geofence - location not verified"


def describe(code: str) -> tuple:
    """User-facing (message, action) for a code."""
    return CHECKIN_MESSAGES.get(code, ("QR code validation failed.", "scan_new_qr"))


class CheckinPersistenceError(Exception):
    """Raised when an accepted check-in cannot be stored."""


@dataclass
class CheckinRequest:
    """A check-in submission as received from the client."""
    event_id: str
    qr_token: str
    user_data: Dict[str, Any]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def location_dict(self) -> Optional[Dict[str, Any]]:
        if not self.has_location:
            return None
        return {"latitude": self.latitude, "longitude": self.longitude, "accuracy": self.accuracy}


@dataclass
class CheckinOutcome:
    """Result of a check-in submission."""
    success: bool
    code: Optional[str] = None
    message: Optional[str] = None
    action: Optional[str] = None
    checkin_id: Optional[Any] = None
    location_verified: bool = False
    distance_meters: Optional[int] = None
    warning: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, code: str, **details) -> "CheckinOutcome":
        message, action = describe(code)
        return cls(success=False, code=code, message=message, action=action, details=details)


class CheckinRecorder(Protocol):
    """Persists accepted check-ins and returns the new record id."""

    def record(self, request: CheckinRequest, location_verified: bool, distance_meters: Optional[int]) -> Any:
        ...


class SqlCheckinRecorder:
    """SQLAlchemy-backed check-in persistence."""

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not session - creates independent transactions)
        """
        self.session_factory = session_factory

    def record(self, request: CheckinRequest, location_verified: bool, distance_meters: Optional[int]) -> int:
        session: Session = self.session_factory()
        try:
            row = CheckinRecord(
                event_id=request.event_id,
                qr_token=request.qr_token,
                user_data=request.user_data,
                location=request.location_dict(),
                validation_status="success",
                location_verified=location_verified,
                distance_meters=distance_meters,
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                checkin_time=datetime.now(timezone.utc),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id
        except SQLAlchemyError as e:
            session.rollback()
            raise CheckinPersistenceError(f"Failed to store check-in: {e}") from e
        finally:
            session.close()


class CheckinService:
    """
    Check-in orchestrator.

    Usage:
        service = CheckinService(token_service, event_provider, SqlCheckinRecorder(SessionLocal))
        outcome = service.submit(CheckinRequest(event_id="evt-1", qr_token=token, user_data={...}))
        if not outcome.success:
            return error(outcome.code, outcome.message)
    """

    def __init__(
        self,
        token_service: TokenService,
        event_provider: EventProvider,
        recorder: CheckinRecorder,
        consumed_ttl_seconds: int = DEFAULT_CONSUMED_TTL_SECONDS
    ):
        self.token_service = token_service
        self.event_provider = event_provider
        self.recorder = recorder
        self.consumed_ttl_seconds = consumed_ttl_seconds

    @staticmethod
    def validation_failure(result: ValidationResult, expected_event_id: Optional[str] = None) -> CheckinOutcome:
        """Map a failed ValidationResult to an outcome, most specific flag first."""
        if result.error == ValidationCode.QR_CORRUPTED:
            code = ValidationCode.QR_CORRUPTED
        elif result.is_expired:
            code = ValidationCode.QR_EXPIRED
        elif result.is_used:
            code = ValidationCode.QR_ALREADY_USED
        elif not result.is_valid_event:
            code = ValidationCode.INVALID_EVENT
        else:
            code = result.error or ValidationCode.QR_CORRUPTED

        details = {}
        if result.expires_at is not None:
            details = {"expiresAt": result.expires_at, "timeRemaining": result.time_remaining}
        if code == ValidationCode.INVALID_EVENT:
            details["expectedEventId"] = expected_event_id
            details["actualEventId"] = result.event_id
        return CheckinOutcome.failure(code, **details)

    def _reject(self, log, code: str, **details) -> CheckinOutcome:
        log.info("checkin_rejected", code=code, **details)
        add_breadcrumb("checkin", "checkin_rejected", level="warning", data={"code": code})
        return CheckinOutcome.failure(code, **details)

    def submit(self, request: CheckinRequest) -> CheckinOutcome:
        """
        Process a check-in submission.

        Returns:
            CheckinOutcome (success or a coded failure)

        Raises:
            CheckinPersistenceError: If the record could not be stored
        """
        log = logger.bind(event_id=request.event_id, token_prefix=token_prefix(request.qr_token))

        # Step 0: Submitted fields
        try:
            user = UserData.model_validate(request.user_data)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            return self._reject(log, CheckinCode.INVALID_USER_DATA, fields=fields)
        request = replace(request, user_data=user.model_dump(by_alias=True, exclude_none=True))

        if request.accuracy is not None and request.accuracy < 0:
            return self._reject(log, CheckinCode.INVALID_LOCATION, accuracy=request.accuracy)

        # Step 1: Token
        validation = self.token_service.validate(request.qr_token, request.event_id)
        if not validation.is_valid:
            outcome = self.validation_failure(validation, request.event_id)
            log.info("checkin_rejected", code=outcome.code)
            add_breadcrumb("checkin", "checkin_rejected", level="warning", data={"code": outcome.code})
            return outcome

        # Step 2: Event
        event = self.event_provider.get_event(request.event_id)
        if event is None:
            return self._reject(log, CheckinCode.EVENT_NOT_FOUND, eventId=request.event_id)
        if not event.is_active:
            return self._reject(log, CheckinCode.EVENT_INACTIVE, eventId=request.event_id)

        # Step 3: Location
        location_verified = False
        distance_meters = None
        warning = None

        if not request.has_location:
            warning = LOCATION_SKIPPED_WARNING
        elif event.geofence is None:
            warning = NO_GEOFENCE_WARNING
        else:
            try:
                check = check_location(request.latitude, request.longitude, event.geofence)
            except GeofenceError as e:
                log.info("invalid_location_submitted", error=str(e))
                return self._reject(log, CheckinCode.INVALID_LOCATION)

            if not check.is_inside:
                return self._reject(
                    log,
                    CheckinCode.OUTSIDE_GEOFENCE,
                    userDistance=check.distance_meters,
                    allowedRadius=check.allowed_radius,
                    geofenceType=check.geofence_type,
                )
            location_verified = True
            distance_meters = check.distance_meters

        # Step 4: Single-use decision
        if not self.token_service.try_consume(request.qr_token, self.consumed_ttl_seconds):
            return self._reject(log, ValidationCode.QR_ALREADY_USED)

        # Step 5: Persist
        try:
            checkin_id = self.recorder.record(request, location_verified, distance_meters)
        except Exception:
            self.token_service.release(request.qr_token)
            log.error("checkin_persist_failed", exc_info=True)
            raise

        log.info(
            "checkin_accepted",
            checkin_id=checkin_id,
            location_verified=location_verified,
            distance_meters=distance_meters
        )
        return CheckinOutcome(
            success=True,
            checkin_id=checkin_id,
            message="Check-in submitted successfully",
            location_verified=location_verified,
            distance_meters=distance_meters,
            warning=warning,
            details={"timeRemaining": validation.time_remaining},
        )
