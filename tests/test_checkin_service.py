"""
Tests for the check-in orchestrator and its SQL recorder.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.checkin_record import CheckinRecord
from app.models.geofence import EventConfig
from app.services.checkin_service import (
    LOCATION_SKIPPED_WARNING,
    NO_GEOFENCE_WARNING,
    CheckinCode,
    CheckinPersistenceError,
    CheckinRequest,
    CheckinService,
    SqlCheckinRecorder,
    describe,
)
from app.services.token_service import ValidationCode, ValidationResult

INSIDE_CIRCLE = (37.7750, -122.4194)      # ~11 m from the center
OUTSIDE_CIRCLE = (37.7800, -122.4194)     # ~567 m from the center

USER_DATA = {"name": "Ada Lovelace", "email": "ada@example.com", "idNumber": "A-1815"}


@pytest.fixture
def recorder():
    mock = MagicMock()
    mock.record.return_value = 42
    return mock


@pytest.fixture
def service(token_service, event_provider, recorder):
    return CheckinService(token_service, event_provider, recorder, consumed_ttl_seconds=3600)


def _request(token, event_id="evt-circle", location=INSIDE_CIRCLE, user_data=None, **kwargs):
    lat, lng = location if location else (None, None)
    return CheckinRequest(
        event_id=event_id,
        qr_token=token,
        user_data=dict(USER_DATA) if user_data is None else user_data,
        latitude=lat,
        longitude=lng,
        **kwargs
    )


class TestSuccessfulCheckin:

    def test_inside_circle(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token))

        assert outcome.success is True
        assert outcome.checkin_id == 42
        assert outcome.location_verified is True
        assert outcome.distance_meters == 11
        assert outcome.warning is None
        assert outcome.message == "Check-in submitted successfully"
        recorder.record.assert_called_once()

    def test_token_is_consumed(self, service, token_service):
        token = token_service.generate("evt-circle").token
        service.submit(_request(token))

        assert token_service.cache.is_used(token) is True

    def test_inside_polygon(self, service, token_service):
        token = token_service.generate("evt-polygon").token
        outcome = service.submit(_request(token, event_id="evt-polygon", location=(1, 1)))

        assert outcome.success is True
        assert outcome.distance_meters == 0

    def test_missing_location_warns(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, location=None))

        assert outcome.success is True
        assert outcome.location_verified is False
        assert outcome.warning == LOCATION_SKIPPED_WARNING
        request, location_verified, distance_meters = recorder.record.call_args.args
        assert request.location_dict() is None
        assert location_verified is False
        assert distance_meters is None

    def test_event_without_geofence_warns(self, service, token_service):
        token = token_service.generate("evt-open").token
        outcome = service.submit(_request(token, event_id="evt-open"))

        assert outcome.success is True
        assert outcome.warning == NO_GEOFENCE_WARNING


class TestRejectedCheckin:

    def test_second_submission_is_already_used(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        assert service.submit(_request(token)).success is True

        outcome = service.submit(_request(token))
        assert outcome.success is False
        assert outcome.code == ValidationCode.QR_ALREADY_USED
        assert outcome.action == "refresh_qr"
        assert recorder.record.call_count == 1

    def test_lost_consume_race(self, service, token_service, recorder):
        """Validation passed but another request claimed the token first."""
        token = token_service.generate("evt-circle").token
        with patch.object(token_service, "try_consume", return_value=False):
            outcome = service.submit(_request(token))

        assert outcome.code == ValidationCode.QR_ALREADY_USED
        recorder.record.assert_not_called()

    def test_expired_token(self, service, token_service, clock):
        token = token_service.generate("evt-circle", ttl_seconds=30).token
        clock.advance(30_000)

        outcome = service.submit(_request(token))
        assert outcome.code == ValidationCode.QR_EXPIRED
        assert outcome.message == "QR code has expired. Please scan a new code."

    def test_token_for_other_event(self, service, token_service):
        token = token_service.generate("evt-open").token
        outcome = service.submit(_request(token, event_id="evt-circle"))

        assert outcome.success is False
        assert token_service.cache.is_used(token) is False

    def test_event_not_found(self, service, token_service):
        token = token_service.generate("evt-missing").token
        outcome = service.submit(_request(token, event_id="evt-missing"))

        assert outcome.code == CheckinCode.EVENT_NOT_FOUND
        assert outcome.details == {"eventId": "evt-missing"}

    def test_event_inactive(self, service, token_service):
        token = token_service.generate("evt-closed").token
        outcome = service.submit(_request(token, event_id="evt-closed"))

        assert outcome.code == CheckinCode.EVENT_INACTIVE
        assert token_service.cache.is_used(token) is False

    def test_outside_geofence(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, location=OUTSIDE_CIRCLE))

        assert outcome.code == CheckinCode.OUTSIDE_GEOFENCE
        assert outcome.action == "move_closer"
        assert outcome.details["allowedRadius"] == 100
        assert outcome.details["geofenceType"] == "circle"
        assert 500 < outcome.details["userDistance"] < 600
        assert token_service.cache.is_used(token) is False
        recorder.record.assert_not_called()

    def test_outside_polygon(self, service, token_service):
        token = token_service.generate("evt-polygon").token
        outcome = service.submit(_request(token, event_id="evt-polygon", location=(3, 3)))

        assert outcome.code == CheckinCode.OUTSIDE_GEOFENCE
        assert outcome.details["geofenceType"] == "polygon"

    def test_invalid_location(self, service, token_service):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, location=(91.0, 0.0)))

        assert outcome.code == CheckinCode.INVALID_LOCATION
        assert token_service.cache.is_used(token) is False

    def test_far_side_of_the_globe_is_outside(self, service, token_service, event_provider):
        event_provider.register(EventConfig.model_validate({
            "id": "evt-antipode",
            "geofence": {"type": "circle", "center": {"lat": -86.9738, "lng": 106.7731}, "radiusMeters": 100},
        }))
        token = token_service.generate("evt-antipode").token

        outcome = service.submit(_request(token, event_id="evt-antipode", location=(86.9738, -73.2269)))

        assert outcome.code == CheckinCode.OUTSIDE_GEOFENCE
        assert outcome.details["userDistance"] > 20_000_000

    def test_token_minted_for_other_event(self, service, token_service, fake_redis):
        token = token_service.generate("evt-open").token
        fake_redis.set(f"qr:evt-circle:{token}", fake_redis.get(f"qr:evt-open:{token}"))

        outcome = service.submit(_request(token, event_id="evt-circle"))

        assert outcome.code == ValidationCode.INVALID_EVENT
        assert outcome.details["expectedEventId"] == "evt-circle"
        assert outcome.details["actualEventId"] == "evt-open"
        assert token_service.cache.is_used(token) is False

    def test_garbage_token(self, service):

        outcome = service.submit(_request("not-a-token"))
        assert outcome.success is False
        assert outcome.code == ValidationCode.QR_EXPIRED


class TestSubmittedFields:

    @pytest.mark.parametrize("user_data, field", [
        ({"email": "ada@example.com", "idNumber": "A-1815"}, "name"),
        ({**USER_DATA, "name": "   "}, "name"),
        ({**USER_DATA, "name": "x" * 101}, "name"),
        ({**USER_DATA, "email": "ada.example.com"}, "email"),
        ({**USER_DATA, "email": "a@" + "b" * 250 + ".com"}, "email"),
        ({"name": "Ada Lovelace", "email": "ada@example.com"}, "idNumber"),
        ({**USER_DATA, "idNumber": "9" * 51}, "idNumber"),
        ({**USER_DATA, "selfieUrl": "not a url"}, "selfieUrl"),
        ({**USER_DATA, "selfieUrl": "https://cdn.example.com/" + "s" * 480}, "selfieUrl"),
    ])
    def test_rejects_invalid_field(self, service, token_service, recorder, user_data, field):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, user_data=user_data))

        assert outcome.success is False
        assert outcome.code == CheckinCode.INVALID_USER_DATA
        assert outcome.action == "fix_form"
        assert outcome.details["fields"] == [field]
        assert token_service.cache.is_used(token) is False
        recorder.record.assert_not_called()

    def test_empty_user_data(self, service, token_service):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, user_data={}))

        assert outcome.code == CheckinCode.INVALID_USER_DATA
        assert outcome.details["fields"] == ["email", "idNumber", "name"]

    def test_normalized_fields_are_stored(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        user_data = {**USER_DATA, "name": "  Ada Lovelace ", "selfieUrl": "https://cdn.example.com/ada.jpg", "team": "R&D"}

        assert service.submit(_request(token, user_data=user_data)).success is True

        request = recorder.record.call_args.args[0]
        assert request.user_data == {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "idNumber": "A-1815",
            "selfieUrl": "https://cdn.example.com/ada.jpg",
            "team": "R&D",
        }

    def test_negative_accuracy(self, service, token_service, recorder):
        token = token_service.generate("evt-circle").token
        outcome = service.submit(_request(token, accuracy=-5))

        assert outcome.code == CheckinCode.INVALID_LOCATION
        assert token_service.cache.is_used(token) is False
        recorder.record.assert_not_called()

    def test_zero_accuracy_accepted(self, service, token_service):
        token = token_service.generate("evt-circle").token
        assert service.submit(_request(token, accuracy=0)).success is True


class TestPersistenceFailure:


    def test_consume_is_released(self, service, token_service, recorder):
        recorder.record.side_effect = CheckinPersistenceError("db down")
        token = token_service.generate("evt-circle").token

        with pytest.raises(CheckinPersistenceError):
            service.submit(_request(token))

        assert token_service.cache.is_used(token) is False

        recorder.record.side_effect = None
        assert service.submit(_request(token)).success is True


class TestValidationFailureMapping:

    def test_corrupted_first(self):
        result = ValidationResult(is_valid=False, is_expired=True, error=ValidationCode.QR_CORRUPTED)
        assert CheckinService.validation_failure(result).code == ValidationCode.QR_CORRUPTED

    def test_not_found_reads_as_expired(self):
        result = ValidationResult(is_valid=False, is_expired=True, error=ValidationCode.QR_NOT_FOUND)
        assert CheckinService.validation_failure(result).code == ValidationCode.QR_EXPIRED

    def test_used(self):
        result = ValidationResult(
            is_valid=False, is_used=True, is_valid_event=True, error=ValidationCode.QR_ALREADY_USED
        )
        assert CheckinService.validation_failure(result).code == ValidationCode.QR_ALREADY_USED

    def test_invalid_event(self):
        result = ValidationResult(
            is_valid=False, is_valid_event=False, error=ValidationCode.INVALID_EVENT, expires_at=5, time_remaining=3
        )
        outcome = CheckinService.validation_failure(result)
        assert outcome.code == ValidationCode.INVALID_EVENT
        assert outcome.message == "QR code is not valid for this event."
        assert outcome.details == {
            "expiresAt": 5,
            "timeRemaining": 3,
            "expectedEventId": None,
            "actualEventId": None,
        }

    def test_invalid_event_names_both_events(self):
        result = ValidationResult(
            is_valid=False, is_valid_event=False, error=ValidationCode.INVALID_EVENT, event_id="evt-open"
        )
        outcome = CheckinService.validation_failure(result, "evt-circle")
        assert outcome.details == {"expectedEventId": "evt-circle", "actualEventId": "evt-open"}

    def test_other_codes_omit_event_ids(self):
        result = ValidationResult(is_valid=False, is_expired=True, error=ValidationCode.QR_EXPIRED, event_id="evt-open")
        assert "actualEventId" not in CheckinService.validation_failure(result, "evt-circle").details

    def test_unknown_code_has_generic_text(self):
        assert describe("SOMETHING_ELSE") == ("QR code validation failed.", "scan_new_qr")


class TestSqlCheckinRecorder:

    @pytest.fixture
    def session_factory(self):
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        yield sessionmaker(bind=engine)
        engine.dispose()

    def test_record_persists_row(self, session_factory):
        recorder = SqlCheckinRecorder(session_factory)
        request = _request("tok-a", accuracy=12.5, ip_address="10.0.0.1", user_agent="pytest")

        checkin_id = recorder.record(request, location_verified=True, distance_meters=11)

        session = session_factory()
        try:
            row = session.get(CheckinRecord, checkin_id)
            assert row.event_id == "evt-circle"
            assert row.qr_token == "tok-a"
            assert row.user_data["email"] == "ada@example.com"
            assert row.location == {"latitude": 37.7750, "longitude": -122.4194, "accuracy": 12.5}
            assert row.validation_status == "success"
            assert row.location_verified is True
            assert row.distance_meters == 11
            assert row.ip_address == "10.0.0.1"
            assert row.checkin_time is not None
        finally:
            session.close()

    def test_database_error_is_wrapped(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        recorder = SqlCheckinRecorder(lambda: session)

        with pytest.raises(CheckinPersistenceError):
            recorder.record(_request("tok-a"), location_verified=False, distance_meters=None)

        session.rollback.assert_called_once()
        session.close.assert_called_once()
