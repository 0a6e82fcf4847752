"""
Tests for logging, error tracking and circuit breaker helpers.
"""

import json
import logging
from unittest.mock import patch

import pybreaker

from app.services.monitoring import (
    CorrelationJsonFormatter,
    add_breadcrumb,
    create_breaker,
    get_correlation_id,
    init_sentry,
    setup_logging,
)
from app.services.monitoring import circuit_breakers


class TestLogging:

    def test_setup_logging_does_not_duplicate_handler(self):
        root = logging.getLogger()
        try:
            first = setup_logging()
            second = setup_logging()
            names = [h.get_name() for h in root.handlers]
            assert names.count("qr_checkin_json") == 1
            assert first not in root.handlers
            assert second in root.handlers
        finally:
            for handler in list(root.handlers):
                if handler.get_name() == "qr_checkin_json":
                    root.removeHandler(handler)

    def test_formatter_adds_service_fields(self):
        formatter = CorrelationJsonFormatter("%(levelname)s %(name)s %(message)s")
        record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "token issued", None, None)

        data = json.loads(formatter.format(record))
        assert data["message"] == "token issued"
        assert data["service"] == "qr-checkin"
        assert data["correlation_id"] == "none"

    def test_correlation_id_outside_request(self):
        assert get_correlation_id() == "none"


class TestErrorTracking:

    def test_sentry_disabled_without_dsn(self):
        with patch("app.services.monitoring.error_tracking.settings.sentry_dsn", None):
            assert init_sentry() is False

    def test_breadcrumb_is_noop_without_dsn(self):
        with patch("app.services.monitoring.error_tracking.settings.sentry_dsn", None), \
                patch("sentry_sdk.add_breadcrumb") as sentry_breadcrumb:
            add_breadcrumb("checkin", "checkin_rejected", data={"code": "QR_EXPIRED"})
        sentry_breadcrumb.assert_not_called()


class TestCircuitBreakers:

    def test_create_breaker_uses_overrides(self):
        breaker = create_breaker("redis", fail_max=3, reset_timeout=7)
        assert breaker.fail_max == 3
        assert breaker.reset_timeout == 7
        assert breaker.current_state == pybreaker.STATE_CLOSED

    def test_shared_redis_breaker(self):
        circuit_breakers.reset_breakers()
        try:
            assert circuit_breakers.get_redis_breaker() is circuit_breakers.get_redis_breaker()
        finally:
            circuit_breakers.reset_breakers()
