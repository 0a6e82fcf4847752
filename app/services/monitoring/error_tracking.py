"""
Sentry Error Tracking
Optional error reporting for token issuance and check-in failures
"""

from typing import Optional

import structlog

from app.config import settings

logger = structlog.get_logger(__name__)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK with FastAPI integration.

    If SENTRY_DSN is not configured, logs a warning and returns False
    (disabled) so development environments run without it.
    """
    if settings.sentry_dsn is None:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not configured")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    environment = settings.sentry_environment or settings.environment
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=environment,
        traces_sample_rate=0.1,  # 10% of requests traced
        send_default_pii=False,  # Check-in payloads carry attendee data
        integrations=[
            FastApiIntegration(),
        ],
    )

    logger.info("sentry_initialized", environment=environment, traces_sample_rate=0.1)
    return True


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the request trail.

    Args:
        category: Breadcrumb category (e.g., "token", "geofence", "checkin")
        message: Human-readable message
        level: Severity level ("debug", "info", "warning", "error")
        data: Additional structured data (never full tokens)
    """
    if settings.sentry_dsn is None:
        return

    import sentry_sdk

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )
