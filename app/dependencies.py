"""
Service wiring and FastAPI dependencies

Services are built once at startup from settings and handed to routers via
Depends(). A dependency returns None when its backing store is not configured;
routers answer 503 in that case.
"""

from typing import Optional

import structlog

from app import database, redis_client
from app.config import settings
from app.services.checkin_service import CheckinService, SqlCheckinRecorder
from app.services.event_provider import StaticEventProvider
from app.services.monitoring.circuit_breakers import get_redis_breaker
from app.services.token_cache import TokenCache
from app.services.token_service import TokenService

logger = structlog.get_logger(__name__)

_token_service: Optional[TokenService] = None
_checkin_service: Optional[CheckinService] = None


def init_services() -> None:
    """Build token and check-in services from the initialized clients"""
    global _token_service, _checkin_service

    if redis_client.client is None:
        logger.warning("token_service_disabled", reason="redis_not_configured")
        return

    cache = TokenCache(redis_client.client, breaker=get_redis_breaker())
    _token_service = TokenService(
        cache=cache,
        encryption_key=settings.qr_encryption_key,
        base_url=settings.base_url,
        default_expiration_seconds=settings.qr_expiration_seconds,
        key_salt=settings.qr_key_salt,
    )
    if not settings.qr_encryption_key:
        logger.error("qr_encryption_key_missing", effect="token generation will fail")

    if database.SessionLocal is None:
        logger.warning("checkin_service_disabled", reason="database_not_configured")
        return

    if settings.events_file:
        event_provider = StaticEventProvider.from_file(settings.events_file)
    else:
        logger.warning("event_config_missing", reason="EVENTS_FILE not set - every event is unknown")
        event_provider = StaticEventProvider()

    _checkin_service = CheckinService(
        token_service=_token_service,
        event_provider=event_provider,
        recorder=SqlCheckinRecorder(database.SessionLocal),
        consumed_ttl_seconds=settings.qr_used_ttl_seconds,
    )
    logger.info("services_initialized", events=len(event_provider))


def get_token_service() -> Optional[TokenService]:
    return _token_service


def get_checkin_service() -> Optional[CheckinService]:
    return _checkin_service
