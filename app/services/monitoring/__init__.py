"""
Monitoring Module
Exports for structured logging, error tracking and circuit breakers
"""

from app.services.monitoring.logging import setup_logging, CorrelationJsonFormatter, get_correlation_id
from app.services.monitoring.error_tracking import init_sentry, add_breadcrumb
from app.services.monitoring.circuit_breakers import (
    get_redis_breaker,
    create_breaker,
    CircuitBreakerError,
    CircuitBreakerLogListener,
)

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "get_correlation_id",
    "init_sentry",
    "add_breadcrumb",
    "get_redis_breaker",
    "create_breaker",
    "CircuitBreakerError",
    "CircuitBreakerLogListener",
]
