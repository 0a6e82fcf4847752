"""
Circuit Breaker Implementation for External Service Dependencies

Protects against cascading failures by opening circuits after consecutive failures
and automatically attempting recovery after a timeout period.

Services protected:
- Redis (token cache and consumed markers)
"""

from typing import Optional

import pybreaker
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

CircuitBreakerError = pybreaker.CircuitBreakerError


class CircuitBreakerLogListener(pybreaker.CircuitBreakerListener):
    """
    Logs circuit breaker state changes.

    An open Redis circuit means every token validation fails closed and
    every used-check fails open until recovery, so transitions are logged
    at warning level.
    """

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state):
        """
        Handle circuit breaker state changes.

        Args:
            cb: The circuit breaker instance
            old_state: Previous state
            new_state: New state
        """
        logger.warning(
            "circuit_breaker_state_change",
            circuit_breaker=cb.name,
            old_state=old_state.name if old_state else None,
            new_state=new_state.name,
            fail_count=cb.fail_counter,
        )


def create_breaker(
    name: str,
    fail_max: Optional[int] = None,
    reset_timeout: Optional[int] = None
) -> pybreaker.CircuitBreaker:
    """
    Create a circuit breaker with configured thresholds.

    Args:
        name: Service name for the circuit breaker
        fail_max: Consecutive failures before opening (default from settings)
        reset_timeout: Seconds before a recovery attempt (default from settings)

    Returns:
        Configured CircuitBreaker instance
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=fail_max or settings.circuit_breaker_fail_max,
        reset_timeout=reset_timeout or settings.circuit_breaker_reset_timeout,
        listeners=[CircuitBreakerLogListener()],
    )


# Module-level instance (lazy initialization)
_redis_breaker: Optional[pybreaker.CircuitBreaker] = None


def get_redis_breaker() -> pybreaker.CircuitBreaker:
    """
    Get the shared Redis circuit breaker.

    Lazy initializes on first access to avoid import-time side effects.
    """
    global _redis_breaker

    if _redis_breaker is None:
        _redis_breaker = create_breaker("redis")
        logger.info("circuit_breaker_initialized", circuit_breaker="redis")
    return _redis_breaker


def reset_breakers() -> None:
    """Drop the shared breaker (used by tests)."""
    global _redis_breaker
    _redis_breaker = None
