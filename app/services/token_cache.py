"""
Token Cache

Redis-backed TTL store for check-in tokens.

Two disjoint key families:
- qr:{event_id}:{token}  Cache Entry (token metadata), TTL = token lifetime
- used:{token}           Consumed Marker, TTL longer than the token lifetime

Every store call runs through a circuit breaker. Backing-store failures are
logged and turned into safe defaults (False / None / 0); nothing here raises
to the request path.
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional

import pybreaker
import redis
import structlog

from app.services.monitoring.circuit_breakers import CircuitBreakerError, create_breaker

logger = structlog.get_logger(__name__)

DEFAULT_CONSUMED_TTL_SECONDS = 3600

# Errors that mean "the cache is unavailable"
CACHE_ERRORS = (redis.RedisError, CircuitBreakerError)


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def token_prefix(token: str) -> str:
    """Short token prefix safe to put in logs."""
    return (token or "")[:12]


def _escape_pattern(value: str) -> str:
    """Escape Redis glob metacharacters so ids match literally."""
    for char in ("\\", "*", "?", "[", "]"):
        value = value.replace(char, "\\" + char)
    return value


class TokenCache:
    """
    Cache of token metadata and consumed markers.

    Usage:
        cache = TokenCache(redis.Redis.from_url(settings.redis_url, decode_responses=True))
        cache.put("evt-1", token, entry, ttl_seconds=60)
        entry = cache.get("evt-1", token)
        if cache.try_consume(token):
            ...  # first and only redemption
    """

    KEY_PREFIX = "qr"
    USED_PREFIX = "used"
    SCAN_COUNT = 500

    def __init__(
        self,
        redis_client,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize token cache.

        Args:
            redis_client: redis-py client created with decode_responses=True
            breaker: Circuit breaker guarding store calls (default: a new one)
            clock: Callable returning the current time in epoch milliseconds
        """
        self.redis = redis_client
        self.breaker = breaker or create_breaker("redis")
        self.clock = clock
        self.logger = logger.bind(service="token_cache")

    # Key naming

    def entry_key(self, event_id: str, token: str) -> str:
        return f"{self.KEY_PREFIX}:{event_id}:{token}"

    def used_key(self, token: str) -> str:
        return f"{self.USED_PREFIX}:{token}"

    def _event_pattern(self, event_id: str) -> str:
        return f"{self.KEY_PREFIX}:{_escape_pattern(event_id)}:*"

    def _execute(self, func: Callable, *args, **kwargs) -> Any:
        return self.breaker.call(func, *args, **kwargs)

    def _scan(self, pattern: str) -> List[str]:
        return self._execute(lambda: list(self.redis.scan_iter(match=pattern, count=self.SCAN_COUNT)))

    def _load_event_entries(self, event_id: str) -> List[tuple]:
        """Return (key, entry) pairs for an event, skipping vanished or undecodable keys."""
        pairs = []
        for key in self._scan(self._event_pattern(event_id)):
            raw = self._execute(self.redis.get, key)
            if raw is None:
                continue  # Expired between scan and get
            try:
                entry = json.loads(raw)
            except (ValueError, TypeError):
                self.logger.warning("cache_entry_undecodable", key=key[:40])
                continue
            if entry.get("eventId") != event_id:
                continue
            pairs.append((key, entry))
        return pairs

    # Cache Entry operations

    def put(self, event_id: str, token: str, entry: Dict[str, Any], ttl_seconds: int) -> bool:
        """
        Store a Cache Entry with a TTL.

        Args:
            event_id: Event identifier
            token: Wire-form token
            entry: Token metadata (must be JSON serializable)
            ttl_seconds: Time to live; non-positive values store nothing

        Returns:
            True if stored, False otherwise
        """
        if ttl_seconds is None or ttl_seconds <= 0:
            self.logger.info("cache_put_skipped", event_id=event_id, reason="non_positive_ttl")
            return False

        data = dict(entry)
        data.setdefault("eventId", event_id)
        data.setdefault("token", token)
        data["isUsed"] = False
        data["cachedAt"] = self.clock()

        try:
            self._execute(self.redis.set, self.entry_key(event_id, token), json.dumps(data), ex=int(ttl_seconds))
            self.logger.debug(
                "cache_entry_stored",
                event_id=event_id,
                token_prefix=token_prefix(token),
                ttl_seconds=ttl_seconds
            )
            return True
        except CACHE_ERRORS as e:
            self.logger.error("cache_put_failed", event_id=event_id, error=str(e))
            return False
        except (TypeError, ValueError) as e:
            self.logger.error("cache_entry_not_serializable", event_id=event_id, error=str(e))
            return False

    def get(self, event_id: str, token: str) -> Optional[Dict[str, Any]]:
        """Retrieve a Cache Entry, or None if absent, expired or unreadable."""
        try:
            raw = self._execute(self.redis.get, self.entry_key(event_id, token))
        except CACHE_ERRORS as e:
            self.logger.error("cache_get_failed", event_id=event_id, error=str(e))
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            self.logger.warning("cache_entry_undecodable", event_id=event_id)
            return None

    def delete(self, event_id: str, token: str) -> bool:
        """Delete one Cache Entry. Returns True if something was removed."""
        try:
            return self._execute(self.redis.delete, self.entry_key(event_id, token)) > 0
        except CACHE_ERRORS as e:
            self.logger.error("cache_delete_failed", event_id=event_id, error=str(e))
            return False

    # Consumed Marker operations

    def _used_payload(self, token: str) -> str:
        return json.dumps({"token": token, "usedAt": self.clock()})

    def mark_used(self, token: str, ttl_seconds: int = DEFAULT_CONSUMED_TTL_SECONDS) -> bool:
        """Write the Consumed Marker unconditionally."""
        try:
            self._execute(self.redis.set, self.used_key(token), self._used_payload(token), ex=int(ttl_seconds))
            self.logger.info("token_marked_used", token_prefix=token_prefix(token), ttl_seconds=ttl_seconds)
            return True
        except CACHE_ERRORS as e:
            self.logger.error("mark_used_failed", token_prefix=token_prefix(token), error=str(e))
            return False

    def try_consume(self, token: str, ttl_seconds: int = DEFAULT_CONSUMED_TTL_SECONDS) -> bool:
        """
        Atomically create the Consumed Marker if absent (SET NX EX).

        Exactly one concurrent caller gets True for a given token. Store
        errors return False so a redemption is never granted blindly.
        """
        try:
            created = self._execute(
                self.redis.set,
                self.used_key(token),
                self._used_payload(token),
                ex=int(ttl_seconds),
                nx=True
            )
        except CACHE_ERRORS as e:
            self.logger.error("try_consume_failed", token_prefix=token_prefix(token), error=str(e))
            return False

        consumed = bool(created)
        self.logger.info(
            "token_consumed" if consumed else "token_already_consumed",
            token_prefix=token_prefix(token)
        )
        return consumed

    def release(self, token: str) -> bool:
        """Remove the Consumed Marker (rollback of a consume)."""
        try:
            removed = self._execute(self.redis.delete, self.used_key(token)) > 0
            self.logger.info("token_released", token_prefix=token_prefix(token), removed=removed)
            return removed
        except CACHE_ERRORS as e:
            self.logger.error("token_release_failed", token_prefix=token_prefix(token), error=str(e))
            return False

    def is_used(self, token: str) -> bool:
        """
        Check for the Consumed Marker.

        Returns False on store errors: the signed payload expiry check
        already bounds how long a token could be replayed during an outage.
        """
        try:
            return self._execute(self.redis.get, self.used_key(token)) is not None
        except CACHE_ERRORS as e:
            self.logger.error("is_used_check_failed", token_prefix=token_prefix(token), error=str(e))
            return False

    # Operational queries

    def active_for_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        """Most recently issued, not yet expired entry for an event."""
        try:
            pairs = self._load_event_entries(event_id)
        except CACHE_ERRORS as e:
            self.logger.error("active_lookup_failed", event_id=event_id, error=str(e))
            return None

        now = self.clock()
        active = [entry for _, entry in pairs if entry.get("expiresAt", 0) > now]
        if not active:
            return None

        return max(active, key=lambda entry: entry.get("issuedAt", 0))

    def cleanup_expired(self, event_id: str) -> int:
        """Delete entries whose expiresAt has passed. Returns the number deleted."""
        try:
            now = self.clock()
            cleaned = 0
            for key, entry in self._load_event_entries(event_id):
                if entry.get("expiresAt", 0) <= now:
                    cleaned += self._execute(self.redis.delete, key)
        except CACHE_ERRORS as e:
            self.logger.error("cleanup_failed", event_id=event_id, error=str(e))
            return 0

        if cleaned:
            self.logger.info("expired_entries_cleaned", event_id=event_id, cleaned=cleaned)
        return cleaned

    def flush_event(self, event_id: str) -> int:
        """Delete every Cache Entry of an event. Returns the number deleted."""
        try:
            keys = [key for key, _ in self._load_event_entries(event_id)]
            if not keys:
                return 0
            deleted = self._execute(self.redis.delete, *keys)
        except CACHE_ERRORS as e:
            self.logger.error("flush_failed", event_id=event_id, error=str(e))
            return 0

        self.logger.info("event_entries_flushed", event_id=event_id, deleted=deleted)
        return deleted

    def stats(self, event_id: str) -> Dict[str, Any]:
        """
        Diagnostic counts for an event's cached entries.

        Returns:
            dict with eventId, total, active, expired, hitRatio (active/total)
            and timestamp; includes "error" when the store was unavailable
        """
        now = self.clock()
        try:
            pairs = self._load_event_entries(event_id)
        except CACHE_ERRORS as e:
            self.logger.error("stats_failed", event_id=event_id, error=str(e))
            return {
                "eventId": event_id,
                "total": 0,
                "active": 0,
                "expired": 0,
                "hitRatio": 0,
                "timestamp": now,
                "error": "cache_unavailable",
            }

        total = len(pairs)
        active = sum(1 for _, entry in pairs if entry.get("expiresAt", 0) > now)

        return {
            "eventId": event_id,
            "total": total,
            "active": active,
            "expired": total - active,
            "hitRatio": (active / total) if total else 0,
            "timestamp": now,
        }

    def tracked_events(self) -> List[str]:
        """Distinct event ids that currently have cached entries."""
        try:
            keys = self._scan(f"{self.KEY_PREFIX}:*")
        except CACHE_ERRORS as e:
            self.logger.error("tracked_events_failed", error=str(e))
            return []

        prefix_len = len(self.KEY_PREFIX) + 1
        events = set()
        for key in keys:
            # Tokens are base64 and never contain ":"
            separator = key.rfind(":")
            if separator > prefix_len:
                events.add(key[prefix_len:separator])
        return sorted(events)

    def is_healthy(self) -> bool:
        """Ping the backing store."""
        try:
            return bool(self._execute(self.redis.ping))
        except CACHE_ERRORS as e:
            self.logger.error("cache_health_check_failed", error=str(e))
            return False
