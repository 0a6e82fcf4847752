"""
Token Service

Issues and validates encrypted, time-boxed, single-use check-in tokens.

Validation is two independent guards, both required:
1. Cache Entry presence (Redis TTL eviction is the primary expiry mechanism)
2. Decrypted payload checks (eventId match, payload expiresAt) plus the
   Consumed Marker

The encryption key is passed in at construction; there is no module-level
key so tests can supply deterministic keys.
"""

import base64
import io
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import qrcode
import qrcode.image.svg
import structlog
from pydantic import BaseModel, Field, ValidationError

from app.services.token_cache import DEFAULT_CONSUMED_TTL_SECONDS, TokenCache, now_ms, token_prefix
from app.services.token_crypto import CorruptedTokenError, TokenCipher, TokenCryptoError

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRATION_SECONDS = 60
NONCE_BYTES = 16


class ValidationCode:
    """Machine-stable validation error codes (mapped to user text by the presentation layer)."""
    QR_NOT_FOUND = "QR_NOT_FOUND"
    QR_CORRUPTED = "QR_CORRUPTED"
    QR_EXPIRED = "QR_EXPIRED"
    QR_ALREADY_USED = "QR_ALREADY_USED"
    INVALID_EVENT = "INVALID_EVENT"


class GenerationError(Exception):
    """Raised when a token cannot be generated (e.g. keying material unavailable)."""


class TokenPayload(BaseModel):
    """Plaintext carried inside the encrypted token."""
    event_id: str = Field(..., alias="eventId")
    issued_at: int = Field(..., alias="issuedAt")
    expires_at: int = Field(..., alias="expiresAt")
    nonce: str

    model_config = {"populate_by_name": True}


@dataclass
class TokenRecord:
    """A freshly minted token with its caller-facing artifacts."""
    token: str
    event_id: str
    issued_at: int
    expires_at: int
    expiration_seconds: int
    checkin_url: str
    qr_code_image: Optional[str] = None
    qr_code_svg: Optional[str] = None
    cached: bool = False

    def cache_entry(self) -> Dict[str, Any]:
        """Cache Entry shape stored under qr:{event_id}:{token}."""
        return {
            "eventId": self.event_id,
            "token": self.token,
            "checkinUrl": self.checkin_url,
            "qrCodeImage": self.qr_code_image,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
            "expirationSeconds": self.expiration_seconds,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    """
    Result of token validation. Never raised; callers branch on the flags.
    """
    is_valid: bool
    is_expired: bool = False
    is_used: bool = False
    is_valid_event: bool = False
    error: Optional[str] = None
    event_id: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None
    time_remaining: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TokenService:
    """
    Orchestrates token encryption, issuance and validation.

    Usage:
        service = TokenService(
            cache=TokenCache(redis_client),
            encryption_key=settings.qr_encryption_key,
            base_url=settings.base_url,
        )
        record = service.generate("evt-1", ttl_seconds=60)
        result = service.validate(record.token, "evt-1")
        if result.is_valid and service.try_consume(record.token):
            ...  # persist the check-in
    """

    def __init__(
        self,
        cache: TokenCache,
        encryption_key: Optional[str],
        base_url: str = "http://localhost:8000",
        default_expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        key_salt: str = "salt",
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize token service.

        Args:
            cache: Token cache for entries and consumed markers
            encryption_key: Secret the AES key is derived from
            base_url: Public base URL embedded in check-in links
            default_expiration_seconds: TTL used when callers pass none
            key_salt: Fixed key-derivation salt
            clock: Callable returning the current time in epoch milliseconds
        """
        self.cache = cache
        self.cipher = TokenCipher(encryption_key, salt=key_salt)
        self.base_url = base_url.rstrip("/")
        self.default_expiration_seconds = default_expiration_seconds
        self.clock = clock

    # Encryption

    def encrypt_payload(self, payload: TokenPayload) -> str:
        return self.cipher.encrypt(payload.model_dump_json(by_alias=True))

    def decrypt_payload(self, token: str) -> TokenPayload:
        """
        Decrypt and parse a token.

        Raises:
            CorruptedTokenError: If the token is malformed or the payload invalid
            TokenCryptoError: If the key is missing
        """
        plaintext = self.cipher.decrypt(token)
        try:
            return TokenPayload.model_validate_json(plaintext)
        except ValidationError as e:
            raise CorruptedTokenError(f"Invalid token payload: {e.error_count()} errors") from e

    def build_checkin_url(self, event_id: str, token: str, issued_at: int) -> str:
        query = urlencode({"event": event_id, "token": token, "ts": issued_at})
        return f"{self.base_url}/checkin?{query}"

    # Generation

    def _mint(self, event_id: str, ttl_seconds: Optional[int]) -> TokenRecord:
        if not event_id:
            raise ValueError("event_id is required")
        ttl = self.default_expiration_seconds if ttl_seconds is None else int(ttl_seconds)
        if ttl < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")

        issued_at = self.clock()
        payload = TokenPayload(
            event_id=event_id,
            issued_at=issued_at,
            expires_at=issued_at + ttl * 1000,
            nonce=os.urandom(NONCE_BYTES).hex(),
        )

        try:
            token = self.encrypt_payload(payload)
        except TokenCryptoError as e:
            logger.error("token_generation_failed", event_id=event_id, error=str(e))
            raise GenerationError(f"Failed to generate token: {e}") from e

        return TokenRecord(
            token=token,
            event_id=event_id,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            expiration_seconds=ttl,
            checkin_url=self.build_checkin_url(event_id, token, issued_at),
        )

    def _store(self, record: TokenRecord) -> TokenRecord:
        record.cached = self.cache.put(
            record.event_id, record.token, record.cache_entry(), record.expiration_seconds
        )
        if not record.cached and record.expiration_seconds > 0:
            logger.warning("token_not_cached", event_id=record.event_id, token_prefix=token_prefix(record.token))

        logger.info(
            "token_generated",
            event_id=record.event_id,
            token_prefix=token_prefix(record.token),
            expiration_seconds=record.expiration_seconds,
            cached=record.cached
        )
        return record

    def generate(self, event_id: str, ttl_seconds: Optional[int] = None) -> TokenRecord:
        """
        Mint a new token for an event and cache its metadata.

        Args:
            event_id: Event identifier
            ttl_seconds: Token lifetime (default: service default)

        Returns:
            TokenRecord with token, check-in URL and PNG QR data URL

        Raises:
            GenerationError: If encryption or QR rendering fails
            ValueError: If event_id is empty or ttl_seconds negative
        """
        record = self._mint(event_id, ttl_seconds)
        record.qr_code_image = self._render_png(record.checkin_url)
        return self._store(record)

    def generate_svg(self, event_id: str, ttl_seconds: Optional[int] = None) -> TokenRecord:
        """Like generate, additionally rendering the QR code as SVG markup."""
        record = self._mint(event_id, ttl_seconds)
        record.qr_code_image = self._render_png(record.checkin_url)
        record.qr_code_svg = self._render_svg(record.checkin_url)
        return self._store(record)

    def batch_generate(self, event_ids: List[str], ttl_seconds: Optional[int] = None) -> List[TokenRecord]:
        """Generate one token per event; any failure aborts the batch."""
        return [self.generate(event_id, ttl_seconds) for event_id in event_ids]

    def refresh(self, event_id: str, ttl_seconds: Optional[int] = None) -> TokenRecord:
        """Issue a new, independent token for the event."""
        return self.generate(event_id, ttl_seconds)

    def _render_png(self, data: str) -> str:
        try:
            qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=8, border=1)
            qr.add_data(data)
            qr.make(fit=True)
            img = qr.make_image(fill_color="black", back_color="white")

            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
        except Exception as e:
            logger.error("qr_render_failed", format="png", error=str(e))
            raise GenerationError(f"Failed to render QR code: {e}") from e

        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    def _render_svg(self, data: str) -> str:
        try:
            img = qrcode.make(
                data,
                image_factory=qrcode.image.svg.SvgPathImage,
                error_correction=qrcode.constants.ERROR_CORRECT_M,
                border=1
            )
            return img.to_string(encoding="unicode")
        except Exception as e:
            logger.error("qr_render_failed", format="svg", error=str(e))
            raise GenerationError(f"Failed to render QR code: {e}") from e

    # Validation

    def validate(self, token: str, event_id: str) -> ValidationResult:
        """
        Validate a token for an event.

        Never raises. A missing Cache Entry is reported as expired because TTL
        eviction and true absence cannot be told apart.

        Args:
            token: Wire-form token
            event_id: Event the token is claimed for

        Returns:
            ValidationResult
        """
        log = logger.bind(event_id=event_id, token_prefix=token_prefix(token))

        if not token or not isinstance(token, str):
            return ValidationResult(is_valid=False, error=ValidationCode.QR_CORRUPTED)

        entry = self.cache.get(event_id, token)
        if entry is None:
            log.info("token_validation_failed", reason="not_found")
            return ValidationResult(
                is_valid=False,
                is_expired=True,
                is_valid_event=False,
                error=ValidationCode.QR_NOT_FOUND,
                event_id=event_id,
            )

        try:
            payload = self.decrypt_payload(token)
        except TokenCryptoError as e:
            log.warning("token_validation_failed", reason="corrupted", error=str(e))
            return ValidationResult(is_valid=False, error=ValidationCode.QR_CORRUPTED, event_id=event_id)

        now = self.clock()
        is_expired = now > payload.expires_at
        is_valid_event = payload.event_id == event_id
        is_used = self.cache.is_used(token)

        error = None
        if is_expired:
            error = ValidationCode.QR_EXPIRED
        elif is_used:
            error = ValidationCode.QR_ALREADY_USED
        elif not is_valid_event:
            error = ValidationCode.INVALID_EVENT

        result = ValidationResult(
            is_valid=error is None,
            is_expired=is_expired,
            is_used=is_used,
            is_valid_event=is_valid_event,
            error=error,
            event_id=payload.event_id,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            time_remaining=max(0, payload.expires_at - now),
        )

        if result.is_valid:
            log.debug("token_validated", time_remaining=result.time_remaining)
        else:
            log.info("token_validation_failed", reason=error)
        return result

    # Consumption

    def mark_used(self, token: str, ttl_seconds: int = DEFAULT_CONSUMED_TTL_SECONDS) -> bool:
        """Write the Consumed Marker (unconditional)."""
        return self.cache.mark_used(token, ttl_seconds)

    def try_consume(self, token: str, ttl_seconds: int = DEFAULT_CONSUMED_TTL_SECONDS) -> bool:
        """Atomically claim the token; True only for the first caller."""
        return self.cache.try_consume(token, ttl_seconds)

    def release(self, token: str) -> bool:
        """Undo a consume whose check-in could not be persisted."""
        return self.cache.release(token)

    # Operational tooling

    def get_active(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self.cache.active_for_event(event_id)

    def cache_stats(self, event_id: str) -> Dict[str, Any]:
        return self.cache.stats(event_id)

    def cleanup_expired(self, event_id: str) -> int:
        return self.cache.cleanup_expired(event_id)

    def flush_event(self, event_id: str) -> int:
        return self.cache.flush_event(event_id)
