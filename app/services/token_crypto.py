"""
Token Cipher

AES-256-CBC encryption of check-in token payloads.

Wire format: base64( hex(iv) + ":" + hex(ciphertext) ), with a fresh random
16-byte IV per call. The key is derived once from the configured secret with
scrypt and a fixed salt. Encryption here provides opacity and tamper
resistance for eventId/expiresAt, not secrecy of the payload fields.
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

IV_LENGTH = 16
KEY_LENGTH = 32

# scrypt cost parameters (N=2^14, r=8, p=1)
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


class TokenCryptoError(Exception):
    """Raised when keying material is unavailable or encryption fails."""


class CorruptedTokenError(TokenCryptoError):
    """Raised when a token cannot be decoded or decrypted."""


def derive_key(secret: str, salt: str = "salt") -> bytes:
    """Derive a 256-bit AES key from a secret string."""
    kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


class TokenCipher:
    """
    Symmetric cipher for token payloads.

    Usage:
        cipher = TokenCipher(settings.qr_encryption_key)
        token = cipher.encrypt('{"eventId": "evt-1", ...}')
        plaintext = cipher.decrypt(token)
    """

    def __init__(self, secret: Optional[str], salt: str = "salt"):
        """
        Args:
            secret: Encryption secret. Missing secrets are only reported when
                    the cipher is used, so callers can surface their own error type.
            salt: Fixed key-derivation salt
        """
        self._secret = secret
        self._salt = salt
        self._key: Optional[bytes] = None

    @property
    def key(self) -> bytes:
        if self._key is None:
            if not self._secret:
                raise TokenCryptoError("Encryption key not configured")
            self._key = derive_key(self._secret, self._salt)
        return self._key

    def encrypt(self, text: str) -> str:
        """
        Encrypt plaintext into the opaque wire form.

        Raises:
            TokenCryptoError: If the key is missing or encryption fails
        """
        key = self.key
        iv = os.urandom(IV_LENGTH)

        try:
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(text.encode("utf-8")) + padder.finalize()

            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, UnicodeEncodeError) as e:
            raise TokenCryptoError(f"Encryption failed: {e}") from e

        combined = f"{iv.hex()}:{ciphertext.hex()}"
        return base64.b64encode(combined.encode("ascii")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """
        Decrypt a wire-form token back to plaintext.

        Raises:
            CorruptedTokenError: Malformed base64, wrong separator count,
                                 bad hex, wrong IV length, bad padding or UTF-8
            TokenCryptoError: If the key is missing
        """
        key = self.key

        if not isinstance(token, str) or not token:
            raise CorruptedTokenError("Token must be a non-empty string")

        try:
            combined = base64.b64decode(token.encode("ascii"), validate=True).decode("ascii")
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise CorruptedTokenError(f"Invalid token encoding: {e}") from e

        parts = combined.split(":")
        if len(parts) != 2:
            raise CorruptedTokenError("Invalid encrypted data format")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError as e:
            raise CorruptedTokenError(f"Invalid hex in token: {e}") from e

        if len(iv) != IV_LENGTH:
            raise CorruptedTokenError(f"Invalid IV length: {len(iv)}")
        if not ciphertext or len(ciphertext) % IV_LENGTH:
            raise CorruptedTokenError("Invalid ciphertext length")

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CorruptedTokenError(f"Decryption failed: {e}") from e
