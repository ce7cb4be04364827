"""
Session payload cipher.

Seals a session payload (credential string, default database, scope,
read-only flag) into an opaque token using a key derived from the server
secret. Each token carries its own random salt, so no two tokens share a key.

Token layout: ``base64url(salt) "." base64url(nonce || ciphertext)`` where the
plaintext is an HS256 JWT carrying the payload plus ``iat``/``exp``.

The live connect flow keeps session records in memory and hands out random
tokens; this cipher is the building block for a stateless variant.
"""

import base64
import binascii
import logging
import os
import time
from typing import Any

import cryptography.exceptions
import jwt
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..constants import (
    CIPHER_KEY_BYTES,
    CIPHER_NONCE_BYTES,
    CIPHER_PBKDF2_ITERATIONS,
    CIPHER_SALT_BYTES,
    MIN_SESSION_SECRET_LENGTH,
    SESSION_TTL_SECONDS,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class SessionCipher:
    """
    AES-256-GCM sealed, JWT-framed session payloads.

    Example:
        cipher = SessionCipher(config.session_secret)
        token = cipher.encrypt({"uri": uri, "database_name": "test"})
        payload = cipher.decrypt(token)  # None if tampered or expired
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        iterations: int = CIPHER_PBKDF2_ITERATIONS,
    ):
        """
        Initialize the cipher.

        Args:
            secret: Server secret, at least 32 characters
            ttl_seconds: Lifetime written into the ``exp`` claim
            iterations: PBKDF2 iteration count

        Raises:
            ConfigurationError: If the secret is too short
        """
        if not secret or len(secret) < MIN_SESSION_SECRET_LENGTH:
            raise ConfigurationError(
                f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters",
                config_key="SESSION_SECRET",
            )
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = ttl_seconds
        self._iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=CIPHER_KEY_BYTES,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, payload: dict[str, Any], now: float | None = None) -> str:
        """
        Seal ``payload`` into a token.

        Args:
            payload: JSON-serializable claims
            now: Issue time override (seconds since epoch)
        """
        issued_at = int(time.time() if now is None else now)
        claims = dict(payload)
        claims["iat"] = issued_at
        claims["exp"] = issued_at + self._ttl_seconds

        salt = os.urandom(CIPHER_SALT_BYTES)
        key = self._derive_key(salt)
        signed = jwt.encode(claims, key, algorithm=JWT_ALGORITHM)

        nonce = os.urandom(CIPHER_NONCE_BYTES)
        ciphertext = AESGCM(key).encrypt(nonce, signed.encode("utf-8"), None)
        return f"{_b64encode(salt)}.{_b64encode(nonce + ciphertext)}"

    def decrypt(self, token: Any) -> dict[str, Any] | None:
        """
        Open a token. Returns None for malformed, tampered, foreign or expired tokens.
        """
        if not isinstance(token, str):
            return None

        salt_b64, sep, sealed_b64 = token.partition(".")
        if not sep or not salt_b64 or not sealed_b64:
            return None

        try:
            salt = _b64decode(salt_b64)
            sealed = _b64decode(sealed_b64)
        except (binascii.Error, ValueError):
            return None

        if len(salt) != CIPHER_SALT_BYTES or len(sealed) <= CIPHER_NONCE_BYTES:
            return None

        key = self._derive_key(salt)
        nonce, ciphertext = sealed[:CIPHER_NONCE_BYTES], sealed[CIPHER_NONCE_BYTES:]
        try:
            signed = AESGCM(key).decrypt(nonce, ciphertext, None)
        except cryptography.exceptions.InvalidTag:
            logger.debug("Session token failed authentication")
            return None

        try:
            return jwt.decode(signed.decode("utf-8"), key, algorithms=[JWT_ALGORITHM])
        except (jwt.InvalidTokenError, UnicodeDecodeError):
            return None
