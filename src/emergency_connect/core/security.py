"""Hashing, signed credentials and field encryption."""
from __future__ import annotations

import base64
import binascii
import os
import time
import uuid
from collections.abc import Callable
from typing import Any

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from emergency_connect.core.settings import settings
from emergency_connect.services.counters import CounterStore, get_counter_store

BCRYPT_MAX_BYTES = 72
AES_KEY_BYTES = 32
GCM_IV_BYTES = 12
GCM_TAG_BYTES = 16

PURPOSE_SECOND_FACTOR = "SECOND_FACTOR"
PURPOSE_SESSION = "SESSION"
PURPOSE_INCIDENT_SESSION = "INCIDENT_SESSION"


def hash_secret(value: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of a phrase or answer.

    Raises:
        ValueError: If the UTF-8 encoding exceeds bcrypt's 72-byte input limit.
    """
    encoded = value.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Value exceeds {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    salt = bcrypt.gensalt(rounds or settings.phrase_hash_rounds)
    return bcrypt.hashpw(encoded, salt).decode("ascii")


def verify_secret(value: str, hashed: str | None) -> bool:
    """Return True if `value` matches the bcrypt `hashed` value."""
    if not hashed:
        return False
    encoded = value.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("ascii"))
    except ValueError:
        return False


class CredentialService:
    """Issues and checks short-lived signed tokens.

    Every token carries a `jti`. Single-use tokens are consumed by recording
    the `jti` in the counter store until the token would have expired anyway.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        store: CounterStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._store = store or get_counter_store()
        self._clock = clock

    def issue(self, claims: dict[str, Any], ttl_seconds: int) -> str:
        """Sign `claims` with a fresh `jti` and an expiry `ttl_seconds` from now."""
        now = int(self._clock())
        payload = dict(claims)
        payload.update({"jti": uuid.uuid4().hex, "iat": now, "exp": now + ttl_seconds})
        token: str = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return token

    def verify(self, token: str) -> dict[str, Any] | None:
        """Return the claims of a valid, unexpired token, or None."""
        try:
            claims: dict[str, Any] = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            return None
        return claims

    def consume(self, claims: dict[str, Any]) -> bool:
        """Mark the token as used; False if it was used before."""
        jti = claims.get("jti")
        if not jti:
            return False
        ttl = int(claims.get("exp", 0)) - int(self._clock())
        return self._store.claim_once(f"jti:{jti}", max(ttl, 1))

    def issue_challenge(self, subject_id: str, is_duress: bool) -> str:
        """Credential that entitles its holder to one second-factor attempt."""
        return self.issue(
            {"sub": subject_id, "purpose": PURPOSE_SECOND_FACTOR, "is_duress": is_duress},
            settings.challenge_ttl_seconds,
        )

    def issue_session(self, account_id: str, role: str) -> str:
        """Primary login session token."""
        return self.issue(
            {"sub": account_id, "role": role, "purpose": PURPOSE_SESSION},
            settings.session_ttl_hours * 3600,
        )

    def issue_incident_session(self, account_id: str, role: str, incident_id: str) -> str:
        """Session token scoped to one incident, kept apart from the primary session."""
        return self.issue(
            {
                "sub": account_id,
                "role": role,
                "purpose": PURPOSE_INCIDENT_SESSION,
                "incident_id": incident_id,
            },
            settings.session_ttl_hours * 3600,
        )


class FieldCipher:
    """AES-256-GCM encryption for phone numbers and message bodies.

    Ciphertexts are stored as `iv:ciphertext:tag`, each part base64 encoded.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != AES_KEY_BYTES:
            raise ValueError("Encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str | None) -> FieldCipher:
        if not key_hex or len(key_hex) != AES_KEY_BYTES * 2:
            raise ValueError("ENCRYPTION_KEY must be a 64-character hex string (32 bytes)")
        try:
            return cls(bytes.fromhex(key_hex))
        except ValueError as err:
            raise ValueError("ENCRYPTION_KEY is not valid hex") from err

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(GCM_IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        body, tag = sealed[:-GCM_TAG_BYTES], sealed[-GCM_TAG_BYTES:]
        return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, body, tag))

    def decrypt(self, token: str) -> str:
        """Decrypt a stored value.

        Raises:
            ValueError: If the value is malformed or fails authentication.
        """
        parts = token.split(":")
        if len(parts) != 3:
            raise ValueError("Invalid ciphertext format")
        try:
            iv, body, tag = (base64.b64decode(part, validate=True) for part in parts)
        except binascii.Error as err:
            raise ValueError("Invalid ciphertext encoding") from err
        try:
            return self._aead.decrypt(iv, body + tag, None).decode("utf-8")
        except InvalidTag as err:
            raise ValueError("Ciphertext failed authentication") from err


_CIPHER: FieldCipher | None = None
_CREDENTIALS: CredentialService | None = None


def get_field_cipher() -> FieldCipher:
    """Return the cipher configured from ENCRYPTION_KEY."""
    global _CIPHER
    if _CIPHER is None:
        _CIPHER = FieldCipher.from_hex(settings.encryption_key)
    return _CIPHER


def get_credential_service() -> CredentialService:
    """Return the process-wide credential service."""
    global _CREDENTIALS
    if _CREDENTIALS is None:
        _CREDENTIALS = CredentialService(settings.secret_key, settings.jwt_algorithm)
    return _CREDENTIALS
