"""Backup encryption using AES-256-GCM with PBKDF2 key derivation.

- PBKDF2-SHA256 (600k iterations by default, 150k floor) for key derivation
- AES-256-GCM for authenticated encryption, tag kept separate from ciphertext
- Random 32-byte salt per archive, random 12-byte IV per encryption

Key material reaches the engine only through a ``KeyMaterialSource`` so that a
host keystore can stand in for the password without the engine knowing.
"""

import logging
import os
from typing import Optional, Protocol, Tuple, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from returns.result import Failure, Result, Success

from ..core.errors import AuthenticationFailed, KeyDerivationFailed

logger = logging.getLogger(__name__)


class BackupCrypto:
    """Key derivation and AEAD primitives for backup archives."""

    SCHEME = "aes-256-gcm"
    KDF = "pbkdf2-sha256"

    PBKDF2_ITERATIONS = 600_000  # OWASP 2023 for PBKDF2-SHA256
    MIN_ITERATIONS = 150_000
    MAX_ITERATIONS = 10_000_000  # archives above this are rejected unread
    KEY_LENGTH = 32              # 256 bits for AES-256
    SALT_LENGTH = 32             # 256-bit salt
    NONCE_LENGTH = 12            # 96-bit nonce for GCM
    TAG_LENGTH = 16

    @staticmethod
    def generate_salt() -> bytes:
        return os.urandom(BackupCrypto.SALT_LENGTH)

    @staticmethod
    def generate_iv() -> bytes:
        return os.urandom(BackupCrypto.NONCE_LENGTH)

    @staticmethod
    def derive_key(
        password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS
    ) -> Result[bytes, KeyDerivationFailed]:
        """Derive a 256-bit key from password + salt via PBKDF2-SHA256.

        Raises:
            ValueError: Empty password, short salt or iterations outside the allowed range.
        """
        if not password:
            raise ValueError("Password must not be empty.")
        if len(salt) < 16:
            raise ValueError("Salt must be at least 16 bytes.")
        if not BackupCrypto.MIN_ITERATIONS <= iterations <= BackupCrypto.MAX_ITERATIONS:
            raise ValueError(
                f"Iterations must be between {BackupCrypto.MIN_ITERATIONS} and "
                f"{BackupCrypto.MAX_ITERATIONS}, got {iterations}."
            )
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=BackupCrypto.KEY_LENGTH,
                salt=salt,
                iterations=iterations,
                backend=default_backend(),
            )
            return Success(kdf.derive(password.encode("utf-8")))
        except MemoryError as e:
            logger.warning("Key derivation ran out of memory")
            return Failure(KeyDerivationFailed(str(e) or "out of memory"))

    @staticmethod
    def encrypt(
        key: bytes,
        iv: bytes,
        plaintext: bytes,
        associated_data: Optional[bytes] = None,
    ) -> Tuple[bytes, bytes]:
        """Encrypt with AES-256-GCM.

        Returns: (ciphertext, auth_tag)
        """
        BackupCrypto._check_key_iv(key, iv)
        sealed = AESGCM(key).encrypt(iv, plaintext, associated_data)
        return sealed[: -BackupCrypto.TAG_LENGTH], sealed[-BackupCrypto.TAG_LENGTH :]

    @staticmethod
    def decrypt(
        key: bytes,
        iv: bytes,
        ciphertext: bytes,
        auth_tag: bytes,
        associated_data: Optional[bytes] = None,
    ) -> Result[bytes, AuthenticationFailed]:
        """Decrypt and verify. Any verification failure is AuthenticationFailed."""
        BackupCrypto._check_key_iv(key, iv)
        if len(auth_tag) != BackupCrypto.TAG_LENGTH:
            return Failure(AuthenticationFailed())
        try:
            return Success(AESGCM(key).decrypt(iv, ciphertext + auth_tag, associated_data))
        except InvalidTag:
            return Failure(AuthenticationFailed())

    @staticmethod
    def _check_key_iv(key: bytes, iv: bytes) -> None:
        if len(key) != BackupCrypto.KEY_LENGTH:
            raise ValueError(f"Key must be {BackupCrypto.KEY_LENGTH} bytes.")
        if len(iv) < BackupCrypto.NONCE_LENGTH:
            raise ValueError(f"IV must be at least {BackupCrypto.NONCE_LENGTH} bytes.")


# ── Key material sources ─────────────────────────────────────────────


@runtime_checkable
class KeyMaterialSource(Protocol):
    """Anything that can produce an AES key for a given salt + work factor."""

    def key_for(self, salt: bytes, iterations: int) -> Result[bytes, KeyDerivationFailed]:
        ...


class PasswordKeySource:
    """Derives key material from a user password."""

    def __init__(self, password: str):
        if not password:
            raise ValueError("Password must not be empty.")
        self._password = password

    def key_for(self, salt: bytes, iterations: int) -> Result[bytes, KeyDerivationFailed]:
        return BackupCrypto.derive_key(self._password, salt, iterations)

    def __repr__(self) -> str:
        return "PasswordKeySource(<redacted>)"
