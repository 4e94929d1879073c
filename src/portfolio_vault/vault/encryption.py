# Vault - Encryption Service
#
# Password -> encryption key (PBKDF2-HMAC-SHA256)
# Document encryption (AES-256-GCM)
# Fresh salt and nonce on every encryption
#
# Blob layout: salt(16) | nonce(12) | tag(16) | ciphertext

import json
import logging
import os
from typing import Any, Dict, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import AuthenticationError, SchemaError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4


class EncryptionService:
    """
    Handles key derivation and authenticated encryption of the vault blob.

    Flow:
    1. PBKDF2 derives a 256-bit key from password + random salt
    2. AES-256-GCM encrypts the serialised document under a random nonce
    3. Salt, nonce and tag are framed in front of the ciphertext

    Parameters are fixed so that existing vault files stay readable.
    """

    PBKDF2_ITERATIONS = 100_000
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16
    NONCE_LENGTH = 12  # 96-bit nonce for GCM
    TAG_LENGTH = 16
    HEADER_LENGTH = SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH

    @staticmethod
    def derive_key(password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Args:
            password: Vault password
            salt: Random salt (stored in the blob header)

        Returns:
            256-bit encryption key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=EncryptionService.PBKDF2_ITERATIONS,
        )
        return kdf.derive(password.encode('utf-8'))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def generate_nonce() -> bytes:
        return os.urandom(EncryptionService.NONCE_LENGTH)

    @classmethod
    def encrypt(cls, plaintext: bytes, password: str) -> bytes:
        """
        Encrypt plaintext under a key derived from ``password``.

        A new salt and nonce are drawn on every call, so encrypting the same
        plaintext twice never produces the same blob.

        Returns:
            salt | nonce | tag | ciphertext
        """
        salt = cls.generate_salt()
        nonce = cls.generate_nonce()
        key = cls.derive_key(password, salt)

        # AESGCM appends the tag; the vault format stores it before the ciphertext
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-cls.TAG_LENGTH], sealed[-cls.TAG_LENGTH:]

        return salt + nonce + tag + ciphertext

    @classmethod
    def decrypt(cls, blob: bytes, password: str) -> bytes:
        """
        Decrypt a vault blob.

        All-or-nothing: either the full plaintext is returned or
        ``AuthenticationError`` is raised.

        Raises:
            AuthenticationError: wrong password, truncated or tampered blob
        """
        blob = bytes(blob)
        if len(blob) < cls.HEADER_LENGTH:
            logger.warning("Vault decryption failed: blob too short (%d bytes)", len(blob))
            raise AuthenticationError()

        salt = blob[:cls.SALT_LENGTH]
        nonce = blob[cls.SALT_LENGTH:cls.SALT_LENGTH + cls.NONCE_LENGTH]
        tag = blob[cls.SALT_LENGTH + cls.NONCE_LENGTH:cls.HEADER_LENGTH]
        ciphertext = blob[cls.HEADER_LENGTH:]

        key = cls.derive_key(password, salt)
        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Vault decryption failed: authentication tag mismatch")
            raise AuthenticationError() from None


def encrypt_document(document: Dict[str, Any], password: str) -> bytes:
    """Serialise ``document`` as JSON and encrypt it."""
    payload = json.dumps(document, separators=(",", ":")).encode("utf-8")
    return EncryptionService.encrypt(payload, password)


def decrypt_document(blob: bytes, password: str) -> Dict[str, Any]:
    """
    Decrypt a blob produced by ``encrypt_document``.

    Raises:
        AuthenticationError: the blob does not authenticate under ``password``
        SchemaError: the authenticated plaintext is not a JSON document
    """
    plaintext = EncryptionService.decrypt(blob, password)
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SchemaError(f"Vault payload is not valid JSON: {exc}") from None


def validate_password(password: str) -> Tuple[bool, str]:
    """
    Check a new vault password against the setup policy.

    Returns:
        (is_valid, error_message)
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    return True, ""
