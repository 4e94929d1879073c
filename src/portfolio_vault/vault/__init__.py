# Vault Module - Encrypted Portfolio Storage
#
# One encrypted file per vault: salt | nonce | tag | AES-256-GCM ciphertext
# Password -> key via PBKDF2-HMAC-SHA256

from .encryption import EncryptionService, decrypt_document, encrypt_document
from .session import VaultSession, requires_unlock
from .vault_store import VaultStatus, VaultStore

__all__ = [
    "EncryptionService",
    "VaultSession",
    "VaultStatus",
    "VaultStore",
    "decrypt_document",
    "encrypt_document",
    "requires_unlock",
]
