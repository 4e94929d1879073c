# Vault - Vault Store
#
# Single encrypted portfolio file with an in-memory session.
#
# States:  Absent -> (setup) -> Unlocked
#          Locked -> (unlock) -> Unlocked -> (lock / restart) -> Locked
#
# Every write re-encrypts the whole document and replaces the file via a
# unique temp file + os.replace, so a failed write leaves the previous blob
# intact. State transitions and read-modify-write cycles hold one store
# lock, so API requests served from the threadpool never interleave.

import dataclasses
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import (
    AlreadyExistsError,
    AuthenticationError,
    NotFoundError,
    PasswordPolicyError,
    SchemaError,
    VaultWriteError,
)
from ..portfolio.models import HistorySnapshot, PortfolioDocument, PriceCache
from ..prices.price_cache import merge_price_cache
from .encryption import decrypt_document, encrypt_document, validate_password
from .session import VaultSession, requires_unlock

logger = logging.getLogger(__name__)


@dataclass
class VaultStatus:
    exists: bool
    unlocked: bool

    def to_dict(self) -> Dict[str, bool]:
        return {"exists": self.exists, "unlocked": self.unlocked}


class VaultStore:
    """
    Persists exactly one encrypted ``PortfolioDocument``.

    Security:
    - Password and derived key are held in memory only (``VaultSession``)
    - Wrong password and corrupted file are reported identically
    - Import never changes the active password
    - Audit logging for every state transition

    Thread-safe: setup, unlock, lock and every ``requires_unlock`` method
    run under ``_lock``.
    """

    def __init__(self, vault_path: Path, session: Optional[VaultSession] = None):
        """
        Initialize vault store.

        Args:
            vault_path: Path to the encrypted portfolio file
            session: Session to hold unlocked state (a new one if omitted)
        """
        self.vault_path = Path(vault_path)
        self.session = session or VaultSession()
        self.audit = get_audit_logger()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        # 0-byte files are leftovers from an interrupted first write, not vaults
        return self.vault_path.exists() and self.vault_path.stat().st_size > 0

    def status(self) -> VaultStatus:
        return VaultStatus(exists=self.exists(), unlocked=self.session.is_active)

    def setup(self, password: str) -> PortfolioDocument:
        """
        Create a new vault holding an empty document and unlock it.

        Raises:
            AlreadyExistsError: a vault file is already present
            PasswordPolicyError: password rejected by ``validate_password``
        """
        with self._lock:
            if self.exists():
                raise AlreadyExistsError("Database already exists")

            is_valid, error_msg = validate_password(password)
            if not is_valid:
                raise PasswordPolicyError(error_msg)

            document = PortfolioDocument.empty()
            self._write_blob(encrypt_document(document.to_dict(), password))
            self.session.open(password, document)

        self.audit.log_vault_event(
            EventType.VAULT_CREATED,
            "Vault initialized",
            details={"path": str(self.vault_path)}
        )
        return document

    def unlock(self, password: str) -> PortfolioDocument:
        """
        Decrypt the vault and open a session.

        Raises:
            NotFoundError: no vault file exists
            AuthenticationError: wrong password or corrupted file
            SchemaError: the file decrypts but is not a portfolio document
        """
        with self._lock:
            if not self.exists():
                raise NotFoundError("No database file exists")

            blob = self.vault_path.read_bytes()
            try:
                document = PortfolioDocument.from_dict(decrypt_document(blob, password))
            except AuthenticationError:
                self.audit.log_vault_event(
                    EventType.VAULT_UNLOCK_FAILED,
                    "Unlock failed: invalid password",
                    severity=EventSeverity.ALERT
                )
                raise
            except SchemaError as exc:
                self.audit.log_vault_event(
                    EventType.VAULT_ERROR,
                    f"Unlock failed: {exc}",
                    severity=EventSeverity.CRITICAL
                )
                raise

            self.session.open(password, document)

        self.audit.log_vault_event(
            EventType.VAULT_UNLOCKED,
            "Vault unlocked",
            details={"holdings": len(document.holdings)}
        )
        return document

    def lock(self) -> None:
        """Discard the session password and document. Idempotent."""
        with self._lock:
            was_active = self.session.is_active
            self.session.close()
        if was_active:
            self.audit.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

    # ------------------------------------------------------------------
    # Data access (session required)
    # ------------------------------------------------------------------

    @requires_unlock
    def read(self) -> PortfolioDocument:
        return self.session.document

    @requires_unlock
    def write(self, document: PortfolioDocument) -> None:
        """Re-encrypt ``document`` under the session password and persist it."""
        self._persist(document)

    @requires_unlock
    def export(self) -> bytes:
        """
        Return the persisted ciphertext verbatim.

        Raises:
            NotFoundError: no vault file exists
        """
        if not self.exists():
            raise NotFoundError("No database file exists")

        blob = self.vault_path.read_bytes()
        self.audit.log_vault_event(
            EventType.VAULT_EXPORTED,
            "Vault exported",
            details={"bytes": len(blob)}
        )
        return blob

    @requires_unlock
    def import_blob(self, blob: bytes) -> PortfolioDocument:
        """
        Replace the vault with an uploaded blob.

        The blob must decrypt under the current session password. On any
        failure both the file and the in-memory document are unchanged.

        Raises:
            AuthenticationError: blob cannot be decrypted with the session password
            SchemaError: decrypted payload has no holdings list
        """
        blob = bytes(blob)
        try:
            document = PortfolioDocument.from_dict(
                decrypt_document(blob, self.session.password)
            )
        except (AuthenticationError, SchemaError) as exc:
            self.audit.log_vault_event(
                EventType.VAULT_IMPORT_FAILED,
                f"Import rejected: {type(exc).__name__}",
                severity=EventSeverity.ALERT
            )
            raise

        self._write_blob(blob)
        self.session.replace_document(document)

        self.audit.log_vault_event(
            EventType.VAULT_IMPORTED,
            "Vault imported",
            details={"holdings": len(document.holdings), "bytes": len(blob)}
        )
        return document

    @requires_unlock
    def delete_history_entry(self, index: int) -> List[HistorySnapshot]:
        """
        Remove one history snapshot by position and persist.

        Raises:
            IndexError: ``index`` is negative or past the end
        """
        document = self.session.document
        if index < 0 or index >= len(document.history):
            raise IndexError(f"Invalid history index: {index}")

        history = document.history[:index] + document.history[index + 1:]
        self._persist(dataclasses.replace(document, history=history))
        return history

    @requires_unlock
    def add_history_snapshot(self, snapshot: HistorySnapshot) -> List[HistorySnapshot]:
        current = self.session.document
        document = dataclasses.replace(current, history=list(current.history))
        document.append_snapshot(snapshot)
        self._persist(document)
        return document.history

    @requires_unlock
    def apply_price_cache(self, cache: PriceCache) -> PriceCache:
        """Merge a refreshed price cache into the document and persist."""
        document = self.session.document
        merged = merge_price_cache(document.price_cache, cache)
        self._persist(dataclasses.replace(document, price_cache=merged))
        return merged

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, document: PortfolioDocument) -> None:
        """Encrypt and write, then swap the session document. Caller holds ``_lock``."""
        blob = encrypt_document(document.to_dict(), self.session.password)
        self._write_blob(blob)
        self.session.replace_document(document)

        self.audit.log_vault_event(
            EventType.VAULT_WRITTEN,
            "Vault saved",
            details={"holdings": len(document.holdings), "history": len(document.history)}
        )

    def _write_blob(self, blob: bytes) -> None:
        """Write ``blob`` to a unique temp file beside the vault, then rename over it."""
        tmp_path = None
        try:
            self.vault_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.vault_path.parent,
                prefix=f".{self.vault_path.name}.",
                suffix=".tmp",
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.vault_path)
        except OSError as exc:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            logger.error("Failed to save encrypted data: %s", exc)
            self.audit.log_vault_event(
                EventType.VAULT_ERROR,
                f"Failed to save vault: {exc}",
                severity=EventSeverity.CRITICAL
            )
            raise VaultWriteError("Failed to save data") from exc
