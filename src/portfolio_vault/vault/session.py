# Vault - Session
#
# Holds the unlocked password and decrypted document for one session.
# A session holds exactly one password/document pair; opening a new one
# replaces the old pair. ``requires_unlock`` is the single gate every
# vault data operation goes through.

import functools
from typing import Optional

from ..exceptions import LockedError
from ..portfolio.models import PortfolioDocument


class VaultSession:
    """In-memory state of an unlocked vault.

    Nothing held here is ever written to disk by the session itself.
    """

    def __init__(self):
        self._password: Optional[str] = None
        self._document: Optional[PortfolioDocument] = None

    @property
    def is_active(self) -> bool:
        return self._password is not None

    @property
    def password(self) -> str:
        if self._password is None:
            raise LockedError()
        return self._password

    @property
    def document(self) -> PortfolioDocument:
        if self._document is None:
            raise LockedError()
        return self._document

    def open(self, password: str, document: PortfolioDocument) -> None:
        self._password = password
        self._document = document

    def replace_document(self, document: PortfolioDocument) -> None:
        """Swap the held document, keeping the session password."""
        if not self.is_active:
            raise LockedError()
        self._document = document

    def close(self) -> None:
        self._password = None
        self._document = None


def requires_unlock(func):
    """
    Decorator for vault methods that need an active session.

    The decorated method's owner must expose a ``session`` attribute and a
    ``_lock``; the session check and the method body both run under it, so
    a concurrent ``lock()`` or write cannot interleave.

    Usage:
        @requires_unlock
        def read(self) -> PortfolioDocument:
            ...
    """
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            if not self.session.is_active:
                raise LockedError(f"Vault is locked; cannot {func.__name__.replace('_', ' ')}")
            return func(self, *args, **kwargs)
    return wrapper
