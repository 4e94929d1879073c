"""
Error taxonomy for Portfolio Vault.

Vault errors propagate to the caller. ``ProviderError`` is raised by quote
adapters and always recovered inside the price cache.
"""


class PortfolioVaultError(Exception):
    """Base class for all Portfolio Vault errors."""


class AuthenticationError(PortfolioVaultError):
    """Wrong password or corrupted blob.

    The two cases are deliberately indistinguishable to callers.
    """

    def __init__(self, message: str = "Cannot decrypt vault with this password"):
        super().__init__(message)


class AlreadyExistsError(PortfolioVaultError):
    """Setup attempted while a vault file already exists."""


class NotFoundError(PortfolioVaultError):
    """No vault file exists."""


class SchemaError(PortfolioVaultError):
    """Decrypted payload does not have the portfolio document shape."""


class LockedError(PortfolioVaultError):
    """Operation attempted without an active session."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class PasswordPolicyError(PortfolioVaultError):
    """Password rejected by the setup policy."""


class VaultWriteError(PortfolioVaultError):
    """Persisting the vault failed; the previous file is intact."""


class ProviderError(PortfolioVaultError):
    """A quote or currency-rate request failed."""
