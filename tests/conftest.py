"""
Shared pytest fixtures for the Portfolio Vault test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger -> temp directory (prevents test events in ./audit_logs)

Opt-in fixtures:
  - fast_kdf     -> lowers PBKDF2 iterations for tests that encrypt a lot
"""

import pytest

from portfolio_vault.portfolio.models import (
    AssetCategory,
    Holding,
    PriceCacheEntry,
    QuoteSource,
    now_ms,
)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import portfolio_vault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def fast_kdf(monkeypatch):
    """Cut PBKDF2 iterations so store/API tests stay quick.

    Codec tests that check the real parameters do not use this fixture.
    """
    from portfolio_vault.vault.encryption import EncryptionService

    monkeypatch.setattr(EncryptionService, "PBKDF2_ITERATIONS", 1_000)


@pytest.fixture
def now():
    return now_ms()


@pytest.fixture
def make_holding():
    """Factory for holdings with a predictable name."""
    def _make(category, identifier=None, quantity=1.0, manual_price=None, name=None):
        category = AssetCategory(category)
        return Holding.create(
            name=name or f"{category.value}:{identifier or 'manual'}",
            category=category,
            quantity=quantity,
            identifier=identifier,
            manual_price=manual_price,
        )
    return _make


@pytest.fixture
def make_entry():
    def _make(price, timestamp, source=QuoteSource.YAHOO):
        return PriceCacheEntry(price=price, timestamp=timestamp, source=source)
    return _make
