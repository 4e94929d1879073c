"""
Tests for the Vault Store state machine and session gate.

Covers: status, setup, unlock, lock, read/write, export, import safety,
history deletion, atomic writes, audit events.
"""

import json
import threading
import time
import os
from unittest.mock import patch

import pytest

from portfolio_vault.core import get_audit_logger
from portfolio_vault.exceptions import (
    AlreadyExistsError,
    AuthenticationError,
    LockedError,
    NotFoundError,
    PasswordPolicyError,
    SchemaError,
    VaultWriteError,
)
from portfolio_vault.portfolio.models import (
    AssetCategory,
    HistorySnapshot,
    Holding,
    PortfolioDocument,
    PriceCacheEntry,
    QuoteSource,
)
from portfolio_vault.vault import VaultSession, VaultStore, encrypt_document
from portfolio_vault.vault import vault_store as vault_store_module
from portfolio_vault.vault.encryption import EncryptionService


PASSWORD = "correct horse"


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "data" / "portfolio.enc"


@pytest.fixture
def store(vault_path, fast_kdf):
    return VaultStore(vault_path)


@pytest.fixture
def unlocked(store):
    store.setup(PASSWORD)
    return store


def _snapshot(total):
    return HistorySnapshot(
        date=f"2024-01-0{int(total)}T00:00:00+00:00",
        total_value=total,
        category_values={c: 0.0 for c in AssetCategory},
    )


def _audit_events():
    log_file = get_audit_logger().log_file
    return [json.loads(line)["event_type"] for line in log_file.read_text().splitlines() if line]


# ── Status & setup ───────────────────────────────────────────────────


class TestStatusAndSetup:
    def test_absent(self, store):
        assert store.status().to_dict() == {"exists": False, "unlocked": False}

    def test_setup_creates_unlocked_empty_vault(self, store, vault_path):
        doc = store.setup(PASSWORD)
        assert doc.to_dict() == {"holdings": [], "priceCache": {}, "history": []}
        assert vault_path.exists()
        assert store.status().to_dict() == {"exists": True, "unlocked": True}

    def test_setup_twice_fails(self, unlocked):
        with pytest.raises(AlreadyExistsError):
            unlocked.setup("another password")

    def test_setup_rejects_short_password(self, store, vault_path):
        with pytest.raises(PasswordPolicyError):
            store.setup("abc")
        assert not vault_path.exists()
        assert store.status().unlocked is False

    def test_zero_byte_file_counts_as_absent(self, store, vault_path):
        vault_path.parent.mkdir(parents=True)
        vault_path.write_bytes(b"")
        assert store.status().exists is False
        store.setup(PASSWORD)
        assert vault_path.stat().st_size > 0

    def test_status_has_no_side_effects(self, unlocked, vault_path):
        before = vault_path.read_bytes()
        unlocked.status()
        assert vault_path.read_bytes() == before

    def test_file_contains_no_plaintext(self, unlocked, vault_path):
        doc = unlocked.read()
        doc.add_holding(Holding.create("SecretCoin", AssetCategory.CRYPTO, 1, identifier="secretcoin"))
        unlocked.write(doc)
        raw = vault_path.read_bytes()
        assert b"secretcoin" not in raw
        assert PASSWORD.encode() not in raw


# ── Unlock & lock ────────────────────────────────────────────────────


class TestUnlockLock:
    def test_unlock_absent(self, store):
        with pytest.raises(NotFoundError):
            store.unlock(PASSWORD)

    def test_lock_then_unlock(self, unlocked):
        unlocked.lock()
        assert unlocked.status().to_dict() == {"exists": True, "unlocked": False}
        doc = unlocked.unlock(PASSWORD)
        assert doc.holdings == []
        assert unlocked.status().unlocked is True

    def test_unlock_wrong_password(self, unlocked):
        unlocked.lock()
        with pytest.raises(AuthenticationError):
            unlocked.unlock("wrong password")
        assert unlocked.status().unlocked is False

    def test_unlock_corrupted_file_same_error(self, unlocked, vault_path):
        unlocked.lock()
        raw = bytearray(vault_path.read_bytes())
        raw[-1] ^= 0xFF
        vault_path.write_bytes(bytes(raw))
        with pytest.raises(AuthenticationError):
            unlocked.unlock(PASSWORD)

    def test_lock_is_idempotent(self, store, unlocked):
        unlocked.lock()
        unlocked.lock()
        store.lock()
        assert unlocked.status().unlocked is False

    def test_new_store_instance_starts_locked(self, unlocked, vault_path):
        # Simulates a process restart
        fresh = VaultStore(vault_path)
        assert fresh.status().to_dict() == {"exists": True, "unlocked": False}
        with pytest.raises(LockedError):
            fresh.read()

    def test_unlock_reads_original_format(self, store, vault_path):
        original = {
            "holdings": [{"id": "a1b2c3d", "name": "ETH", "category": "crypto", "quantity": 2, "identifier": "ethereum"}],
            "priceCache": {"ethereum": {"price": 3000, "timestamp": 1700000000000, "source": "coingecko"}},
            "history": [],
        }
        vault_path.parent.mkdir(parents=True)
        vault_path.write_bytes(encrypt_document(original, PASSWORD))
        doc = store.unlock(PASSWORD)
        assert doc.holdings[0].identifier == "ethereum"
        assert doc.price_cache["ethereum"].price == 3000

    def test_unlock_and_failures_are_audited(self, unlocked):
        unlocked.lock()
        with pytest.raises(AuthenticationError):
            unlocked.unlock("bad password")
        unlocked.unlock(PASSWORD)
        events = _audit_events()
        assert "vault.created" in events
        assert "vault.locked" in events
        assert "vault.unlock.failed" in events
        assert "vault.unlocked" in events


# ── Session gate ─────────────────────────────────────────────────────


class TestSessionGate:
    @pytest.mark.parametrize("call", [
        lambda s: s.read(),
        lambda s: s.write(PortfolioDocument.empty()),
        lambda s: s.export(),
        lambda s: s.import_blob(b"x" * 64),
        lambda s: s.delete_history_entry(0),
        lambda s: s.add_history_snapshot(_snapshot(1)),
        lambda s: s.apply_price_cache({}),
    ])
    def test_locked_operations_raise(self, unlocked, call):
        unlocked.lock()
        with pytest.raises(LockedError):
            call(unlocked)

    def test_session_properties_raise_when_closed(self):
        session = VaultSession()
        assert session.is_active is False
        with pytest.raises(LockedError):
            session.password
        with pytest.raises(LockedError):
            session.document

    def test_lock_clears_session(self, unlocked):
        unlocked.lock()
        assert unlocked.session._password is None
        assert unlocked.session._document is None


# ── Write ────────────────────────────────────────────────────────────


class TestWrite:
    def test_write_persists_full_document(self, unlocked, vault_path):
        doc = PortfolioDocument.empty()
        doc.add_holding(Holding.create("Gold", AssetCategory.METALS, 3, identifier="PHAU"))
        unlocked.write(doc)

        unlocked.lock()
        reloaded = unlocked.unlock(PASSWORD)
        assert reloaded.to_dict() == doc.to_dict()

    def test_every_write_reencrypts(self, unlocked, vault_path):
        first = vault_path.read_bytes()
        unlocked.write(unlocked.read())
        assert vault_path.read_bytes() != first

    def test_failed_replace_keeps_previous_blob(self, unlocked, vault_path):
        before = vault_path.read_bytes()
        doc = PortfolioDocument.empty()
        doc.add_holding(Holding.create("New", AssetCategory.CASH, 1))

        with patch("portfolio_vault.vault.vault_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(VaultWriteError):
                unlocked.write(doc)

        assert vault_path.read_bytes() == before
        assert unlocked.read().holdings == []
        assert list(vault_path.parent.iterdir()) == [vault_path]

    def test_failed_write_is_audited(self, unlocked):
        with patch("portfolio_vault.vault.vault_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(VaultWriteError):
                unlocked.write(PortfolioDocument.empty())
        assert "vault.error" in _audit_events()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_is_owner_only(self, unlocked, vault_path):
        assert vault_path.stat().st_mode & 0o777 == 0o600


# ── Concurrent writers ───────────────────────────────────────────────


class TestConcurrentWrites:
    def _run(self, targets):
        errors = []

        def call(target):
            try:
                target()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=call, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return errors

    def test_snapshots_from_parallel_requests_all_kept(self, unlocked):
        real_encrypt = vault_store_module.encrypt_document
        active, peak = [], []
        guard = threading.Lock()

        def slow_encrypt(payload, password):
            with guard:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.05)
            try:
                return real_encrypt(payload, password)
            finally:
                with guard:
                    active.pop()

        snapshots = [_snapshot(i) for i in range(1, 5)]
        with patch("portfolio_vault.vault.vault_store.encrypt_document", side_effect=slow_encrypt):
            errors = self._run([
                (lambda s=s: unlocked.add_history_snapshot(s)) for s in snapshots
            ])

        assert errors == []
        assert max(peak) == 1
        assert sorted(s.total_value for s in unlocked.read().history) == [1, 2, 3, 4]

        unlocked.lock()
        on_disk = unlocked.unlock(PASSWORD)
        assert sorted(s.total_value for s in on_disk.history) == [1, 2, 3, 4]

    def test_parallel_writes_all_succeed_and_disk_matches_memory(self, unlocked, vault_path):
        real_fsync = os.fsync

        def slow_fsync(fd):
            time.sleep(0.05)
            real_fsync(fd)

        documents = []
        for i in range(3):
            doc = PortfolioDocument.empty()
            doc.add_holding(Holding.create(f"Holding {i}", AssetCategory.CASH, i + 1))
            documents.append(doc)

        with patch("portfolio_vault.vault.vault_store.os.fsync", side_effect=slow_fsync):
            errors = self._run([(lambda d=d: unlocked.write(d)) for d in documents])

        assert errors == []
        in_memory = unlocked.read().to_dict()
        assert in_memory in [d.to_dict() for d in documents]

        unlocked.lock()
        assert unlocked.unlock(PASSWORD).to_dict() == in_memory
        assert list(vault_path.parent.iterdir()) == [vault_path]

    def test_each_write_uses_its_own_temp_file(self, unlocked, vault_path):
        real_mkstemp = vault_store_module.tempfile.mkstemp
        names = []

        def recording_mkstemp(*args, **kwargs):
            fd, name = real_mkstemp(*args, **kwargs)
            names.append(name)
            return fd, name

        with patch("portfolio_vault.vault.vault_store.tempfile.mkstemp", side_effect=recording_mkstemp):
            unlocked.write(PortfolioDocument.empty())
            unlocked.write(PortfolioDocument.empty())

        assert len(set(names)) == 2
        assert all(os.path.dirname(n) == str(vault_path.parent) for n in names)


# ── Export & import ──────────────────────────────────────────────────


class TestExportImport:
    def test_export_returns_file_verbatim(self, unlocked, vault_path):
        assert unlocked.export() == vault_path.read_bytes()

    def test_export_absent(self, store, vault_path):
        store.setup(PASSWORD)
        vault_path.unlink()
        with pytest.raises(NotFoundError):
            store.export()

    def test_import_same_password(self, unlocked, vault_path):
        other = {"holdings": [{"id": "z9", "name": "Seed", "category": "seed", "quantity": 1, "manualPrice": 50}]}
        blob = encrypt_document(other, PASSWORD)

        doc = unlocked.import_blob(blob)

        assert doc.holdings[0].id == "z9"
        assert unlocked.read().holdings[0].id == "z9"
        assert vault_path.read_bytes() == blob

    def test_import_different_password_changes_nothing(self, unlocked, vault_path):
        doc = unlocked.read()
        doc.add_holding(Holding.create("Keep", AssetCategory.CASH, 5))
        unlocked.write(doc)
        before_bytes = vault_path.read_bytes()
        before_doc = unlocked.read().to_dict()

        foreign = encrypt_document({"holdings": []}, "someone else")
        with pytest.raises(AuthenticationError):
            unlocked.import_blob(foreign)

        assert vault_path.read_bytes() == before_bytes
        assert unlocked.read().to_dict() == before_doc
        assert unlocked.session.password == PASSWORD

    def test_import_without_holdings_list(self, unlocked, vault_path):
        before = vault_path.read_bytes()
        with pytest.raises(SchemaError):
            unlocked.import_blob(encrypt_document({"priceCache": {}}, PASSWORD))
        assert vault_path.read_bytes() == before

    def test_import_garbage(self, unlocked):
        with pytest.raises(AuthenticationError):
            unlocked.import_blob(b"not a vault")

    def test_import_failed_write_keeps_memory(self, unlocked):
        blob = encrypt_document({"holdings": [{"id": "n1", "category": "cash", "quantity": 1}]}, PASSWORD)
        with patch("portfolio_vault.vault.vault_store.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(VaultWriteError):
                unlocked.import_blob(blob)
        assert unlocked.read().holdings == []


# ── History & prices ─────────────────────────────────────────────────


class TestHistory:
    def test_add_and_delete_by_index(self, unlocked):
        for total in (1, 2, 3):
            unlocked.add_history_snapshot(_snapshot(total))

        history = unlocked.delete_history_entry(1)

        assert [s.total_value for s in history] == [1, 3]
        unlocked.lock()
        assert [s.total_value for s in unlocked.unlock(PASSWORD).history] == [1, 3]

    @pytest.mark.parametrize("index", [-1, 1, 5])
    def test_invalid_index(self, unlocked, index):
        unlocked.add_history_snapshot(_snapshot(1))
        with pytest.raises(IndexError):
            unlocked.delete_history_entry(index)
        assert len(unlocked.read().history) == 1


class TestApplyPriceCache:
    def test_merge_and_persist(self, unlocked):
        old = PriceCacheEntry(price=1.0, timestamp=1_000, source=QuoteSource.YAHOO)
        newer = PriceCacheEntry(price=2.0, timestamp=2_000, source=QuoteSource.YAHOO)
        unlocked.apply_price_cache({"VUSA.L": newer})

        merged = unlocked.apply_price_cache({"VUSA.L": old, "bitcoin": old})

        assert merged["VUSA.L"].price == 2.0
        assert merged["bitcoin"].price == 1.0
        unlocked.lock()
        assert unlocked.unlock(PASSWORD).price_cache["VUSA.L"].price == 2.0


def test_fast_kdf_fixture_applies(store):
    assert EncryptionService.PBKDF2_ITERATIONS == 1_000
