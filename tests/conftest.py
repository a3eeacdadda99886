"""
Shared pytest fixtures for the CardSnap Vault test suite.

Autouse fixtures below isolate tests from the live application data:
  - Audit logger -> temp directory  (prevents fake events in the real audit trail)
  - API wiring   -> temp directory  (prevents test cards in data/cards.db)

Record factories (``make_card`` / ``make_store``) build valid records with
fixed timestamps so canonical bytes are reproducible across tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

# PBKDF2 floor; keeps each key derivation well under a second
TEST_ITERATIONS = 150_000

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import cardsnap.core.audit_log as audit_mod

    # Reset the singleton so the next get_audit_logger() builds a temp one
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_api_wiring(tmp_path, monkeypatch):
    """Point the lazily-built API singletons at a temp data directory.

    Without this, the first route test to call ``get_backup_service()`` would
    create ``data/cards.db`` in the working directory and later tests would
    see its cards.
    """
    monkeypatch.setenv("CARDSNAP_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CARDSNAP_AUDIT_LOG_DIR", str(tmp_path / "audit_logs"))
    monkeypatch.setenv("CARDSNAP_KDF_ITERATIONS", str(TEST_ITERATIONS))
    monkeypatch.delenv("CARDSNAP_DB_PATH", raising=False)
    monkeypatch.delenv("CARDSNAP_HISTORY_DB_PATH", raising=False)
    monkeypatch.delenv("CARDSNAP_MIN_PASSWORD_LENGTH", raising=False)
    monkeypatch.delenv("CARDSNAP_PASSWORD", raising=False)
    monkeypatch.delenv("CARDSNAP_SESSION_TOKEN", raising=False)

    import cardsnap.api.backup_routes as routes_mod

    old = (routes_mod._settings, routes_mod._record_store,
           routes_mod._history, routes_mod._backup_service)
    routes_mod._settings = None
    routes_mod.set_backup_service(None)

    yield

    (routes_mod._settings, routes_mod._record_store,
     routes_mod._history, routes_mod._backup_service) = old


@pytest.fixture
def make_card():
    """Factory for valid CardRecords; keyword arguments override fields."""
    from cardsnap.records.models import CardRecord, CodeFormat

    def _make(card_id="c1", **overrides):
        fields = dict(
            id=card_id,
            name=f"Card {card_id}",
            code=f"CODE-{card_id}",
            code_format=CodeFormat.CODE128,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        fields.update(overrides)
        return CardRecord(**fields)

    return _make


@pytest.fixture
def make_store():
    """Factory for valid StoreRecords; keyword arguments override fields."""
    from cardsnap.records.models import CodeFormat, StoreRecord

    def _make(store_id="s1", **overrides):
        fields = dict(
            id=store_id,
            brand_name=f"Store {store_id}",
            country_code="DE",
            updated_at=BASE_TIME,
            supported_formats=(CodeFormat.EAN13, CodeFormat.QR),
        )
        fields.update(overrides)
        return StoreRecord(**fields)

    return _make


@pytest.fixture
def later():
    """``later(minutes)`` -> BASE_TIME shifted forward."""
    return lambda minutes=1: BASE_TIME + timedelta(minutes=minutes)
