"""
Shared fixtures.

Store, balance and service tests run once per storage backend: the
in-memory one and SQLAlchemy over an in-memory SQLite database.
"""

import pytest

from splitledger.audit import AuditLogger
from splitledger.config import RetrySettings, get_settings
from splitledger.ledger import BalanceEngine, LedgerStore
from splitledger.orchestrator import LedgerService
from splitledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    SQLLedgerStorage,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are re-read for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryLedgerStorage()
    else:
        backend = SQLLedgerStorage("sqlite://")
    yield backend
    backend.close()


@pytest.fixture
def store(storage):
    return LedgerStore(storage)


@pytest.fixture
def balances(storage):
    return BalanceEngine(storage)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(storage, audit_storage):
    return LedgerService(
        storage,
        audit_logger=AuditLogger(audit_storage),
        retry_settings=RetrySettings(max_attempts=3, wait_min_seconds=0, wait_max_seconds=0),
    )


@pytest.fixture
def people(store):
    """Alice, Bob and Carol, registered in that order."""
    return {
        "alice": store.register_user("Alice", "alice@example.com"),
        "bob": store.register_user("Bob", "bob@example.com"),
        "carol": store.register_user("Carol", "carol@example.com"),
    }


@pytest.fixture
def trip(store, people):
    """A group created by Alice with Bob and Carol added after her."""
    group = store.create_group("Goa Trip", creator_id=people["alice"].id)
    store.add_member(group.id, people["bob"].id)
    store.add_member(group.id, people["carol"].id)
    return group
