"""
Storage Services Package

Provides the abstract unit-of-work interfaces and two implementations:
in-memory (snapshot isolation, no persistence) and SQLAlchemy.
"""

from splitledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    LedgerUnitOfWork,
)
from splitledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from splitledger.services.storage.sql import (
    SQLAuditStorage,
    SQLLedgerStorage,
    create_ledger_engine,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # SQLAlchemy implementation
    "SQLAuditStorage",
    "SQLLedgerStorage",
    "create_ledger_engine",
]
