"""Services package."""

from splitledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SQLAuditStorage,
    SQLLedgerStorage,
    create_ledger_engine,
)

__all__ = [
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "SQLAuditStorage",
    "SQLLedgerStorage",
    "create_ledger_engine",
]
