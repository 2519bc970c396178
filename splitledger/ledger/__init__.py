"""Ledger store and balance queries."""

from splitledger.ledger.balances import BalanceEngine
from splitledger.ledger.store import LedgerStore

__all__ = ["BalanceEngine", "LedgerStore"]
