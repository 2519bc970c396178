"""
Split Ledger - Source Package

A shared-expense ledger: groups of people record who paid for what and
how each payment is split, and the ledger answers who owes whom.

DESIGN PRINCIPLES:
1. Money is an integer count of minor units, never a float
2. Every expense's splits sum to its amount, exactly, at all times
3. Fail early, fail visibly - no silent corrections
4. Balances are computed from committed records, never cached
5. Every mutation is auditable
6. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Split Ledger Team"
