"""
Data Models Package

This package contains all Pydantic models used by the split ledger.
All data flowing through the ledger must conform to these schemas.
"""

from splitledger.models.ledger import (
    CustomSplit,
    EqualSplit,
    Expense,
    ExpenseCategory,
    ExpenseDetail,
    ExpenseDraft,
    Group,
    GroupSummary,
    MemberBalance,
    Membership,
    Split,
    SplitLine,
    SplitMode,
    User,
    ValidationIssue,
    ValidationResult,
    utc_now,
)
from splitledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CustomSplit",
    "EqualSplit",
    "Expense",
    "ExpenseCategory",
    "ExpenseDetail",
    "ExpenseDraft",
    "Group",
    "GroupSummary",
    "MemberBalance",
    "Membership",
    "Split",
    "SplitLine",
    "SplitMode",
    "User",
    "ValidationIssue",
    "ValidationResult",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
