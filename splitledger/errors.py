"""
Ledger Error Taxonomy

DESIGN DECISION: Every failure the ledger can report is a typed exception.
Callers catch the class they care about; nothing is signalled through
return codes or None.

All validation errors are raised BEFORE any write, so catching one
guarantees the committed state is unchanged.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for every ledger failure."""
    pass


class ValidationError(LedgerError):
    """Input rejected before touching state."""
    pass


class InvalidAmountError(ValidationError):
    """Amount is non-positive or outside the supported range."""
    pass


class InvalidSplitError(ValidationError):
    """Split set is inconsistent with the expense amount."""
    pass


class SplitMismatchError(InvalidSplitError):
    """
    Declared custom split amounts do not add up to the total.

    `diff` is declared - total, so a positive diff means over-allocation.
    """

    def __init__(self, declared: int, total: int, message: Optional[str] = None):
        self.declared = declared
        self.total = total
        self.diff = declared - total
        super().__init__(
            message
            or f"Split amounts ({declared}) must equal the total amount ({total}), "
            f"difference {self.diff:+d}"
        )


class NotAMemberError(LedgerError):
    """Actor or participant is not a member of the group."""
    pass


class ForbiddenError(LedgerError):
    """Actor is not allowed to perform this mutation."""
    pass


class NotFoundError(LedgerError):
    """Group, expense or user does not exist."""
    pass


class AlreadyMemberError(LedgerError):
    """User already belongs to the group."""
    pass


class AlreadyExistsError(LedgerError):
    """A user with this id or email is already registered."""
    pass


class ConcurrencyConflictError(LedgerError):
    """Optimistic version check lost against a concurrent writer."""
    pass


class StorageError(LedgerError):
    """Storage backend failed."""
    pass
