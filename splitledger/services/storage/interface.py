"""
Abstract Storage Interface

DESIGN DECISION: The ledger talks to persistence through a unit of work.
This allows us to:
1. Use in-memory storage for tests and single-process use
2. Swap in a SQL database without touching ledger logic
3. Keep every invariant check in ONE place (the ledger store), above
   the backends, instead of re-implementing it per backend

A unit of work is a transaction: everything written through it commits
together when the `with` block exits cleanly and is discarded when the
block raises. Backends only move rows; they never decide whether a
mutation is allowed.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Optional
from uuid import UUID

from splitledger.errors import (
    AlreadyExistsError,
    AlreadyMemberError,
    ConcurrencyConflictError,
    NotFoundError,
    StorageError,
)
from splitledger.models.audit import AuditEvent
from splitledger.models.ledger import Expense, Group, Membership, Split, User


class LedgerUnitOfWork(ABC):
    """
    Row-level access to ledger tables inside one transaction.

    Reads see a single consistent snapshot for the life of the unit.
    """

    # -- users ---------------------------------------------------------------

    @abstractmethod
    def get_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup."""
        pass

    @abstractmethod
    def add_user(self, user: User) -> None:
        """
        Raises:
            AlreadyExistsError: id or email already taken
        """
        pass

    # -- groups --------------------------------------------------------------

    @abstractmethod
    def get_group(self, group_id: UUID) -> Optional[Group]:
        pass

    @abstractmethod
    def add_group(self, group: Group) -> None:
        pass

    @abstractmethod
    def delete_group(self, group_id: UUID) -> None:
        """Delete a group with its memberships, expenses and splits."""
        pass

    @abstractmethod
    def list_groups_for_user(self, user_id: UUID) -> list[Group]:
        """Groups the user belongs to, in the order they joined."""
        pass

    # -- memberships ---------------------------------------------------------

    @abstractmethod
    def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[Membership]:
        pass

    @abstractmethod
    def add_membership(self, membership: Membership) -> None:
        """
        Raises:
            AlreadyMemberError: (group, user) pair already present
        """
        pass

    @abstractmethod
    def list_memberships(self, group_id: UUID) -> list[Membership]:
        """Memberships of a group in join order."""
        pass

    # -- expenses ------------------------------------------------------------

    @abstractmethod
    def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    def add_expense(self, expense: Expense, splits: list[Split]) -> None:
        """Insert an expense row and all of its split rows."""
        pass

    @abstractmethod
    def update_expense(self, expense: Expense, expected_version: int) -> None:
        """
        Overwrite an expense row if its stored version still matches.

        Raises:
            NotFoundError: expense row is gone
            ConcurrencyConflictError: stored version != expected_version
        """
        pass

    @abstractmethod
    def replace_splits(self, expense_id: UUID, splits: list[Split]) -> None:
        """Drop every split row of the expense and insert `splits`."""
        pass

    @abstractmethod
    def delete_expense(self, expense_id: UUID) -> None:
        """Delete an expense with its splits."""
        pass

    @abstractmethod
    def list_expenses(self, group_id: UUID) -> list[Expense]:
        """Expenses of a group, oldest first."""
        pass

    @abstractmethod
    def list_splits(self, expense_id: UUID) -> list[Split]:
        """Splits of one expense ordered by position."""
        pass

    @abstractmethod
    def list_group_splits(self, group_id: UUID) -> list[Split]:
        """Splits of every expense in a group."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger persistence.

    Any storage implementation (in-memory, SQLAlchemy, etc.)
    must implement these methods.
    """

    @abstractmethod
    def unit_of_work(self, write: bool = False) -> AbstractContextManager[LedgerUnitOfWork]:
        """
        Open a transaction.

        Args:
            write: True for mutations. Write units are serialized against
                   each other; read units never block and never see a
                   half-committed write.

        Usage:
            with storage.unit_of_work(write=True) as uow:
                uow.add_group(group)
                uow.add_membership(membership)
        """
        pass

    def close(self) -> None:
        """Release backend resources. Optional."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one service call, in chronological order."""
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


__all__ = [
    "AlreadyExistsError",
    "AlreadyMemberError",
    "AuditStorageInterface",
    "ConcurrencyConflictError",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "NotFoundError",
    "StorageError",
]
