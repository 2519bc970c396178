"""
In-Memory Storage Implementation

DESIGN DECISION: Copy-on-write snapshots.
- A snapshot is a set of tables that is never modified after it is published.
- Readers grab the current snapshot reference and work on it lock-free.
- Writers serialize on one lock, copy only the tables they touch, and
  publish a new snapshot on commit. A writer that raises publishes nothing.

TRADEOFFS:
- A write copies every table it touches (pointer copies, not records)
- Nothing survives the process (use the SQL backend for that)
"""

import threading
from collections import deque
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

import structlog

from splitledger.models.audit import AuditEvent
from splitledger.models.ledger import Expense, Group, Membership, Split, User
from splitledger.services.storage.interface import (
    AlreadyExistsError,
    AlreadyMemberError,
    AuditStorageInterface,
    ConcurrencyConflictError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)

TABLES = ("users", "groups", "memberships", "expenses", "splits")


class _Snapshot:
    """An immutable-by-convention set of tables."""

    __slots__ = TABLES

    def __init__(self, **tables):
        for name in TABLES:
            setattr(self, name, tables.get(name, {}))


class InMemoryUnitOfWork(LedgerUnitOfWork):
    """
    Unit of work over one snapshot.

    Tables are copied the first time a write touches them, so an
    abandoned unit leaves the base snapshot exactly as it was.
    """

    def __init__(self, base: _Snapshot, writable: bool):
        self._base = base
        self._writable = writable
        self._copied: dict[str, dict] = {}

    def _read(self, name: str) -> dict:
        return self._copied.get(name, getattr(self._base, name))

    def _write(self, name: str) -> dict:
        if not self._writable:
            raise StorageError("Write attempted in a read-only unit of work")
        if name not in self._copied:
            self._copied[name] = dict(getattr(self._base, name))
        return self._copied[name]

    @property
    def touched_tables(self) -> list[str]:
        return list(self._copied)

    def snapshot(self) -> _Snapshot:
        return _Snapshot(**{name: self._read(name) for name in TABLES})

    # -- users ---------------------------------------------------------------

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self._read("users").get(user_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        for user in self._read("users").values():
            if user.email.lower() == wanted:
                return user
        return None

    def add_user(self, user: User) -> None:
        if user.id in self._read("users"):
            raise AlreadyExistsError(f"User already exists: {user.id}")
        if self.find_user_by_email(user.email) is not None:
            raise AlreadyExistsError(f"Email already registered: {user.email}")
        self._write("users")[user.id] = user

    # -- groups --------------------------------------------------------------

    def get_group(self, group_id: UUID) -> Optional[Group]:
        return self._read("groups").get(group_id)

    def add_group(self, group: Group) -> None:
        if group.id in self._read("groups"):
            raise AlreadyExistsError(f"Group already exists: {group.id}")
        self._write("groups")[group.id] = group

    def delete_group(self, group_id: UUID) -> None:
        groups = self._write("groups")
        if group_id not in groups:
            raise NotFoundError(f"Group not found: {group_id}")
        del groups[group_id]

        memberships = self._write("memberships")
        for key in [k for k in memberships if k[0] == group_id]:
            del memberships[key]

        for expense in self.list_expenses(group_id):
            self.delete_expense(expense.id)

    def list_groups_for_user(self, user_id: UUID) -> list[Group]:
        groups = self._read("groups")
        return [
            groups[group_id]
            for (group_id, member_id) in self._read("memberships")
            if member_id == user_id and group_id in groups
        ]

    # -- memberships ---------------------------------------------------------

    def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[Membership]:
        return self._read("memberships").get((group_id, user_id))

    def add_membership(self, membership: Membership) -> None:
        key = (membership.group_id, membership.user_id)
        if key in self._read("memberships"):
            raise AlreadyMemberError(
                f"User {membership.user_id} is already a member of group {membership.group_id}"
            )
        self._write("memberships")[key] = membership

    def list_memberships(self, group_id: UUID) -> list[Membership]:
        return [m for (gid, _), m in self._read("memberships").items() if gid == group_id]

    # -- expenses ------------------------------------------------------------

    def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        return self._read("expenses").get(expense_id)

    def add_expense(self, expense: Expense, splits: list[Split]) -> None:
        if expense.id in self._read("expenses"):
            raise AlreadyExistsError(f"Expense already exists: {expense.id}")
        self._write("expenses")[expense.id] = expense
        self._write("splits")[expense.id] = tuple(splits)

    def update_expense(self, expense: Expense, expected_version: int) -> None:
        current = self.get_expense(expense.id)
        if current is None:
            raise NotFoundError(f"Expense not found: {expense.id}")
        if current.version != expected_version:
            raise ConcurrencyConflictError(
                f"Expense {expense.id} is at version {current.version}, "
                f"expected {expected_version}"
            )
        self._write("expenses")[expense.id] = expense

    def replace_splits(self, expense_id: UUID, splits: list[Split]) -> None:
        if expense_id not in self._read("expenses"):
            raise NotFoundError(f"Expense not found: {expense_id}")
        self._write("splits")[expense_id] = tuple(splits)

    def delete_expense(self, expense_id: UUID) -> None:
        expenses = self._write("expenses")
        if expense_id not in expenses:
            raise NotFoundError(f"Expense not found: {expense_id}")
        del expenses[expense_id]
        self._write("splits").pop(expense_id, None)

    def list_expenses(self, group_id: UUID) -> list[Expense]:
        return [e for e in self._read("expenses").values() if e.group_id == group_id]

    def list_splits(self, expense_id: UUID) -> list[Split]:
        return list(self._read("splits").get(expense_id, ()))

    def list_group_splits(self, group_id: UUID) -> list[Split]:
        splits = self._read("splits")
        result = []
        for expense in self.list_expenses(group_id):
            result.extend(splits.get(expense.id, ()))
        return result


class InMemoryLedgerStorage(LedgerStorageInterface):
    """In-process ledger backend with snapshot isolation."""

    def __init__(self):
        self._snapshot = _Snapshot()
        self._write_lock = threading.Lock()

    @contextmanager
    def unit_of_work(self, write: bool = False) -> Iterator[LedgerUnitOfWork]:
        if not write:
            yield InMemoryUnitOfWork(self._snapshot, writable=False)
            return

        with self._write_lock:
            uow = InMemoryUnitOfWork(self._snapshot, writable=True)
            yield uow
            # Only reached when the block did not raise
            self._snapshot = uow.snapshot()
            logger.debug("memory_commit", tables=sorted(uow.touched_tables))


class InMemoryAuditStorage(AuditStorageInterface):
    """Bounded append-only audit log kept in process memory."""

    def __init__(self, max_events: int = 10_000):
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(event)
        return True

    def _all(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._all() if e.correlation_id == correlation_id]

    def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return [
            e for e in self._all()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._all()))[:limit]
