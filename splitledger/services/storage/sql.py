"""
SQLAlchemy Storage Implementation

DESIGN DECISION: One database transaction per unit of work.
- Expense and split rows commit or roll back together
- Cascading deletes are declared on the foreign keys (ON DELETE CASCADE),
  so removing a group or an expense never leaves orphan rows
- Amounts are BIGINT minor units with CHECK constraints as a backstop;
  the ledger store has already validated them before any write

Tables: users, groups, group_members, expenses, expense_splits and
audit_events. Amounts are integer minor units, not DECIMAL.

SQLITE NOTES:
- Foreign keys are off by default in SQLite; we switch them on per connection
- pysqlite's implicit transaction handling is replaced with an explicit
  BEGIN so reads also run in one transaction (one consistent snapshot)
- In-process writers are serialized on a lock; a lock held by another
  process surfaces as ConcurrencyConflictError so the caller can retry
"""

import json
import threading
import uuid
from contextlib import contextmanager, nullcontext
from datetime import date, datetime, timezone
from typing import Iterator, Optional

import structlog
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    create_engine,
    delete,
    event,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from splitledger.config import get_settings
from splitledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from splitledger.models.ledger import (
    Expense,
    ExpenseCategory,
    Group,
    Membership,
    Split,
    User,
)
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


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    # Lower-cased copy so uniqueness is case-insensitive on every dialect
    email_key: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GroupRow(Base):
    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MembershipRow(Base):
    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    # Surrogate key doubles as join order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ExpenseRow(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint("version >= 1", name="ck_expenses_version_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    paid_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SplitRow(Base):
    __tablename__ = "expense_splits"
    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_splits_expense_user"),
        UniqueConstraint("expense_id", "position", name="uq_expense_splits_expense_position"),
        CheckConstraint("amount >= 0", name="ck_expense_splits_amount_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    correlation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# =============================================================================
# ROW <-> MODEL
# =============================================================================

def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_user(row: UserRow) -> User:
    return User(id=row.id, name=row.name, email=row.email, created_at=_utc(row.created_at))


def _to_group(row: GroupRow) -> Group:
    return Group(
        id=row.id,
        name=row.name,
        description=row.description,
        created_by=row.created_by,
        created_at=_utc(row.created_at),
    )


def _to_membership(row: MembershipRow) -> Membership:
    return Membership(group_id=row.group_id, user_id=row.user_id, joined_at=_utc(row.joined_at))


def _to_expense(row: ExpenseRow) -> Expense:
    return Expense(
        id=row.id,
        group_id=row.group_id,
        paid_by=row.paid_by,
        description=row.description,
        amount=row.amount,
        category=ExpenseCategory(row.category),
        expense_date=row.expense_date,
        version=row.version,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _to_split(row: SplitRow) -> Split:
    return Split(
        expense_id=row.expense_id,
        user_id=row.user_id,
        amount=row.amount,
        position=row.position,
    )


def _split_row(split: Split) -> SplitRow:
    return SplitRow(
        expense_id=split.expense_id,
        user_id=split.user_id,
        amount=split.amount,
        position=split.position,
    )


# =============================================================================
# UNIT OF WORK
# =============================================================================

class SQLUnitOfWork(LedgerUnitOfWork):
    """Unit of work bound to one SQLAlchemy session transaction."""

    def __init__(self, session: Session, writable: bool):
        self._session = session
        self._writable = writable

    def _check_writable(self) -> None:
        if not self._writable:
            raise StorageError("Write attempted in a read-only unit of work")

    # -- users ---------------------------------------------------------------

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        row = self._session.get(UserRow, user_id)
        return _to_user(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        row = self._session.scalars(
            select(UserRow).where(UserRow.email_key == email.strip().lower())
        ).first()
        return _to_user(row) if row else None

    def add_user(self, user: User) -> None:
        self._check_writable()
        if self._session.get(UserRow, user.id) is not None:
            raise AlreadyExistsError(f"User already exists: {user.id}")
        if self.find_user_by_email(user.email) is not None:
            raise AlreadyExistsError(f"Email already registered: {user.email}")
        self._session.add(UserRow(
            id=user.id,
            name=user.name,
            email=user.email,
            email_key=user.email.lower(),
            created_at=user.created_at,
        ))
        self._session.flush()

    # -- groups --------------------------------------------------------------

    def get_group(self, group_id: uuid.UUID) -> Optional[Group]:
        row = self._session.get(GroupRow, group_id)
        return _to_group(row) if row else None

    def add_group(self, group: Group) -> None:
        self._check_writable()
        self._session.add(GroupRow(
            id=group.id,
            name=group.name,
            description=group.description,
            created_by=group.created_by,
            created_at=group.created_at,
        ))
        self._session.flush()

    def delete_group(self, group_id: uuid.UUID) -> None:
        self._check_writable()
        result = self._session.execute(delete(GroupRow).where(GroupRow.id == group_id))
        if result.rowcount == 0:
            raise NotFoundError(f"Group not found: {group_id}")
        self._session.expunge_all()

    def list_groups_for_user(self, user_id: uuid.UUID) -> list[Group]:
        rows = self._session.scalars(
            select(GroupRow)
            .join(MembershipRow, MembershipRow.group_id == GroupRow.id)
            .where(MembershipRow.user_id == user_id)
            .order_by(MembershipRow.id)
        ).all()
        return [_to_group(row) for row in rows]

    # -- memberships ---------------------------------------------------------

    def get_membership(self, group_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Membership]:
        row = self._session.scalars(
            select(MembershipRow).where(
                MembershipRow.group_id == group_id,
                MembershipRow.user_id == user_id,
            )
        ).first()
        return _to_membership(row) if row else None

    def add_membership(self, membership: Membership) -> None:
        self._check_writable()
        if self.get_membership(membership.group_id, membership.user_id) is not None:
            raise AlreadyMemberError(
                f"User {membership.user_id} is already a member of group {membership.group_id}"
            )
        self._session.add(MembershipRow(
            group_id=membership.group_id,
            user_id=membership.user_id,
            joined_at=membership.joined_at,
        ))
        self._session.flush()

    def list_memberships(self, group_id: uuid.UUID) -> list[Membership]:
        rows = self._session.scalars(
            select(MembershipRow)
            .where(MembershipRow.group_id == group_id)
            .order_by(MembershipRow.id)
        ).all()
        return [_to_membership(row) for row in rows]

    # -- expenses ------------------------------------------------------------

    def get_expense(self, expense_id: uuid.UUID) -> Optional[Expense]:
        row = self._session.get(ExpenseRow, expense_id, populate_existing=True)
        return _to_expense(row) if row else None

    def add_expense(self, expense: Expense, splits: list[Split]) -> None:
        self._check_writable()
        self._session.add(ExpenseRow(
            id=expense.id,
            group_id=expense.group_id,
            paid_by=expense.paid_by,
            description=expense.description,
            amount=expense.amount,
            category=expense.category.value,
            expense_date=expense.expense_date,
            version=expense.version,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        ))
        # Parent row first so the split foreign keys resolve
        self._session.flush()
        self._session.add_all([_split_row(split) for split in splits])
        self._session.flush()

    def update_expense(self, expense: Expense, expected_version: int) -> None:
        self._check_writable()
        result = self._session.execute(
            update(ExpenseRow)
            .where(ExpenseRow.id == expense.id, ExpenseRow.version == expected_version)
            .values(
                description=expense.description,
                amount=expense.amount,
                category=expense.category.value,
                expense_date=expense.expense_date,
                version=expense.version,
                updated_at=expense.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if self._session.get(ExpenseRow, expense.id) is None:
                raise NotFoundError(f"Expense not found: {expense.id}")
            raise ConcurrencyConflictError(
                f"Expense {expense.id} changed since version {expected_version}"
            )

    def replace_splits(self, expense_id: uuid.UUID, splits: list[Split]) -> None:
        self._check_writable()
        self._session.execute(delete(SplitRow).where(SplitRow.expense_id == expense_id))
        self._session.add_all([_split_row(split) for split in splits])
        self._session.flush()

    def delete_expense(self, expense_id: uuid.UUID) -> None:
        self._check_writable()
        result = self._session.execute(delete(ExpenseRow).where(ExpenseRow.id == expense_id))
        if result.rowcount == 0:
            raise NotFoundError(f"Expense not found: {expense_id}")
        self._session.expunge_all()

    def list_expenses(self, group_id: uuid.UUID) -> list[Expense]:
        rows = self._session.scalars(
            select(ExpenseRow)
            .where(ExpenseRow.group_id == group_id)
            .order_by(ExpenseRow.created_at, ExpenseRow.id)
        ).all()
        return [_to_expense(row) for row in rows]

    def list_splits(self, expense_id: uuid.UUID) -> list[Split]:
        rows = self._session.scalars(
            select(SplitRow)
            .where(SplitRow.expense_id == expense_id)
            .order_by(SplitRow.position)
        ).all()
        return [_to_split(row) for row in rows]

    def list_group_splits(self, group_id: uuid.UUID) -> list[Split]:
        rows = self._session.scalars(
            select(SplitRow)
            .join(ExpenseRow, ExpenseRow.id == SplitRow.expense_id)
            .where(ExpenseRow.group_id == group_id)
            .order_by(ExpenseRow.created_at, SplitRow.position)
        ).all()
        return [_to_split(row) for row in rows]


# =============================================================================
# ENGINE / STORAGE
# =============================================================================

def _sqlite_on_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn):
    conn.exec_driver_sql("BEGIN")


def _configure_sqlite(engine: Engine) -> None:
    """
    Enable foreign keys and take over transaction control from pysqlite.

    Safe to call more than once on the same engine. It only affects
    connections opened after the call.
    """
    if not event.contains(engine, "connect", _sqlite_on_connect):
        event.listen(engine, "connect", _sqlite_on_connect)
    if not event.contains(engine, "begin", _sqlite_on_begin):
        event.listen(engine, "begin", _sqlite_on_begin)


def create_ledger_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Build an engine for the configured database.

    An in-memory SQLite URL gets a single shared connection (StaticPool);
    it is meant for single-threaded use only.
    """
    settings = get_settings().storage
    url = database_url or settings.database_url
    echo = settings.echo_sql if echo is None else echo

    kwargs: dict = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


def _translate(error: SQLAlchemyError) -> Exception:
    if isinstance(error, OperationalError):
        message = str(error.orig).lower()
        if "locked" in message or "busy" in message:
            return ConcurrencyConflictError(f"Database is busy: {error.orig}")
    if isinstance(error, IntegrityError):
        return StorageError(f"Integrity constraint violated: {error.orig}")
    return StorageError(f"Database error: {error}")


class SQLLedgerStorage(LedgerStorageInterface):
    """
    SQLAlchemy implementation of ledger storage.

    Tables are created on first use if they do not exist.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
    ):
        self._engine = engine or create_ledger_engine(database_url)
        if self._engine.dialect.name == "sqlite":
            _configure_sqlite(self._engine)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._write_lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def unit_of_work(self, write: bool = False) -> Iterator[LedgerUnitOfWork]:
        with self._write_lock if write else nullcontext():
            session = self._session_factory()
            try:
                with session.begin():
                    yield SQLUnitOfWork(session, writable=write)
            except SQLAlchemyError as e:
                logger.warning("sql_unit_of_work_failed", write=write, error=str(e))
                raise _translate(e) from e
            finally:
                session.close()

    def close(self) -> None:
        self._engine.dispose()


class SQLAuditStorage(AuditStorageInterface):
    """Audit events in the `audit_events` table of the ledger database."""

    def __init__(self, engine: Engine):
        self._engine = engine
        if engine.dialect.name == "sqlite":
            _configure_sqlite(engine)
        Base.metadata.create_all(self._engine, tables=[AuditEventRow.__table__])
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def append_event(self, event: AuditEvent) -> bool:
        try:
            with self._session_factory.begin() as session:
                session.add(AuditEventRow(
                    event_id=event.event_id,
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    actor_id=event.actor_id,
                    correlation_id=event.correlation_id,
                    description=event.description,
                    details_json=event.details_json(),
                    error_code=event.error_code,
                    error_message=event.error_message,
                ))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to append audit event: {e}") from e

    def _query(self, statement) -> list[AuditEvent]:
        with self._session_factory() as session:
            rows = session.scalars(statement).all()
            return [
                AuditEvent(
                    event_id=row.event_id,
                    timestamp=_utc(row.timestamp),
                    event_type=AuditEventType(row.event_type),
                    severity=AuditSeverity(row.severity),
                    entity_type=row.entity_type,
                    entity_id=row.entity_id,
                    actor_id=row.actor_id,
                    correlation_id=row.correlation_id,
                    description=row.description,
                    details=json.loads(row.details_json) if row.details_json else {},
                    error_code=row.error_code,
                    error_message=row.error_message,
                )
                for row in rows
            ]

    def get_events_by_correlation_id(self, correlation_id: uuid.UUID) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.id)
        )

    def get_events_by_entity(self, entity_type: str, entity_id: uuid.UUID) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.id)
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow).order_by(AuditEventRow.id.desc()).limit(limit)
        )

