"""
Main Orchestrator for the Split Ledger

This module ties together all the components and defines the public
service API:
1. Users, groups and memberships
2. Expense mutations (record → validate → split → commit, edit, delete)
3. Balance queries

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutation is validated before anything is written
- Every mutation that loses an optimistic version check is retried from
  scratch, never patched up halfway
- Every mutation is audited, including the rejected ones

This is the "glue" that ensures the ledger stays consistent even when
several callers mutate the same group at once.
"""

from datetime import date
from typing import Callable, Optional, TypeVar, Union
from uuid import UUID

import pydantic
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from splitledger.audit import AuditLogger, configure_logging, create_correlation_id
from splitledger.config import RetrySettings, Settings, get_settings, validate_all_settings
from splitledger.errors import ConcurrencyConflictError, LedgerError, ValidationError
from splitledger.ledger import BalanceEngine, LedgerStore
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
    User,
)
from splitledger.money import Money
from splitledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SQLAuditStorage,
    SQLLedgerStorage,
    create_ledger_engine,
)
from splitledger.splitting import SplitCalculator
from splitledger.validation import ExpenseValidator


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LedgerService:
    """
    Public API of the split ledger.

    Mutations carry the authenticated actor id; reads do not. Each call
    gets its own correlation id, shared by every audit event it produces.

    Usage:
        service = create_ledger_service()
        alice = service.register_user("Alice", "alice@example.com")
        trip = service.create_group("Trip", creator_id=alice.id)
        service.record_expense(trip.id, alice.id, "Dinner", 9000, [alice.id])
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
        calculator: Optional[SplitCalculator] = None,
        retry_settings: Optional[RetrySettings] = None,
        currency_symbol: Optional[str] = None,
        max_amount: Optional[int] = None,
    ):
        settings = get_settings()

        self._storage = storage
        self._calculator = calculator or SplitCalculator()
        self._store = LedgerStore(storage, self._calculator, max_amount)
        self._balances = BalanceEngine(storage)
        self._validator = validator or ExpenseValidator(max_amount)
        self._audit = audit_logger or AuditLogger()
        self._retry = retry_settings or settings.retry
        self._currency_symbol = currency_symbol or settings.app.currency_symbol

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    def _format(self, amount: int) -> str:
        return Money(amount).format(self._currency_symbol)

    def _mutate(
        self,
        operation: str,
        action: Callable[[], T],
        correlation_id: UUID,
        actor_id: Optional[UUID],
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> T:
        """
        Run a mutation, retrying it from scratch on a lost version check.

        Any LedgerError that escapes (including the last conflict) is
        audited as a rejected mutation and re-raised. Anything else is
        audited as a system error and re-raised.
        """
        def before_sleep(retry_state: RetryCallState) -> None:
            self._audit.log_concurrency_retry(
                operation=operation,
                attempt=retry_state.attempt_number,
                correlation_id=correlation_id,
            )

        retrying = Retrying(
            retry=retry_if_exception_type(ConcurrencyConflictError),
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry.wait_min_seconds,
                min=self._retry.wait_min_seconds,
                max=self._retry.wait_max_seconds,
            ),
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            return retrying(action)
        except LedgerError as e:
            self._audit.log_mutation_rejected(
                operation=operation,
                error=e,
                actor_id=actor_id,
                correlation_id=correlation_id,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            raise
        except Exception as e:
            self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            raise

    # =========================================================================
    # USERS, GROUPS & MEMBERS
    # =========================================================================

    def register_user(self, name: str, email: str, user_id: Optional[UUID] = None) -> User:
        correlation_id = create_correlation_id()
        user = self._mutate(
            "register_user",
            lambda: self._store.register_user(name, email, user_id),
            correlation_id,
            actor_id=user_id,
            entity_type="user",
            entity_id=user_id,
        )
        self._audit.log_user_registered(user.id, user.email, correlation_id)
        return user

    def create_group(
        self,
        name: str,
        creator_id: UUID,
        description: Optional[str] = None,
    ) -> Group:
        correlation_id = create_correlation_id()
        group = self._mutate(
            "create_group",
            lambda: self._store.create_group(name, creator_id, description),
            correlation_id,
            actor_id=creator_id,
        )
        self._audit.log_group_created(group.id, group.name, creator_id, correlation_id)
        return group

    def add_member(self, group_id: UUID, user_id: UUID, actor_id: UUID) -> Membership:
        """Add a registered user to a group. The actor must be a member."""
        correlation_id = create_correlation_id()
        membership = self._mutate(
            "add_member",
            lambda: self._store.add_member(group_id, user_id, actor_id),
            correlation_id,
            actor_id=actor_id,
            entity_type="group",
            entity_id=group_id,
        )
        self._audit.log_member_added(group_id, user_id, actor_id, correlation_id)
        return membership

    def add_member_by_email(
        self,
        group_id: UUID,
        email: str,
        actor_id: UUID,
        name: Optional[str] = None,
    ) -> Membership:
        """Add a member by email, registering an unknown email as a new user."""
        correlation_id = create_correlation_id()
        membership, created = self._mutate(
            "add_member_by_email",
            lambda: self._store.add_member_by_email(group_id, email, actor_id, name),
            correlation_id,
            actor_id=actor_id,
            entity_type="group",
            entity_id=group_id,
        )
        if created:
            self._audit.log_user_registered(membership.user_id, email.strip(), correlation_id)
        self._audit.log_member_added(group_id, membership.user_id, actor_id, correlation_id)
        return membership

    def delete_group(self, group_id: UUID, actor_id: UUID) -> None:
        """Delete a group and everything in it. Only its creator may do this."""
        correlation_id = create_correlation_id()
        expense_count = self._mutate(
            "delete_group",
            lambda: self._store.delete_group(group_id, actor_id),
            correlation_id,
            actor_id=actor_id,
            entity_type="group",
            entity_id=group_id,
        )
        self._audit.log_group_deleted(group_id, expense_count, actor_id, correlation_id)

    # =========================================================================
    # EXPENSES
    # =========================================================================

    def record_expense(
        self,
        group_id: UUID,
        paid_by: UUID,
        description: str,
        amount: int,
        participant_ids: list[UUID],
        split_mode: Optional[Union[EqualSplit, CustomSplit]] = None,
        category: Union[ExpenseCategory, str] = ExpenseCategory.GENERAL,
        expense_date: Optional[date] = None,
        actor_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Record an expense and its splits.

        Flow:
        1. Build the draft from the request
        2. Two-stage validation (schema, then membership)
        3. Compute the split set (equal or custom)
        4. Commit expense and splits together

        When actor_id is omitted the payer is taken to be the actor.
        """
        correlation_id = create_correlation_id()
        actor_id = actor_id or paid_by

        def action() -> Expense:
            try:
                draft = ExpenseDraft(
                    group_id=group_id,
                    paid_by=paid_by,
                    description=description,
                    amount=amount,
                    category=category,
                    expense_date=expense_date or date.today(),
                    participant_ids=list(participant_ids),
                    split_mode=split_mode or EqualSplit(),
                )
            except pydantic.ValidationError as e:
                raise ValidationError(f"Malformed expense request: {e}") from e

            with self._storage.unit_of_work() as uow:
                result = self._validator.validate(draft, uow, actor_id)
            self._validator.raise_for_errors(result)

            lines = self._calculator.calculate(
                draft.amount, draft.participant_ids, draft.split_mode
            )
            return self._store.record_expense(
                group_id=draft.group_id,
                paid_by=draft.paid_by,
                description=draft.description,
                amount=draft.amount,
                splits=lines,
                category=draft.category,
                expense_date=draft.expense_date,
            )

        expense = self._mutate(
            "record_expense",
            action,
            correlation_id,
            actor_id=actor_id,
            entity_type="group",
            entity_id=group_id,
        )
        self._audit.log_expense_recorded(
            expense_id=expense.id,
            group_id=group_id,
            amount=self._format(expense.amount),
            split_count=len(participant_ids),
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        return expense

    def update_expense_amount(self, expense_id: UUID, new_amount: int, editor_id: UUID) -> Expense:
        """Change an expense's amount; its splits are rescaled to match."""
        correlation_id = create_correlation_id()
        expense = self._mutate(
            "update_expense_amount",
            lambda: self._store.update_expense_amount(expense_id, new_amount, editor_id),
            correlation_id,
            actor_id=editor_id,
            entity_type="expense",
            entity_id=expense_id,
        )
        self._audit.log_expense_updated(
            expense_id=expense_id,
            changes={"amount": self._format(expense.amount), "version": expense.version},
            actor_id=editor_id,
            correlation_id=correlation_id,
        )
        return expense

    def edit_expense(
        self,
        expense_id: UUID,
        editor_id: UUID,
        description: Optional[str] = None,
        category: Optional[Union[ExpenseCategory, str]] = None,
        expense_date: Optional[date] = None,
        amount: Optional[int] = None,
    ) -> Expense:
        """Edit description, category, date and/or amount in one commit."""
        correlation_id = create_correlation_id()
        expense = self._mutate(
            "edit_expense",
            lambda: self._store.edit_expense(
                expense_id,
                editor_id,
                description=description,
                category=category,
                expense_date=expense_date,
                amount=amount,
            ),
            correlation_id,
            actor_id=editor_id,
            entity_type="expense",
            entity_id=expense_id,
        )

        changes: dict = {"version": expense.version}
        if description is not None:
            changes["description"] = expense.description
        if category is not None:
            changes["category"] = expense.category.value
        if expense_date is not None:
            changes["expense_date"] = expense.expense_date.isoformat()
        if amount is not None:
            changes["amount"] = self._format(expense.amount)

        self._audit.log_expense_updated(expense_id, changes, editor_id, correlation_id)
        return expense

    def delete_expense(self, expense_id: UUID, editor_id: UUID) -> None:
        correlation_id = create_correlation_id()
        self._mutate(
            "delete_expense",
            lambda: self._store.delete_expense(expense_id, editor_id),
            correlation_id,
            actor_id=editor_id,
            entity_type="expense",
            entity_id=expense_id,
        )
        self._audit.log_expense_deleted(expense_id, editor_id, correlation_id)

    # =========================================================================
    # READS
    # =========================================================================

    def get_user(self, user_id: UUID) -> User:
        return self._store.get_user(user_id)

    def get_group(self, group_id: UUID) -> Group:
        return self._store.get_group(group_id)

    def get_expense(self, expense_id: UUID) -> ExpenseDetail:
        return self._store.get_expense(expense_id)

    def list_group_members(self, group_id: UUID) -> list[User]:
        return self._store.list_members(group_id)

    def list_group_expenses(self, group_id: UUID) -> list[ExpenseDetail]:
        """Expenses with their splits, newest first."""
        return self._store.list_group_expenses(group_id)

    def list_user_groups(self, user_id: UUID) -> list[GroupSummary]:
        """The user's groups with member count, total spend and the user's balance."""
        return self._balances.group_summaries(user_id)

    def get_group_balances(self, group_id: UUID) -> list[MemberBalance]:
        return self._balances.group_balances(group_id)

    def get_user_balance(self, user_id: UUID, group_id: UUID) -> int:
        return self._balances.user_balance(user_id, group_id)

    def get_user_aggregate_balance(self, user_id: UUID) -> int:
        return self._balances.user_aggregate_balance(user_id)


def create_ledger_service(settings: Optional[Settings] = None) -> LedgerService:
    """
    Factory function to create a fully configured ledger service.

    Picks the storage backend named in the settings and wires the audit
    log to the same place (process memory, or the ledger database).

    Raises:
        ValidationError: a settings section failed to load
    """
    settings = settings or get_settings()

    status = validate_all_settings(settings)
    failed = [name for name in ("storage", "retry", "app") if not status[name]]
    if failed:
        raise ValidationError("Invalid configuration: " + "; ".join(
            f"{name}: {status[f'{name}_error']}" for name in failed
        ))

    app_settings = settings.app
    storage_settings = settings.storage

    configure_logging("DEBUG" if app_settings.debug_mode else app_settings.log_level)

    if storage_settings.backend == "sql":
        engine = create_ledger_engine(storage_settings.database_url, storage_settings.echo_sql)
        storage = SQLLedgerStorage(engine=engine)
        audit_storage = SQLAuditStorage(engine)
    else:
        storage = InMemoryLedgerStorage()
        audit_storage = InMemoryAuditStorage()

    logger.info(
        "ledger_service_created",
        environment=app_settings.app_environment,
        backend=storage_settings.backend,
        audit_enabled=app_settings.audit_enabled,
    )

    return LedgerService(
        storage=storage,
        audit_logger=AuditLogger(audit_storage, enabled=app_settings.audit_enabled),
        retry_settings=settings.retry,
        currency_symbol=app_settings.currency_symbol,
        max_amount=app_settings.max_amount_minor_units,
    )
