"""
Ledger Store

The single source of truth for groups, memberships, expenses and splits.

DESIGN DECISION: Every domain invariant is checked here, once, on top of a
storage unit of work:
- Membership is unique per (group, user)
- Payer and every split participant are members of the expense's group
- sum(splits) == expense.amount, with no user appearing twice
- Only the payer may edit or delete an expense
- Only the creator may delete a group

Every mutation runs in ONE write unit of work. Checks that need no state
run before the unit is opened; checks that need state run inside it before
the first write. Either way a rejected mutation commits nothing.
"""

from datetime import date
from typing import Optional, Sequence, Union
from uuid import UUID

import pydantic
import structlog

from splitledger.config import get_settings
from splitledger.errors import (
    AlreadyExistsError,
    AlreadyMemberError,
    ForbiddenError,
    InvalidAmountError,
    InvalidSplitError,
    NotAMemberError,
    NotFoundError,
    SplitMismatchError,
    ValidationError,
)
from splitledger.models.ledger import (
    DESCRIPTION_MAX_LENGTH,
    NAME_MAX_LENGTH,
    Expense,
    ExpenseCategory,
    ExpenseDetail,
    Group,
    Membership,
    Split,
    SplitLine,
    User,
    utc_now,
)
from splitledger.money import check_range
from splitledger.services.storage.interface import LedgerStorageInterface, LedgerUnitOfWork
from splitledger.splitting import SplitCalculator


logger = structlog.get_logger(__name__)


def _build(model, **fields):
    """Construct a record, reporting schema failures as ledger validation errors."""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model.__name__.lower()}: {e}") from e


def _category(value: Union[ExpenseCategory, str]) -> ExpenseCategory:
    try:
        return ExpenseCategory(value)
    except ValueError:
        raise ValidationError(f"Unknown expense category: {value!r}")


def _text(value: Optional[str], field: str, max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} is longer than {max_length} characters")
    return text


class LedgerStore:
    """
    Invariant-preserving operations over a ledger storage backend.

    Usage:
        store = LedgerStore(InMemoryLedgerStorage())
        alice = store.register_user("Alice", "alice@example.com")
        trip = store.create_group("Trip", creator_id=alice.id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        calculator: Optional[SplitCalculator] = None,
        max_amount: Optional[int] = None,
    ):
        self._storage = storage
        self._calculator = calculator or SplitCalculator()
        self._max_amount = max_amount or get_settings().app.max_amount_minor_units

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check_amount(self, amount: int) -> int:
        """
        Raises:
            InvalidAmountError: not an int, not positive, or above the limit
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmountError(f"Amount must be an integer of minor units, got {amount!r}")
        if amount <= 0:
            raise InvalidAmountError(f"Amount must be greater than zero, got {amount}")
        if amount > self._max_amount:
            raise InvalidAmountError(
                f"Amount {amount} exceeds the maximum of {self._max_amount} minor units"
            )
        return amount

    def _check_split_lines(self, amount: int, splits: Sequence[SplitLine]) -> None:
        if not splits:
            raise InvalidSplitError("An expense needs at least one split")

        seen = set()
        for line in splits:
            if line.user_id in seen:
                raise InvalidSplitError(f"User {line.user_id} appears twice in the split set")
            seen.add(line.user_id)
            check_range(line.amount)
            if line.amount < 0:
                raise InvalidSplitError(
                    f"Split amount for {line.user_id} cannot be negative ({line.amount})"
                )

        declared = sum(line.amount for line in splits)
        if declared != amount:
            raise SplitMismatchError(declared=declared, total=amount)

    @staticmethod
    def _require_user(uow: LedgerUnitOfWork, user_id: UUID) -> User:
        user = uow.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    @staticmethod
    def _require_group(uow: LedgerUnitOfWork, group_id: UUID) -> Group:
        group = uow.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return group

    @staticmethod
    def _require_expense(uow: LedgerUnitOfWork, expense_id: UUID) -> Expense:
        expense = uow.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    @staticmethod
    def _require_member(uow: LedgerUnitOfWork, group_id: UUID, user_id: UUID, role: str) -> None:
        if uow.get_membership(group_id, user_id) is None:
            raise NotAMemberError(f"{role} {user_id} is not a member of group {group_id}")

    @staticmethod
    def _require_payer(expense: Expense, editor_id: UUID) -> None:
        if editor_id != expense.paid_by:
            raise ForbiddenError(
                f"Only the payer can change expense {expense.id}"
            )

    # =========================================================================
    # USERS
    # =========================================================================

    def register_user(self, name: str, email: str, user_id: Optional[UUID] = None) -> User:
        """
        Register a user.

        Raises:
            ValidationError: blank name or malformed email
            AlreadyExistsError: id or email (case-insensitive) already taken
        """
        name = _text(name, "Name", NAME_MAX_LENGTH)
        email = (email or "").strip()
        if "@" not in email.strip("@"):
            raise ValidationError(f"Not a valid email address: {email!r}")

        fields = {"name": name, "email": email}
        if user_id is not None:
            fields["id"] = user_id
        user = _build(User, **fields)

        with self._storage.unit_of_work(write=True) as uow:
            if uow.get_user(user.id) is not None:
                raise AlreadyExistsError(f"User already exists: {user.id}")
            if uow.find_user_by_email(email) is not None:
                raise AlreadyExistsError(f"Email already registered: {email}")
            uow.add_user(user)

        logger.debug("user_registered", user_id=str(user.id))
        return user

    def get_user(self, user_id: UUID) -> User:
        with self._storage.unit_of_work() as uow:
            return self._require_user(uow, user_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._storage.unit_of_work() as uow:
            return uow.find_user_by_email(email)

    # =========================================================================
    # GROUPS & MEMBERSHIP
    # =========================================================================

    def create_group(
        self,
        name: str,
        creator_id: UUID,
        description: Optional[str] = None,
    ) -> Group:
        """
        Create a group; the creator becomes its first member.

        Raises:
            ValidationError: blank or overlong name
            NotFoundError: creator is not a registered user
        """
        name = _text(name, "Group name", NAME_MAX_LENGTH)
        description = (description or "").strip() or None
        group = _build(Group, name=name, description=description, created_by=creator_id)

        with self._storage.unit_of_work(write=True) as uow:
            self._require_user(uow, creator_id)
            uow.add_group(group)
            uow.add_membership(Membership(group_id=group.id, user_id=creator_id))

        logger.debug("group_created", group_id=str(group.id))
        return group

    def get_group(self, group_id: UUID) -> Group:
        with self._storage.unit_of_work() as uow:
            return self._require_group(uow, group_id)

    def delete_group(self, group_id: UUID, actor_id: UUID) -> int:
        """
        Delete a group with its memberships, expenses and splits.

        Returns:
            Number of expenses removed

        Raises:
            NotFoundError: unknown group
            ForbiddenError: actor did not create the group
        """
        with self._storage.unit_of_work(write=True) as uow:
            group = self._require_group(uow, group_id)
            if actor_id != group.created_by:
                raise ForbiddenError(f"Only the creator can delete group {group_id}")
            expense_count = len(uow.list_expenses(group_id))
            uow.delete_group(group_id)

        logger.debug("group_deleted", group_id=str(group_id), expense_count=expense_count)
        return expense_count

    def add_member(
        self,
        group_id: UUID,
        user_id: UUID,
        actor_id: Optional[UUID] = None,
    ) -> Membership:
        """
        Add a registered user to a group.

        Raises:
            NotFoundError: unknown group or user
            NotAMemberError: actor is given and is not a member
            AlreadyMemberError: user already belongs to the group
        """
        with self._storage.unit_of_work(write=True) as uow:
            membership = self._enroll(uow, group_id, user_id, actor_id)

        logger.debug("member_added", group_id=str(group_id), user_id=str(user_id))
        return membership

    def add_member_by_email(
        self,
        group_id: UUID,
        email: str,
        actor_id: Optional[UUID] = None,
        name: Optional[str] = None,
    ) -> tuple[Membership, bool]:
        """
        Add a user by email, registering them first if the email is unknown.

        The new user's name defaults to the local part of the email.

        Returns:
            (membership, user_was_created)
        """
        email = (email or "").strip()
        if "@" not in email.strip("@"):
            raise ValidationError(f"Not a valid email address: {email!r}")

        with self._storage.unit_of_work(write=True) as uow:
            self._require_group(uow, group_id)
            user = uow.find_user_by_email(email)
            created = user is None
            if created:
                user = _build(User, name=(name or "").strip() or email.split("@")[0], email=email)
                uow.add_user(user)
            membership = self._enroll(uow, group_id, user.id, actor_id)

        logger.debug(
            "member_added",
            group_id=str(group_id),
            user_id=str(membership.user_id),
            user_created=created,
        )
        return membership, created

    def _enroll(
        self,
        uow: LedgerUnitOfWork,
        group_id: UUID,
        user_id: UUID,
        actor_id: Optional[UUID],
    ) -> Membership:
        self._require_group(uow, group_id)
        self._require_user(uow, user_id)
        if actor_id is not None:
            self._require_member(uow, group_id, actor_id, "Acting user")
        if uow.get_membership(group_id, user_id) is not None:
            raise AlreadyMemberError(f"User {user_id} is already a member of group {group_id}")

        membership = Membership(group_id=group_id, user_id=user_id)
        uow.add_membership(membership)
        return membership

    def is_member(self, group_id: UUID, user_id: UUID) -> bool:
        with self._storage.unit_of_work() as uow:
            return uow.get_membership(group_id, user_id) is not None

    def list_members(self, group_id: UUID) -> list[User]:
        """Members of a group in join order."""
        with self._storage.unit_of_work() as uow:
            self._require_group(uow, group_id)
            return [
                self._require_user(uow, membership.user_id)
                for membership in uow.list_memberships(group_id)
            ]

    def list_user_groups(self, user_id: UUID) -> list[Group]:
        with self._storage.unit_of_work() as uow:
            self._require_user(uow, user_id)
            return uow.list_groups_for_user(user_id)

    # =========================================================================
    # EXPENSES
    # =========================================================================

    def record_expense(
        self,
        group_id: UUID,
        paid_by: UUID,
        description: str,
        amount: int,
        splits: Sequence[SplitLine],
        category: Union[ExpenseCategory, str] = ExpenseCategory.GENERAL,
        expense_date: Optional[date] = None,
    ) -> Expense:
        """
        Record an expense together with its full split set.

        Raises:
            InvalidAmountError: amount not positive or out of range
            InvalidSplitError: splits don't sum to amount or repeat a user
            NotFoundError: unknown group
            NotAMemberError: payer or a participant is not a member
        """
        self.check_amount(amount)
        description = _text(description, "Description", DESCRIPTION_MAX_LENGTH)
        category = _category(category)
        self._check_split_lines(amount, splits)

        expense = _build(
            Expense,
            group_id=group_id,
            paid_by=paid_by,
            description=description,
            amount=amount,
            category=category,
            expense_date=expense_date or date.today(),
        )
        rows = [
            Split(expense_id=expense.id, user_id=line.user_id, amount=line.amount, position=position)
            for position, line in enumerate(splits)
        ]

        with self._storage.unit_of_work(write=True) as uow:
            self._require_group(uow, group_id)
            self._require_member(uow, group_id, paid_by, "Payer")
            for line in splits:
                self._require_member(uow, group_id, line.user_id, "Participant")
            uow.add_expense(expense, rows)

        logger.debug(
            "expense_recorded",
            expense_id=str(expense.id),
            amount=amount,
            split_count=len(rows),
        )
        return expense

    def get_expense(self, expense_id: UUID) -> ExpenseDetail:
        with self._storage.unit_of_work() as uow:
            expense = self._require_expense(uow, expense_id)
            return ExpenseDetail(expense=expense, splits=uow.list_splits(expense_id))

    def list_group_expenses(self, group_id: UUID) -> list[ExpenseDetail]:
        """Expenses of a group with their splits, newest first."""
        with self._storage.unit_of_work() as uow:
            self._require_group(uow, group_id)
            splits: dict[UUID, list[Split]] = {}
            for split in uow.list_group_splits(group_id):
                splits.setdefault(split.expense_id, []).append(split)

            return [
                ExpenseDetail(
                    expense=expense,
                    splits=sorted(splits.get(expense.id, []), key=lambda s: s.position),
                )
                for expense in reversed(uow.list_expenses(group_id))
            ]

    def update_expense_amount(self, expense_id: UUID, new_amount: int, editor_id: UUID) -> Expense:
        """
        Change an expense's amount and rescale its splits to match.

        Raises:
            InvalidAmountError: new_amount not positive (checked before any write)
            NotFoundError: unknown or deleted expense
            ForbiddenError: editor is not the payer
        """
        self.check_amount(new_amount)
        return self.edit_expense(expense_id, editor_id, amount=new_amount)

    def edit_expense(
        self,
        expense_id: UUID,
        editor_id: UUID,
        description: Optional[str] = None,
        category: Optional[Union[ExpenseCategory, str]] = None,
        expense_date: Optional[date] = None,
        amount: Optional[int] = None,
    ) -> Expense:
        """
        Edit any of description, category, date and amount in one commit.

        An amount change rescales the existing splits proportionally in
        stored order. Every edit bumps version and updated_at, even when
        nothing actually changed.
        """
        changes: dict = {}
        if description is not None:
            changes["description"] = _text(description, "Description", DESCRIPTION_MAX_LENGTH)
        if category is not None:
            changes["category"] = _category(category)
        if expense_date is not None:
            changes["expense_date"] = expense_date
        if amount is not None:
            changes["amount"] = self.check_amount(amount)

        with self._storage.unit_of_work(write=True) as uow:
            current = self._require_expense(uow, expense_id)
            self._require_payer(current, editor_id)

            # Rebuilt, not copied, so every field is validated again
            updated = _build(Expense, **{
                **current.model_dump(),
                **changes,
                "version": current.version + 1,
                "updated_at": utc_now(),
            })
            uow.update_expense(updated, expected_version=current.version)

            if amount is not None and amount != current.amount:
                lines = self._calculator.rescale(uow.list_splits(expense_id), amount)
                uow.replace_splits(expense_id, [
                    Split(expense_id=expense_id, user_id=line.user_id, amount=line.amount, position=position)
                    for position, line in enumerate(lines)
                ])

        logger.debug(
            "expense_updated",
            expense_id=str(expense_id),
            version=updated.version,
            fields=sorted(changes),
        )
        return updated

    def delete_expense(self, expense_id: UUID, editor_id: UUID) -> None:
        """
        Delete an expense and its splits.

        Raises:
            NotFoundError: unknown or already deleted expense
            ForbiddenError: editor is not the payer
        """
        with self._storage.unit_of_work(write=True) as uow:
            expense = self._require_expense(uow, expense_id)
            self._require_payer(expense, editor_id)
            uow.delete_expense(expense_id)

        logger.debug("expense_deleted", expense_id=str(expense_id))
