"""
Balance Engine

Balances are never stored. Each query folds the committed expenses and
splits of one snapshot:

    balance(user, group) = sum(amount of expenses the user paid in the group)
                         - sum(the user's split amounts in the group)

Positive means the user is owed money, negative means the user owes money.
Because every expense's splits sum to its amount, member balances in a
group always sum to zero.
"""

from uuid import UUID

import structlog

from splitledger.errors import NotFoundError
from splitledger.models.ledger import GroupSummary, MemberBalance
from splitledger.money import Money
from splitledger.services.storage.interface import LedgerStorageInterface, LedgerUnitOfWork


logger = structlog.get_logger(__name__)


class BalanceEngine:
    """Read-only balance queries over a ledger storage backend."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    def _fold(self, uow: LedgerUnitOfWork, group_id: UUID) -> dict[UUID, Money]:
        """Net position of every user that appears in the group's ledger."""
        totals: dict[UUID, Money] = {
            membership.user_id: Money.zero()
            for membership in uow.list_memberships(group_id)
        }
        for expense in uow.list_expenses(group_id):
            totals[expense.paid_by] = totals.get(expense.paid_by, Money.zero()) + Money(expense.amount)
        for split in uow.list_group_splits(group_id):
            totals[split.user_id] = totals.get(split.user_id, Money.zero()) - Money(split.amount)
        return totals

    @staticmethod
    def _require_group(uow: LedgerUnitOfWork, group_id: UUID) -> None:
        if uow.get_group(group_id) is None:
            raise NotFoundError(f"Group not found: {group_id}")

    @staticmethod
    def _require_user(uow: LedgerUnitOfWork, user_id: UUID) -> None:
        if uow.get_user(user_id) is None:
            raise NotFoundError(f"User not found: {user_id}")

    def group_balances(self, group_id: UUID) -> list[MemberBalance]:
        """Balance of every member, in join order."""
        with self._storage.unit_of_work() as uow:
            self._require_group(uow, group_id)
            totals = self._fold(uow, group_id)
            members = [m.user_id for m in uow.list_memberships(group_id)]

        return [
            MemberBalance(user_id=user_id, balance=totals[user_id].minor_units)
            for user_id in members
        ]

    def user_balance(self, user_id: UUID, group_id: UUID) -> int:
        """A user's balance in one group; zero if they have no activity there."""
        with self._storage.unit_of_work() as uow:
            self._require_group(uow, group_id)
            self._require_user(uow, user_id)
            return self._fold(uow, group_id).get(user_id, Money.zero()).minor_units

    def user_aggregate_balance(self, user_id: UUID) -> int:
        """Sum of the user's balances over every group they belong to."""
        with self._storage.unit_of_work() as uow:
            self._require_user(uow, user_id)
            total = Money.sum(
                self._fold(uow, group.id).get(user_id, Money.zero())
                for group in uow.list_groups_for_user(user_id)
            )
        return total.minor_units

    def group_summaries(self, user_id: UUID) -> list[GroupSummary]:
        """Dashboard view: each of the user's groups with totals and the user's balance."""
        with self._storage.unit_of_work() as uow:
            self._require_user(uow, user_id)
            summaries = []
            for group in uow.list_groups_for_user(user_id):
                totals = self._fold(uow, group.id)
                summaries.append(GroupSummary(
                    group=group,
                    member_count=len(uow.list_memberships(group.id)),
                    total_expenses=Money.sum(
                        Money(expense.amount) for expense in uow.list_expenses(group.id)
                    ).minor_units,
                    user_balance=totals.get(user_id, Money.zero()).minor_units,
                ))

        logger.debug("group_summaries", user_id=str(user_id), group_count=len(summaries))
        return summaries
