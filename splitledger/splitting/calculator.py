"""
Split Calculator

Turns (total, participants, mode) into concrete per-participant splits.

GUARANTEE: On success the returned amounts sum to the total exactly.
There is no tolerance window and no silent correction - a custom split
that is off by one minor unit is rejected, not patched.
"""

from typing import Sequence, Union
from uuid import UUID

from splitledger.errors import (
    InvalidAmountError,
    InvalidSplitError,
    SplitMismatchError,
    ValidationError,
)
from splitledger.models.ledger import CustomSplit, EqualSplit, Split, SplitLine
from splitledger.money import Money, check_range


class SplitCalculator:
    """
    Computes split sets for new expenses and rescales existing ones.

    Stateless; membership checks belong to the ledger store, which knows
    the group. The calculator only checks what it can see.
    """

    def calculate(
        self,
        total: int,
        participants: Sequence[UUID],
        mode: Union[EqualSplit, CustomSplit],
    ) -> list[SplitLine]:
        """
        Compute the split set for a new expense.

        Args:
            total: Expense amount in minor units (> 0)
            participants: Ordered, distinct participant ids
            mode: EqualSplit or CustomSplit

        Raises:
            InvalidAmountError: total is not positive
            ValidationError: empty or duplicate participants
            SplitMismatchError: custom amounts don't add up to the total
        """
        self._check_total(total)
        self._check_participants(participants)

        if isinstance(mode, EqualSplit):
            return self._equal(total, participants)
        if isinstance(mode, CustomSplit):
            return self._custom(total, participants, mode.amounts)
        raise ValidationError(f"Unsupported split mode: {mode!r}")

    def rescale(
        self,
        splits: Sequence[Union[Split, SplitLine]],
        new_total: int,
    ) -> list[SplitLine]:
        """
        Rescale an existing split set to a new total, keeping proportions.

        Existing amounts are the weights for the largest-remainder rule, so
        an uneven split stays uneven and the result sums to new_total.
        Order is preserved.
        """
        self._check_total(new_total)
        if not splits:
            raise InvalidSplitError("Cannot rescale an empty split set")

        old_total = sum(split.amount for split in splits)
        if old_total <= 0:
            raise InvalidSplitError("Cannot rescale splits that sum to zero")

        shares = Money(new_total).allocate([split.amount for split in splits])
        return [
            SplitLine(user_id=split.user_id, amount=share.minor_units)
            for split, share in zip(splits, shares)
        ]

    # -------------------------------------------------------------------------

    def _equal(self, total: int, participants: Sequence[UUID]) -> list[SplitLine]:
        # Equal weights: every remainder ties, so the first R participants win
        base, remainder = divmod(total, len(participants))
        return [
            SplitLine(user_id=user_id, amount=base + (1 if index < remainder else 0))
            for index, user_id in enumerate(participants)
        ]

    def _custom(
        self,
        total: int,
        participants: Sequence[UUID],
        amounts: dict[UUID, int],
    ) -> list[SplitLine]:
        missing = [p for p in participants if p not in amounts]
        if missing:
            raise ValidationError(
                f"Custom split has no amount for participant(s): "
                f"{', '.join(str(p) for p in missing)}"
            )

        extra = set(amounts) - set(participants)
        if extra:
            raise ValidationError(
                f"Custom split has amounts for non-participant(s): "
                f"{', '.join(sorted(str(p) for p in extra))}"
            )

        for user_id in participants:
            amount = amounts[user_id]
            check_range(amount)
            if amount < 0:
                raise InvalidSplitError(
                    f"Split amount for {user_id} cannot be negative ({amount})"
                )

        declared = sum(amounts[p] for p in participants)
        if declared != total:
            raise SplitMismatchError(declared=declared, total=total)

        return [SplitLine(user_id=p, amount=amounts[p]) for p in participants]

    @staticmethod
    def _check_total(total: int) -> None:
        if isinstance(total, bool) or not isinstance(total, int):
            raise InvalidAmountError(f"Amount must be an integer of minor units, got {total!r}")
        check_range(total)
        if total <= 0:
            raise InvalidAmountError(f"Amount must be greater than zero, got {total}")

    @staticmethod
    def _check_participants(participants: Sequence[UUID]) -> None:
        if not participants:
            raise ValidationError("At least one participant is required")
        if len(set(participants)) != len(participants):
            raise ValidationError("Participants must be distinct")
