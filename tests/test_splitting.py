"""
Tests for the split calculator.
"""

from uuid import uuid4

import pytest

from splitledger.errors import (
    InvalidAmountError,
    InvalidSplitError,
    SplitMismatchError,
    ValidationError,
)
from splitledger.models.ledger import CustomSplit, EqualSplit, SplitLine
from splitledger.splitting import SplitCalculator


@pytest.fixture
def calculator():
    return SplitCalculator()


@pytest.fixture
def trio():
    return [uuid4(), uuid4(), uuid4()]


class TestEqualSplit:
    """Tests for equal splitting."""

    def test_even_division(self, calculator, trio):
        """Test 9000 over three people."""
        lines = calculator.calculate(9000, trio, EqualSplit())
        assert [line.amount for line in lines] == [3000, 3000, 3000]
        assert [line.user_id for line in lines] == trio

    def test_remainder_goes_to_first_participants(self, calculator, trio):
        """Test 10000 over three people."""
        lines = calculator.calculate(10000, trio, EqualSplit())
        assert [line.amount for line in lines] == [3334, 3333, 3333]

    def test_sum_and_spread_hold_for_many_inputs(self, calculator):
        """Test sum == total and max - min <= 1 across totals and group sizes."""
        for size in range(1, 9):
            people = [uuid4() for _ in range(size)]
            for total in (1, 2, 7, 100, 9999, 10001, 123457):
                amounts = [line.amount for line in calculator.calculate(total, people, EqualSplit())]
                assert sum(amounts) == total
                assert max(amounts) - min(amounts) <= 1

    def test_more_people_than_units(self, calculator, trio):
        """Test 2 minor units over three people."""
        lines = calculator.calculate(2, trio, EqualSplit())
        assert [line.amount for line in lines] == [1, 1, 0]

    def test_rejects_non_positive_total(self, calculator, trio):
        """Test zero and negative totals."""
        with pytest.raises(InvalidAmountError):
            calculator.calculate(0, trio, EqualSplit())
        with pytest.raises(InvalidAmountError):
            calculator.calculate(-100, trio, EqualSplit())

    def test_rejects_float_total(self, calculator, trio):
        """Test that a float total is refused."""
        with pytest.raises(InvalidAmountError):
            calculator.calculate(100.0, trio, EqualSplit())

    def test_rejects_empty_participants(self, calculator):
        """Test that at least one participant is required."""
        with pytest.raises(ValidationError):
            calculator.calculate(100, [], EqualSplit())

    def test_rejects_duplicate_participants(self, calculator, trio):
        """Test that participants must be distinct."""
        with pytest.raises(ValidationError):
            calculator.calculate(100, [trio[0], trio[0]], EqualSplit())


class TestCustomSplit:
    """Tests for caller-declared splits."""

    def test_exact_custom_split(self, calculator, trio):
        """Test a custom split that adds up."""
        amounts = {trio[0]: 5000, trio[1]: 2500, trio[2]: 2500}
        lines = calculator.calculate(10000, trio, CustomSplit(amounts=amounts))
        assert [line.amount for line in lines] == [5000, 2500, 2500]

    def test_zero_share_is_allowed(self, calculator, trio):
        """Test a participant with a zero share."""
        amounts = {trio[0]: 10000, trio[1]: 0, trio[2]: 0}
        lines = calculator.calculate(10000, trio, CustomSplit(amounts=amounts))
        assert [line.amount for line in lines] == [10000, 0, 0]

    def test_off_by_one_is_rejected(self, calculator, trio):
        """Test there is no tolerance window."""
        amounts = {trio[0]: 3333, trio[1]: 3333, trio[2]: 3333}
        with pytest.raises(SplitMismatchError) as exc_info:
            calculator.calculate(10000, trio, CustomSplit(amounts=amounts))

        error = exc_info.value
        assert error.declared == 9999
        assert error.total == 10000
        assert error.diff == -1

    def test_over_allocation_reports_positive_diff(self, calculator, trio):
        """Test diff = declared - total."""
        amounts = {trio[0]: 6000, trio[1]: 6000}
        with pytest.raises(SplitMismatchError) as exc_info:
            calculator.calculate(10000, trio[:2], CustomSplit(amounts=amounts))
        assert exc_info.value.diff == 2000

    def test_mismatch_is_an_invalid_split(self, calculator, trio):
        """Test the error hierarchy."""
        amounts = {trio[0]: 1}
        with pytest.raises(InvalidSplitError):
            calculator.calculate(2, trio[:1], CustomSplit(amounts=amounts))

    def test_negative_amount_is_rejected(self, calculator, trio):
        """Test that negative shares are refused even when the sum matches."""
        amounts = {trio[0]: 150, trio[1]: -50}
        with pytest.raises(InvalidSplitError):
            calculator.calculate(100, trio[:2], CustomSplit(amounts=amounts))

    def test_missing_participant_amount(self, calculator, trio):
        """Test a participant with no declared amount."""
        amounts = {trio[0]: 100}
        with pytest.raises(ValidationError):
            calculator.calculate(100, trio[:2], CustomSplit(amounts=amounts))

    def test_amount_for_non_participant(self, calculator, trio):
        """Test an amount declared for someone outside the participant list."""
        amounts = {trio[0]: 50, trio[2]: 50}
        with pytest.raises(ValidationError):
            calculator.calculate(100, trio[:1], CustomSplit(amounts=amounts))


class TestRescale:
    """Tests for proportional rescaling after an amount edit."""

    def test_equal_split_rescaled_up(self, calculator, trio):
        """Test 3000 x 3 rescaled to 12000."""
        splits = [SplitLine(user_id=user_id, amount=3000) for user_id in trio]
        lines = calculator.rescale(splits, 12000)
        assert [line.amount for line in lines] == [4000, 4000, 4000]

    def test_uneven_split_keeps_proportions(self, calculator, trio):
        """Test a 2:1:1 split stays 2:1:1."""
        amounts = [5000, 2500, 2500]
        splits = [SplitLine(user_id=u, amount=a) for u, a in zip(trio, amounts)]
        lines = calculator.rescale(splits, 2000)
        assert [line.amount for line in lines] == [1000, 500, 500]

    def test_rescale_preserves_order_and_sum(self, calculator, trio):
        """Test rounding units land by largest remainder and the total holds."""
        splits = [SplitLine(user_id=u, amount=a) for u, a in zip(trio, [3334, 3333, 3333])]
        lines = calculator.rescale(splits, 100)
        assert [line.user_id for line in lines] == trio
        assert sum(line.amount for line in lines) == 100
        assert [line.amount for line in lines] == [34, 33, 33]

    def test_repeated_rescales_never_drift(self, calculator, trio):
        """Test that the sum matches after a long chain of edits."""
        lines = calculator.calculate(10000, trio, EqualSplit())
        for total in (12001, 7, 999, 3, 45678, 1, 10000):
            lines = calculator.rescale(lines, total)
            assert sum(line.amount for line in lines) == total

    def test_rescale_rejects_non_positive_total(self, calculator, trio):
        """Test that the new total is checked."""
        splits = [SplitLine(user_id=trio[0], amount=100)]
        with pytest.raises(InvalidAmountError):
            calculator.rescale(splits, 0)

    def test_rescale_rejects_empty_splits(self, calculator):
        """Test that there must be something to rescale."""
        with pytest.raises(InvalidSplitError):
            calculator.rescale([], 100)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
