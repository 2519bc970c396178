"""
Tests for the two-stage expense validator.
"""

from uuid import uuid4

import pytest

from splitledger.errors import (
    InvalidAmountError,
    NotAMemberError,
    NotFoundError,
    ValidationError,
)
from splitledger.models.ledger import DESCRIPTION_MAX_LENGTH, CustomSplit, ExpenseDraft
from splitledger.validation import ExpenseValidator


@pytest.fixture
def validator():
    return ExpenseValidator(max_amount=1_000_000)


def draft_for(group, payer, participants, **overrides):
    fields = {
        "group_id": group.id,
        "paid_by": payer.id,
        "description": "Dinner",
        "amount": 9000,
        "participant_ids": [p.id for p in participants],
    }
    fields.update(overrides)
    return ExpenseDraft(**fields)


class TestSchemaStage:
    """Tests for stage 1, which needs no storage."""

    def test_valid_draft(self, validator, trip, people):
        """Test a clean draft passes stage 1."""
        result = validator.validate(draft_for(trip, people["alice"], people.values()))
        assert result.schema_valid
        assert not result.semantic_valid  # stage 2 skipped without a unit of work
        assert not result.has_errors

    @pytest.mark.parametrize("amount", [0, -5, 1_000_001])
    def test_bad_amounts(self, validator, trip, people, amount):
        """Test zero, negative and oversized amounts."""
        result = validator.validate(draft_for(trip, people["alice"], [people["alice"]], amount=amount))
        assert not result.schema_valid
        assert result.issues[0].issue_type == "invalid_amount"

    def test_description_length_limit(self, validator, trip, people):
        """Test the longest accepted description and one character more."""
        alice = people["alice"]
        longest = "x" * DESCRIPTION_MAX_LENGTH
        assert validator.validate(draft_for(trip, alice, [alice], description=longest)).schema_valid

        result = validator.validate(draft_for(trip, alice, [alice], description=longest + "x"))
        assert result.issues[0].issue_type == "too_long"

    @pytest.mark.parametrize("amount", [9000.0, True, "9000"])
    def test_amounts_that_are_not_integers(self, validator, trip, people, amount):
        """Test floats, bools and strings are reported, not coerced."""
        result = validator.validate(draft_for(trip, people["alice"], [people["alice"]], amount=amount))
        assert not result.schema_valid
        assert result.issues[0].issue_type == "invalid_amount"

    def test_reports_every_issue(self, validator, trip, people):
        """Test issues are collected, not short-circuited."""
        draft = draft_for(trip, people["alice"], [], amount=0, description="   ")
        result = validator.validate(draft)
        assert result.error_count == 3
        assert {i.field for i in result.issues} == {"amount", "description", "participant_ids"}

    def test_duplicate_participants(self, validator, trip, people):
        """Test repeated participants."""
        alice = people["alice"]
        result = validator.validate(draft_for(trip, alice, [alice, alice]))
        assert result.issues[0].issue_type == "duplicate"

    def test_zero_custom_share_is_a_warning(self, validator, trip, people):
        """Test a zero share warns without failing."""
        alice, bob = people["alice"], people["bob"]
        draft = draft_for(
            trip, alice, [alice, bob],
            split_mode=CustomSplit(amounts={alice.id: 9000, bob.id: 0}),
        )
        result = validator.validate(draft)
        assert result.schema_valid
        assert len(result.warnings) == 1

    def test_negative_custom_share(self, validator, trip, people):
        """Test a negative share is an error."""
        alice, bob = people["alice"], people["bob"]
        draft = draft_for(
            trip, alice, [alice, bob],
            split_mode=CustomSplit(amounts={alice.id: 9500, bob.id: -500}),
        )
        assert not validator.validate(draft).schema_valid


class TestSemanticStage:
    """Tests for stage 2, which checks membership in a read unit of work."""

    def test_all_members(self, validator, storage, trip, people):
        """Test a fully valid draft."""
        draft = draft_for(trip, people["alice"], people.values())
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        assert result.is_valid

    def test_outsider_participant(self, validator, storage, store, trip, people):
        """Test a participant outside the group."""
        outsider = store.register_user("Eve", "eve@example.com")
        draft = draft_for(trip, people["alice"], [people["alice"], outsider])
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        assert not result.semantic_valid
        assert result.issues[0].issue_type == "not_a_member"

    def test_outsider_actor(self, validator, storage, store, trip, people):
        """Test an acting user outside the group."""
        outsider = store.register_user("Eve", "eve@example.com")
        draft = draft_for(trip, people["alice"], [people["alice"]])
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow, actor_id=outsider.id)
        assert result.issues[0].field == "actor_id"

    def test_unknown_group(self, validator, storage, trip, people):
        """Test a draft for a group that doesn't exist."""
        draft = draft_for(trip, people["alice"], [people["alice"]], group_id=uuid4())
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        assert result.issues[0].issue_type == "not_found"

    def test_payer_not_sharing_is_info(self, validator, storage, trip, people):
        """Test a payer outside the participants is only noted."""
        draft = draft_for(trip, people["alice"], [people["bob"]])
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        assert result.is_valid
        assert result.issues[0].severity == "info"


class TestRaiseForErrors:
    """Tests for turning issues into typed exceptions."""

    def test_clean_result_does_not_raise(self, validator, trip, people):
        """Test no exception without errors."""
        result = validator.validate(draft_for(trip, people["alice"], [people["alice"]]))
        ExpenseValidator.raise_for_errors(result)

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"amount": 0}, InvalidAmountError),
            ({"description": ""}, ValidationError),
        ],
    )
    def test_schema_errors(self, validator, trip, people, overrides, error):
        """Test schema issues map to their errors."""
        result = validator.validate(draft_for(trip, people["alice"], [people["alice"]], **overrides))
        with pytest.raises(error):
            ExpenseValidator.raise_for_errors(result)

    def test_membership_error(self, validator, storage, store, trip, people):
        """Test a membership issue raises NotAMemberError."""
        outsider = store.register_user("Eve", "eve@example.com")
        draft = draft_for(trip, outsider, [outsider])
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        with pytest.raises(NotAMemberError):
            ExpenseValidator.raise_for_errors(result)

    def test_missing_group_error(self, validator, storage, trip, people):
        """Test an unknown group raises NotFoundError."""
        draft = draft_for(trip, people["alice"], [people["alice"]], group_id=uuid4())
        with storage.unit_of_work() as uow:
            result = validator.validate(draft, uow)
        with pytest.raises(NotFoundError):
            ExpenseValidator.raise_for_errors(result)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
