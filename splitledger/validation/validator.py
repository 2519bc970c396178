"""
Two-Stage Expense Validation

DESIGN DECISION: A new expense request is validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Amount is a positive integer of minor units within the configured limit
- Description is present and not too long
- Participants are present and distinct
- This catches malformed requests without touching storage

STAGE 2 - SEMANTIC VALIDATION:
- Group exists
- Payer, acting user and every participant are members of the group
- This needs a read unit of work on the ledger

WHY TWO STAGES:
1. Separation of concerns (structural vs relational)
2. Better error messages (know exactly what kind of issue)
3. Can skip stage 2 if stage 1 fails
4. Stage 2 needs storage, stage 1 does not

IMPORTANT: Validation NEVER fixes anything. It reports every issue it
finds, then `raise_for_errors` turns the first error into a typed exception.
"""

from typing import Optional
from uuid import UUID

from splitledger.config import get_settings
from splitledger.errors import (
    InvalidAmountError,
    InvalidSplitError,
    NotAMemberError,
    NotFoundError,
    ValidationError,
)
from splitledger.models.ledger import (
    DESCRIPTION_MAX_LENGTH,
    CustomSplit,
    ExpenseDraft,
    ValidationIssue,
    ValidationResult,
)
from splitledger.services.storage.interface import LedgerUnitOfWork


# issue_type -> exception raised for it
ISSUE_ERRORS = {
    "invalid_amount": InvalidAmountError,
    "invalid_split": InvalidSplitError,
    "not_a_member": NotAMemberError,
    "not_found": NotFoundError,
}


class ExpenseValidator:
    """
    Validates expense requests through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (needs a unit of work)
    """

    def __init__(self, max_amount: Optional[int] = None):
        """
        Initialize validator.

        Args:
            max_amount: Largest accepted amount in minor units.
                        Defaults to the configured limit.
        """
        self._max_amount = max_amount or get_settings().app.max_amount_minor_units

    @property
    def max_amount(self) -> int:
        return self._max_amount

    def check_amount(self, amount: object, field: str = "amount") -> list[ValidationIssue]:
        """Issues for a single amount; empty when it is acceptable."""
        if isinstance(amount, bool) or not isinstance(amount, int):
            return [ValidationIssue(
                field=field,
                issue_type="invalid_amount",
                message=f"Amount must be a whole number of minor units, got {amount!r}",
                severity="error",
            )]
        if amount <= 0:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_amount",
                message="Amount must be greater than zero",
                severity="error",
            )]
        if amount > self._max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_amount",
                message=f"Amount {amount} exceeds the maximum of {self._max_amount} minor units",
                severity="error",
            )]
        return []

    def check_description(self, description: str) -> list[ValidationIssue]:
        text = (description or "").strip()
        if not text:
            return [ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            )]
        if len(text) > DESCRIPTION_MAX_LENGTH:
            return [ValidationIssue(
                field="description",
                issue_type="too_long",
                message=f"Description is longer than {DESCRIPTION_MAX_LENGTH} characters",
                severity="error",
            )]
        return []

    def _validate_schema(
        self,
        draft: ExpenseDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        issues.extend(self.check_amount(draft.amount))
        issues.extend(self.check_description(draft.description))

        if not draft.participant_ids:
            issues.append(ValidationIssue(
                field="participant_ids",
                issue_type="missing",
                message="At least one participant is required",
                severity="error",
            ))
        elif len(set(draft.participant_ids)) != len(draft.participant_ids):
            issues.append(ValidationIssue(
                field="participant_ids",
                issue_type="duplicate",
                message="Participants must be distinct",
                severity="error",
            ))

        if isinstance(draft.split_mode, CustomSplit):
            for user_id, amount in draft.split_mode.amounts.items():
                if amount < 0:
                    issues.append(ValidationIssue(
                        field=f"split_mode.amounts[{user_id}]",
                        issue_type="invalid_split",
                        message=f"Split amount for {user_id} cannot be negative",
                        severity="error",
                    ))
                elif amount == 0:
                    issues.append(ValidationIssue(
                        field=f"split_mode.amounts[{user_id}]",
                        issue_type="zero_share",
                        message=f"Participant {user_id} has a zero share",
                        severity="warning",
                    ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: ExpenseDraft,
        uow: LedgerUnitOfWork,
        actor_id: Optional[UUID],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if uow.get_group(draft.group_id) is None:
            issues.append(ValidationIssue(
                field="group_id",
                issue_type="not_found",
                message=f"Group not found: {draft.group_id}",
                severity="error",
            ))
            return False, issues

        def require_member(user_id: UUID, field: str, role: str) -> None:
            if uow.get_membership(draft.group_id, user_id) is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_a_member",
                    message=f"{role} {user_id} is not a member of this group",
                    severity="error",
                ))

        if actor_id is not None and actor_id != draft.paid_by:
            require_member(actor_id, "actor_id", "Acting user")
        require_member(draft.paid_by, "paid_by", "Payer")
        for user_id in draft.participant_ids:
            require_member(user_id, "participant_ids", "Participant")

        if draft.paid_by not in draft.participant_ids:
            issues.append(ValidationIssue(
                field="paid_by",
                issue_type="payer_not_sharing",
                message="Payer is not among the participants and pays the whole amount for others",
                severity="info",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        draft: ExpenseDraft,
        uow: Optional[LedgerUnitOfWork] = None,
        actor_id: Optional[UUID] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            draft: The requested expense
            uow: Read unit of work for membership checks.
                 If None, only stage 1 runs.
            actor_id: Authenticated caller, checked for membership too

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid and uow is not None:
            semantic_valid, semantic_issues = self._validate_semantic(draft, uow, actor_id)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    @staticmethod
    def raise_for_errors(result: ValidationResult) -> None:
        """Raise the typed error for the first error-level issue, if any."""
        errors = [issue for issue in result.issues if issue.severity == "error"]
        if not errors:
            return

        first = errors[0]
        error_class = ISSUE_ERRORS.get(first.issue_type, ValidationError)
        message = "; ".join(issue.message for issue in errors)
        raise error_class(message)
