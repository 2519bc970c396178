"""
Core Data Models for the Split Ledger

These models define the strict schemas for every entity the ledger owns.
They are designed to:
1. Enforce type safety at runtime
2. Be immutable once built - a change is a new record, never an edit in place
3. Reference each other by id only (no nested object graphs)
4. Be serializable for storage and logging

DESIGN DECISION: Amounts are plain ints of minor units on every record.
Arithmetic happens in `splitledger.money`; records only carry values.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, StrictInt


NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Supported expense categories.

    DESIGN DECISION: Using explicit categories rather than free text keeps
    grouping and reporting consistent across members.
    """
    GENERAL = "general"
    FOOD = "food"
    TRANSPORTATION = "transportation"
    ACCOMMODATION = "accommodation"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    SHOPPING = "shopping"
    OTHER = "other"


# =============================================================================
# ENTITIES
# =============================================================================

class User(BaseModel):
    """A person known to the identity provider."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    email: str = Field(..., min_length=3, max_length=254)
    created_at: datetime = Field(default_factory=utc_now)


class Group(BaseModel):
    """A set of users sharing expenses."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=500)
    created_by: UUID
    created_at: datetime = Field(default_factory=utc_now)


class Membership(BaseModel):
    """A user's belonging to a group. Unique per (group_id, user_id)."""
    model_config = ConfigDict(frozen=True)

    group_id: UUID
    user_id: UUID
    joined_at: datetime = Field(default_factory=utc_now)


class Expense(BaseModel):
    """
    One payment event by a payer on behalf of some group members.

    CRITICAL: An Expense never exists without its full split set.
    The store writes both in the same unit of work.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    paid_by: UUID
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    amount: StrictInt = Field(..., gt=0, description="Total in minor units")
    category: ExpenseCategory = ExpenseCategory.GENERAL
    expense_date: date = Field(default_factory=date.today)

    # Bumped on every committed change; used for optimistic conflict checks
    version: int = Field(default=1, ge=1)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Split(BaseModel):
    """One participant's share of an expense."""
    model_config = ConfigDict(frozen=True)

    expense_id: UUID
    user_id: UUID
    amount: StrictInt = Field(..., ge=0, description="Share in minor units")
    position: int = Field(..., ge=0, description="Stored order within the expense")


# =============================================================================
# SPLIT REQUESTS
# =============================================================================

class SplitLine(BaseModel):
    """A computed (participant, amount) pair, before it is tied to an expense."""
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    amount: StrictInt


class EqualSplit(BaseModel):
    """Divide the total evenly; the first participants absorb the remainder."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["equal"] = "equal"


class CustomSplit(BaseModel):
    """Caller-declared amount per participant, in minor units."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["custom"] = "custom"
    amounts: dict[UUID, StrictInt]


SplitMode = Annotated[Union[EqualSplit, CustomSplit], Field(discriminator="mode")]


class ExpenseDraft(BaseModel):
    """
    An expense as requested by a caller.

    This is UNVERIFIED input. Fields are deliberately unconstrained so the
    validator can report every problem at once instead of failing on the
    first field pydantic trips over.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: UUID
    paid_by: UUID
    description: str
    # Checked by the validator, so floats and bools are reported, not coerced
    amount: Any
    category: ExpenseCategory = ExpenseCategory.GENERAL
    expense_date: date = Field(default_factory=date.today)
    participant_ids: list[UUID] = Field(default_factory=list)
    split_mode: SplitMode = Field(default_factory=EqualSplit)


# =============================================================================
# READ MODELS
# =============================================================================

class ExpenseDetail(BaseModel):
    """An expense resolved together with its splits in stored order."""

    expense: Expense
    splits: list[Split] = Field(default_factory=list)

    @property
    def split_total(self) -> int:
        return sum(split.amount for split in self.splits)


class MemberBalance(BaseModel):
    """
    Signed net position of one member.

    Positive = owed money, negative = owes money, zero = settled.
    """

    user_id: UUID
    balance: int

    @property
    def is_settled(self) -> bool:
        return self.balance == 0


class GroupSummary(BaseModel):
    """A group as seen from one member's dashboard."""

    group: Group
    member_count: int = Field(ge=1)
    total_expenses: int = Field(ge=0, description="Sum of expense amounts in the group")
    user_balance: int


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'invalid_amount', 'not_a_member', 'split_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage expense validation.

    Stage 1: Schema validation (amount, text, participants)
    Stage 2: Semantic validation (membership against the store)
    """

    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
