"""
Core Data Models for Splitbook

These models define the strict schemas for receipts, groups and expenses.
They are designed to:
1. Enforce type safety at runtime
2. Report every violated field at once (forms need all errors together)
3. Be serializable for storage and logging without losing precision

DESIGN DECISION: Amounts are Money (integer minor units), never floats.
A receipt's total is NOT required to equal the sum of its items:
tax, tip and discounts legitimately make them differ.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from splitbook.models.money import Money, sum_money


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class MemberRole(str, Enum):
    """Role of a user inside a group."""
    ADMIN = "admin"
    MEMBER = "member"


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue, addressable to one field."""

    field: str = Field(
        ...,
        description="Field with the issue (dotted path, e.g. items.0.quantity)"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_member')"
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
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class InvalidReceipt(Exception):
    """
    Receipt or item construction failed.

    Carries every violated field, not just the first one.
    """

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        fields = ", ".join(issue.field for issue in issues)
        super().__init__(f"Invalid receipt: {fields}")

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]

    @classmethod
    def from_validation_error(cls, error: ValidationError) -> "InvalidReceipt":
        issues = []
        for err in error.errors():
            field = ".".join(str(part) for part in err["loc"]) or "receipt"
            issues.append(ValidationIssue(
                field=field,
                issue_type=err["type"],
                message=err["msg"],
                severity="error",
            ))
        return cls(issues)


def _require_non_negative(value: Money) -> Money:
    if value.is_negative:
        raise ValueError("Amount cannot be negative")
    return value


NonNegativeMoney = Annotated[Money, AfterValidator(_require_non_negative)]


# =============================================================================
# GROUPS
# =============================================================================

class GroupMember(BaseModel):
    """Membership of a user in a group. Members are the eligible share recipients."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    group_id: UUID
    role: MemberRole = MemberRole.MEMBER


class Group(BaseModel):
    """A set of users who share receipts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    owner_id: str = Field(..., min_length=1)
    members: list[GroupMember] = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode='after')
    def validate_members(self) -> 'Group':
        user_ids = [member.user_id for member in self.members]
        if len(user_ids) != len(set(user_ids)):
            raise ValueError("A user can only be a member of a group once")
        if any(member.group_id != self.id for member in self.members):
            raise ValueError("Every member must belong to this group")
        return self

    @classmethod
    def create(
        cls,
        name: str,
        owner_id: str,
        description: Optional[str] = None,
        member_ids: Optional[list[str]] = None,
    ) -> "Group":
        """New group with the owner as its admin, plus any extra members."""
        group_id = uuid4()
        members = [GroupMember(user_id=owner_id, group_id=group_id, role=MemberRole.ADMIN)]
        for user_id in member_ids or []:
            if user_id != owner_id:
                members.append(GroupMember(user_id=user_id, group_id=group_id))
        return cls(
            id=group_id,
            name=name,
            description=description,
            owner_id=owner_id,
            members=members,
        )

    @property
    def member_ids(self) -> list[str]:
        return [member.user_id for member in self.members]


class GroupOverview(BaseModel):
    """A group as listed on a member's dashboard."""

    group: Group
    member_count: int = Field(..., ge=0)
    receipt_count: int = Field(..., ge=0)


# =============================================================================
# RECEIPTS
# =============================================================================

class Item(BaseModel):
    """One purchased line on a receipt. Immutable once attached."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(default=1, ge=1, strict=True)
    unit_price: NonNegativeMoney
    category: Optional[str] = Field(default=None, max_length=50)

    @property
    def line_total(self) -> Money:
        return self.unit_price.scale(self.quantity)


class Receipt(BaseModel):
    """
    The canonical record of what was purchased.

    Created once, from a validated parse or manual entry.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    total_amount: NonNegativeMoney
    currency: str = Field(..., pattern="^[A-Z]{3}$")
    receipt_date: date
    items: tuple[Item, ...] = Field(default_factory=tuple)
    group_id: UUID
    uploaded_by: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator('currency', mode='before')
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode='after')
    def validate_currencies(self) -> 'Receipt':
        """Single-currency receipts only."""
        mismatched = [
            str(index)
            for index, item in enumerate(self.items)
            if item.unit_price.currency != self.currency
        ]
        if self.total_amount.currency != self.currency:
            raise ValueError(
                f"Total is in {self.total_amount.currency} but receipt currency is {self.currency}"
            )
        if mismatched:
            raise ValueError(
                f"Items {', '.join(mismatched)} are not priced in {self.currency}"
            )
        return self

    @property
    def items_total(self) -> Money:
        return sum_money((item.line_total for item in self.items), self.currency)


def build_item(
    name: str,
    unit_price: Money,
    quantity: int = 1,
    category: Optional[str] = None,
) -> Item:
    """Construct an Item, raising InvalidReceipt with all violations."""
    try:
        return Item(name=name, quantity=quantity, unit_price=unit_price, category=category)
    except ValidationError as e:
        raise InvalidReceipt.from_validation_error(e)


def build_receipt(
    title: str,
    total_amount: Money,
    receipt_date: Any,
    group_id: UUID,
    uploaded_by: str,
    items: Optional[list[Any]] = None,
    currency: Optional[str] = None,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Receipt:
    """
    Construct a Receipt from form or parse values.

    `items` may hold Item objects or plain dicts; nested item errors are
    reported with their position (items.0.quantity). `receipt_date` may be
    a date or an ISO string. Currency defaults to the total's currency.

    Raises:
        InvalidReceipt: listing every violated field
    """
    if currency is None and isinstance(total_amount, Money):
        currency = total_amount.currency
    try:
        return Receipt(
            title=title,
            description=description,
            total_amount=total_amount,
            currency=currency,
            receipt_date=receipt_date,
            items=items or [],
            group_id=group_id,
            uploaded_by=uploaded_by,
            image_url=image_url,
        )
    except ValidationError as e:
        raise InvalidReceipt.from_validation_error(e)


# =============================================================================
# EXPENSES
# =============================================================================

class Share(BaseModel):
    """One member's allocated portion of an expense."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    amount: NonNegativeMoney


class ExpenseDraft(BaseModel):
    """
    An expense not yet validated or persisted.

    Shares may not cover the amount yet while a split is in progress.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Money
    shares: list[Share] = Field(default_factory=list)

    def persist(self, receipt_id: UUID) -> "Expense":
        return Expense(
            receipt_id=receipt_id,
            name=self.name,
            amount=self.amount,
            shares=list(self.shares),
        )


class Expense(ExpenseDraft):
    """
    A persisted expense of a receipt.

    Invariant: sum(shares.amount) == amount, checked by the allocation
    engine before an expense is stored.
    """

    id: UUID = Field(default_factory=uuid4)
    receipt_id: UUID
    created_at: datetime = Field(default_factory=_utcnow)
