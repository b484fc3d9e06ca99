"""
Allocation Engine

Turns an expense amount into per-member shares and checks that a set of
shares is consistent with the amount it claims to split.

DESIGN DECISION: The checks are pure functions over their inputs.
Only replace_expenses touches storage, and it validates EVERY draft
before the storage layer is asked to swap the receipt's expenses.
One bad draft rejects the whole submission; nothing is written.

Equal split order: extra minor units go to the first members in the
order the caller lists them. 3.01 over [a, b, c] is [1.01, 1.00, 1.00].
"""

from typing import Iterable, Optional
from uuid import UUID

import structlog

from splitbook.models.money import CurrencyMismatch, Money, sum_money
from splitbook.models.receipt import (
    Expense,
    ExpenseDraft,
    Receipt,
    Share,
    ValidationIssue,
)
from splitbook.services.storage.interface import ReceiptStorageInterface


logger = structlog.get_logger(__name__)


class AllocationError(Exception):
    """Base exception for a set of shares that cannot be accepted."""

    issue_type = "invalid_allocation"
    field = "shares"

    def to_issue(self) -> ValidationIssue:
        return ValidationIssue(
            field=self.field,
            issue_type=self.issue_type,
            message=str(self),
            severity="error",
        )


class AllocationMismatch(AllocationError):
    """Shares don't add up to the expense amount."""

    issue_type = "allocation_mismatch"
    field = "amount"

    def __init__(self, expected: Money, actual: Money):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Shares add up to {actual}, expected {expected}")

    def to_issue(self) -> ValidationIssue:
        issue = super().to_issue()
        difference = self.expected.subtract(self.actual)
        if difference.is_negative:
            issue.suggested_fix = f"Remove {Money.zero(self.expected.currency).subtract(difference)} from the shares"
        else:
            issue.suggested_fix = f"Allocate the remaining {difference}"
        return issue


class UnknownMember(AllocationError):
    """A share names someone who is not in the receipt's group."""

    issue_type = "unknown_member"

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.field = f"shares.{user_id}"
        super().__init__(f"User {user_id} is not a member of this group")


class DuplicateMember(AllocationError):
    """A member appears in more than one share of the same expense."""

    issue_type = "duplicate_member"

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.field = f"shares.{user_id}"
        super().__init__(f"User {user_id} has more than one share")


class NegativeShare(AllocationError):
    """A share amount is below zero."""

    issue_type = "negative_share"

    def __init__(self, user_id: str, amount: Money):
        self.user_id = user_id
        self.amount = amount
        self.field = f"shares.{user_id}"
        super().__init__(f"Share of {user_id} is negative ({amount})")


class ReceiptNotFound(AllocationError):
    """The receipt to split does not exist."""

    issue_type = "not_found"
    field = "receipt_id"

    def __init__(self, receipt_id: UUID):
        self.receipt_id = receipt_id
        super().__init__(f"Receipt not found: {receipt_id}")


class DraftRejected(AllocationError):
    """
    One draft of a replace_expenses submission failed validation.

    Wraps the underlying failure with the position of the draft.
    """

    def __init__(self, index: int, name: str, cause: Exception):
        self.index = index
        self.name = name
        self.cause = cause
        super().__init__(f"Expense {index} ({name}): {cause}")

    def to_issue(self) -> ValidationIssue:
        if isinstance(self.cause, (AllocationError, CurrencyMismatch)):
            issue = self.cause.to_issue()
        else:
            issue = super().to_issue()
        issue.field = f"expenses.{self.index}.{issue.field}"
        return issue


def equal_split(amount: Money, member_ids: list[str]) -> list[Share]:
    """
    Split an amount equally between members.

    The first (minor_units mod n) members get one extra minor unit,
    in the order given.

    Raises:
        ValueError: If member_ids is empty
        DuplicateMember: If a member is listed twice
    """
    if not member_ids:
        raise ValueError("Cannot split between zero members")

    seen = set()
    for user_id in member_ids:
        if user_id in seen:
            raise DuplicateMember(user_id)
        seen.add(user_id)

    parts = amount.split_evenly(len(member_ids))
    return [
        Share(user_id=user_id, amount=part)
        for user_id, part in zip(member_ids, parts)
    ]


def find_share_issues(
    amount: Money,
    shares: list[Share],
    member_ids: Iterable[str],
) -> list[Exception]:
    """
    Run every share check and return all failures.

    Order: duplicates, unknown members, currency, negative amounts, sum.
    The sum check only runs when every share is in the expense currency.
    """
    problems: list[Exception] = []
    members = set(member_ids)

    seen = set()
    for share in shares:
        if share.user_id in seen:
            problems.append(DuplicateMember(share.user_id))
        seen.add(share.user_id)

    for share in shares:
        if share.user_id not in members:
            problems.append(UnknownMember(share.user_id))

    currencies_ok = True
    for share in shares:
        if share.amount.currency != amount.currency:
            problems.append(CurrencyMismatch(amount.currency, share.amount.currency))
            currencies_ok = False

    for share in shares:
        if share.amount.is_negative:
            problems.append(NegativeShare(share.user_id, share.amount))

    if currencies_ok:
        allocated = sum_money((share.amount for share in shares), amount.currency)
        if allocated != amount:
            problems.append(AllocationMismatch(expected=amount, actual=allocated))

    return problems


def validate_shares(
    amount: Money,
    shares: list[Share],
    member_ids: Iterable[str],
) -> None:
    """
    Check that shares are a valid allocation of amount.

    Raises the first failure found:
        DuplicateMember, UnknownMember, CurrencyMismatch,
        NegativeShare, AllocationMismatch
    """
    problems = find_share_issues(amount, shares, member_ids)
    if problems:
        raise problems[0]


def draft_expenses_from_items(
    receipt: Receipt,
    member_ids: list[str],
    split_equally: bool = False,
) -> list[ExpenseDraft]:
    """
    Seed one draft expense per receipt item.

    Without split_equally every member starts with a zero share,
    which is the usual starting point of a manual split.
    """
    drafts = []
    for item in receipt.items:
        amount = item.line_total
        if split_equally:
            shares = equal_split(amount, member_ids)
        else:
            shares = [Share(user_id=uid, amount=Money.zero(amount.currency)) for uid in member_ids]
        drafts.append(ExpenseDraft(name=item.name, amount=amount, shares=shares))
    return drafts


class AllocationEngine:
    """
    Validates and installs a receipt's split.

    The engine owns no state; the storage layer provides atomicity.
    """

    def __init__(self, storage: ReceiptStorageInterface):
        self._storage = storage

    def validate_drafts(
        self,
        receipt: Receipt,
        drafts: list[ExpenseDraft],
        member_ids: list[str],
    ) -> None:
        """
        Validate every draft against the receipt and its group.

        Raises:
            DraftRejected: for the first draft that fails
        """
        for index, draft in enumerate(drafts):
            try:
                if draft.amount.currency != receipt.currency:
                    raise CurrencyMismatch(receipt.currency, draft.amount.currency)
                validate_shares(draft.amount, draft.shares, member_ids)
            except (AllocationError, CurrencyMismatch) as e:
                raise DraftRejected(index, draft.name, e) from e

    async def replace_expenses(
        self,
        receipt_id: UUID,
        drafts: list[ExpenseDraft],
        member_ids: Optional[list[str]] = None,
    ) -> list[Expense]:
        """
        Replace all expenses of a receipt with the given drafts.

        All-or-nothing: every draft must pass validate_shares before
        storage is touched.

        Args:
            receipt_id: Receipt whose split is being saved
            drafts: The complete new split
            member_ids: Group member ids if the caller already has them

        Raises:
            ReceiptNotFound: If the receipt doesn't exist
            DraftRejected: If any draft is invalid (nothing written)
            StorageError: Passed through from storage (nothing written)
        """
        receipt = await self._storage.find_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFound(receipt_id)

        if member_ids is None:
            members = await self._storage.list_group_members(receipt.group_id)
            member_ids = [member.user_id for member in members]

        self.validate_drafts(receipt, drafts, member_ids)

        expenses = [draft.persist(receipt_id) for draft in drafts]
        persisted = await self._storage.replace_expenses_atomic(receipt_id, expenses)

        logger.info(
            "expenses_replaced",
            receipt_id=str(receipt_id),
            expense_count=len(persisted),
        )
        return persisted
