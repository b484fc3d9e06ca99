"""
Balance Aggregator

Folds expenses into per-member totals for display.

DESIGN DECISION: Aggregation is read-only and deterministic.
It owns no state and never estimates: a member with no shares owes
exactly zero, and expenses in different currencies are rejected
rather than summed as raw numbers.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from splitbook.config import get_settings
from splitbook.models.money import CurrencyMismatch, Money, sum_money
from splitbook.models.receipt import Expense, ExpenseDraft, Receipt


def _common_currency(
    expenses: list[ExpenseDraft],
    currency: Optional[str] = None,
) -> str:
    """
    Currency shared by all expenses.

    The first expense decides; an empty list falls back to `currency`
    or the configured default.
    """
    if not expenses:
        return currency or get_settings().app.default_currency

    expected = expenses[0].amount.currency
    for expense in expenses[1:]:
        if expense.amount.currency != expected:
            raise CurrencyMismatch(expected, expense.amount.currency)
    return expected


def per_member_total(
    expenses: list[ExpenseDraft],
    user_id: str,
    currency: Optional[str] = None,
) -> Money:
    """
    Sum of one member's shares across the given expenses.

    Returns zero if no share names the member.

    Raises:
        CurrencyMismatch: If the expenses span more than one currency
    """
    expected = _common_currency(expenses, currency)
    return sum_money(
        (
            share.amount
            for expense in expenses
            for share in expense.shares
            if share.user_id == user_id
        ),
        expected,
    )


def all_member_totals(
    expenses: list[ExpenseDraft],
    member_ids: list[str],
    currency: Optional[str] = None,
) -> dict[str, Money]:
    """Per-member totals for every listed member, zero included."""
    expected = _common_currency(expenses, currency)
    return {
        user_id: per_member_total(expenses, user_id, expected)
        for user_id in member_ids
    }


def expense_coverage(expense: ExpenseDraft) -> Money:
    """
    Sum of an expense's shares ("allocated" in allocated vs total).

    May be below the expense amount while a split is still a draft.
    """
    return sum_money((share.amount for share in expense.shares), expense.amount.currency)


def unallocated_amount(expense: ExpenseDraft) -> Money:
    """Part of the expense amount no share covers yet (negative if over-allocated)."""
    return expense.amount.subtract(expense_coverage(expense))


class BalanceSummary(BaseModel):
    """What a receipt's split looks like, for display."""

    receipt_id: UUID
    currency: str
    receipt_total: Money
    items_total: Money
    expenses_total: Money
    allocated_total: Money
    member_totals: dict[str, Money] = Field(default_factory=dict)

    @property
    def fully_allocated(self) -> bool:
        return self.allocated_total == self.expenses_total


def summarize_receipt(
    receipt: Receipt,
    expenses: list[Expense],
    member_ids: list[str],
) -> BalanceSummary:
    """
    Build the per-member view of one receipt.

    Raises:
        CurrencyMismatch: If an expense is not in the receipt currency
    """
    currency = _common_currency(expenses, receipt.currency)
    if currency != receipt.currency:
        raise CurrencyMismatch(receipt.currency, currency)

    return BalanceSummary(
        receipt_id=receipt.id,
        currency=currency,
        receipt_total=receipt.total_amount,
        items_total=receipt.items_total,
        expenses_total=sum_money((e.amount for e in expenses), currency),
        allocated_total=sum_money((expense_coverage(e) for e in expenses), currency),
        member_totals=all_member_totals(expenses, member_ids, currency),
    )
