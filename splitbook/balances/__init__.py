"""Balance aggregation package."""

from splitbook.balances.aggregator import (
    BalanceSummary,
    all_member_totals,
    expense_coverage,
    per_member_total,
    summarize_receipt,
    unallocated_amount,
)

__all__ = [
    "BalanceSummary",
    "all_member_totals",
    "expense_coverage",
    "per_member_total",
    "summarize_receipt",
    "unallocated_amount",
]
