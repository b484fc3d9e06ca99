"""Allocation engine package."""

from splitbook.allocation.engine import (
    AllocationEngine,
    AllocationError,
    AllocationMismatch,
    DraftRejected,
    DuplicateMember,
    NegativeShare,
    ReceiptNotFound,
    UnknownMember,
    draft_expenses_from_items,
    equal_split,
    find_share_issues,
    validate_shares,
)

__all__ = [
    "AllocationEngine",
    "AllocationError",
    "AllocationMismatch",
    "DraftRejected",
    "DuplicateMember",
    "NegativeShare",
    "ReceiptNotFound",
    "UnknownMember",
    "draft_expenses_from_items",
    "equal_split",
    "find_share_issues",
    "validate_shares",
]
