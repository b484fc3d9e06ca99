"""
Data Models Package

This package contains all Pydantic models used in Splitbook.
All data flowing through the system must conform to these schemas.
"""

from splitbook.models.money import (
    CurrencyMismatch,
    Money,
    currency_exponent,
    sum_money,
)
from splitbook.models.receipt import (
    Expense,
    ExpenseDraft,
    Group,
    GroupMember,
    GroupOverview,
    InvalidReceipt,
    Item,
    MemberRole,
    Receipt,
    Share,
    ValidationIssue,
    build_item,
    build_receipt,
)
from splitbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Money
    "CurrencyMismatch",
    "Money",
    "currency_exponent",
    "sum_money",
    # Receipt models
    "Expense",
    "ExpenseDraft",
    "Group",
    "GroupMember",
    "GroupOverview",
    "InvalidReceipt",
    "Item",
    "MemberRole",
    "Receipt",
    "Share",
    "ValidationIssue",
    "build_item",
    "build_receipt",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
