"""
In-Memory Storage Implementation

Reference implementation of the storage contract. Used by tests and
local runs without Google credentials.

Expense sets are swapped whole (copy-on-write) under a per-receipt
lock, so a reader never observes a half-replaced split.
"""

import asyncio
from collections import defaultdict
from typing import Optional
from uuid import UUID

from splitbook.models.audit import AuditEvent
from splitbook.models.receipt import Expense, Group, GroupMember, Receipt
from splitbook.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    ReceiptStorageInterface,
)


class InMemoryReceiptStorage(ReceiptStorageInterface):
    """Dict-backed storage. Models are immutable or copied on the way in and out."""

    def __init__(self):
        self._groups: dict[UUID, Group] = {}
        self._receipts: dict[UUID, Receipt] = {}
        self._expenses: dict[UUID, tuple[Expense, ...]] = {}
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_group(self, group: Group) -> Group:
        if group.id in self._groups:
            raise DuplicateError(f"Group already exists: {group.id}")
        self._groups[group.id] = group.model_copy(deep=True)
        return group

    async def find_group(self, group_id: UUID) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def list_group_members(self, group_id: UUID) -> list[GroupMember]:
        group = self._groups.get(group_id)
        if group is None:
            return []
        return [member.model_copy() for member in group.members]

    async def list_user_groups(self, user_id: str) -> list[Group]:
        groups = [
            g.model_copy(deep=True) for g in self._groups.values()
            if g.owner_id == user_id or user_id in g.member_ids
        ]
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def create_receipt(self, receipt: Receipt) -> Receipt:
        if receipt.id in self._receipts:
            raise DuplicateError(f"Receipt already exists: {receipt.id}")
        self._receipts[receipt.id] = receipt
        self._expenses[receipt.id] = ()
        return receipt

    async def find_receipt(self, receipt_id: UUID) -> Optional[Receipt]:
        return self._receipts.get(receipt_id)

    async def list_receipts(self, group_id: UUID) -> list[Receipt]:
        receipts = [r for r in self._receipts.values() if r.group_id == group_id]
        receipts.sort(key=lambda r: r.created_at, reverse=True)
        return receipts

    async def list_expenses(self, receipt_id: UUID) -> list[Expense]:
        return [e.model_copy(deep=True) for e in self._expenses.get(receipt_id, ())]

    async def replace_expenses_atomic(
        self,
        receipt_id: UUID,
        expenses: list[Expense],
    ) -> list[Expense]:
        async with self._locks[receipt_id]:
            if receipt_id not in self._receipts:
                raise NotFoundError(f"Receipt not found: {receipt_id}")
            snapshot = tuple(e.model_copy(deep=True) for e in expenses)
            self._expenses[receipt_id] = snapshot
        return list(expenses)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
