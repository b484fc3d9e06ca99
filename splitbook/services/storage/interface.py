"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the allocation engine decoupled from persistence

CONTRACT every implementation must honour:
- Reads are consistent with the caller's own prior writes.
- replace_expenses_atomic is all-or-nothing: a reader sees either the
  old expense set of a receipt or the new one, never a mix, and two
  concurrent replaces of one receipt do not interleave.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from splitbook.models.audit import AuditEvent
from splitbook.models.receipt import Expense, Group, GroupMember, Receipt


class ReceiptStorageInterface(ABC):
    """
    Abstract interface for group, receipt and expense storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def create_group(self, group: Group) -> Group:
        """
        Save a new group with its members.

        Raises:
            DuplicateError: If a group with this id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def find_group(self, group_id: UUID) -> Optional[Group]:
        """Retrieve a group by id, or None."""
        pass

    @abstractmethod
    async def list_group_members(self, group_id: UUID) -> list[GroupMember]:
        """
        List the members of a group.

        Returns an empty list for an unknown group.
        """
        pass

    @abstractmethod
    async def list_user_groups(self, user_id: str) -> list[Group]:
        """List the groups a user owns or belongs to, newest first."""
        pass

    @abstractmethod
    async def create_receipt(self, receipt: Receipt) -> Receipt:
        """
        Save a validated receipt with its items.

        Raises:
            DuplicateError: If a receipt with this id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def find_receipt(self, receipt_id: UUID) -> Optional[Receipt]:
        """Retrieve a receipt by id, or None."""
        pass

    @abstractmethod
    async def list_receipts(self, group_id: UUID) -> list[Receipt]:
        """List a group's receipts, newest first."""
        pass

    @abstractmethod
    async def list_expenses(self, receipt_id: UUID) -> list[Expense]:
        """List the current expenses of a receipt in their stored order."""
        pass

    @abstractmethod
    async def replace_expenses_atomic(
        self,
        receipt_id: UUID,
        expenses: list[Expense],
    ) -> list[Expense]:
        """
        Discard every expense of the receipt and install `expenses`.

        Must be a single atomic unit of work.

        Returns:
            The persisted expenses

        Raises:
            NotFoundError: If the receipt doesn't exist
            StorageError: If the write fails (prior state is kept)
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event to the log. Returns True if logged."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
