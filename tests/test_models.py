"""
Tests for Splitbook

Test strategy:
1. Unit tests for individual components (models, validators, engine)
2. Integration tests for flows (with in-memory storage and a fake model)
3. No real API calls in tests
"""

from datetime import date, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from splitbook.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Expense,
    ExpenseDraft,
    Group,
    GroupMember,
    InvalidReceipt,
    Item,
    MemberRole,
    Money,
    Share,
    build_item,
    build_receipt,
)


def usd(minor_units: int) -> Money:
    return Money(minor_units=minor_units, currency="USD")


class TestGroupModels:
    """Tests for groups and memberships."""

    def test_create_makes_owner_admin(self):
        """Test that the creator becomes the group admin."""
        group = Group.create(name="Trip", owner_id="alice", member_ids=["bob"])
        roles = {m.user_id: m.role for m in group.members}
        assert roles == {"alice": MemberRole.ADMIN, "bob": MemberRole.MEMBER}
        assert group.member_ids == ["alice", "bob"]

    def test_create_ignores_owner_in_member_ids(self):
        """Test that listing the owner again doesn't duplicate them."""
        group = Group.create(name="Trip", owner_id="alice", member_ids=["alice", "bob"])
        assert group.member_ids == ["alice", "bob"]

    def test_duplicate_member_rejected(self):
        """Test that a user can join a group only once."""
        group_id = uuid4()
        with pytest.raises(ValidationError):
            Group(
                id=group_id,
                name="Trip",
                owner_id="alice",
                members=[
                    GroupMember(user_id="alice", group_id=group_id),
                    GroupMember(user_id="alice", group_id=group_id),
                ],
            )

    def test_member_of_other_group_rejected(self):
        """Test that members must belong to the group."""
        with pytest.raises(ValidationError):
            Group(
                name="Trip",
                owner_id="alice",
                members=[GroupMember(user_id="alice", group_id=uuid4())],
            )

    def test_group_needs_a_member(self):
        """Test that a group cannot be empty."""
        with pytest.raises(ValidationError):
            Group(name="Trip", owner_id="alice", members=[])


class TestItemModels:
    """Tests for receipt items."""

    def test_line_total(self):
        """Test unit price times quantity."""
        item = build_item(name="Latte", unit_price=usd(450), quantity=3)
        assert item.line_total == usd(1350)

    def test_zero_quantity_rejected(self):
        """Test that quantity must be at least 1."""
        with pytest.raises(InvalidReceipt) as exc:
            build_item(name="Latte", unit_price=usd(450), quantity=0)
        assert exc.value.fields == ["quantity"]

    def test_fractional_quantity_rejected(self):
        """Test that quantity must be a whole number."""
        with pytest.raises(InvalidReceipt):
            build_item(name="Latte", unit_price=usd(450), quantity=1.5)

    def test_negative_price_rejected(self):
        """Test that negative unit prices are rejected."""
        with pytest.raises(InvalidReceipt) as exc:
            build_item(name="Latte", unit_price=usd(-1))
        assert exc.value.fields == ["unit_price"]

    def test_item_strips_whitespace(self):
        """Test that whitespace is stripped from the item name."""
        assert build_item(name="  Latte  ", unit_price=usd(1)).name == "Latte"

    def test_item_is_immutable(self):
        """Test that items cannot be modified after construction."""
        item = build_item(name="Latte", unit_price=usd(450))
        with pytest.raises(ValidationError):
            item.quantity = 2


class TestReceiptModels:
    """Tests for receipts."""

    def test_receipt_creation(self):
        """Test a valid receipt with items."""
        receipt = build_receipt(
            title="Cafe",
            total_amount=usd(1250),
            receipt_date="2024-03-01",
            group_id=uuid4(),
            uploaded_by="alice",
            items=[{"name": "Latte", "quantity": 2, "unit_price": usd(450)}],
        )
        assert receipt.currency == "USD"
        assert receipt.receipt_date == date(2024, 3, 1)
        assert receipt.items_total == usd(900)
        assert isinstance(receipt.items[0], Item)

    def test_total_may_differ_from_items(self):
        """Test that tax or tip doesn't make a receipt invalid."""
        receipt = build_receipt(
            title="Cafe",
            total_amount=usd(5000),
            receipt_date=date.today(),
            group_id=uuid4(),
            uploaded_by="alice",
            items=[build_item(name="Latte", unit_price=usd(450))],
        )
        assert receipt.total_amount != receipt.items_total

    def test_receipt_without_items(self):
        """Test that a receipt can have no items."""
        receipt = build_receipt(
            title="Taxi",
            total_amount=usd(2000),
            receipt_date=date.today(),
            group_id=uuid4(),
            uploaded_by="alice",
        )
        assert receipt.items == ()
        assert receipt.items_total == usd(0)

    def test_created_at_is_utc(self):
        """Test that creation times carry the UTC offset."""
        receipt = build_receipt(
            title="Taxi",
            total_amount=usd(2000),
            receipt_date=date.today(),
            group_id=uuid4(),
            uploaded_by="alice",
        )
        assert receipt.created_at.tzinfo == timezone.utc
        assert Group.create(name="Trip", owner_id="alice").created_at.tzinfo == timezone.utc

    def test_all_violations_reported(self):
        """Test that every invalid field is listed, with item positions."""
        with pytest.raises(InvalidReceipt) as exc:
            build_receipt(
                title="",
                total_amount=usd(-5),
                receipt_date=date.today(),
                group_id=uuid4(),
                uploaded_by="alice",
                items=[
                    {"name": "Latte", "quantity": 1, "unit_price": usd(100)},
                    {"name": "Bagel", "quantity": 0, "unit_price": usd(100)},
                ],
            )
        fields = exc.value.fields
        assert "title" in fields
        assert "total_amount" in fields
        assert "items.1.quantity" in fields

    def test_item_currency_must_match(self):
        """Test that single-currency receipts are enforced."""
        with pytest.raises(InvalidReceipt):
            build_receipt(
                title="Cafe",
                total_amount=usd(100),
                receipt_date=date.today(),
                group_id=uuid4(),
                uploaded_by="alice",
                items=[build_item(name="Latte", unit_price=Money(minor_units=100, currency="EUR"))],
            )

    def test_invalid_date_rejected(self):
        """Test that an unreadable date is a receipt error."""
        with pytest.raises(InvalidReceipt) as exc:
            build_receipt(
                title="Cafe",
                total_amount=usd(100),
                receipt_date="yesterday-ish",
                group_id=uuid4(),
                uploaded_by="alice",
            )
        assert exc.value.fields == ["receipt_date"]


class TestExpenseModels:
    """Tests for expense drafts and shares."""

    def test_negative_share_rejected(self):
        """Test that share amounts can't be negative."""
        with pytest.raises(ValidationError):
            Share(user_id="alice", amount=usd(-1))

    def test_draft_may_be_unbalanced(self):
        """Test that drafts are allowed to be incomplete."""
        draft = ExpenseDraft(name="Latte", amount=usd(900), shares=[Share(user_id="alice", amount=usd(100))])
        assert draft.shares[0].amount == usd(100)

    def test_persist(self):
        """Test turning a draft into an expense."""
        receipt_id = uuid4()
        draft = ExpenseDraft(name="Latte", amount=usd(900))
        expense = draft.persist(receipt_id)
        assert isinstance(expense, Expense)
        assert expense.receipt_id == receipt_id
        assert expense.amount == usd(900)


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.RECEIPT_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None
        assert event.timestamp.tzinfo == timezone.utc

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dict."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            description="Test event",
            actor_id="alice",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "receipt_created"
        assert log_dict["actor_id"] == "alice"
        assert "timestamp" in log_dict

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            description="Test event",
            details={"title": "Cafe"},
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "receipt_created"
        assert '"title"' in row[9]

    def test_builder_expenses_replaced(self):
        """Test AuditEventBuilder.expenses_replaced."""
        receipt_id = uuid4()
        correlation_id = uuid4()
        event = AuditEventBuilder.expenses_replaced(
            receipt_id=receipt_id,
            expense_count=3,
            actor_id="alice",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.EXPENSES_REPLACED
        assert event.entity_id == receipt_id
        assert event.correlation_id == correlation_id

    def test_builder_access_denied_is_warning(self):
        """Test that denied access is flagged."""
        event = AuditEventBuilder.access_denied(
            group_id=uuid4(),
            actor_id="mallory",
            correlation_id=uuid4(),
        )
        assert event.event_type == AuditEventType.ACCESS_DENIED
        assert event.severity == AuditSeverity.WARNING
