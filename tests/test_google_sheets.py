"""Tests for the Google Sheets backend against an in-process fake worksheet."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from tenacity import wait_none

from splitbook.models import AuditEventBuilder, Expense, Group, Money, Share
from splitbook.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsReceiptStorage,
    NotFoundError,
)
from splitbook.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    EXPENSE_COLUMNS,
    GROUP_COLUMNS,
    MEMBER_COLUMNS,
    RECEIPT_COLUMNS,
)


class FakeWorksheet:
    """The subset of gspread.Worksheet the backend uses."""

    def __init__(self, columns, row_count=1000):
        self.rows = [list(columns)]
        self.row_count = row_count
        self.update_calls = 0
        self.fail_appends = 0

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        if self.fail_appends:
            self.fail_appends -= 1
            raise RuntimeError("503 backend error")
        self.rows.append(list(row))

    def append_rows(self, rows, value_input_option=None):
        self.rows.extend(list(row) for row in rows)

    def add_rows(self, n):
        self.row_count += n

    def update(self, values=None, range_name=None, value_input_option=None):
        assert range_name == "A1"
        self.update_calls += 1
        self.rows = [list(row) for row in values]


class FakeSheetsClient:
    def __init__(self):
        self.groups = FakeWorksheet(GROUP_COLUMNS)
        self.members = FakeWorksheet(MEMBER_COLUMNS)
        self.receipts = FakeWorksheet(RECEIPT_COLUMNS)
        self.expenses = FakeWorksheet(EXPENSE_COLUMNS, row_count=3)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_groups_sheet(self):
        return self.groups

    def get_members_sheet(self):
        return self.members

    def get_receipts_sheet(self):
        return self.receipts

    def get_expenses_sheet(self):
        return self.expenses

    def get_audit_sheet(self):
        return self.audit


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets(client):
    return GoogleSheetsReceiptStorage(client)


def usd(minor_units: int) -> Money:
    return Money(minor_units=minor_units, currency="USD")


def expense(receipt_id, name: str, minor_units: int) -> Expense:
    return Expense(
        receipt_id=receipt_id,
        name=name,
        amount=usd(minor_units),
        shares=[Share(user_id="alice", amount=usd(minor_units))],
    )


class TestSheetsGroups:
    """Tests for group rows."""

    def test_group_round_trip(self, sheets, group):
        """Test that a group and its members come back intact."""
        asyncio.run(sheets.create_group(group))
        found = asyncio.run(sheets.find_group(group.id))
        assert found.name == group.name
        assert found.member_ids == ["alice", "bob", "carol"]

    def test_duplicate_group_is_not_retried(self, sheets, client, group):
        """Test that a duplicate fails fast without writing again."""
        asyncio.run(sheets.create_group(group))
        with pytest.raises(DuplicateError):
            asyncio.run(sheets.create_group(group))
        assert len(client.groups.rows) == 2

    def test_retry_does_not_duplicate_members(self, sheets, client, group, monkeypatch):
        """Test that a retried create writes each member row once."""
        monkeypatch.setattr(GoogleSheetsReceiptStorage.create_group.retry, "wait", wait_none())
        client.groups.fail_appends = 1

        asyncio.run(sheets.create_group(group))

        assert len(client.members.rows) == 4
        assert len(client.groups.rows) == 2
        assert asyncio.run(sheets.find_group(group.id)).member_ids == ["alice", "bob", "carol"]

    def test_list_user_groups(self, sheets, group):
        """Test listing groups by owner or membership, newest first."""
        later = Group.create(name="Ski trip", owner_id="bob").model_copy(
            update={"created_at": group.created_at + timedelta(days=1)}
        )
        asyncio.run(sheets.create_group(group))
        asyncio.run(sheets.create_group(later))

        bobs = asyncio.run(sheets.list_user_groups("bob"))
        assert [g.name for g in bobs] == ["Ski trip", "Flatmates"]
        assert bobs[1].member_ids == ["alice", "bob", "carol"]
        assert asyncio.run(sheets.list_user_groups("mallory")) == []


class TestSheetsReceipts:
    """Tests for receipt rows."""

    def test_receipt_round_trip(self, sheets, client, receipt):
        """Test that amounts survive as integer minor units."""
        asyncio.run(sheets.create_receipt(receipt))

        row = client.receipts.rows[1]
        assert row[RECEIPT_COLUMNS.index("total_minor_units")] == "1600"
        assert asyncio.run(sheets.find_receipt(receipt.id)) == receipt
        assert asyncio.run(sheets.list_receipts(receipt.group_id)) == [receipt]


class TestSheetsExpenses:
    """Tests for the single-request expense swap."""

    def test_replace_keeps_other_receipts(self, sheets, client, receipt):
        """Test that only the target receipt's rows are swapped."""
        asyncio.run(sheets.create_receipt(receipt))
        other_receipt_id = uuid4()
        client.expenses.rows.append(sheets._expense_to_row(expense(other_receipt_id, "Other", 100)))

        asyncio.run(sheets.replace_expenses_atomic(
            receipt.id,
            [expense(receipt.id, "Latte", 900), expense(receipt.id, "Bagel", 301)],
        ))
        asyncio.run(sheets.replace_expenses_atomic(receipt.id, [expense(receipt.id, "All", 1201)]))

        assert [e.name for e in asyncio.run(sheets.list_expenses(receipt.id))] == ["All"]
        assert [e.name for e in asyncio.run(sheets.list_expenses(other_receipt_id))] == ["Other"]
        assert client.expenses.update_calls == 2
        assert client.expenses.row_count >= 4

    def test_replace_unknown_receipt(self, sheets, client):
        """Test that a missing receipt is not retried or written."""
        with pytest.raises(NotFoundError):
            asyncio.run(sheets.replace_expenses_atomic(uuid4(), []))
        assert client.expenses.update_calls == 0


class TestSheetsAudit:
    """Tests for the audit sheet."""

    def test_append_and_read_back(self, client):
        """Test that audit rows parse back into events."""
        storage = GoogleSheetsAuditStorage(client)
        correlation_id = uuid4()
        asyncio.run(storage.append_event(AuditEventBuilder.parse_rejected(
            field="totalAmount", reason="missing", actor_id="alice", correlation_id=correlation_id,
        )))
        client.audit.rows.append(["not-a-uuid", "garbage"])

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert [e.details for e in events] == [{"field": "totalAmount", "reason": "missing"}]
