"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is a storage backend because:
1. Group members can view the shared ledger directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a household or trip group)
- No multi-request transactions. replace_expenses_atomic therefore
  rewrites the whole Expenses table in ONE values.update request under
  a per-receipt lock; the API applies a single request all-or-nothing.
- Limited query capabilities (we filter in Python)

Amounts are stored as integer minor units plus currency, never floats.
"""

import asyncio
import json
from collections import defaultdict
from datetime import date, datetime
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from splitbook.config import get_settings
from splitbook.models.audit import AuditEvent, AuditEventType, AuditSeverity
from splitbook.models.money import Money
from splitbook.models.receipt import (
    Expense,
    Group,
    GroupMember,
    Item,
    MemberRole,
    Receipt,
    Share,
)
from splitbook.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
)


GROUP_COLUMNS = ["id", "name", "description", "owner_id", "created_at"]

MEMBER_COLUMNS = ["id", "group_id", "user_id", "role"]

RECEIPT_COLUMNS = [
    "id",
    "group_id",
    "title",
    "description",
    "currency",
    "total_minor_units",
    "receipt_date",
    "uploaded_by",
    "image_url",
    "created_at",
    "items_json",
]

EXPENSE_COLUMNS = [
    "id",
    "receipt_id",
    "name",
    "currency",
    "amount_minor_units",
    "shares_json",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "actor_id",
    "description",
    "details_json",
    "error_message",
]


def _safe_getter(row: list):
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_groups_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.groups_sheet_name, GROUP_COLUMNS)

    def get_members_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.members_sheet_name, MEMBER_COLUMNS)

    def get_receipts_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.receipts_sheet_name, RECEIPT_COLUMNS)

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.expenses_sheet_name, EXPENSE_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


class GoogleSheetsReceiptStorage(ReceiptStorageInterface):
    """
    Google Sheets implementation of group/receipt/expense storage.

    One row per group, member, receipt and expense.
    Items and shares are JSON-serialized with amounts in minor units.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._expense_locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -- row conversion -------------------------------------------------------

    def _group_to_row(self, group: Group) -> list:
        return [
            str(group.id),
            group.name,
            group.description or "",
            group.owner_id,
            group.created_at.isoformat(),
        ]

    def _member_to_row(self, member: GroupMember) -> list:
        return [str(member.id), str(member.group_id), member.user_id, member.role.value]

    def _row_to_member(self, row: list) -> GroupMember:
        safe_get = _safe_getter(row)
        return GroupMember(
            id=UUID(safe_get(0)),
            group_id=UUID(safe_get(1)),
            user_id=safe_get(2),
            role=MemberRole(safe_get(3, MemberRole.MEMBER.value)),
        )

    def _receipt_to_row(self, receipt: Receipt) -> list:
        return [
            str(receipt.id),
            str(receipt.group_id),
            receipt.title,
            receipt.description or "",
            receipt.currency,
            str(receipt.total_amount.minor_units),
            receipt.receipt_date.isoformat(),
            receipt.uploaded_by,
            receipt.image_url or "",
            receipt.created_at.isoformat(),
            json.dumps([item.model_dump(mode="json") for item in receipt.items]),
        ]

    def _row_to_receipt(self, row: list) -> Receipt:
        safe_get = _safe_getter(row)
        currency = safe_get(4)
        items_json = safe_get(10)
        items = [Item.model_validate(item) for item in json.loads(items_json)] if items_json else []
        return Receipt(
            id=UUID(safe_get(0)),
            group_id=UUID(safe_get(1)),
            title=safe_get(2),
            description=safe_get(3) or None,
            currency=currency,
            total_amount=Money(minor_units=int(safe_get(5, "0")), currency=currency),
            receipt_date=date.fromisoformat(safe_get(6)),
            uploaded_by=safe_get(7),
            image_url=safe_get(8) or None,
            created_at=datetime.fromisoformat(safe_get(9)),
            items=items,
        )

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            str(expense.id),
            str(expense.receipt_id),
            expense.name,
            expense.amount.currency,
            str(expense.amount.minor_units),
            json.dumps([share.model_dump(mode="json") for share in expense.shares]),
            expense.created_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        safe_get = _safe_getter(row)
        shares_json = safe_get(5)
        shares = [Share.model_validate(s) for s in json.loads(shares_json)] if shares_json else []
        return Expense(
            id=UUID(safe_get(0)),
            receipt_id=UUID(safe_get(1)),
            name=safe_get(2),
            amount=Money(minor_units=int(safe_get(4, "0")), currency=safe_get(3)),
            shares=shares,
            created_at=datetime.fromisoformat(safe_get(6)),
        )

    # -- groups ---------------------------------------------------------------

    def _row_to_group(self, row: list, members: list[GroupMember]) -> Group:
        safe_get = _safe_getter(row)
        return Group(
            id=UUID(safe_get(0)),
            name=safe_get(1),
            description=safe_get(2) or None,
            owner_id=safe_get(3),
            created_at=datetime.fromisoformat(safe_get(4)),
            members=members,
        )

    @retry(
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_group(self, group: Group) -> Group:
        if await self.find_group(group.id) is not None:
            raise DuplicateError(f"Group already exists: {group.id}")
        try:
            # A failed earlier attempt may have written some member rows
            written = {member.id for member in await self.list_group_members(group.id)}
            missing = [m for m in group.members if m.id not in written]
            if missing:
                self._client.get_members_sheet().append_rows(
                    [self._member_to_row(m) for m in missing],
                    value_input_option="RAW",
                )
            # Group row last: a group is only visible once its members are
            self._client.get_groups_sheet().append_row(
                self._group_to_row(group),
                value_input_option="RAW",
            )
            return group
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save group: {e}")

    async def find_group(self, group_id: UUID) -> Optional[Group]:
        try:
            rows = self._client.get_groups_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get group: {e}")

        for row in rows:
            if row and row[0] == str(group_id):
                return self._row_to_group(row, await self.list_group_members(group_id))
        return None

    async def list_group_members(self, group_id: UUID) -> list[GroupMember]:
        try:
            rows = self._client.get_members_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list members: {e}")
        return [
            self._row_to_member(row)
            for row in rows
            if len(row) > 1 and row[1] == str(group_id)
        ]

    async def list_user_groups(self, user_id: str) -> list[Group]:
        try:
            group_rows = self._client.get_groups_sheet().get_all_values()[1:]
            member_rows = self._client.get_members_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list groups: {e}")

        members_by_group: defaultdict[str, list[GroupMember]] = defaultdict(list)
        for row in member_rows:
            if len(row) > 2 and row[1]:
                members_by_group[row[1]].append(self._row_to_member(row))

        groups = []
        for row in group_rows:
            if not row or not row[0]:
                continue
            members = members_by_group.get(row[0], [])
            owner_id = row[3] if len(row) > 3 else ""
            if owner_id == user_id or any(m.user_id == user_id for m in members):
                groups.append(self._row_to_group(row, members))

        # Newest first
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    # -- receipts -------------------------------------------------------------

    @retry(
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_receipt(self, receipt: Receipt) -> Receipt:
        if await self.find_receipt(receipt.id) is not None:
            raise DuplicateError(f"Receipt already exists: {receipt.id}")
        try:
            self._client.get_receipts_sheet().append_row(
                self._receipt_to_row(receipt),
                value_input_option="RAW",
            )
            return receipt
        except Exception as e:
            raise StorageError(f"Failed to save receipt: {e}")

    async def find_receipt(self, receipt_id: UUID) -> Optional[Receipt]:
        try:
            rows = self._client.get_receipts_sheet().get_all_values()[1:]
            for row in rows:
                if row and row[0] == str(receipt_id):
                    return self._row_to_receipt(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get receipt: {e}")

    async def list_receipts(self, group_id: UUID) -> list[Receipt]:
        try:
            rows = self._client.get_receipts_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list receipts: {e}")

        receipts = []
        for row in rows:
            if len(row) > 1 and row[1] == str(group_id):
                receipts.append(self._row_to_receipt(row))

        # Newest first
        receipts.sort(key=lambda r: r.created_at, reverse=True)
        return receipts

    # -- expenses -------------------------------------------------------------

    async def list_expenses(self, receipt_id: UUID) -> list[Expense]:
        try:
            rows = self._client.get_expenses_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")
        return [
            self._row_to_expense(row)
            for row in rows
            if len(row) > 1 and row[1] == str(receipt_id)
        ]

    @retry(
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def replace_expenses_atomic(
        self,
        receipt_id: UUID,
        expenses: list[Expense],
    ) -> list[Expense]:
        async with self._expense_locks[receipt_id]:
            if await self.find_receipt(receipt_id) is None:
                raise NotFoundError(f"Receipt not found: {receipt_id}")

            try:
                sheet = self._client.get_expenses_sheet()
                all_rows = sheet.get_all_values()
                kept = [
                    row for row in all_rows[1:]
                    if row and row[0] and (len(row) < 2 or row[1] != str(receipt_id))
                ]
                table = [EXPENSE_COLUMNS] + kept + [self._expense_to_row(e) for e in expenses]

                # Blank out rows that the shorter table no longer covers
                blank = [""] * len(EXPENSE_COLUMNS)
                table += [blank] * max(0, len(all_rows) - len(table))

                if len(table) > sheet.row_count:
                    sheet.add_rows(len(table) - sheet.row_count)

                # Single request: the old and new expense sets never coexist
                sheet.update(values=table, range_name="A1", value_input_option="RAW")
            except Exception as e:
                raise StorageError(f"Failed to replace expenses: {e}")

        return list(expenses)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            actor_id=safe_get(7) or None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, KeyError):
                continue  # Skip malformed rows
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._read_events(), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
