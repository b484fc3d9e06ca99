"""
Main Orchestrator for Splitbook

This module ties together all the components and defines the
end-to-end flows for:
1. Receipt upload (image → extract → validate → review → save)
2. Expense split (seed → edit → validate → replace atomically)
3. Group creation

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only members of a group can read or change its receipts
- No extracted data persists without validation and human review
- A split is saved whole or not at all
- Every step is audited

Domain errors are raised to the caller unchanged; the flows only add
audit records on the way through.
"""

from typing import Optional, Union
from uuid import UUID

import structlog

from splitbook.allocation import (
    AllocationEngine,
    DraftRejected,
    ReceiptNotFound,
    draft_expenses_from_items,
)
from splitbook.audit import AuditLogger, create_correlation_id
from splitbook.balances import BalanceSummary, all_member_totals, summarize_receipt
from splitbook.models.money import Money
from splitbook.models.receipt import (
    Expense,
    ExpenseDraft,
    Group,
    GroupOverview,
    InvalidReceipt,
    Receipt,
    ValidationIssue,
)
from splitbook.services.extraction import (
    ExtractionError,
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
)
from splitbook.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
    InMemoryAuditStorage,
    InMemoryReceiptStorage,
    ReceiptStorageInterface,
    StorageError,
)
from splitbook.validation import (
    CandidateParse,
    InvalidParse,
    ParsedReceiptDraft,
    ReceiptParseValidator,
)


logger = structlog.get_logger(__name__)


class AccessDeniedError(Exception):
    """The acting user is not a member of the group."""

    def __init__(self, user_id: str, group_id: UUID):
        self.user_id = user_id
        self.group_id = group_id
        super().__init__(f"User {user_id} is not a member of group {group_id}")

    def to_issue(self) -> ValidationIssue:
        return ValidationIssue(
            field="group_id",
            issue_type="access_denied",
            message="You are not a member of this group",
            severity="error",
        )


class _MembershipGuard:
    """Shared membership check for the flows."""

    def __init__(
        self,
        storage: ReceiptStorageInterface,
        audit_logger: Optional[AuditLogger],
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def _require_member(
        self,
        group_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> list[str]:
        """
        Return the group's member ids, or raise if user_id isn't one of them.
        """
        members = await self._storage.list_group_members(group_id)
        member_ids = [member.user_id for member in members]
        if user_id not in member_ids:
            if self._audit_logger:
                await self._audit_logger.log_access_denied(
                    group_id=group_id,
                    actor_id=user_id,
                    correlation_id=correlation_id,
                )
            raise AccessDeniedError(user_id, group_id)
        return member_ids

    async def _load_receipt(
        self,
        receipt_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> tuple[Receipt, list[str]]:
        receipt = await self._storage.find_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFound(receipt_id)
        member_ids = await self._require_member(receipt.group_id, user_id, correlation_id)
        return receipt, member_ids


class GroupFlow(_MembershipGuard):
    """Creates groups. The creator becomes the admin."""

    async def create_group(
        self,
        name: str,
        owner_id: str,
        description: Optional[str] = None,
        member_ids: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        correlation_id = correlation_id or create_correlation_id()

        group = Group.create(
            name=name,
            owner_id=owner_id,
            description=description,
            member_ids=member_ids,
        )
        await self._storage.create_group(group)

        if self._audit_logger:
            await self._audit_logger.log_group_created(
                group_id=group.id,
                name=group.name,
                member_count=len(group.members),
                actor_id=owner_id,
                correlation_id=correlation_id,
            )
        return group

    async def list_receipts(
        self,
        group_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Receipt]:
        correlation_id = correlation_id or create_correlation_id()
        await self._require_member(group_id, user_id, correlation_id)
        return await self._storage.list_receipts(group_id)

    async def list_groups(self, user_id: str) -> list[GroupOverview]:
        """Groups the user owns or belongs to, with member and receipt counts."""
        overviews = []
        for group in await self._storage.list_user_groups(user_id):
            receipts = await self._storage.list_receipts(group.id)
            overviews.append(GroupOverview(
                group=group,
                member_count=len(group.members),
                receipt_count=len(receipts),
            ))
        return overviews


class ReceiptUploadFlow(_MembershipGuard):
    """
    Orchestrates the receipt upload flow.

    Flow:
    1. Extract → Send image to the vision model (untrusted candidate)
    2. Validate → Normalize the candidate into a draft receipt
    3. Review → Present draft and its issues to the user (PAUSE)
    4. Save → Persist the reviewed receipt

    The system NEVER saves an extraction without step 3.
    """

    def __init__(
        self,
        storage: ReceiptStorageInterface,
        extractor: Optional[ReceiptExtractorInterface] = None,
        validator: Optional[ReceiptParseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(storage, audit_logger)
        self._extractor = extractor
        self._validator = validator or ReceiptParseValidator()

    @property
    def extractor(self) -> ReceiptExtractorInterface:
        # Built lazily: manual entry works without Gemini credentials
        if self._extractor is None:
            self._extractor = GeminiReceiptExtractor()
        return self._extractor

    async def _validate(
        self,
        payload: Union[CandidateParse, dict, str],
        group_id: UUID,
        user_id: str,
        correlation_id: UUID,
        image_url: Optional[str] = None,
    ) -> ParsedReceiptDraft:
        try:
            return self._validator.validate(
                payload,
                group_id=group_id,
                uploaded_by=user_id,
                image_url=image_url,
            )
        except InvalidParse as e:
            if self._audit_logger:
                await self._audit_logger.log_parse_rejected(
                    field=e.field,
                    reason=e.reason,
                    actor_id=user_id,
                    correlation_id=correlation_id,
                )
            raise
        except InvalidReceipt as e:
            if self._audit_logger:
                await self._audit_logger.log_receipt_rejected(
                    issues=[issue.model_dump() for issue in e.issues],
                    actor_id=user_id,
                    correlation_id=correlation_id,
                )
            raise

    async def extract_draft(
        self,
        image_bytes: bytes,
        mime_type: str,
        group_id: UUID,
        user_id: str,
        image_url: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ParsedReceiptDraft:
        """
        Extract and validate a receipt image. Nothing is saved.

        Raises:
            AccessDeniedError, ExtractionError, InvalidParse, InvalidReceipt
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._require_member(group_id, user_id, correlation_id)

        try:
            candidate = await self.extractor.extract_receipt(image_bytes, mime_type)
        except ExtractionError as e:
            if self._audit_logger:
                await self._audit_logger.log_extraction_failed(
                    error_message=str(e),
                    actor_id=user_id,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_receipt_extracted(
                item_count=len(candidate.items) if isinstance(candidate.items, list) else 0,
                mime_type=mime_type,
                actor_id=user_id,
                correlation_id=correlation_id,
            )

        return await self._validate(candidate, group_id, user_id, correlation_id, image_url)

    async def draft_from_entry(
        self,
        payload: Union[CandidateParse, dict, str],
        group_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ParsedReceiptDraft:
        """Validate a manually entered receipt with the same rules as an extraction."""
        correlation_id = correlation_id or create_correlation_id()
        await self._require_member(group_id, user_id, correlation_id)
        return await self._validate(payload, group_id, user_id, correlation_id)

    async def save_receipt(
        self,
        receipt: Receipt,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Receipt:
        """
        Persist a reviewed receipt.

        CRITICAL: Called ONLY after the user has reviewed the draft.
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._require_member(receipt.group_id, user_id, correlation_id)

        try:
            saved = await self._storage.create_receipt(receipt)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="create_receipt",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_receipt_created(
                receipt_id=saved.id,
                group_id=saved.group_id,
                title=saved.title,
                total=str(saved.total_amount),
                actor_id=user_id,
                correlation_id=correlation_id,
            )
        return saved


class ExpenseSplitFlow(_MembershipGuard):
    """
    Orchestrates splitting a receipt between group members.

    A submitted split replaces the previous one entirely.
    """

    def __init__(
        self,
        storage: ReceiptStorageInterface,
        engine: Optional[AllocationEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(storage, audit_logger)
        self._engine = engine or AllocationEngine(storage)

    async def seed_drafts(
        self,
        receipt_id: UUID,
        user_id: str,
        split_equally: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> list[ExpenseDraft]:
        """
        Starting point of a split editor.

        Resumes the saved split when the receipt has one; otherwise seeds
        one draft expense per item (split_equally applies only then).
        """
        correlation_id = correlation_id or create_correlation_id()
        receipt, member_ids = await self._load_receipt(receipt_id, user_id, correlation_id)

        saved = await self._storage.list_expenses(receipt.id)
        if saved:
            return [
                ExpenseDraft(name=e.name, amount=e.amount, shares=list(e.shares))
                for e in saved
            ]
        return draft_expenses_from_items(receipt, member_ids, split_equally=split_equally)

    async def save_split(
        self,
        receipt_id: UUID,
        drafts: list[ExpenseDraft],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Validate and store a receipt's complete split.

        Raises:
            ReceiptNotFound, AccessDeniedError, DraftRejected, StorageError
        """
        correlation_id = correlation_id or create_correlation_id()
        receipt, member_ids = await self._load_receipt(receipt_id, user_id, correlation_id)

        try:
            expenses = await self._engine.replace_expenses(
                receipt.id,
                drafts,
                member_ids=member_ids,
            )
        except DraftRejected as e:
            if self._audit_logger:
                await self._audit_logger.log_allocation_rejected(
                    receipt_id=receipt.id,
                    issue=e.to_issue().model_dump(),
                    actor_id=user_id,
                    correlation_id=correlation_id,
                )
            raise
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="replace_expenses",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_expenses_replaced(
                receipt_id=receipt.id,
                expense_count=len(expenses),
                actor_id=user_id,
                correlation_id=correlation_id,
            )
        return expenses

    async def receipt_summary(
        self,
        receipt_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> BalanceSummary:
        """Per-member totals of one receipt's saved split."""
        correlation_id = correlation_id or create_correlation_id()
        receipt, member_ids = await self._load_receipt(receipt_id, user_id, correlation_id)
        expenses = await self._storage.list_expenses(receipt.id)
        return summarize_receipt(receipt, expenses, member_ids)

    async def group_totals(
        self,
        group_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, Money]:
        """
        Per-member totals across every receipt of a group.

        Raises:
            CurrencyMismatch: If the group's receipts use different currencies
        """
        correlation_id = correlation_id or create_correlation_id()
        member_ids = await self._require_member(group_id, user_id, correlation_id)

        expenses: list[Expense] = []
        currency = None
        for receipt in await self._storage.list_receipts(group_id):
            currency = currency or receipt.currency
            expenses.extend(await self._storage.list_expenses(receipt.id))
        return all_member_totals(expenses, member_ids, currency)


def create_app_components(
    use_storage: bool = True,
) -> tuple[GroupFlow, ReceiptUploadFlow, ExpenseSplitFlow]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Falls back to in-memory storage when False or
                    when Sheets isn't configured.

    Returns:
        (group_flow, receipt_upload_flow, expense_split_flow)
    """
    storage: ReceiptStorageInterface
    audit_storage: AuditStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsReceiptStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            storage = InMemoryReceiptStorage()
            audit_storage = InMemoryAuditStorage()
    else:
        storage = InMemoryReceiptStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)

    return (
        GroupFlow(storage, audit_logger),
        ReceiptUploadFlow(storage, audit_logger=audit_logger),
        ExpenseSplitFlow(storage, audit_logger=audit_logger),
    )
