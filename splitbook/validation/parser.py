"""
Receipt Parse Validator

DESIGN DECISION: Output of the extraction model (or a manual form) is
UNTRUSTED. It is first read into an explicit candidate shape where every
field is optional and untyped, then normalized into domain models.
Nothing reaches a Receipt without passing through here.

POLICY:
- Missing item fields get permissive defaults: quantity 1, price 0,
  category "general", name "Unknown Item". Every default applied is
  reported as an info issue so the reviewer can see it.
- title, totalAmount and the items array have no sane default:
  their absence is an InvalidParse.
- A value that is present but cannot be read (price "abc",
  quantity 1.5) is an InvalidParse too. We do not guess.
- Commas are read only as thousands separators ("1,234.50"). A decimal
  comma ("12,50") is an InvalidParse, never a 100x amount.
- Code fences and chatter around the JSON are stripped first.
- The items total is NOT forced to match the receipt total (tax, tip,
  discounts). A large divergence is reported as a warning, never fixed.

Numbers go through Decimal(str(value)); no float arithmetic.
"""

import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from splitbook.config import get_settings
from splitbook.models.money import Money
from splitbook.models.receipt import (
    Item,
    Receipt,
    ValidationIssue,
    build_receipt,
)


DEFAULT_ITEM_NAME = "Unknown Item"
DEFAULT_CATEGORY = "general"

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*?)\s*```", re.DOTALL)
_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")
_AMOUNT_NOISE_RE = re.compile(r"[\s$€£¥₹]")
_THOUSANDS_RE = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")
_DATE_FORMATS = ["%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y"]


class InvalidParse(Exception):
    """A candidate parse is missing a required field or has an unreadable value."""

    def __init__(self, field: str, reason: str = "missing", detail: Optional[str] = None):
        self.field = field
        self.reason = reason
        message = f"Candidate parse: '{field}' is {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    def to_issue(self) -> ValidationIssue:
        return ValidationIssue(
            field=self.field,
            issue_type=self.reason,
            message=str(self),
            severity="error",
            suggested_fix=f"Enter the {self.field} manually",
        )


# =============================================================================
# UNTRUSTED SHAPES
# =============================================================================

class CandidateItem(BaseModel):
    """An item as the extractor reported it. Nothing is trusted."""
    model_config = ConfigDict(extra="ignore")

    name: Any = None
    quantity: Any = None
    price: Any = Field(
        default=None,
        validation_alias=AliasChoices("price", "unitPrice", "unit_price"),
    )
    category: Any = None


class CandidateParse(BaseModel):
    """A receipt as the extractor reported it. Nothing is trusted."""
    model_config = ConfigDict(extra="ignore")

    title: Any = None
    description: Any = None
    total_amount: Any = Field(
        default=None,
        validation_alias=AliasChoices("totalAmount", "total_amount", "total"),
    )
    currency: Any = None
    date: Any = None
    items: Any = None


class ParsedReceiptDraft(BaseModel):
    """A validated receipt awaiting human review, with everything worth a second look."""

    receipt: Receipt
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    @property
    def defaults_applied(self) -> list[str]:
        return [issue.field for issue in self.issues if issue.issue_type == "defaulted"]


# =============================================================================
# TEXT PAYLOADS
# =============================================================================

def strip_code_fences(text: str) -> str:
    """
    Remove markdown fences and surrounding chatter from a JSON payload.

    "Here you go:\\n```json\\n{...}\\n```" -> "{...}"
    """
    text = text.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start >= 0 and end > start:
        return text[start:end]
    return text


def parse_candidate_text(text: str) -> CandidateParse:
    """
    Decode a textual extractor response into a CandidateParse.

    Raises:
        InvalidParse: If the payload is not a JSON object
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidParse("payload", "missing")
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise InvalidParse("payload", "invalid", f"not JSON: {e.msg}")
    if not isinstance(data, dict):
        raise InvalidParse("payload", "invalid", "expected a JSON object")
    return CandidateParse.model_validate(data)


def to_candidate(payload: Union[CandidateParse, dict, str]) -> CandidateParse:
    """Accept a candidate in any of the shapes collaborators hand over."""
    if isinstance(payload, CandidateParse):
        return payload
    if isinstance(payload, str):
        return parse_candidate_text(payload)
    if isinstance(payload, dict):
        return CandidateParse.model_validate(payload)
    raise InvalidParse("payload", "invalid", f"unsupported type {type(payload).__name__}")


# =============================================================================
# FIELD READERS
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _read_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidParse(field, "invalid", repr(value))
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _AMOUNT_NOISE_RE.sub("", value)
        if "," in cleaned:
            # Only thousands separators; "12,50" is ambiguous
            if not _THOUSANDS_RE.match(cleaned):
                raise InvalidParse(field, "invalid", repr(value))
            cleaned = cleaned.replace(",", "")
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            raise InvalidParse(field, "invalid", repr(value))
    else:
        raise InvalidParse(field, "invalid", repr(value))

    if not result.is_finite():
        raise InvalidParse(field, "invalid", repr(value))
    return result


def _read_money(value: Any, field: str, currency: str) -> Money:
    try:
        return Money.from_decimal(_read_decimal(value, field), currency)
    except ValueError as e:
        raise InvalidParse(field, "invalid", str(e))


def _read_quantity(value: Any, field: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _read_decimal(value, field)
    if number != number.to_integral_value():
        raise InvalidParse(field, "invalid", f"quantity must be a whole number, got {value!r}")
    return int(number)


def _read_date(value: Any) -> Union[date, str]:
    """Known formats become a date; anything else is left for the model to reject."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return text


def _defaulted(field: str, default: Any) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type="defaulted",
        message=f"'{field}' was not found; using {default!r}",
        severity="info",
        suggested_fix="Check this value against the receipt",
    )


# =============================================================================
# VALIDATOR
# =============================================================================

class ReceiptParseValidator:
    """
    Normalizes a candidate parse into a Receipt with Items.

    Stateless; safe to share between concurrent requests.
    """

    def __init__(
        self,
        default_currency: Optional[str] = None,
        divergence_tolerance_percent: Optional[int] = None,
        divergence_min_minor_units: Optional[int] = None,
    ):
        app = get_settings().app
        self._default_currency = default_currency or app.default_currency
        self._tolerance_percent = (
            app.divergence_tolerance_percent
            if divergence_tolerance_percent is None
            else divergence_tolerance_percent
        )
        self._min_divergence = (
            app.divergence_min_minor_units
            if divergence_min_minor_units is None
            else divergence_min_minor_units
        )

    def _read_currency(self, value: Any, issues: list[ValidationIssue]) -> str:
        if _is_blank(value):
            issues.append(_defaulted("currency", self._default_currency))
            return self._default_currency
        if not isinstance(value, str) or not _CURRENCY_RE.match(value.strip()):
            raise InvalidParse("currency", "invalid", repr(value))
        return value.strip().upper()

    def _read_item(
        self,
        index: int,
        raw: Any,
        currency: str,
        issues: list[ValidationIssue],
    ) -> dict:
        prefix = f"items.{index}"
        if isinstance(raw, CandidateItem):
            candidate = raw
        elif isinstance(raw, dict):
            candidate = CandidateItem.model_validate(raw)
        else:
            raise InvalidParse(prefix, "invalid", "expected an object")

        if _is_blank(candidate.name):
            issues.append(_defaulted(f"{prefix}.name", DEFAULT_ITEM_NAME))
            name = DEFAULT_ITEM_NAME
        else:
            name = str(candidate.name).strip()

        if _is_blank(candidate.quantity):
            issues.append(_defaulted(f"{prefix}.quantity", 1))
            quantity = 1
        else:
            quantity = _read_quantity(candidate.quantity, f"{prefix}.quantity")

        if _is_blank(candidate.price):
            issues.append(_defaulted(f"{prefix}.price", 0))
            unit_price = Money.zero(currency)
        else:
            unit_price = _read_money(candidate.price, f"{prefix}.price", currency)

        if _is_blank(candidate.category):
            category = DEFAULT_CATEGORY
        else:
            category = str(candidate.category).strip()

        return {
            "name": name,
            "quantity": quantity,
            "unit_price": unit_price,
            "category": category,
        }

    def _divergence_issue(self, receipt: Receipt) -> Optional[ValidationIssue]:
        """Warn when items and total disagree by more than the tolerance."""
        total = receipt.total_amount.minor_units
        items_total = receipt.items_total
        diff = abs(total - items_total.minor_units)
        tolerance = total * self._tolerance_percent // 100

        if diff > tolerance and diff > self._min_divergence:
            return ValidationIssue(
                field="total_amount",
                issue_type="inconsistent",
                message=(
                    f"Total ({receipt.total_amount}) doesn't match "
                    f"the sum of items ({items_total})"
                ),
                severity="warning",
                suggested_fix="Check for tax, tip or discounts, or a misread amount",
            )
        return None

    def validate(
        self,
        payload: Union[CandidateParse, dict, str],
        group_id: UUID,
        uploaded_by: str,
        image_url: Optional[str] = None,
    ) -> ParsedReceiptDraft:
        """
        Turn a candidate parse into a draft receipt.

        Raises:
            InvalidParse: Required field absent or a value unreadable
            InvalidReceipt: Values read fine but violate receipt rules
        """
        candidate = to_candidate(payload)
        issues: list[ValidationIssue] = []

        if _is_blank(candidate.title):
            raise InvalidParse("title")
        if _is_blank(candidate.total_amount):
            raise InvalidParse("totalAmount")
        if candidate.items is None:
            raise InvalidParse("items")
        if not isinstance(candidate.items, list):
            raise InvalidParse("items", "invalid", "expected an array")

        currency = self._read_currency(candidate.currency, issues)
        total = _read_money(candidate.total_amount, "totalAmount", currency)

        if _is_blank(candidate.date):
            today = date.today()
            issues.append(_defaulted("date", today.isoformat()))
            receipt_date: Union[date, str] = today
        else:
            receipt_date = _read_date(candidate.date)

        items = [
            self._read_item(index, raw, currency, issues)
            for index, raw in enumerate(candidate.items)
        ]

        description = None if _is_blank(candidate.description) else str(candidate.description)
        receipt = build_receipt(
            title=str(candidate.title),
            total_amount=total,
            receipt_date=receipt_date,
            group_id=group_id,
            uploaded_by=uploaded_by,
            items=items,
            currency=currency,
            description=description,
            image_url=image_url,
        )

        divergence = self._divergence_issue(receipt)
        if divergence is not None:
            issues.append(divergence)

        return ParsedReceiptDraft(receipt=receipt, issues=issues)

    def validate_item(self, payload: Union[CandidateItem, dict], currency: str) -> Item:
        """Normalize a single manually entered item with the same defaults."""
        values = self._read_item(0, payload, currency, [])
        return Item(**values)
