"""Tests for the receipt parse validator."""

from datetime import date
from uuid import uuid4

import pytest

from splitbook.models import InvalidReceipt, Money
from splitbook.validation import (
    CandidateParse,
    InvalidParse,
    ReceiptParseValidator,
    parse_candidate_text,
    strip_code_fences,
)


@pytest.fixture
def validator():
    return ReceiptParseValidator(
        default_currency="USD",
        divergence_tolerance_percent=5,
        divergence_min_minor_units=100,
    )


def validate(validator, payload):
    return validator.validate(payload, group_id=uuid4(), uploaded_by="alice")


class TestCandidateText:
    """Tests for reading raw extractor output."""

    def test_bare_json(self):
        """Test a plain JSON object."""
        candidate = parse_candidate_text('{"title": "Cafe", "totalAmount": 12.5, "items": []}')
        assert candidate.title == "Cafe"
        assert candidate.total_amount == 12.5

    def test_fenced_json_parses_like_bare(self):
        """Test that markdown fences and chatter are stripped."""
        bare = '{"title": "Cafe", "totalAmount": 12.5, "items": []}'
        fenced = f"Here is the receipt:\n```json\n{bare}\n```\nLet me know!"
        assert parse_candidate_text(fenced) == parse_candidate_text(bare)

    def test_strip_code_fences_without_language(self):
        """Test fences with no language tag."""
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_malformed_json(self):
        """Test that broken JSON is an invalid payload."""
        with pytest.raises(InvalidParse) as exc:
            parse_candidate_text('{"title": "Cafe",')
        assert exc.value.field == "payload"
        assert exc.value.reason == "invalid"

    def test_non_object_json(self):
        """Test that a JSON array is refused."""
        with pytest.raises(InvalidParse):
            parse_candidate_text("[1, 2, 3]")

    def test_snake_case_keys(self):
        """Test that snake_case aliases are accepted."""
        candidate = CandidateParse.model_validate({"total_amount": "3.00"})
        assert candidate.total_amount == "3.00"


class TestRequiredFields:
    """Tests for fields without a default."""

    @pytest.mark.parametrize("missing", ["title", "totalAmount", "items"])
    def test_missing_required_field(self, validator, missing):
        """Test that title, totalAmount and items must be present."""
        payload = {"title": "Cafe", "totalAmount": 12.5, "items": []}
        del payload[missing]
        with pytest.raises(InvalidParse) as exc:
            validate(validator, payload)
        assert exc.value.field == missing
        assert exc.value.reason == "missing"

    def test_blank_title_is_missing(self, validator):
        """Test that an empty title counts as missing."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "  ", "totalAmount": 1, "items": []})
        assert exc.value.field == "title"

    def test_items_must_be_a_list(self, validator):
        """Test that items of the wrong shape are refused."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": "coffee"})
        assert exc.value.reason == "invalid"


class TestDefaults:
    """Tests for permissive defaults."""

    def test_cafe_item_defaults(self, validator):
        """Test an item with only a name."""
        draft = validate(validator, {"title": "Cafe", "totalAmount": 12.5, "items": [{"name": "Coffee"}]})

        item = draft.receipt.items[0]
        assert item.name == "Coffee"
        assert item.quantity == 1
        assert item.unit_price == Money(minor_units=0, currency="USD")
        assert item.category == "general"
        assert draft.receipt.total_amount == Money(minor_units=1250, currency="USD")

    def test_defaults_are_reported(self, validator):
        """Test that every default applied is visible to the reviewer."""
        draft = validate(validator, {"title": "Cafe", "totalAmount": 12.5, "items": [{}]})
        assert set(draft.defaults_applied) == {
            "currency",
            "date",
            "items.0.name",
            "items.0.quantity",
            "items.0.price",
        }
        assert draft.receipt.items[0].name == "Unknown Item"

    def test_date_defaults_to_today(self, validator):
        """Test a receipt with no date."""
        draft = validate(validator, {"title": "Cafe", "totalAmount": 1, "items": []})
        assert draft.receipt.receipt_date == date.today()

    def test_given_values_are_kept(self, validator):
        """Test that present values are not overwritten by defaults."""
        draft = validate(validator, {
            "title": "Bistro",
            "totalAmount": "€18.00",
            "currency": "eur",
            "date": "2024-02-29",
            "items": [{"name": "Soup", "quantity": "2", "unitPrice": "9.00", "category": "food"}],
        })
        receipt = draft.receipt
        assert receipt.currency == "EUR"
        assert receipt.receipt_date == date(2024, 2, 29)
        assert receipt.items[0].quantity == 2
        assert receipt.items[0].unit_price == Money(minor_units=900, currency="EUR")
        assert receipt.items[0].category == "food"
        assert draft.issues == []

    def test_thousands_separator(self, validator):
        """Test amounts like "1,234.50"."""
        draft = validate(validator, {"title": "TV", "totalAmount": "$1,234.50", "items": []})
        assert draft.receipt.total_amount.minor_units == 123450

    def test_decimal_comma_rejected(self, validator):
        """Test that "12,50" is refused rather than read as 1250."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": "12,50", "currency": "EUR", "items": []})
        assert exc.value.field == "totalAmount"
        assert exc.value.reason == "invalid"

    def test_misplaced_thousands_separator_rejected(self, validator):
        """Test that commas must group digits in threes."""
        with pytest.raises(InvalidParse):
            validate(validator, {"title": "TV", "totalAmount": "1,23,4.50", "items": []})

    def test_day_first_date(self, validator):
        """Test a non-ISO date format."""
        draft = validate(validator, {"title": "Cafe", "totalAmount": 1, "date": "31/12/2023", "items": []})
        assert draft.receipt.receipt_date == date(2023, 12, 31)


class TestUnreadableValues:
    """Tests for values that are present but can't be interpreted."""

    def test_non_numeric_price(self, validator):
        """Test price "abc"."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": [{"name": "Coffee", "price": "abc"}]})
        assert exc.value.field == "items.0.price"
        assert exc.value.reason == "invalid"

    def test_fractional_quantity(self, validator):
        """Test quantity 1.5."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": [{"name": "Coffee", "quantity": 1.5}]})
        assert exc.value.field == "items.0.quantity"

    def test_boolean_total(self, validator):
        """Test that true is not an amount."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": True, "items": []})
        assert exc.value.field == "totalAmount"

    def test_huge_total(self, validator):
        """Test that an amount beyond decimal precision is an invalid value."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1e30, "items": []})
        assert exc.value.field == "totalAmount"
        assert exc.value.reason == "invalid"

    def test_huge_item_price(self, validator):
        """Test that an out-of-range item price is an invalid value."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": [{"name": "x", "price": "1e40"}]})
        assert exc.value.field == "items.0.price"
        assert exc.value.reason == "invalid"

    def test_bad_currency(self, validator):
        """Test a currency that isn't a 3-letter code."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "currency": "dollars", "items": []})
        assert exc.value.field == "currency"

    def test_item_not_an_object(self, validator):
        """Test an item given as a bare string."""
        with pytest.raises(InvalidParse) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": ["Coffee"]})
        assert exc.value.field == "items.0"

    def test_to_issue(self):
        """Test conversion to a reviewer-facing issue."""
        issue = InvalidParse("items.0.price", "invalid", "'abc'").to_issue()
        assert issue.field == "items.0.price"
        assert issue.issue_type == "invalid"
        assert issue.severity == "error"


class TestReceiptRules:
    """Tests for readable values that break receipt rules."""

    def test_zero_quantity(self, validator):
        """Test that quantity 0 is not defaulted but rejected."""
        with pytest.raises(InvalidReceipt) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "items": [{"name": "Coffee", "quantity": 0}]})
        assert "items.0.quantity" in exc.value.fields

    def test_negative_total(self, validator):
        """Test that a negative total is rejected."""
        with pytest.raises(InvalidReceipt) as exc:
            validate(validator, {"title": "Refund", "totalAmount": -5, "items": []})
        assert "total_amount" in exc.value.fields

    def test_unknown_date_format(self, validator):
        """Test that an unreadable date is a receipt error."""
        with pytest.raises(InvalidReceipt) as exc:
            validate(validator, {"title": "Cafe", "totalAmount": 1, "date": "last tuesday", "items": []})
        assert "receipt_date" in exc.value.fields


class TestDivergence:
    """Tests for items-vs-total reporting."""

    def test_large_divergence_is_a_warning(self, validator):
        """Test that a big gap is flagged but not corrected."""
        draft = validate(validator, {
            "title": "Cafe",
            "totalAmount": 50,
            "currency": "USD",
            "date": "2024-01-01",
            "items": [{"name": "Coffee", "quantity": 1, "price": 10}],
        })
        assert [w.field for w in draft.warnings] == ["total_amount"]
        assert draft.receipt.total_amount.minor_units == 5000

    def test_tax_within_tolerance(self, validator):
        """Test that a few percent of tax passes quietly."""
        draft = validate(validator, {
            "title": "Cafe",
            "totalAmount": 104,
            "currency": "USD",
            "date": "2024-01-01",
            "items": [{"name": "Dinner", "quantity": 1, "price": 100}],
        })
        assert draft.warnings == []

    def test_small_absolute_gap_ignored(self, validator):
        """Test that cents of rounding on a small receipt aren't flagged."""
        draft = validate(validator, {
            "title": "Cafe",
            "totalAmount": 3.5,
            "currency": "USD",
            "date": "2024-01-01",
            "items": [{"name": "Coffee", "quantity": 1, "price": 3}],
        })
        assert draft.warnings == []


class TestValidateItem:
    """Tests for single item entry."""

    def test_manual_item(self, validator):
        """Test a manually entered item gets the same defaults."""
        item = validator.validate_item({"name": "Tea", "price": "2.50"}, "USD")
        assert item.quantity == 1
        assert item.unit_price.minor_units == 250
        assert item.category == "general"
