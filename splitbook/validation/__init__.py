"""Receipt parse validation package."""

from splitbook.validation.parser import (
    DEFAULT_CATEGORY,
    DEFAULT_ITEM_NAME,
    CandidateItem,
    CandidateParse,
    InvalidParse,
    ParsedReceiptDraft,
    ReceiptParseValidator,
    parse_candidate_text,
    strip_code_fences,
    to_candidate,
)

__all__ = [
    "DEFAULT_CATEGORY",
    "DEFAULT_ITEM_NAME",
    "CandidateItem",
    "CandidateParse",
    "InvalidParse",
    "ParsedReceiptDraft",
    "ReceiptParseValidator",
    "parse_candidate_text",
    "strip_code_fences",
    "to_candidate",
]
