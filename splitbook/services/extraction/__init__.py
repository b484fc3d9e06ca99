"""Receipt extraction services."""

from splitbook.services.extraction.gemini_service import (
    EXTRACTION_PROMPT,
    ExtractionError,
    ExtractionFailedError,
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
    UnsupportedImageError,
)

__all__ = [
    "EXTRACTION_PROMPT",
    "ExtractionError",
    "ExtractionFailedError",
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    "UnsupportedImageError",
]
