"""Services package."""

from splitbook.services.extraction import (
    ExtractionError,
    ExtractionFailedError,
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
    UnsupportedImageError,
)
from splitbook.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
    InMemoryAuditStorage,
    InMemoryReceiptStorage,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
)

__all__ = [
    # Extraction services
    "ExtractionError",
    "ExtractionFailedError",
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    "UnsupportedImageError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptStorage",
    "InMemoryAuditStorage",
    "InMemoryReceiptStorage",
    "NotFoundError",
    "ReceiptStorageInterface",
    "StorageError",
]
