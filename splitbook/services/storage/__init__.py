"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the deployed backend; the in-memory backend serves tests
and local runs. Both honour the same atomic-replace contract.
"""

from splitbook.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
)
from splitbook.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryReceiptStorage,
)
from splitbook.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ReceiptStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryReceiptStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptStorage",
]
