"""
Typed errors of the catalog pipeline.

Every failure aborts the current top-level operation (one import, one merge,
one query) and reaches the caller as one of these. Nothing here is retried.
"""
from typing import Optional


class CatalogError(Exception):
    """Base class, carries a human-readable message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ImportValidationError(CatalogError):
    """Malformed input at the import boundary (bad source tag, not a list, ...)."""


class StorageError(CatalogError):
    """A key-value store read or write failed."""

    def __init__(self, message: str, key: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.key = key
        self.operation = operation


class MergeError(CatalogError):
    """A stored source list exists but cannot be parsed."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class CatalogIndexError(CatalogError):
    """
    Writing the category / manufacturer indexes failed.

    The catalog projection of the same recompute may already be durable,
    so the catalog can be one recompute ahead of its indexes.
    """


class ProductNotFoundError(CatalogError):
    """No merged product is stored under the requested code."""

    def __init__(self, kod: str):
        super().__init__(f"Product '{kod}' not found")
        self.kod = kod


class OfferNotFoundError(CatalogError):
    """No offer is stored under the requested id."""

    def __init__(self, offer_id: str):
        super().__init__(f"Offer '{offer_id}' not found")
        self.offer_id = offer_id


class ImportNotFoundError(CatalogError):
    """No import status is stored under the requested id."""

    def __init__(self, import_id: str):
        super().__init__(f"Import '{import_id}' not found")
        self.import_id = import_id


class FeedParseError(CatalogError):
    """A product feed (XML / Excel) could not be parsed at all."""


class FeedDownloadError(CatalogError):
    """The vendor feed could not be downloaded."""
