"""
Exception hierarchy for the book Q&A service.

Each exception carries a developer-facing message plus a details dict for
structured logs. None of this text is ever returned to HTTP callers; the
error classifier maps exceptions to fixed user messages.
"""
from __future__ import annotations

from typing import Any


class ShelfwiseError(Exception):
    """Base exception for all service errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ShelfwiseError):
    """Raised at startup for invalid settings or when no model provider is usable."""


class InvalidRequestError(ShelfwiseError):
    """Raised when a chat request lacks a document id or question."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class DocumentNotFoundError(ShelfwiseError):
    """Raised when a document id is not in the registry or its file is missing."""

    def __init__(self, document_id: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["document_id"] = document_id
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}", details)


class ExtractionError(ShelfwiseError):
    """Raised when text cannot be extracted from a stored document."""

    def __init__(self, source: str, reason: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["source"] = source
        details["reason"] = reason
        super().__init__(f"Text extraction failed for {source}: {reason}", details)


class EmptyResponseError(ShelfwiseError):
    """Raised when a provider returns no usable text."""
