"""Typed errors raised by the ingestion and retrieval pipelines."""

from typing import Any, Dict, Optional


class PdfQAError(Exception):
    """Base error for pdfqa; carries the failing operation and extra context."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        text = self.message
        if self.operation:
            text = f"[{self.operation}] {text}"
        if self.details:
            text = f"{text} | Details: {self.details}"
        return text


class FetchError(PdfQAError):
    """Document download failed (non-success status, network failure, timeout)."""


class ParseError(PdfQAError):
    """Downloaded bytes could not be decoded into pages."""


class EmbeddingError(PdfQAError):
    """Provider failed or returned a wrong count, wrong dimension, or non-finite values."""


class StorageError(PdfQAError):
    """A read or write against the document store failed."""


class ValidationError(PdfQAError):
    """Caller supplied invalid input (empty question, bad chunk parameters)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, operation=operation, details=details)


class AnswerError(PdfQAError):
    """The answer model call failed or returned no text."""
