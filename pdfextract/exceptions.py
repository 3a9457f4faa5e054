"""
Extraction Errors
=================
Error taxonomy for the PDF extraction engine.

Exception Hierarchy:
    ExtractError (base)
    ├── InvalidFormatError
    │   ├── DocumentNotFoundError
    │   └── UnsupportedFormatError
    ├── EncryptedUnauthorizedError
    ├── CorruptedStreamError
    ├── MemoryLimitExceededError
    ├── OcrUnavailableError
    └── ExtractionTimeoutError

Every error carries an ``ErrorCode`` and a ``user_message`` that tells the
user what to do about it. ``TABLE_LOW_CONFIDENCE`` is a code only: discarded
tables are logged, never raised.

Usage:
    try:
        text = get_text(handle)
    except EncryptedUnauthorizedError as e:
        print(e.user_message)
    except ExtractError as e:
        print(f"[{e.code.value}] {e}")
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable codes reported in results, stats and batch summaries."""
    INVALID_FORMAT = "invalid_format"
    DOCUMENT_NOT_FOUND = "document_not_found"
    ENCRYPTED_UNAUTHORIZED = "encrypted_unauthorized"
    CORRUPTED_STREAM = "corrupted_stream"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    TABLE_LOW_CONFIDENCE = "table_low_confidence"
    OCR_UNAVAILABLE = "ocr_unavailable"
    TIMEOUT = "timeout"


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_FORMAT: (
        "The file is not a readable PDF document. Check that it is not "
        "truncated or of another format."
    ),
    ErrorCode.DOCUMENT_NOT_FOUND: (
        "The file does not exist. Check the path and try again."
    ),
    ErrorCode.ENCRYPTED_UNAUTHORIZED: (
        "The document requires a password. Supply the correct password "
        "with --password."
    ),
    ErrorCode.CORRUPTED_STREAM: (
        "The document is damaged part-way through; the pages read before "
        "the damage were kept."
    ),
    ErrorCode.MEMORY_LIMIT_EXCEEDED: (
        "The file is too large for the available memory. Raise the memory "
        "limit or lower the chunk size."
    ),
    ErrorCode.TABLE_LOW_CONFIDENCE: (
        "A table-like region was found but its columns were too irregular "
        "to report."
    ),
    ErrorCode.OCR_UNAVAILABLE: (
        "The document looks scanned but no OCR engine is available; "
        "image-only pages have no text."
    ),
    ErrorCode.TIMEOUT: (
        "The document took too long to process. Raise the timeout or "
        "process it on its own."
    ),
}


class ExtractError(Exception):
    """
    Base exception for all extraction errors.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable error description.
        details: Additional technical details (optional).
        path: Source document, when known.
    """

    code: ErrorCode = ErrorCode.INVALID_FORMAT

    def __init__(
        self,
        message: str = "An extraction error occurred",
        details: Optional[str] = None,
        path: Optional[str] = None,
    ):
        self.message = message
        self.details = details
        self.path = path

        full_message = message
        if path:
            full_message = f"{full_message} [{path}]"
        if details:
            full_message = f"{full_message} | Details: {details}"

        super().__init__(full_message)

    @property
    def user_message(self) -> str:
        """Actionable message suitable for end users."""
        return USER_MESSAGES[self.code]


class InvalidFormatError(ExtractError):
    """Raised when the input cannot be parsed as a PDF. Fatal for the file."""

    code = ErrorCode.INVALID_FORMAT

    def __init__(
        self,
        message: str = "Unparsable document structure",
        details: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message, details, path)


class DocumentNotFoundError(InvalidFormatError):
    """Raised when the source path does not exist."""

    code = ErrorCode.DOCUMENT_NOT_FOUND

    def __init__(self, path: str):
        super().__init__(message="Document not found", path=path)


class UnsupportedFormatError(InvalidFormatError):
    """Raised for recognised documents of a format this engine does not open."""

    def __init__(self, format_name: str, path: Optional[str] = None):
        self.format_name = format_name
        super().__init__(
            message=f"Unsupported document format: {format_name}",
            path=path,
        )


class EncryptedUnauthorizedError(ExtractError):
    """
    Raised when no candidate password unlocked the document.

    Content extraction is impossible; metadata is still returned.
    """

    code = ErrorCode.ENCRYPTED_UNAUTHORIZED

    def __init__(
        self,
        path: Optional[str] = None,
        attempts: int = 0,
    ):
        self.attempts = attempts
        details = f"{attempts} candidate password(s) tried" if attempts else None
        super().__init__(
            message="Document is encrypted and no password was accepted",
            details=details,
            path=path,
        )


class CorruptedStreamError(ExtractError):
    """
    Raised when the document fails part-way through extraction.

    Attributes:
        page_index: 0-based page at which the failure occurred.
        original_error: Underlying error from the PDF library.
    """

    code = ErrorCode.CORRUPTED_STREAM

    def __init__(
        self,
        page_index: Optional[int] = None,
        original_error: Optional[BaseException] = None,
        path: Optional[str] = None,
    ):
        self.page_index = page_index
        self.original_error = original_error
        where = f" at page index {page_index}" if page_index is not None else ""
        super().__init__(
            message=f"Document stream failed{where}",
            details=str(original_error) if original_error else None,
            path=path,
        )


class MemoryLimitExceededError(ExtractError):
    """Raised when an allocation would break the configured memory budget."""

    code = ErrorCode.MEMORY_LIMIT_EXCEEDED

    def __init__(
        self,
        requested_bytes: int,
        limit_bytes: int,
        in_use_bytes: int = 0,
    ):
        self.requested_bytes = requested_bytes
        self.limit_bytes = limit_bytes
        self.in_use_bytes = in_use_bytes
        super().__init__(
            message="Memory limit exceeded",
            details=(
                f"requested={requested_bytes} in_use={in_use_bytes} "
                f"limit={limit_bytes}"
            ),
        )


class OcrUnavailableError(ExtractError):
    """Advisory: OCR would help but no engine is available or it failed."""

    code = ErrorCode.OCR_UNAVAILABLE

    def __init__(self, details: Optional[str] = None):
        super().__init__(message="OCR engine unavailable", details=details)


class ExtractionTimeoutError(ExtractError):
    """Raised inside a worker when its document exceeded the batch timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, timeout: float, path: Optional[str] = None):
        self.timeout = timeout
        super().__init__(
            message=f"Extraction timed out after {timeout:g}s",
            path=path,
        )
