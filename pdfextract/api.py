"""
Public Interface
================
The narrow interface the CLI and document tooling use to talk to the
engine. Extraction runs once per handle, on the first content request, and
its result is cached on the handle.

Usage:
    import pdfextract

    with pdfextract.open("report.pdf") as handle:
        if pdfextract.check_encryption(handle).is_encrypted:
            pdfextract.try_common_passwords(handle, ["secret"])
        blocks = pdfextract.get_advanced_text(handle)
        tables = pdfextract.extract_tables(handle)
        stats = pdfextract.get_extraction_stats(handle)
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .document import DocumentHandle, open_document
from .encryption import EncryptionGate
from .engine import ExtractionOrchestrator
from .exceptions import EncryptedUnauthorizedError
from .models import (
    EncryptionInfo,
    ExtractionResult,
    ExtractionState,
    ExtractionStats,
    TableRegion,
    TextBlock,
)
from .ocr import OcrStrategy

logger = logging.getLogger(__name__)

__all__ = [
    "open_document",
    "check_encryption",
    "try_common_passwords",
    "get_result",
    "get_text",
    "get_advanced_text",
    "extract_tables",
    "get_extraction_stats",
]

_gate = EncryptionGate()


def check_encryption(handle: DocumentHandle) -> EncryptionInfo:
    """Encryption state of the document. Valid even when locked."""
    return _gate.detect(handle)


def try_common_passwords(
    handle: DocumentHandle,
    candidates: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Try ``candidates`` in order (the built-in common list when None) and
    return the first one that unlocks the document.
    """
    password = _gate.try_common_passwords(handle, candidates)
    if password is not None and handle.result is not None:
        # A result computed while locked is stale now
        handle.result = None
    return password


def get_result(
    handle: DocumentHandle,
    ocr_strategy: Optional[OcrStrategy] = None,
) -> ExtractionResult:
    """
    Run extraction on first use and return the cached result.

    The cache is dropped when the handle was unlocked after a failed run,
    or when a different OCR strategy is passed. Passing no strategy reuses
    whatever the cached run used.
    """
    cached = handle.result
    stale = cached is None or (
        cached.state == ExtractionState.AUTH_FAILED and not handle.is_locked
    ) or (
        ocr_strategy is not None and ocr_strategy is not handle.ocr_strategy
    )
    if not stale:
        return cached
    result = ExtractionOrchestrator(handle.config, ocr_strategy).run(handle)
    handle.ocr_strategy = ocr_strategy
    return result


def _content(handle: DocumentHandle) -> ExtractionResult:
    result = get_result(handle)
    if result.state == ExtractionState.AUTH_FAILED:
        raise EncryptedUnauthorizedError(
            handle.source, attempts=len(handle.config.password_candidates)
        )
    return result


def get_text(handle: DocumentHandle) -> str:
    """
    Plain text of every page joined with newlines.

    Raises:
        EncryptedUnauthorizedError: The document is still locked.
    """
    return _content(handle).text


def get_advanced_text(handle: DocumentHandle) -> list[TextBlock]:
    """
    Classified text blocks in page and reading order.

    Raises:
        EncryptedUnauthorizedError: The document is still locked.
    """
    return _content(handle).blocks


def extract_tables(handle: DocumentHandle) -> list[TableRegion]:
    """
    Detected tables in page order.

    Raises:
        EncryptedUnauthorizedError: The document is still locked.
    """
    return _content(handle).tables


def get_extraction_stats(handle: DocumentHandle) -> ExtractionStats:
    return get_result(handle).stats
