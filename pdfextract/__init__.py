"""
PDF Extraction Engine
=====================
Turns possibly encrypted, possibly huge PDF documents into structured
content: classified text blocks, tables, metadata and an OCR advisory,
within a configurable memory budget.

Architecture:
    - Encryption Gate: Detects encryption, grades it, unlocks with passwords
    - Mode Selector: Chooses in-memory or streaming processing
    - Page Analyzer: Groups glyphs into headings, paragraphs, list items, captions
    - Table Detector: Finds tables from whitespace-aligned columns
    - Streaming Controller: Memory-bounded, chunked traversal of large files
    - OCR Advisor: Flags image-dominant pages, estimates OCR cost
    - Orchestrator: Runs the pipeline and aggregates statistics

Version: 1.0.0
"""

__version__ = "1.0.0"

from .api import (  # noqa: E402
    check_encryption,
    extract_tables,
    get_advanced_text,
    get_extraction_stats,
    get_result,
    get_text,
    open_document,
    try_common_passwords,
)
from .config import ExtractionConfig  # noqa: E402
from .exceptions import ErrorCode, ExtractError  # noqa: E402

open = open_document

__all__ = [
    "__version__",
    "open",
    "open_document",
    "check_encryption",
    "try_common_passwords",
    "get_text",
    "get_advanced_text",
    "extract_tables",
    "get_extraction_stats",
    "get_result",
    "ExtractionConfig",
    "ErrorCode",
    "ExtractError",
]
