"""
Document Handle
===============
Opens PDF sources with PyMuPDF (fitz) and owns the decoded document for the
lifetime of one extraction call.

The engine works on a closed set of document formats. Only PDF is opened
here; Word, PowerPoint and Excel files are recognised so callers get a
precise error instead of a parser failure.
"""

from __future__ import annotations

import io
import logging
import os
import zipfile
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import fitz  # PyMuPDF

from .config import ExtractionConfig
from .exceptions import (
    DocumentNotFoundError,
    InvalidFormatError,
    UnsupportedFormatError,
)
from .models import DocumentMetadata, EncryptionInfo

if TYPE_CHECKING:
    from .models import ExtractionResult
    from .ocr import OcrStrategy

logger = logging.getLogger(__name__)

Source = Union[str, os.PathLike, bytes, bytearray, memoryview]

_PDF_MAGIC = b"%PDF-"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ZIP_MAGIC = b"PK\x03\x04"
# The PDF header may be preceded by junk; readers scan the first KiB.
_HEADER_SCAN_BYTES = 1024


class DocumentFormat(str, Enum):
    """Document formats known to the document tooling."""
    WORD = "word"
    POWERPOINT = "powerpoint"
    EXCEL = "excel"
    PDF = "pdf"


_EXTENSIONS = {
    ".pdf": DocumentFormat.PDF,
    ".docx": DocumentFormat.WORD,
    ".doc": DocumentFormat.WORD,
    ".pptx": DocumentFormat.POWERPOINT,
    ".ppt": DocumentFormat.POWERPOINT,
    ".xlsx": DocumentFormat.EXCEL,
    ".xls": DocumentFormat.EXCEL,
}

_OOXML_PARTS = (
    ("word/", DocumentFormat.WORD),
    ("ppt/", DocumentFormat.POWERPOINT),
    ("xl/", DocumentFormat.EXCEL),
)


def detect_format(data: bytes, name: Optional[str] = None) -> Optional[DocumentFormat]:
    """
    Identify a document's format from its leading bytes.

    Args:
        data: The document bytes (the first few KiB are enough for
              PDF/OLE, OOXML needs the whole archive).
        name: Optional file name used as a tie-breaker.

    Returns:
        The detected format, or None when nothing matched.
    """
    if _PDF_MAGIC in data[:_HEADER_SCAN_BYTES]:
        return DocumentFormat.PDF

    ext_format = _EXTENSIONS.get(Path(name).suffix.lower()) if name else None

    if data.startswith(_ZIP_MAGIC):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                names = zf.namelist()
        except zipfile.BadZipFile:
            return ext_format
        for prefix, fmt in _OOXML_PARTS:
            if any(n.startswith(prefix) for n in names):
                return fmt
        return ext_format

    if data.startswith(_OLE_MAGIC):
        return ext_format

    return ext_format if ext_format != DocumentFormat.PDF else None


def parse_pdf_date(value: Optional[str]) -> Optional[str]:
    """Normalise a PDF date (``D:YYYYMMDDHHmmSS...``) to ``YYYY-MM-DD``."""
    if not value or not value.startswith("D:") or len(value) < 10:
        return None
    digits = value[2:]
    try:
        year, month, day = int(digits[0:4]), int(digits[4:6]), int(digits[6:8])
    except ValueError:
        return None
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


class DocumentHandle:
    """
    Opaque reference to a parsed document.

    Owns the fitz document (and, for in-memory sources, its bytes) until
    ``close()``. Usable as a context manager.
    """

    def __init__(
        self,
        document: fitz.Document,
        source: str,
        size_bytes: int,
        config: Optional[ExtractionConfig] = None,
        data: Optional[bytes] = None,
    ):
        self._doc = document
        self._data = data
        self.source = source
        self.size_bytes = size_bytes
        self.config = config or ExtractionConfig()

        # Filled in by the encryption gate and the orchestrator
        self.encryption: Optional[EncryptionInfo] = None
        self.password: Optional[str] = None
        self.result: Optional["ExtractionResult"] = None
        self.ocr_strategy: Optional["OcrStrategy"] = None

    def __enter__(self) -> "DocumentHandle":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<DocumentHandle {self.source!r} {state}>"

    @property
    def closed(self) -> bool:
        return self._doc is None

    @property
    def document(self) -> fitz.Document:
        if self._doc is None:
            raise ValueError(f"Document handle is closed: {self.source}")
        return self._doc

    @property
    def is_locked(self) -> bool:
        """True while the document needs a password that was not supplied."""
        return bool(self.document.is_encrypted)

    @property
    def page_count(self) -> int:
        if not self.is_locked:
            return self.document.page_count
        return _page_tree_count(self.document)

    def load_page(self, page_index: int) -> fitz.Page:
        return self.document.load_page(page_index)

    def close(self):
        if self._doc is not None:
            self._doc.close()
            self._doc = None
            self._data = None
            logger.debug(f"Closed document: {self.source}")


def open_document(
    source: Source,
    config: Optional[ExtractionConfig] = None,
) -> DocumentHandle:
    """
    Open a PDF from a path or from bytes.

    Raises:
        DocumentNotFoundError: If the path does not exist.
        UnsupportedFormatError: If the source is a Word/PowerPoint/Excel file.
        InvalidFormatError: If the source cannot be parsed as a PDF.
    """
    config = config or ExtractionConfig()

    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        name = "<bytes>"
        head = data
        size_bytes = len(data)
    else:
        path = Path(source)
        name = str(path)
        if not path.is_file():
            raise DocumentNotFoundError(name)
        data = None
        size_bytes = path.stat().st_size
        with open(path, "rb") as f:
            head = f.read(_HEADER_SCAN_BYTES)
        if head.startswith(_ZIP_MAGIC):
            head = path.read_bytes()

    if size_bytes == 0:
        raise InvalidFormatError("Empty document", path=name)

    fmt = detect_format(head, None if data is not None else name)
    if fmt is None:
        raise InvalidFormatError("No PDF header found", path=name)
    if fmt != DocumentFormat.PDF:
        raise UnsupportedFormatError(fmt.value, path=name)

    try:
        if data is not None:
            doc = fitz.open(stream=data, filetype="pdf")
        else:
            doc = fitz.open(name)
    except (RuntimeError, ValueError) as e:
        raise InvalidFormatError(details=str(e), path=name) from e

    if not doc.is_pdf:
        doc.close()
        raise InvalidFormatError("Not a PDF document", path=name)

    logger.info(
        f"Opened {name} ({size_bytes / 1024 / 1024:.2f} MB"
        f"{', password required' if doc.is_encrypted else ''})"
    )
    return DocumentHandle(doc, name, size_bytes, config, data=data)


def read_metadata(handle: DocumentHandle) -> DocumentMetadata:
    """
    Read document metadata. Works on locked documents too; fields the
    library cannot read before authentication stay None.
    """
    doc = handle.document
    meta = {}
    try:
        meta = doc.metadata or {}
    except (RuntimeError, ValueError):
        logger.debug(f"Metadata unavailable for {handle.source}")

    # needs_pass must not be read here: on an unlocked handle it resets
    # the decryption state and the pages come back empty.
    encrypted = handle.is_locked or bool(meta.get("encryption"))
    if handle.encryption is not None:
        encrypted = encrypted or handle.encryption.is_encrypted
    if not encrypted:
        encrypted = _trailer_has_encrypt(doc)

    return DocumentMetadata(
        title=meta.get("title") or None,
        author=meta.get("author") or None,
        subject=meta.get("subject") or None,
        creator=meta.get("creator") or None,
        producer=meta.get("producer") or None,
        creation_date=parse_pdf_date(meta.get("creationDate")),
        modification_date=parse_pdf_date(meta.get("modDate")),
        page_count=handle.page_count,
        file_size=handle.size_bytes,
        pdf_version=meta.get("format") or None,
        encrypted=encrypted,
    )


# ─── Low-level object access ──────────────────────────────────────────────────


def xref_number(value: str) -> int:
    """Object number of an indirect reference string such as ``'12 0 R'``."""
    return int(value.split()[0])


def _trailer_has_encrypt(doc: fitz.Document) -> bool:
    try:
        kind, _ = doc.xref_get_key(-1, "Encrypt")
    except (RuntimeError, ValueError):
        return False
    return kind not in ("null", None)


def _page_tree_count(doc: fitz.Document) -> int:
    """Page count from the page tree root; readable without a password."""
    try:
        _, root = doc.xref_get_key(-1, "Root")
        _, pages = doc.xref_get_key(xref_number(root), "Pages")
        kind, count = doc.xref_get_key(xref_number(pages), "Count")
        return int(count) if kind == "int" else 0
    except (RuntimeError, ValueError, IndexError):
        return 0
