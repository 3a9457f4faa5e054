"""
Data Models
===========
Pydantic models for the extraction engine's inputs and outputs.
All models serialize losslessly to JSON for downstream renderers.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum, IntFlag
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .exceptions import ErrorCode


# ─── Enums ────────────────────────────────────────────────────────────────────


class SecurityLevel(str, Enum):
    """Coarse grading of a document's encryption/permission strictness."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Permission(IntFlag):
    """
    User-access permission bits of the PDF standard security handler
    (the /P entry of the encryption dictionary).
    """
    NONE = 0
    PRINT = 0x04
    MODIFY = 0x08
    COPY = 0x10
    ANNOTATE = 0x20
    FILL_FORMS = 0x100
    ACCESSIBILITY = 0x200
    ASSEMBLE = 0x400
    PRINT_HIGH_QUALITY = 0x800


ALL_PERMISSIONS = (
    Permission.PRINT
    | Permission.MODIFY
    | Permission.COPY
    | Permission.ANNOTATE
    | Permission.FILL_FORMS
    | Permission.ACCESSIBILITY
    | Permission.ASSEMBLE
    | Permission.PRINT_HIGH_QUALITY
)


class ExtractionStrategy(str, Enum):
    """
    How much content the document's permissions allow us to pull out.

    Advisory: the orchestrator still extracts everything once the document
    is unlocked and only records ``warning()`` on the result. The
    ``allows_*`` answers are reported by ``pdfextract info``.
    """
    NORMAL = "normal"
    ACCESSIBILITY_ONLY = "accessibility_only"
    RESTRICTED = "restricted"

    def allows_text_extraction(self) -> bool:
        return self in (
            ExtractionStrategy.NORMAL,
            ExtractionStrategy.ACCESSIBILITY_ONLY,
        )

    def allows_table_extraction(self) -> bool:
        return self == ExtractionStrategy.NORMAL

    def allows_metadata_extraction(self) -> bool:
        return True

    def warning(self) -> Optional[str]:
        if self == ExtractionStrategy.ACCESSIBILITY_ONLY:
            return "Limited extraction due to PDF security settings"
        if self == ExtractionStrategy.RESTRICTED:
            return "Extraction severely restricted due to PDF security settings"
        return None


class TextBlockKind(str, Enum):
    """Layout role of a text block."""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST_ITEM = "list_item"
    CAPTION = "caption"


class ProcessingMode(str, Enum):
    """Whole-document vs. chunked traversal."""
    DIRECT = "direct"
    STREAMING = "streaming"


class ExtractionState(str, Enum):
    """Lifecycle of a single extraction run."""
    UNOPENED = "unopened"
    OPENED = "opened"
    AUTH_CHECK = "auth_check"
    AUTH_FAILED = "auth_failed"
    MODE_SELECTED = "mode_selected"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


# ─── Geometry & Fonts ─────────────────────────────────────────────────────────


class BBox(BaseModel):
    """Axis-aligned box in page space (points, origin top-left)."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    @classmethod
    def from_rect(cls, x0: float, y0: float, x1: float, y1: float) -> "BBox":
        return cls(
            x=min(x0, x1),
            y=min(y0, y1),
            width=abs(x1 - x0),
            height=abs(y1 - y0),
        )

    @property
    def x1(self) -> float:
        return self.x + self.width

    @property
    def y1(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def union(self, other: "BBox") -> "BBox":
        return BBox.from_rect(
            min(self.x, other.x),
            min(self.y, other.y),
            max(self.x1, other.x1),
            max(self.y1, other.y1),
        )

    def intersects(self, other: "BBox") -> bool:
        return (
            self.x < other.x1 and other.x < self.x1
            and self.y < other.y1 and other.y < self.y1
        )

    def horizontal_overlap(self, other: "BBox") -> float:
        return max(0.0, min(self.x1, other.x1) - max(self.x, other.x))

    def vertical_gap(self, other: "BBox") -> float:
        """Distance between the boxes along y; 0 when they overlap."""
        if other.y >= self.y1:
            return other.y - self.y1
        if self.y >= other.y1:
            return self.y - other.y1
        return 0.0


class FontInfo(BaseModel):
    """Font metadata for a text block, taken verbatim from the glyph stream."""
    model_config = ConfigDict(frozen=True)

    family: Optional[str] = None
    size: Optional[float] = None
    bold: bool = False
    italic: bool = False
    flags: Optional[int] = None
    color: Optional[int] = None


# ─── Content Models ───────────────────────────────────────────────────────────


class TextBlock(BaseModel):
    """
    A classified run of same-style text.
    Blocks within a page follow reading order.
    """
    model_config = ConfigDict(frozen=True)

    kind: TextBlockKind
    text: str
    bbox: BBox
    font: FontInfo = Field(default_factory=FontInfo)
    page_index: int = Field(ge=0)


class TableRegion(BaseModel):
    """A table inferred from whitespace alignment."""
    model_config = ConfigDict(frozen=True)

    bbox: BBox
    rows: list[list[str]]
    confidence: float = Field(ge=0.0, le=1.0)
    page_index: int = Field(ge=0)

    @field_validator("rows")
    @classmethod
    def _rows_rectangular(cls, rows: list[list[str]]) -> list[list[str]]:
        if not rows:
            raise ValueError("table must have at least one row")
        width = len(rows[0])
        if width == 0 or any(len(r) != width for r in rows):
            raise ValueError("table rows must be non-empty and rectangular")
        return rows

    @computed_field
    @property
    def row_count(self) -> int:
        return len(self.rows)

    @computed_field
    @property
    def column_count(self) -> int:
        return len(self.rows[0])


# ─── Security ─────────────────────────────────────────────────────────────────


class EncryptionInfo(BaseModel):
    """Encryption state of a document. Computed once per handle."""
    model_config = ConfigDict(frozen=True)

    is_encrypted: bool = False
    security_level: SecurityLevel = SecurityLevel.NONE
    permissions: int = Field(
        default=int(ALL_PERMISSIONS),
        description="Permission bitset, see Permission",
    )
    authenticated: bool = True
    security_handler: Optional[str] = None
    algorithm: Optional[str] = None
    key_length: Optional[int] = None

    @property
    def permission_flags(self) -> Permission:
        return Permission(self.permissions & ALL_PERMISSIONS)

    def allows(self, permission: Permission) -> bool:
        return bool(self.permissions & permission)

    @computed_field
    @property
    def extraction_strategy(self) -> ExtractionStrategy:
        if not self.is_encrypted:
            return ExtractionStrategy.NORMAL
        if self.allows(Permission.COPY) and self.allows(Permission.ACCESSIBILITY):
            return ExtractionStrategy.NORMAL
        if self.allows(Permission.ACCESSIBILITY):
            return ExtractionStrategy.ACCESSIBILITY_ONLY
        return ExtractionStrategy.RESTRICTED


class DocumentMetadata(BaseModel):
    """Document-level metadata. Available even when authentication fails."""
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    creator: Optional[str] = None
    producer: Optional[str] = None
    creation_date: Optional[str] = None
    modification_date: Optional[str] = None
    page_count: int = 0
    file_size: int = 0
    pdf_version: Optional[str] = None
    encrypted: bool = False


# ─── OCR Advisory ─────────────────────────────────────────────────────────────


class PageProfile(BaseModel):
    """Glyph and raster statistics of one page."""
    page_index: int = Field(ge=0)
    glyph_count: int = 0
    image_count: int = 0
    image_coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    image_pixels: int = 0
    effective_dpi: float = 0.0
    width: float = 0.0
    height: float = 0.0


class OcrPageAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_index: int = Field(ge=0)
    is_image_dominant: bool
    estimated_confidence: float = Field(ge=0.0, le=1.0)
    estimated_processing_cost: timedelta
    glyph_count: int = 0
    image_coverage: float = 0.0


class ProcessingEstimate(BaseModel):
    """Cost estimate for running OCR over the flagged pages."""
    pages_to_process: int = 0
    estimated_time: timedelta = timedelta(0)
    memory_requirements_bytes: int = 0
    recommended_batch_size: int = 0


class OcrPageText(BaseModel):
    """Text returned by an external OCR engine for one page."""
    page_index: int = Field(ge=0)
    text: str
    language: str
    elapsed: timedelta


class OcrReport(BaseModel):
    pages: list[OcrPageAnalysis] = Field(default_factory=list)
    recommended_ocr: bool = False
    estimate: ProcessingEstimate = Field(default_factory=ProcessingEstimate)
    ocr_text: list[OcrPageText] = Field(default_factory=list)
    engine_available: bool = False

    @computed_field
    @property
    def image_dominant_pages(self) -> list[int]:
        return [p.page_index for p in self.pages if p.is_image_dominant]


# ─── Results ──────────────────────────────────────────────────────────────────


class PageResult(BaseModel):
    """Everything extracted from one page."""
    page_index: int = Field(ge=0)
    raw_text: str = ""
    blocks: list[TextBlock] = Field(default_factory=list)
    tables: list[TableRegion] = Field(default_factory=list)
    width: float = 0.0
    height: float = 0.0
    rotation: int = 0
    profile: Optional[PageProfile] = None


class ExtractionStats(BaseModel):
    """Run statistics. Immutable once returned."""
    model_config = ConfigDict(frozen=True)

    total_pages: int = 0
    streaming_used: bool = False
    peak_memory_bytes: int = 0
    elapsed: timedelta = timedelta(0)
    blocks_found: int = 0
    tables_found: int = 0
    pages_processed: int = 0
    pages_skipped: int = 0
    chunks_processed: int = 0
    chunk_size_bytes: Optional[int] = None
    mode: Optional[ProcessingMode] = None
    failure_reason: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class ExtractionResult(BaseModel):
    """
    Complete output of one extraction run.
    Partial runs keep the pages extracted before the failure.
    """
    source: str = ""
    state: ExtractionState = ExtractionState.UNOPENED
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    encryption: EncryptionInfo = Field(default_factory=EncryptionInfo)
    pages: list[PageResult] = Field(default_factory=list)
    ocr: Optional[OcrReport] = None
    stats: ExtractionStats = Field(default_factory=ExtractionStats)
    warnings: list[str] = Field(default_factory=list)
    skipped_pages: list[int] = Field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @property
    def blocks(self) -> list[TextBlock]:
        return [b for page in self.pages for b in page.blocks]

    @property
    def tables(self) -> list[TableRegion]:
        return [t for page in self.pages for t in page.tables]

    @property
    def text(self) -> str:
        return "\n".join(page.raw_text for page in self.pages)

    @property
    def succeeded(self) -> bool:
        return self.state == ExtractionState.COMPLETED
