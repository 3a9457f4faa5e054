"""
Extraction Configuration
========================
One configuration object for the whole engine, plus named presets that only
change field defaults.

Usage:
    config = ExtractionConfig(memory_limit_bytes=128 * MB)
    config = ExtractionConfig.large_file()
    config = config.with_overrides(table_detection=False)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

KB = 1024
MB = 1024 * KB


@dataclass(frozen=True)
class ExtractionConfig:
    """Configuration for the extraction engine."""

    # Memory & streaming
    memory_limit_bytes: int = 256 * MB
    streaming_threshold_bytes: int = 100 * MB
    chunk_size_bytes: int = 4 * MB
    min_chunk_bytes: int = 1 * MB
    max_chunk_bytes: int = 16 * MB
    memory_safety_factor: float = 0.5

    # Layout
    layout_preservation: bool = True
    heading_size_ratio: float = 1.3
    caption_max_chars: int = 160
    caption_max_distance: float = 24.0

    # Tables
    table_detection: bool = True
    table_min_confidence: float = 0.4
    table_column_tolerance: float = 2.0
    table_min_rows: int = 3
    table_min_cell_gap: float = 8.0

    # OCR advisory
    ocr_image_page_threshold: float = 0.2
    ocr_min_glyphs: int = 10
    ocr_min_image_coverage: float = 0.25
    ocr_language: str = "eng"
    ocr_dpi: int = 300
    ocr_seconds_per_page: float = 2.0

    # Security
    password_candidates: tuple[str, ...] = field(default_factory=tuple)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        for name in (
            "memory_limit_bytes",
            "streaming_threshold_bytes",
            "chunk_size_bytes",
            "min_chunk_bytes",
            "max_chunk_bytes",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.min_chunk_bytes > self.max_chunk_bytes:
            raise ValueError("min_chunk_bytes must not exceed max_chunk_bytes")
        if not 0.0 < self.memory_safety_factor <= 1.0:
            raise ValueError("memory_safety_factor must be in (0, 1]")
        for name in (
            "table_min_confidence",
            "ocr_image_page_threshold",
            "ocr_min_image_coverage",
        ):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must be in [0, 1]")
        if self.table_min_rows < 2:
            raise ValueError("table_min_rows must be at least 2")
        # Lists passed by callers are frozen into a tuple
        object.__setattr__(
            self, "password_candidates", tuple(self.password_candidates)
        )

    # ─── Presets ──────────────────────────────────────────────────────────

    @classmethod
    def small_file(cls, **overrides) -> "ExtractionConfig":
        """Full feature extraction for small documents."""
        params = dict(
            memory_limit_bytes=256 * MB,
            layout_preservation=True,
            table_detection=True,
        )
        params.update(overrides)
        return cls(**params)

    @classmethod
    def large_file(cls, **overrides) -> "ExtractionConfig":
        """Lean, memory-bounded extraction for very large documents."""
        params = dict(
            memory_limit_bytes=128 * MB,
            chunk_size_bytes=512 * KB,
            min_chunk_bytes=256 * KB,
            layout_preservation=False,
            table_detection=False,
        )
        params.update(overrides)
        return cls(**params)

    @classmethod
    def layout_critical(cls, **overrides) -> "ExtractionConfig":
        """Generous memory so layout analysis runs in one pass."""
        params = dict(
            memory_limit_bytes=1024 * MB,
            streaming_threshold_bytes=512 * MB,
            layout_preservation=True,
            table_detection=True,
        )
        params.update(overrides)
        return cls(**params)

    def with_overrides(self, **overrides) -> "ExtractionConfig":
        return replace(self, **overrides)
