"""
OCR Advisor
===========
Flags image-dominant pages and estimates what OCR would cost. Never does
pixel-level recognition itself: an engine can be plugged in through
``ExternalOcr``, otherwise ``NoOpOcr`` reports that none is available.

Usage:
    advisor = OcrAdvisor.from_config(config, ExternalOcr(my_engine))
    analyses = advisor.advise(profiles)
    report = advisor.build_report(handle, analyses, total_pages)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Optional, Sequence

from .config import MB, ExtractionConfig
from .document import DocumentHandle
from .exceptions import ErrorCode, OcrUnavailableError
from .models import (
    OcrPageAnalysis,
    OcrPageText,
    OcrReport,
    PageProfile,
    ProcessingEstimate,
)

logger = logging.getLogger(__name__)

# Letter page at 300 dpi
_REFERENCE_PIXELS = 2550 * 3300
_MEMORY_PER_PAGE = 50 * MB
_MIN_MEMORY = 100 * MB


# ─── Strategies ───────────────────────────────────────────────────────────────


class OcrStrategy(ABC):
    """Slot for an OCR engine supplied by the caller."""

    name: str = "ocr"

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    def recognize(self, image: bytes, language: str) -> str:
        """Return the text of a PNG-encoded page image."""


class NoOpOcr(OcrStrategy):
    name = "none"

    @property
    def available(self) -> bool:
        return False

    def recognize(self, image: bytes, language: str) -> str:
        raise OcrUnavailableError("No OCR engine configured")


class ExternalOcr(OcrStrategy):
    """
    Wraps a caller-provided engine.

    Args:
        engine: ``engine(png_bytes, language) -> text``.
        name: Label used in logs.
    """

    def __init__(self, engine: Callable[[bytes, str], str], name: str = "external"):
        self.engine = engine
        self.name = name

    @property
    def available(self) -> bool:
        return True

    def recognize(self, image: bytes, language: str) -> str:
        return self.engine(image, language)


# ─── Advisor ──────────────────────────────────────────────────────────────────


def confidence_for_dpi(dpi: float) -> float:
    """Expected recognition quality from the resolution of the page raster."""
    if dpi >= 300:
        return 0.9
    if dpi >= 200:
        return 0.75
    if dpi >= 150:
        return 0.6
    if dpi > 0:
        return 0.4
    return 0.0


class OcrAdvisor:
    """
    Decides which pages would benefit from OCR.

    A page is image-dominant when it has fewer than ``min_glyphs``
    extractable glyphs and raster images cover at least ``min_coverage`` of
    its area. OCR is recommended for the document when the share of
    image-dominant pages exceeds ``threshold``.
    """

    def __init__(
        self,
        strategy: Optional[OcrStrategy] = None,
        threshold: float = 0.2,
        min_glyphs: int = 10,
        min_coverage: float = 0.25,
        seconds_per_page: float = 2.0,
        language: str = "eng",
        dpi: int = 300,
    ):
        self.strategy = strategy or NoOpOcr()
        self.threshold = threshold
        self.min_glyphs = min_glyphs
        self.min_coverage = min_coverage
        self.seconds_per_page = seconds_per_page
        self.language = language
        self.dpi = dpi

    @classmethod
    def from_config(
        cls,
        config: ExtractionConfig,
        strategy: Optional[OcrStrategy] = None,
    ) -> "OcrAdvisor":
        return cls(
            strategy=strategy,
            threshold=config.ocr_image_page_threshold,
            min_glyphs=config.ocr_min_glyphs,
            min_coverage=config.ocr_min_image_coverage,
            seconds_per_page=config.ocr_seconds_per_page,
            language=config.ocr_language,
            dpi=config.ocr_dpi,
        )

    def analyze_page(self, profile: PageProfile) -> OcrPageAnalysis:
        dominant = (
            profile.glyph_count < self.min_glyphs
            and profile.image_coverage >= self.min_coverage
        )
        scale = max(0.25, profile.image_pixels / _REFERENCE_PIXELS)
        return OcrPageAnalysis(
            page_index=profile.page_index,
            is_image_dominant=dominant,
            estimated_confidence=confidence_for_dpi(profile.effective_dpi),
            estimated_processing_cost=timedelta(seconds=self.seconds_per_page * scale),
            glyph_count=profile.glyph_count,
            image_coverage=profile.image_coverage,
        )

    def advise(self, profiles: Sequence[PageProfile]) -> list[OcrPageAnalysis]:
        return [self.analyze_page(p) for p in profiles]

    def recommend(self, analyses: Sequence[OcrPageAnalysis], total_pages: int) -> bool:
        if total_pages <= 0:
            return False
        dominant = sum(1 for a in analyses if a.is_image_dominant)
        return dominant / total_pages > self.threshold

    @staticmethod
    def estimate(analyses: Sequence[OcrPageAnalysis]) -> ProcessingEstimate:
        flagged = [a for a in analyses if a.is_image_dominant]
        pages = len(flagged)
        return ProcessingEstimate(
            pages_to_process=pages,
            estimated_time=sum(
                (a.estimated_processing_cost for a in flagged), timedelta(0)
            ),
            memory_requirements_bytes=max(_MIN_MEMORY, pages * _MEMORY_PER_PAGE),
            recommended_batch_size=5 if pages > 20 else pages,
        )

    # ─── Recognition ──────────────────────────────────────────────────────

    def build_report(
        self,
        handle: DocumentHandle,
        analyses: Sequence[OcrPageAnalysis],
        total_pages: int,
        warnings: Optional[list[str]] = None,
    ) -> OcrReport:
        """
        Summarize the analyses and, when OCR is recommended and an engine is
        plugged in, recognize the image-dominant pages.

        Engine failures are appended to ``warnings``; they never raise.
        """
        recommended = self.recommend(analyses, total_pages)
        report = OcrReport(
            pages=list(analyses),
            recommended_ocr=recommended,
            estimate=self.estimate(analyses),
            engine_available=self.strategy.available,
        )
        if not recommended:
            return report

        logger.info(
            f"{handle.source}: OCR recommended for "
            f"{len(report.image_dominant_pages)}/{total_pages} page(s)"
        )
        if not self.strategy.available:
            logger.warning(f"{handle.source}: OCR recommended but no engine available")
            if warnings is not None:
                warnings.append(
                    f"[{ErrorCode.OCR_UNAVAILABLE.value}] "
                    f"{OcrUnavailableError().user_message}"
                )
            return report

        for page_index in report.image_dominant_pages:
            try:
                report.ocr_text.append(self.recognize_page(handle, page_index))
            except (OcrUnavailableError, RuntimeError, ValueError, OSError) as e:
                logger.warning(
                    f"{handle.source}: OCR failed on page {page_index}: {e}"
                )
                if warnings is not None:
                    warnings.append(
                        f"[{ErrorCode.OCR_UNAVAILABLE.value}] "
                        f"OCR failed on page {page_index}: {e}"
                    )
        return report

    def recognize_page(self, handle: DocumentHandle, page_index: int) -> OcrPageText:
        """Render one page at the OCR resolution and hand it to the engine."""
        started = time.perf_counter()
        page = handle.load_page(page_index)
        image = page.get_pixmap(dpi=self.dpi).tobytes("png")
        text = self.strategy.recognize(image, self.language)
        elapsed = timedelta(seconds=time.perf_counter() - started)
        logger.debug(
            f"{handle.source}: OCR page {page_index} via {self.strategy.name} "
            f"({len(text)} chars, {elapsed.total_seconds():.2f}s)"
        )
        return OcrPageText(
            page_index=page_index,
            text=text,
            language=self.language,
            elapsed=elapsed,
        )
