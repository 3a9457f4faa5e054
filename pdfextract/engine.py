"""
Extraction Engine
=================
Main orchestrator that resolves document access, picks a processing mode
and runs page analysis, table detection and the OCR advisory into one
ExtractionResult.

Usage:
    orchestrator = ExtractionOrchestrator(config)
    with open_document("report.pdf", config) as handle:
        result = orchestrator.run(handle)

Architecture:
    DocumentHandle → EncryptionGate → ModeSelector →
    (direct | StreamingController) × PagePipeline → OcrAdvisor →
    ExtractionResult + ExtractionStats

States:
    Unopened → Opened → AuthCheck → AuthFailed (terminal)
                                  → ModeSelected → Extracting →
                                    Completed | PartiallyFailed
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from .config import ExtractionConfig
from .document import DocumentHandle, read_metadata
from .encryption import EncryptionGate
from .exceptions import (
    CorruptedStreamError,
    EncryptedUnauthorizedError,
    ExtractError,
)
from .mode import Mode, ModeSelector
from .models import (
    ExtractionResult,
    ExtractionState,
    ExtractionStats,
    PageResult,
)
from .ocr import OcrAdvisor, OcrStrategy
from .page_analyzer import PageAnalyzer
from .streaming import MemoryBudget, StreamingController
from .table_detector import TableDetector

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_TRANSITIONS: dict[ExtractionState, set[ExtractionState]] = {
    ExtractionState.UNOPENED: {ExtractionState.OPENED},
    ExtractionState.OPENED: {ExtractionState.AUTH_CHECK},
    ExtractionState.AUTH_CHECK: {
        ExtractionState.AUTH_FAILED,
        ExtractionState.MODE_SELECTED,
    },
    ExtractionState.MODE_SELECTED: {ExtractionState.EXTRACTING},
    ExtractionState.EXTRACTING: {
        ExtractionState.COMPLETED,
        ExtractionState.PARTIALLY_FAILED,
    },
}


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Attach console (and optional file) handlers to the ``pdfextract``
    logger. Safe to call repeatedly.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    package_logger = logging.getLogger("pdfextract")
    package_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in package_logger.handlers
    )
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        package_logger.addHandler(console)

    for handler in package_logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(log_level)

    if log_file:
        target = str(Path(log_file).resolve())
        already = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == target
            for h in package_logger.handlers
        )
        if not already:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(target, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)


# ─── Per-page pipeline ────────────────────────────────────────────────────────


class PagePipeline:
    """Runs every per-page stage on one page. Used by both modes."""

    def __init__(self, config: ExtractionConfig):
        self.config = config
        self.analyzer = PageAnalyzer.from_config(config)
        self.detector = TableDetector.from_config(config)

    def process(self, handle: DocumentHandle, page_index: int) -> PageResult:
        page = handle.load_page(page_index)
        raw_text = page.get_text("text")
        blocks = self.analyzer.analyze(page, page_index)

        tables = []
        if self.config.table_detection:
            tables = self.detector.detect(page, blocks, page_index)
            if tables:
                blocks = self.analyzer.attach_captions(blocks, [t.bbox for t in tables])

        rect = page.rect
        return PageResult(
            page_index=page_index,
            raw_text=raw_text,
            blocks=blocks,
            tables=tables,
            width=rect.width,
            height=rect.height,
            rotation=page.rotation,
            profile=self.analyzer.profile(page, page_index, raw_text),
        )


# ─── Orchestrator ─────────────────────────────────────────────────────────────


class ExtractionOrchestrator:
    """
    Composes the engine into one request/response cycle.

    Never raises for per-document failures: the returned result carries the
    state, the retained pages, and the error code. Page-level library errors
    skip the page with a warning; an I/O error or memory-limit breach stops
    extraction and keeps what was already extracted.

    Args:
        config: Engine configuration.
        ocr_strategy: Engine plugged into the OCR advisory.
        memory_budget: Shared budget (batch mode). When None each run gets
            a private budget of ``memory_limit + chunk_size``.
    """

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        ocr_strategy: Optional[OcrStrategy] = None,
        memory_budget: Optional[MemoryBudget] = None,
    ):
        self.config = config or ExtractionConfig()
        configure_logging(self.config.log_level, self.config.log_file)
        self.gate = EncryptionGate()
        self.selector = ModeSelector.from_config(self.config)
        self.pipeline = PagePipeline(self.config)
        self.advisor = OcrAdvisor.from_config(self.config, ocr_strategy)
        self.memory_budget = memory_budget

    def run(
        self,
        handle: DocumentHandle,
        cancel_check: Optional[Callable[[], None]] = None,
    ) -> ExtractionResult:
        """
        Extract everything from an open document.

        Args:
            handle: Open document. Passwords in ``config.password_candidates``
                are tried if it is still locked.
            cancel_check: Called before every page; raise an ExtractError
                from it to stop the run.

        Returns:
            The result, also stored on ``handle.result``.
        """
        started = time.perf_counter()
        result = ExtractionResult(source=handle.source)
        self._advance(result, ExtractionState.OPENED)

        # ── Access ────────────────────────────────────────────────────
        self._advance(result, ExtractionState.AUTH_CHECK)
        self.gate.detect(handle)
        candidates = self.config.password_candidates
        if handle.is_locked and candidates:
            self.gate.authenticate(handle, candidates)
        result.encryption = self.gate.detect(handle)
        result.metadata = read_metadata(handle)
        total_pages = handle.page_count

        if handle.is_locked:
            error = EncryptedUnauthorizedError(handle.source, attempts=len(candidates))
            self._advance(result, ExtractionState.AUTH_FAILED)
            self._fail(result, error)
            logger.warning(f"{handle.source}: {error.message}")
            result.stats = ExtractionStats(
                total_pages=total_pages,
                elapsed=self._elapsed(started),
                failure_reason=error.message,
                error_code=error.code,
            )
            handle.result = result
            return result

        strategy_warning = result.encryption.extraction_strategy.warning()
        if strategy_warning:
            result.warnings.append(strategy_warning)

        # ── Mode ──────────────────────────────────────────────────────
        mode = self.selector.select(
            handle.size_bytes,
            self.config.memory_limit_bytes,
            self.config.streaming_threshold_bytes,
            encrypted=result.encryption.is_encrypted,
        )
        self._advance(result, ExtractionState.MODE_SELECTED)
        logger.info(
            f"{handle.source}: {total_pages} pages, mode={mode.kind.value}"
            + (f", chunk={mode.chunk_size}" if mode.is_streaming else "")
        )

        # ── Extraction ────────────────────────────────────────────────
        self._advance(result, ExtractionState.EXTRACTING)
        budget = self.memory_budget or MemoryBudget(
            self.config.memory_limit_bytes
            + (mode.chunk_size or self.config.chunk_size_bytes)
        )

        def process_page(page_index: int) -> Optional[PageResult]:
            if cancel_check is not None:
                cancel_check()
            return self._process_page(handle, page_index, result)

        failure: Optional[ExtractError] = None
        peak = 0
        chunks = 0
        try:
            if mode.is_streaming:
                controller = StreamingController()
                try:
                    for batch in controller.stream(
                        handle, mode.chunk_size, process_page, budget
                    ):
                        result.pages.extend(batch.pages)
                        result.skipped_pages.extend(batch.skipped)
                        if batch.error is not None:
                            failure = batch.error
                finally:
                    peak = controller.peak_bytes
                    chunks = controller.batches_processed
            else:
                peak = handle.size_bytes
                self._run_direct(handle, total_pages, process_page, budget, result)
        except ExtractError as e:
            failure = e

        # ── OCR advisory ──────────────────────────────────────────────
        profiles = [
            p.profile for p in result.pages
            if p.profile is not None and p.profile.glyph_count < self.advisor.min_glyphs
        ]
        result.ocr = self.advisor.build_report(
            handle,
            self.advisor.advise(profiles),
            total_pages,
            warnings=result.warnings,
        )

        if failure is not None:
            self._advance(result, ExtractionState.PARTIALLY_FAILED)
            self._fail(result, failure)
            logger.warning(
                f"{handle.source}: partial result after "
                f"{len(result.pages)} page(s): {failure}"
            )
        else:
            self._advance(result, ExtractionState.COMPLETED)

        result.stats = self._build_stats(
            result, mode, total_pages, peak, chunks, self._elapsed(started), failure
        )
        logger.info(
            f"{handle.source}: {result.state.value} in "
            f"{result.stats.elapsed.total_seconds():.2f}s: "
            f"{result.stats.blocks_found} blocks, "
            f"{result.stats.tables_found} tables"
        )
        handle.result = result
        return result

    # ─── Steps ────────────────────────────────────────────────────────────

    def _run_direct(
        self,
        handle: DocumentHandle,
        total_pages: int,
        process_page: Callable[[int], Optional[PageResult]],
        budget: MemoryBudget,
        result: ExtractionResult,
    ):
        with budget.reserve(handle.size_bytes):
            for page_index in range(total_pages):
                page = process_page(page_index)
                if page is None:
                    result.skipped_pages.append(page_index)
                else:
                    result.pages.append(page)

    def _process_page(
        self,
        handle: DocumentHandle,
        page_index: int,
        result: ExtractionResult,
    ) -> Optional[PageResult]:
        try:
            page = self.pipeline.process(handle, page_index)
        except OSError as e:
            raise CorruptedStreamError(page_index, e, handle.source) from e
        except (RuntimeError, ValueError) as e:
            logger.warning(f"{handle.source}: skipping page {page_index}: {e}")
            result.warnings.append(f"Page {page_index} skipped: {e}")
            return None
        logger.debug(
            f"{handle.source}: page {page_index}: {len(page.blocks)} blocks, "
            f"{len(page.tables)} tables"
        )
        return page

    # ─── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _advance(result: ExtractionResult, state: ExtractionState):
        allowed = _TRANSITIONS.get(result.state, set())
        if state not in allowed:
            raise RuntimeError(
                f"Illegal extraction transition {result.state.value} -> {state.value}"
            )
        logger.debug(f"{result.source}: {result.state.value} -> {state.value}")
        result.state = state

    @staticmethod
    def _fail(result: ExtractionResult, error: ExtractError):
        result.error_code = error.code
        result.error_message = str(error)

    @staticmethod
    def _elapsed(started: float) -> timedelta:
        return timedelta(seconds=time.perf_counter() - started)

    @staticmethod
    def _build_stats(
        result: ExtractionResult,
        mode: Mode,
        total_pages: int,
        peak: int,
        chunks: int,
        elapsed: timedelta,
        failure: Optional[ExtractError],
    ) -> ExtractionStats:
        return ExtractionStats(
            total_pages=total_pages,
            streaming_used=mode.is_streaming,
            peak_memory_bytes=peak,
            elapsed=elapsed,
            blocks_found=len(result.blocks),
            tables_found=len(result.tables),
            pages_processed=len(result.pages),
            pages_skipped=len(result.skipped_pages),
            chunks_processed=chunks,
            chunk_size_bytes=mode.chunk_size,
            mode=mode.kind,
            failure_reason=failure.message if failure else None,
            error_code=failure.code if failure else None,
        )
