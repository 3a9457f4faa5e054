"""
Test Suite for the Orchestrator and Public Interface
====================================================
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

import pdfextract
from pdfextract.config import MB, ExtractionConfig
from pdfextract.engine import (
    ExtractionOrchestrator,
    PagePipeline,
    configure_logging,
)
from pdfextract.exceptions import ErrorCode
from pdfextract.models import (
    ExtractionResult,
    ExtractionState,
    ExtractionStrategy,
    ProcessingMode,
    TextBlockKind,
)

from .conftest import TABLE_ROWS

_original_process = PagePipeline.process


def _fail_on(page_index, error):
    def process(self, handle, index):
        if index == page_index:
            raise error
        return _original_process(self, handle, index)
    return process


def _one_page_batches() -> ExtractionConfig:
    """Streams any file, one page per batch."""
    return ExtractionConfig(
        streaming_threshold_bytes=1,
        chunk_size_bytes=1,
        min_chunk_bytes=1,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════


class TestPublicInterface:
    """Test the open → check → extract flow on a plain document."""

    def test_full_flow(self, sample_pdf):
        with pdfextract.open(sample_pdf) as handle:
            info = pdfextract.check_encryption(handle)
            text = pdfextract.get_text(handle)
            blocks = pdfextract.get_advanced_text(handle)
            tables = pdfextract.extract_tables(handle)
            stats = pdfextract.get_extraction_stats(handle)

        assert info.is_encrypted is False
        assert "Inventory" in text and "Section 5" in text
        assert {b.page_index for b in blocks} == set(range(5))
        assert blocks[0].kind == TextBlockKind.HEADING
        assert len(tables) == 1
        assert tables[0].page_index == 1
        assert tables[0].rows == [list(row) for row in TABLE_ROWS]
        assert stats.total_pages == 5
        assert stats.pages_processed == 5
        assert stats.streaming_used is False
        assert stats.mode == ProcessingMode.DIRECT
        assert stats.tables_found == 1
        assert stats.blocks_found == len(blocks)

    def test_blocks_in_page_order(self, sample_pdf):
        with pdfextract.open(sample_pdf) as handle:
            pages = [b.page_index for b in pdfextract.get_advanced_text(handle)]
        assert pages == sorted(pages)

    def test_open_from_bytes(self, sample_bytes):
        with pdfextract.open(sample_bytes) as handle:
            assert pdfextract.get_result(handle).source == "<bytes>"
            assert len(pdfextract.extract_tables(handle)) == 1

    def test_result_cached(self, sample_pdf):
        with pdfextract.open(sample_pdf) as handle:
            first = pdfextract.get_result(handle)
            assert pdfextract.get_result(handle) is first
            assert handle.result is first

    def test_table_detection_off(self, sample_pdf):
        config = ExtractionConfig(table_detection=False)
        with pdfextract.open(sample_pdf, config) as handle:
            assert pdfextract.extract_tables(handle) == []
            assert pdfextract.get_text(handle)

    def test_restricted_document_warns(self, restricted_pdf):
        with pdfextract.open(restricted_pdf) as handle:
            result = pdfextract.get_result(handle)
        assert result.state == ExtractionState.COMPLETED
        assert result.encryption.extraction_strategy == ExtractionStrategy.ACCESSIBILITY_ONLY
        assert ExtractionStrategy.ACCESSIBILITY_ONLY.warning() in result.warnings
        assert not result.encryption.extraction_strategy.allows_table_extraction()
        assert len(result.tables) == 1

    def test_passwords_from_config(self, encrypted_pdf):
        config = ExtractionConfig(password_candidates=["guess", "1234"])
        with pdfextract.open(encrypted_pdf, config) as handle:
            result = pdfextract.get_result(handle)
        assert result.state == ExtractionState.COMPLETED
        assert result.encryption.authenticated is True
        assert len(result.tables) == 1

    def test_locked_document_result(self, encrypted_pdf):
        with pdfextract.open(encrypted_pdf) as handle:
            result = pdfextract.get_result(handle)
        assert result.state == ExtractionState.AUTH_FAILED
        assert result.error_code == ErrorCode.ENCRYPTED_UNAUTHORIZED
        assert result.stats.error_code == ErrorCode.ENCRYPTED_UNAUTHORIZED
        assert result.stats.total_pages == 5
        assert result.pages == []


# ═══════════════════════════════════════════════════════════════════════════════
# STREAMING
# ═══════════════════════════════════════════════════════════════════════════════


class TestStreamingRuns:
    """Test runs that go through the streaming controller."""

    def test_large_file_streams_within_limit(self, sample_pdf):
        config = ExtractionConfig(memory_limit_bytes=128 * MB)
        with pdfextract.open(sample_pdf, config) as handle:
            direct = ExtractionOrchestrator(config).run(handle)
        with pdfextract.open(sample_pdf, config) as handle:
            handle.size_bytes = 150 * MB
            streamed = ExtractionOrchestrator(config).run(handle)

        assert direct.stats.streaming_used is False
        stats = streamed.stats
        assert stats.streaming_used is True
        assert stats.mode == ProcessingMode.STREAMING
        assert 0 < stats.peak_memory_bytes <= config.memory_limit_bytes
        assert stats.peak_memory_bytes == 30 * MB
        assert stats.chunks_processed == 5
        assert MB <= stats.chunk_size_bytes <= 16 * MB
        assert streamed.pages == direct.pages
        assert streamed.state == ExtractionState.COMPLETED

    def test_streaming_matches_direct(self, sample_pdf):
        direct_config = ExtractionConfig()
        stream_config = _one_page_batches()
        with pdfextract.open(sample_pdf, direct_config) as handle:
            direct = pdfextract.get_result(handle)
        with pdfextract.open(sample_pdf, stream_config) as handle:
            streamed = pdfextract.get_result(handle)
        assert streamed.stats.streaming_used is True
        assert streamed.blocks == direct.blocks
        assert streamed.tables == direct.tables
        assert streamed.text == direct.text

    def test_page_larger_than_budget(self, sample_pdf):
        config = ExtractionConfig(memory_limit_bytes=128 * MB)
        with pdfextract.open(sample_pdf, config) as handle:
            handle.size_bytes = 1024 * MB
            result = ExtractionOrchestrator(config).run(handle)
        assert result.state == ExtractionState.PARTIALLY_FAILED
        assert result.error_code == ErrorCode.MEMORY_LIMIT_EXCEEDED
        assert result.stats.streaming_used is True
        assert result.pages == []


# ═══════════════════════════════════════════════════════════════════════════════
# FAILURES
# ═══════════════════════════════════════════════════════════════════════════════


class TestFailures:
    """Test partial results and skipped pages."""

    def test_io_error_keeps_earlier_pages(self, sample_pdf):
        with patch.object(
            PagePipeline, "process", autospec=True,
            side_effect=_fail_on(3, OSError("stream truncated")),
        ):
            with pdfextract.open(sample_pdf) as handle:
                result = pdfextract.get_result(handle)
                text = pdfextract.get_text(handle)

        assert result.state == ExtractionState.PARTIALLY_FAILED
        assert result.error_code == ErrorCode.CORRUPTED_STREAM
        assert [p.page_index for p in result.pages] == [0, 1, 2]
        assert result.stats.pages_processed == 3
        assert result.stats.error_code == ErrorCode.CORRUPTED_STREAM
        assert "Inventory" in text
        assert len(result.tables) == 1

    def test_io_error_while_streaming(self, sample_pdf):
        config = _one_page_batches()
        with patch.object(
            PagePipeline, "process", autospec=True,
            side_effect=_fail_on(2, OSError("bad xref")),
        ):
            with pdfextract.open(sample_pdf, config) as handle:
                result = pdfextract.get_result(handle)
        assert result.state == ExtractionState.PARTIALLY_FAILED
        assert [p.page_index for p in result.pages] == [0, 1]
        assert result.stats.chunks_processed == 3

    def test_library_error_skips_page(self, sample_pdf):
        with patch.object(
            PagePipeline, "process", autospec=True,
            side_effect=_fail_on(2, RuntimeError("bad content stream")),
        ):
            with pdfextract.open(sample_pdf) as handle:
                result = pdfextract.get_result(handle)
        assert result.state == ExtractionState.COMPLETED
        assert result.skipped_pages == [2]
        assert [p.page_index for p in result.pages] == [0, 1, 3, 4]
        assert result.stats.pages_skipped == 1
        assert any("Page 2 skipped" in w for w in result.warnings)


# ═══════════════════════════════════════════════════════════════════════════════
# STATE & LOGGING
# ═══════════════════════════════════════════════════════════════════════════════


class TestStateMachine:

    def test_illegal_transition(self):
        result = ExtractionResult(source="x.pdf")
        with pytest.raises(RuntimeError, match="Illegal"):
            ExtractionOrchestrator._advance(result, ExtractionState.EXTRACTING)

    def test_terminal_states_are_final(self):
        result = ExtractionResult(source="x.pdf", state=ExtractionState.COMPLETED)
        with pytest.raises(RuntimeError):
            ExtractionOrchestrator._advance(result, ExtractionState.EXTRACTING)


class TestConfigureLogging:

    def test_idempotent(self, tmp_path):
        log_file = tmp_path / "logs" / "extract.log"
        package_logger = logging.getLogger("pdfextract")
        try:
            configure_logging("DEBUG", str(log_file))
            configure_logging("DEBUG", str(log_file))
            file_handlers = [
                h for h in package_logger.handlers
                if isinstance(h, logging.FileHandler)
                and h.baseFilename == str(log_file.resolve())
            ]
            assert len(file_handlers) == 1
            assert log_file.parent.is_dir()
            assert package_logger.level == logging.DEBUG
        finally:
            for handler in list(package_logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    package_logger.removeHandler(handler)
                    handler.close()
