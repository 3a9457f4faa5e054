"""
Test Suite for Batch Extraction
===============================
"""

from __future__ import annotations

import itertools
from unittest.mock import patch

import pytest

from pdfextract.batch import BatchExtractor, BatchItem
from pdfextract.config import ExtractionConfig
from pdfextract.exceptions import ErrorCode
from pdfextract.models import ExtractionResult, ExtractionState


# ═══════════════════════════════════════════════════════════════════════════════
# ISOLATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestBatchExtractor:
    """Test that documents in a batch fail independently."""

    def test_failures_do_not_spread(self, sample_pdf, encrypted_pdf, junk_file, tmp_path):
        missing = tmp_path / "missing.pdf"
        extractor = BatchExtractor(workers=3)
        items = extractor.run([sample_pdf, missing, junk_file, encrypted_pdf])

        assert [item.source for item in items] == [
            str(sample_pdf), str(missing), str(junk_file), str(encrypted_pdf),
        ]
        good, gone, junk, locked = items
        assert good.succeeded
        assert len(good.result.tables) == 1
        assert gone.error_code == ErrorCode.DOCUMENT_NOT_FOUND
        assert gone.result is None
        assert junk.error_code == ErrorCode.INVALID_FORMAT
        assert locked.error_code == ErrorCode.ENCRYPTED_UNAUTHORIZED
        assert locked.result.state == ExtractionState.AUTH_FAILED
        assert not locked.succeeded
        assert extractor.budget.in_use == 0

    def test_shared_passwords(self, encrypted_pdf):
        config = ExtractionConfig(password_candidates=("1234",))
        [item] = BatchExtractor(config, workers=1).run([encrypted_pdf])
        assert item.succeeded

    def test_bytes_sources_labelled(self, sample_bytes):
        items = BatchExtractor(workers=2).run([sample_bytes, sample_bytes])
        assert [item.source for item in items] == ["<bytes #0>", "<bytes #1>"]
        assert all(item.succeeded for item in items)

    def test_progress_callback(self, sample_pdf, junk_file):
        seen = []
        extractor = BatchExtractor(workers=2, progress_callback=seen.append)
        extractor.run([sample_pdf, junk_file])
        assert sorted(item.source for item in seen) == sorted(
            [str(sample_pdf), str(junk_file)]
        )

    def test_timeout_yields_partial_item(self, sample_pdf):
        extractor = BatchExtractor(workers=1, timeout=5)
        with patch("pdfextract.batch.time") as mock_time:
            mock_time.monotonic.side_effect = itertools.count(0, 10)
            item = extractor.extract_one(sample_pdf)

        assert item.error_code == ErrorCode.TIMEOUT
        assert not item.succeeded
        assert item.partial
        assert item.result.pages == []
        assert "timed out" in item.error_message
        assert extractor.budget.in_use == 0

    def test_invalid_workers(self):
        with pytest.raises(ValueError):
            BatchExtractor(workers=0)


class TestBatchItem:

    def test_flags(self):
        done = ExtractionResult(state=ExtractionState.COMPLETED)
        partial = ExtractionResult(state=ExtractionState.PARTIALLY_FAILED)
        assert BatchItem("a.pdf", result=done).succeeded
        item = BatchItem("b.pdf", result=partial, error_code=ErrorCode.CORRUPTED_STREAM)
        assert item.partial and not item.succeeded
        assert not BatchItem("c.pdf", error_code=ErrorCode.INVALID_FORMAT).succeeded
