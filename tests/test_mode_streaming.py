"""
Test Suite for Mode Selection and Streaming
===========================================
"""

from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from pdfextract.config import KB, MB, ExtractionConfig
from pdfextract.exceptions import CorruptedStreamError, MemoryLimitExceededError
from pdfextract.mode import Mode, ModeSelector
from pdfextract.models import PageResult, ProcessingMode
from pdfextract.streaming import MemoryBudget, StreamingController


def _handle(page_count: int, size_bytes: int):
    return SimpleNamespace(source="fake.pdf", page_count=page_count, size_bytes=size_bytes)


def _pages(i: int) -> PageResult:
    return PageResult(page_index=i, raw_text=f"page {i}")


# ═══════════════════════════════════════════════════════════════════════════════
# MODE SELECTION
# ═══════════════════════════════════════════════════════════════════════════════


class TestModeSelector:
    """Test direct/streaming decisions and chunk sizing."""

    def setup_method(self):
        self.selector = ModeSelector.from_config(ExtractionConfig())

    def test_small_file_direct(self):
        mode = self.selector.select(1 * MB, 256 * MB, 100 * MB)
        assert mode == Mode.direct()
        assert mode.chunk_size is None
        assert not mode.is_streaming

    def test_over_threshold_streams(self):
        mode = self.selector.select(150 * MB, 128 * MB, 100 * MB)
        assert mode.kind == ProcessingMode.STREAMING
        assert MB <= mode.chunk_size <= 16 * MB
        assert mode.chunk_size == 4 * MB * 100 // 150

    def test_over_memory_budget_streams(self):
        # 90MB is under the threshold but above 128MB * 0.5
        mode = self.selector.select(90 * MB, 128 * MB, 100 * MB)
        assert mode.is_streaming

    def test_encryption_halves_the_budget(self):
        assert not self.selector.select(70 * MB, 256 * MB, 100 * MB).is_streaming
        assert self.selector.select(70 * MB, 256 * MB, 100 * MB, encrypted=True).is_streaming

    def test_chunk_shrinks_as_files_grow(self):
        sizes = [120 * MB, 200 * MB, 400 * MB, 10_000 * MB]
        chunks = [self.selector.chunk_size_for(s, 100 * MB) for s in sizes]
        assert chunks == sorted(chunks, reverse=True)
        assert chunks[-1] == MB

    def test_chunk_clamped_to_band(self):
        assert self.selector.chunk_size_for(KB, 100 * MB) == 16 * MB
        assert self.selector.chunk_size_for(0, 100 * MB) == 16 * MB

    def test_deterministic(self):
        first = self.selector.select(150 * MB, 128 * MB, 100 * MB)
        assert self.selector.select(150 * MB, 128 * MB, 100 * MB) == first


# ═══════════════════════════════════════════════════════════════════════════════
# MEMORY BUDGET
# ═══════════════════════════════════════════════════════════════════════════════


class TestMemoryBudget:
    """Test byte accounting, blocking and refusal."""

    def test_acquire_release(self):
        budget = MemoryBudget(100)
        budget.acquire(60)
        assert budget.in_use == 60
        budget.release(60)
        assert budget.in_use == 0
        assert budget.peak == 60

    def test_reserve_context_manager(self):
        budget = MemoryBudget(100)
        with budget.reserve(40):
            assert budget.in_use == 40
        assert budget.in_use == 0

    def test_oversize_request_refused(self):
        budget = MemoryBudget(100, blocking=True)
        with pytest.raises(MemoryLimitExceededError) as exc_info:
            budget.acquire(101)
        assert exc_info.value.limit_bytes == 100

    def test_non_blocking_full(self):
        budget = MemoryBudget(100)
        budget.acquire(80)
        with pytest.raises(MemoryLimitExceededError):
            budget.acquire(30)
        assert budget.in_use == 80

    def test_blocking_waits_for_release(self):
        budget = MemoryBudget(100, blocking=True)
        budget.acquire(80)
        timer = threading.Timer(0.05, budget.release, args=(80,))
        timer.start()
        try:
            budget.acquire(50, timeout=5)
        finally:
            timer.join()
        assert budget.in_use == 50
        assert budget.peak == 80

    def test_blocking_timeout(self):
        budget = MemoryBudget(100, blocking=True)
        budget.acquire(80)
        with pytest.raises(MemoryLimitExceededError):
            budget.acquire(50, timeout=0.01)

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            MemoryBudget(0)


# ═══════════════════════════════════════════════════════════════════════════════
# STREAMING CONTROLLER
# ═══════════════════════════════════════════════════════════════════════════════


class TestStreamingController:
    """Test batch planning and the batch generator."""

    def test_estimates(self):
        assert StreamingController.estimate_page_bytes(150 * MB, 5) == 30 * MB
        assert StreamingController.estimate_page_bytes(10, 3) == 4
        assert StreamingController.estimate_page_bytes(10, 0) == 0
        assert StreamingController.pages_per_batch(4 * MB, 30 * MB) == 1
        assert StreamingController.pages_per_batch(4 * MB, MB) == 4

    def test_plan_covers_every_page_once(self):
        plan = StreamingController().plan(10, 10 * MB, 3 * MB)
        assert plan == [[0, 1, 2], [3, 4, 5], [6, 7, 8], [9]]

    def test_stream_concatenates_to_all_pages(self):
        controller = StreamingController()
        batches = list(controller.stream(_handle(7, 7 * MB), 2 * MB, _pages))
        assert [b.page_indices for b in batches] == [[0, 1], [2, 3], [4, 5], [6]]
        pages = [p for b in batches for p in b.pages]
        assert [p.page_index for p in pages] == list(range(7))
        assert controller.batches_processed == 4
        assert controller.peak_bytes == 2 * MB

    def test_skipped_pages_recorded(self):
        def process(i):
            return None if i == 2 else _pages(i)

        batches = list(StreamingController().stream(_handle(4, 4 * MB), 4 * MB, process))
        assert batches[0].skipped == [2]
        assert len(batches[0].pages) == 3

    def test_budget_held_per_batch(self):
        budget = MemoryBudget(10 * MB)
        seen = []
        for batch in StreamingController().stream(_handle(6, 6 * MB), 2 * MB, _pages, budget):
            seen.append(budget.in_use)
        assert seen == [2 * MB, 2 * MB, 2 * MB]
        assert budget.in_use == 0
        assert budget.peak == 2 * MB

    def test_failure_ends_stream_with_partial_batch(self):
        def process(i):
            if i == 3:
                raise CorruptedStreamError(page_index=i)
            return _pages(i)

        budget = MemoryBudget(10 * MB)
        batches = list(
            StreamingController().stream(_handle(6, 6 * MB), 2 * MB, process, budget)
        )
        assert len(batches) == 2
        assert batches[0].error is None
        assert isinstance(batches[1].error, CorruptedStreamError)
        assert [p.page_index for p in batches[1].pages] == [2]
        assert budget.in_use == 0

    def test_batch_over_budget_raises(self):
        budget = MemoryBudget(MB)
        stream = StreamingController().stream(_handle(2, 4 * MB), 4 * MB, _pages, budget)
        with pytest.raises(MemoryLimitExceededError):
            next(stream)
        assert budget.in_use == 0
