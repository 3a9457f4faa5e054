"""
Streaming Controller
====================
Chunked, memory-bounded traversal of large documents.

Pages are grouped into batches whose estimated footprint fits one chunk.
``StreamingController.stream`` is a generator: each batch is reserved
against a ``MemoryBudget``, analyzed, yielded to the caller, and released
when the caller asks for the next one. Concatenating the pages of every
batch gives the same content as a direct pass over the document.

Usage:
    controller = StreamingController()
    for batch in controller.stream(handle, chunk_size, process_page, budget):
        pages.extend(batch.pages)
"""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .document import DocumentHandle
from .exceptions import ExtractError, MemoryLimitExceededError
from .models import PageResult

logger = logging.getLogger(__name__)

PageProcessor = Callable[[int], Optional[PageResult]]


# ─── Memory Budget ────────────────────────────────────────────────────────────


class MemoryBudget:
    """
    Thread-safe byte counter shared by everything that allocates chunks.

    Args:
        capacity_bytes: Hard ceiling for bytes reserved at once.
        blocking: When True, ``acquire`` waits for other holders to release
            instead of failing. Requests larger than the whole capacity
            always fail.
    """

    def __init__(self, capacity_bytes: int, blocking: bool = False):
        if capacity_bytes <= 0:
            raise ValueError("capacity_bytes must be positive")
        self.capacity_bytes = capacity_bytes
        self.blocking = blocking
        self._in_use = 0
        self._peak = 0
        self._cond = threading.Condition()

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    @property
    def peak(self) -> int:
        with self._cond:
            return self._peak

    def acquire(self, nbytes: int, timeout: Optional[float] = None):
        """
        Reserve ``nbytes``.

        Raises:
            MemoryLimitExceededError: The request can never fit, the budget
                is non-blocking and currently full, or ``timeout`` expired.
        """
        if nbytes > self.capacity_bytes:
            raise MemoryLimitExceededError(nbytes, self.capacity_bytes, self.in_use)

        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            while self._in_use + nbytes > self.capacity_bytes:
                if not self.blocking:
                    raise MemoryLimitExceededError(
                        nbytes, self.capacity_bytes, self._in_use
                    )
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise MemoryLimitExceededError(
                            nbytes, self.capacity_bytes, self._in_use
                        )
                self._cond.wait(remaining)
            self._in_use += nbytes
            self._peak = max(self._peak, self._in_use)

    def release(self, nbytes: int):
        with self._cond:
            self._in_use = max(0, self._in_use - nbytes)
            self._cond.notify_all()

    @contextmanager
    def reserve(self, nbytes: int, timeout: Optional[float] = None):
        self.acquire(nbytes, timeout)
        try:
            yield nbytes
        finally:
            self.release(nbytes)


# ─── Batches ──────────────────────────────────────────────────────────────────


@dataclass
class PageBatch:
    """One chunk's worth of pages, already analyzed."""
    index: int
    page_indices: list[int]
    estimated_bytes: int
    pages: list[PageResult] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    # Set when the batch stopped early; pages before the failure are kept
    error: Optional[ExtractError] = None


class StreamingController:
    """
    Drives page analysis chunk by chunk.

    Per-page memory is estimated as ``file_size / page_count``; a batch
    holds as many pages as fit in one chunk (at least one). Only one batch
    per document is reserved at a time, so in-flight memory for a document
    never exceeds the budget's capacity.
    """

    def __init__(self):
        self.peak_bytes = 0
        self.batches_processed = 0

    @staticmethod
    def estimate_page_bytes(file_size_bytes: int, page_count: int) -> int:
        if page_count <= 0:
            return 0
        return max(1, math.ceil(file_size_bytes / page_count))

    @staticmethod
    def pages_per_batch(chunk_size: int, page_bytes: int) -> int:
        if page_bytes <= 0:
            return 1
        return max(1, chunk_size // page_bytes)

    def plan(self, page_count: int, file_size_bytes: int, chunk_size: int) -> list[list[int]]:
        """Page indices of every batch, in order."""
        page_bytes = self.estimate_page_bytes(file_size_bytes, page_count)
        per_batch = self.pages_per_batch(chunk_size, page_bytes)
        return [
            list(range(start, min(start + per_batch, page_count)))
            for start in range(0, page_count, per_batch)
        ]

    def stream(
        self,
        handle: DocumentHandle,
        chunk_size: int,
        process_page: PageProcessor,
        budget: Optional[MemoryBudget] = None,
    ) -> Iterator[PageBatch]:
        """
        Lazily analyze the document one batch at a time.

        Args:
            handle: An open, authenticated document.
            chunk_size: Target bytes per batch.
            process_page: Analyzes one page; returns None for a skipped page.
            budget: Memory budget the batches are reserved against.

        Yields:
            PageBatch objects in page order. The generator cannot be
            restarted. A batch whose ``error`` is set is the last one; it
            holds the pages analyzed before the failure.

        Raises:
            MemoryLimitExceededError: From ``budget`` when a batch does not
                fit. Batches yielded before stay valid.
        """
        page_count = handle.page_count
        page_bytes = self.estimate_page_bytes(handle.size_bytes, page_count)
        batches = self.plan(page_count, handle.size_bytes, chunk_size)
        logger.debug(
            f"{handle.source}: streaming {page_count} pages in {len(batches)} "
            f"batch(es), ~{page_bytes} bytes/page, chunk={chunk_size}"
        )

        for number, indices in enumerate(batches):
            nbytes = page_bytes * len(indices)
            if budget is not None:
                budget.acquire(nbytes)
            self.peak_bytes = max(self.peak_bytes, nbytes)
            try:
                batch = PageBatch(
                    index=number,
                    page_indices=indices,
                    estimated_bytes=nbytes,
                )
                try:
                    for page_index in indices:
                        page = process_page(page_index)
                        if page is None:
                            batch.skipped.append(page_index)
                        else:
                            batch.pages.append(page)
                except ExtractError as e:
                    logger.warning(
                        f"{handle.source}: batch {number} stopped at "
                        f"page {indices[0] + len(batch.pages) + len(batch.skipped)}: {e}"
                    )
                    batch.error = e
                self.batches_processed += 1
                logger.debug(
                    f"{handle.source}: batch {number} done "
                    f"(pages {indices[0]}-{indices[-1]})"
                )
                yield batch
                if batch.error is not None:
                    return
            finally:
                if budget is not None:
                    budget.release(nbytes)
