"""
Batch Extraction
================
Runs many documents through the engine concurrently.

Architecture:
    - A bounded thread pool limits the documents in flight
    - Each worker opens, extracts and closes its own DocumentHandle
    - Workers share one blocking MemoryBudget; a worker waits for room
      before reserving a chunk
    - A per-document deadline is checked before every page; an expired
      document is reported as failed and the other workers carry on
    - One failing document never aborts its siblings

Usage:
    extractor = BatchExtractor(config, workers=4, timeout=60)
    for item in extractor.run(["a.pdf", "b.pdf"]):
        print(item.source, item.succeeded, item.error_code)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import ExtractionConfig
from .document import Source, open_document
from .engine import ExtractionOrchestrator
from .exceptions import (
    CorruptedStreamError,
    ErrorCode,
    ExtractError,
    ExtractionTimeoutError,
)
from .models import ExtractionResult, ExtractionState
from .ocr import OcrStrategy
from .streaming import MemoryBudget

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    """Outcome of one document in a batch."""
    source: str
    result: Optional[ExtractionResult] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.error_code is None

    @property
    def partial(self) -> bool:
        return (
            self.result is not None
            and self.result.state == ExtractionState.PARTIALLY_FAILED
        )


class BatchExtractor:
    """
    Concurrent driver over independent documents.

    Args:
        config: Shared engine configuration.
        workers: Maximum documents processed at once.
        timeout: Seconds allowed per document; None disables the deadline.
        ocr_strategy: OCR engine handed to every orchestrator.
        progress_callback: ``callback(item)`` called as each document ends.
    """

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        workers: int = 4,
        timeout: Optional[float] = None,
        ocr_strategy: Optional[OcrStrategy] = None,
        progress_callback: Optional[Callable[[BatchItem], None]] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.config = config or ExtractionConfig()
        self.workers = workers
        self.timeout = timeout
        self.progress_callback = progress_callback
        self.budget = MemoryBudget(
            self.config.memory_limit_bytes + self.config.chunk_size_bytes,
            blocking=True,
        )
        self.orchestrator = ExtractionOrchestrator(
            self.config, ocr_strategy, memory_budget=self.budget
        )

    def run(self, sources: Sequence[Source]) -> list[BatchItem]:
        """Extract every source; items come back in input order."""
        logger.info(
            f"Batch of {len(sources)} document(s), workers={self.workers}, "
            f"timeout={self.timeout}"
        )
        with ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="pdfextract-worker",
        ) as executor:
            futures = [
                executor.submit(self.extract_one, source, self._label(source, i))
                for i, source in enumerate(sources)
            ]
            items = [future.result() for future in futures]

        ok = sum(1 for item in items if item.succeeded)
        logger.info(f"Batch complete: {ok}/{len(items)} succeeded")
        return items

    def extract_one(self, source: Source, label: Optional[str] = None) -> BatchItem:
        """Run one document end to end. Never raises for document errors."""
        label = label or self._label(source, 0)
        deadline = (
            time.monotonic() + self.timeout if self.timeout is not None else None
        )

        def cancel_check():
            if deadline is not None and time.monotonic() > deadline:
                raise ExtractionTimeoutError(self.timeout, label)

        try:
            with open_document(source, self.config) as handle:
                result = self.orchestrator.run(handle, cancel_check)
        except ExtractError as e:
            logger.error(f"{label}: {e}")
            item = BatchItem(source=label, error_code=e.code, error_message=str(e))
        except OSError as e:
            error = CorruptedStreamError(original_error=e, path=label)
            logger.error(f"{label}: {error}")
            item = BatchItem(source=label, error_code=error.code, error_message=str(error))
        else:
            item = BatchItem(
                source=label,
                result=result,
                error_code=result.error_code,
                error_message=result.error_message,
            )
            if result.state == ExtractionState.AUTH_FAILED:
                logger.error(f"{label}: {result.error_message}")

        if self.progress_callback is not None:
            self.progress_callback(item)
        return item

    @staticmethod
    def _label(source: Source, position: int) -> str:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return f"<bytes #{position}>"
        return str(Path(source))
