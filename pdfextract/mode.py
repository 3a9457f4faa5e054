"""
Mode Selector
=============
Chooses between whole-document (direct) and chunked (streaming) processing.
Pure functions only; no I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import ExtractionConfig
from .models import ProcessingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mode:
    """Selected processing strategy. ``chunk_size`` is set for streaming only."""

    kind: ProcessingMode
    chunk_size: Optional[int] = None

    @classmethod
    def direct(cls) -> "Mode":
        return cls(ProcessingMode.DIRECT)

    @classmethod
    def streaming(cls, chunk_size: int) -> "Mode":
        return cls(ProcessingMode.STREAMING, chunk_size)

    @property
    def is_streaming(self) -> bool:
        return self.kind == ProcessingMode.STREAMING


class ModeSelector:
    """
    Picks a processing mode from file size, memory budget and encryption.

    Streaming is chosen when the file exceeds the streaming threshold or
    would not fit in ``memory_limit * safety_factor`` (parsed PDF structures
    typically take 2-4x the raw bytes). Encrypted files are decrypted in
    memory, so their safety factor is halved.

    Chunk size shrinks as files grow (``base * threshold / size``), clamped
    to the ``[min_chunk, max_chunk]`` band, so the allocation that may
    overshoot the budget stays small for the largest files.
    """

    def __init__(
        self,
        safety_factor: float = 0.5,
        base_chunk: int = 4 * 1024 * 1024,
        min_chunk: int = 1024 * 1024,
        max_chunk: int = 16 * 1024 * 1024,
    ):
        self.safety_factor = safety_factor
        self.base_chunk = base_chunk
        self.min_chunk = min_chunk
        self.max_chunk = max_chunk

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "ModeSelector":
        return cls(
            safety_factor=config.memory_safety_factor,
            base_chunk=config.chunk_size_bytes,
            min_chunk=config.min_chunk_bytes,
            max_chunk=config.max_chunk_bytes,
        )

    def select(
        self,
        file_size_bytes: int,
        memory_limit_bytes: int,
        streaming_threshold_bytes: int,
        encrypted: bool = False,
    ) -> Mode:
        factor = self.safety_factor / 2 if encrypted else self.safety_factor
        budget = memory_limit_bytes * factor

        if file_size_bytes > streaming_threshold_bytes or file_size_bytes > budget:
            mode = Mode.streaming(
                self.chunk_size_for(file_size_bytes, streaming_threshold_bytes)
            )
        else:
            mode = Mode.direct()

        logger.debug(
            f"Mode {mode.kind.value} for {file_size_bytes} bytes "
            f"(limit={memory_limit_bytes}, threshold={streaming_threshold_bytes}, "
            f"encrypted={encrypted}, chunk={mode.chunk_size})"
        )
        return mode

    def chunk_size_for(self, file_size_bytes: int, reference_bytes: int) -> int:
        if file_size_bytes <= 0:
            return self.max_chunk
        scaled = self.base_chunk * reference_bytes // file_size_bytes
        return max(self.min_chunk, min(self.max_chunk, scaled))
