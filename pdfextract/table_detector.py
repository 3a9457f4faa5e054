"""
Table Detector
==============
Finds tables on a page by looking for text whose columns line up.

Algorithm:
    1. Words are grouped into visual rows; inside a row, words separated by
       more than ``min_cell_gap`` points become separate tokens (cells).
    2. Runs of >= ``min_rows`` consecutive rows with at least two tokens are
       table candidates.
    3. Column boundaries are clustered from token start positions across the
       run (within ``tolerance`` points); a boundary needs support from at
       least two rows. Columns made only of bullet/number markers are
       dropped, and fewer than two columns rejects the candidate.
    4. A row is accepted when its tokens start on at least two boundaries.
       Confidence = rows matching every boundary / candidate rows.
    5. Regions below ``min_confidence`` are discarded. Regions that overlap,
       or are split by a single interrupting row (a subtotal, a note), and
       whose boundaries agree >= 50% are merged by bbox union.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import fitz  # PyMuPDF

from .config import ExtractionConfig
from .exceptions import ErrorCode
from .models import BBox, TableRegion, TextBlock, TextBlockKind
from .page_analyzer import LIST_MARKER_PATTERN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    """One cell-sized piece of text on a row."""
    text: str
    x0: float
    y0: float
    x1: float
    y1: float


@dataclass
class VisualRow:
    """Tokens sharing a baseline, left to right."""
    tokens: list[Token] = field(default_factory=list)

    @property
    def y0(self) -> float:
        return min(t.y0 for t in self.tokens)

    @property
    def y1(self) -> float:
        return max(t.y1 for t in self.tokens)

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    @property
    def bbox(self) -> BBox:
        return BBox.from_rect(
            min(t.x0 for t in self.tokens),
            self.y0,
            max(t.x1 for t in self.tokens),
            self.y1,
        )


@dataclass
class _Candidate:
    region: TableRegion
    columns: list[float]
    row_tops: list[float]
    candidate_rows: int
    row_height: float


class TableDetector:
    """
    Pattern-based table detection over text geometry.

    Deterministic: calling ``detect`` twice on the same page returns equal
    regions.
    """

    def __init__(
        self,
        min_confidence: float = 0.4,
        tolerance: float = 2.0,
        min_rows: int = 3,
        min_cell_gap: float = 8.0,
    ):
        self.min_confidence = min_confidence
        self.tolerance = tolerance
        self.min_rows = min_rows
        self.min_cell_gap = min_cell_gap

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "TableDetector":
        return cls(
            min_confidence=config.table_min_confidence,
            tolerance=config.table_column_tolerance,
            min_rows=config.table_min_rows,
            min_cell_gap=config.table_min_cell_gap,
        )

    # ─── Public API ───────────────────────────────────────────────────────

    def detect(
        self,
        page: fitz.Page,
        text_blocks: Sequence[TextBlock] = (),
        page_index: Optional[int] = None,
    ) -> list[TableRegion]:
        """
        Detect table regions on a page.

        Args:
            page: A loaded fitz page.
            text_blocks: Blocks from the PageAnalyzer; rows inside list
                items are never table candidates.
            page_index: 0-based index; defaults to ``page.number``.
        """
        if page_index is None:
            page_index = page.number
        words = page.get_text("words")
        rows = self.build_rows(words)
        rows = self.exclude_list_rows(rows, text_blocks)
        return self.detect_rows(rows, page_index)

    def detect_rows(
        self,
        rows: Sequence[VisualRow],
        page_index: int,
    ) -> list[TableRegion]:
        """Run detection over pre-built rows (top-to-bottom order)."""
        candidates: list[_Candidate] = []
        for run in self.candidate_runs(rows):
            candidate = self._build_candidate(run, page_index)
            if candidate is None:
                continue
            if candidate.region.confidence < self.min_confidence:
                logger.debug(
                    f"Page {page_index}: discarded table candidate "
                    f"({ErrorCode.TABLE_LOW_CONFIDENCE.value}, "
                    f"confidence={candidate.region.confidence:.2f})"
                )
                continue
            candidates.append(candidate)

        merged = self._merge_overlapping(candidates)
        if merged:
            logger.debug(f"Page {page_index}: {len(merged)} table(s) detected")
        return [c.region for c in merged]

    # ─── Rows ─────────────────────────────────────────────────────────────

    def build_rows(self, words: Iterable[tuple]) -> list[VisualRow]:
        """
        Group fitz words ``(x0, y0, x1, y1, text, ...)`` into rows of
        tokens.
        """
        items = sorted(
            (w for w in words if str(w[4]).strip()),
            key=lambda w: ((w[1] + w[3]) / 2, w[0]),
        )

        grouped: list[list[tuple]] = []
        for word in items:
            center = (word[1] + word[3]) / 2
            height = word[3] - word[1]
            if grouped:
                last = grouped[-1]
                last_center = sum((w[1] + w[3]) / 2 for w in last) / len(last)
                last_height = min(w[3] - w[1] for w in last)
                if abs(center - last_center) <= 0.5 * min(height, last_height):
                    last.append(word)
                    continue
            grouped.append([word])

        rows = []
        for group in grouped:
            group.sort(key=lambda w: w[0])
            row = VisualRow()
            for word in group:
                token = Token(str(word[4]), word[0], word[1], word[2], word[3])
                if row.tokens and token.x0 - row.tokens[-1].x1 < self.min_cell_gap:
                    prev = row.tokens[-1]
                    row.tokens[-1] = Token(
                        f"{prev.text} {token.text}",
                        prev.x0,
                        min(prev.y0, token.y0),
                        token.x1,
                        max(prev.y1, token.y1),
                    )
                else:
                    row.tokens.append(token)
            rows.append(row)
        return rows

    @staticmethod
    def exclude_list_rows(
        rows: list[VisualRow],
        text_blocks: Sequence[TextBlock],
    ) -> list[VisualRow]:
        """Drop tokens that sit inside a list item; rows left empty go too."""
        list_boxes = [b.bbox for b in text_blocks if b.kind == TextBlockKind.LIST_ITEM]
        if not list_boxes:
            return rows
        kept = []
        for row in rows:
            center = (row.y0 + row.y1) / 2
            boxes = [box for box in list_boxes if box.y <= center <= box.y1]
            if not boxes:
                kept.append(row)
                continue
            tokens = [
                t for t in row.tokens
                if not any(t.x0 < box.x1 and box.x < t.x1 for box in boxes)
            ]
            if tokens:
                kept.append(VisualRow(tokens))
        return kept

    def candidate_runs(self, rows: Sequence[VisualRow]) -> list[list[VisualRow]]:
        """Maximal runs of consecutive multi-token rows."""
        runs: list[list[VisualRow]] = []
        current: list[VisualRow] = []
        for row in rows:
            if len(row.tokens) < 2:
                if len(current) >= self.min_rows:
                    runs.append(current)
                current = []
                continue
            if current:
                previous = current[-1]
                if row.y0 - previous.y1 > 2.5 * max(previous.height, 1.0):
                    if len(current) >= self.min_rows:
                        runs.append(current)
                    current = []
            current.append(row)
        if len(current) >= self.min_rows:
            runs.append(current)
        return runs

    # ─── Columns ──────────────────────────────────────────────────────────

    def infer_columns(self, run: Sequence[VisualRow]) -> list[float]:
        """Column boundaries (token start x) supported by two or more rows."""
        starts = sorted(
            (token.x0, row_idx, token.text)
            for row_idx, row in enumerate(run)
            for token in row.tokens
        )

        clusters: list[list[tuple]] = []
        for item in starts:
            if clusters:
                cluster = clusters[-1]
                mean = sum(x for x, _, _ in cluster) / len(cluster)
                if item[0] - mean <= self.tolerance:
                    cluster.append(item)
                    continue
            clusters.append([item])

        columns = []
        for cluster in clusters:
            if len({row_idx for _, row_idx, _ in cluster}) < 2:
                continue
            if all(LIST_MARKER_PATTERN.match(f"{text} ") for _, _, text in cluster):
                continue
            columns.append(round(sum(x for x, _, _ in cluster) / len(cluster), 2))
        return columns

    def _column_of(self, x0: float, columns: list[float]) -> Optional[int]:
        best = None
        for idx, column in enumerate(columns):
            distance = abs(x0 - column)
            if distance <= self.tolerance and (best is None or distance < best[1]):
                best = (idx, distance)
        return best[0] if best else None

    def _cell_index(self, x0: float, columns: list[float]) -> int:
        idx = self._column_of(x0, columns)
        if idx is not None:
            return idx
        # Spill into the column the text starts inside
        idx = 0
        for i, column in enumerate(columns):
            if column <= x0 + self.tolerance:
                idx = i
        return idx

    def _build_candidate(
        self,
        run: list[VisualRow],
        page_index: int,
    ) -> Optional[_Candidate]:
        columns = self.infer_columns(run)
        if len(columns) < 2:
            return None

        accepted: list[VisualRow] = []
        full_matches = 0
        for row in run:
            matched = {
                self._column_of(t.x0, columns) for t in row.tokens
            } - {None}
            if len(matched) >= 2:
                accepted.append(row)
            if len(matched) == len(columns):
                full_matches += 1

        if len(accepted) < self.min_rows:
            return None

        cells = [self._row_cells(row, columns) for row in accepted]
        bbox = accepted[0].bbox
        for row in accepted[1:]:
            bbox = bbox.union(row.bbox)

        region = TableRegion(
            bbox=bbox,
            rows=cells,
            confidence=round(full_matches / len(run), 4),
            page_index=page_index,
        )
        return _Candidate(
            region=region,
            columns=columns,
            row_tops=[row.y0 for row in accepted],
            candidate_rows=len(run),
            row_height=max(row.height for row in accepted),
        )

    def _row_cells(self, row: VisualRow, columns: list[float]) -> list[str]:
        cells = [""] * len(columns)
        for token in row.tokens:
            idx = self._cell_index(token.x0, columns)
            cells[idx] = f"{cells[idx]} {token.text}".strip()
        return cells

    # ─── Merging ──────────────────────────────────────────────────────────

    def column_agreement(self, a: list[float], b: list[float]) -> float:
        if not a or not b:
            return 0.0
        shared = sum(
            1 for x in a if any(abs(x - y) <= self.tolerance for y in b)
        )
        return shared / max(len(a), len(b))

    @staticmethod
    def _touching(a: _Candidate, b: _Candidate) -> bool:
        """Overlapping, or separated by at most one interrupting row."""
        box_a, box_b = a.region.bbox, b.region.bbox
        if box_a.intersects(box_b):
            return True
        gap = 2.5 * max(a.row_height, b.row_height)
        return box_a.horizontal_overlap(box_b) > 0 and box_a.vertical_gap(box_b) <= gap

    def _merge_overlapping(self, candidates: list[_Candidate]) -> list[_Candidate]:
        merged = list(candidates)
        changed = True
        while changed:
            changed = False
            for i in range(len(merged)):
                for j in range(i + 1, len(merged)):
                    a, b = merged[i], merged[j]
                    if not self._touching(a, b):
                        continue
                    if self.column_agreement(a.columns, b.columns) < 0.5:
                        continue
                    merged[i] = self._merge_pair(a, b)
                    del merged[j]
                    changed = True
                    break
                if changed:
                    break
        merged.sort(key=lambda c: (c.region.bbox.y, c.region.bbox.x))
        return merged

    def _merged_columns(self, a: list[float], b: list[float]) -> list[float]:
        """Union of two boundary lists; boundaries within tolerance collapse."""
        columns: list[float] = []
        for x in sorted(a + b):
            if columns and x - columns[-1] <= self.tolerance:
                continue
            columns.append(x)
        return columns

    def _remap_cells(
        self,
        cells: list[str],
        source: list[float],
        target: list[float],
    ) -> list[str]:
        """Move cells aligned with ``source`` boundaries onto ``target``."""
        remapped = [""] * len(target)
        for x, text in zip(source, cells):
            if not text:
                continue
            idx = self._cell_index(x, target)
            remapped[idx] = f"{remapped[idx]} {text}".strip()
        return remapped

    def _merge_pair(self, a: _Candidate, b: _Candidate) -> _Candidate:
        # Region rows always line up with their candidate's columns
        columns = self._merged_columns(a.columns, b.columns)
        ordered = sorted(
            [(top, self._remap_cells(cells, a.columns, columns))
             for top, cells in zip(a.row_tops, a.region.rows)]
            + [(top, self._remap_cells(cells, b.columns, columns))
               for top, cells in zip(b.row_tops, b.region.rows)],
            key=lambda item: item[0],
        )
        rows = [cells for _, cells in ordered]
        total = a.candidate_rows + b.candidate_rows
        confidence = (
            a.region.confidence * a.candidate_rows
            + b.region.confidence * b.candidate_rows
        ) / total
        region = TableRegion(
            bbox=a.region.bbox.union(b.region.bbox),
            rows=rows,
            confidence=round(confidence, 4),
            page_index=a.region.page_index,
        )
        return _Candidate(
            region=region,
            columns=columns,
            row_tops=[top for top, _ in ordered],
            candidate_rows=total,
            row_height=max(a.row_height, b.row_height),
        )
