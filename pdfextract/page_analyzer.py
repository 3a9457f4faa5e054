"""
Page Analyzer
=============
Groups the glyph stream of a PDF page into classified text blocks using
PyMuPDF (fitz). Font metadata and positions are carried through verbatim;
only grouping and classification are inferred.

Classification, per run of same-style lines:
    - Heading:   font size >= body size x 1.3, alone on its line
    - ListItem:  line starts with a bullet or number marker, unless the rest
                 of the line splits into two or more gap-separated cells
    - Caption:   short italic text right next to an image or table
    - Paragraph: everything else
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

import fitz  # PyMuPDF

from .config import ExtractionConfig
from .models import BBox, FontInfo, PageProfile, TextBlock, TextBlockKind

logger = logging.getLogger(__name__)

# Bullets, dashes, "1.", "12)", "(3)", "a)"
LIST_MARKER_PATTERN = re.compile(
    r"^\s*(?:[•◦▪▫‣⁃●○■□►–\-\*]|\(?\d{1,3}[.)]|\(?[a-z]\))\s+"
)

_TEXT_FLAGS = (
    fitz.TEXT_PRESERVE_WHITESPACE
    | fitz.TEXT_PRESERVE_LIGATURES
    | fitz.TEXT_MEDIABOX_CLIP
)

# Span flag bits (PyMuPDF): 2 = italic, 16 = bold
_FLAG_ITALIC = 2
_FLAG_BOLD = 16

# Fragments whose baselines differ by less than this share a visual line
_BASELINE_TOLERANCE = 2.0


@dataclass
class _Run:
    """Contiguous same-style spans of one line."""
    text: str
    font: FontInfo
    bbox: BBox

    @property
    def style(self) -> tuple:
        return (
            self.font.family,
            round(self.font.size or 0.0, 1),
            self.font.bold,
            self.font.italic,
        )


@dataclass
class _Line:
    """A visual line: every fragment sharing one baseline, left to right."""
    baseline: float
    runs: list[_Run] = field(default_factory=list)
    text: str = ""
    # Pieces separated by a gap of at least the analyzer's cell_gap
    cells: list[str] = field(default_factory=list)

    @property
    def bbox(self) -> BBox:
        box = self.runs[0].bbox
        for run in self.runs[1:]:
            box = box.union(run.bbox)
        return box

    @property
    def font(self) -> FontInfo:
        return self.runs[0].font

    @property
    def style(self) -> tuple:
        return self.runs[0].style

    @property
    def is_uniform(self) -> bool:
        return all(r.style == self.style for r in self.runs)


@dataclass
class _Group:
    kind: TextBlockKind
    lines: list[_Line]

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @property
    def bbox(self) -> BBox:
        box = self.lines[0].bbox
        for line in self.lines[1:]:
            box = box.union(line.bbox)
        return box


def font_from_span(span: dict) -> FontInfo:
    """Build FontInfo from a fitz span dict."""
    family = span.get("font") or None
    flags = span.get("flags", 0) or 0
    name = (family or "").lower()
    return FontInfo(
        family=family,
        size=span.get("size"),
        bold=bool(flags & _FLAG_BOLD) or "bold" in name,
        italic=bool(flags & _FLAG_ITALIC) or "italic" in name or "oblique" in name,
        flags=flags,
        color=span.get("color"),
    )


class PageAnalyzer:
    """
    Turns one page into an ordered sequence of TextBlocks.

    Output order is reading order: top-to-bottom by baseline, then
    left-to-right. The same page always yields the same blocks.
    """

    def __init__(
        self,
        heading_size_ratio: float = 1.3,
        caption_max_chars: int = 160,
        caption_max_distance: float = 24.0,
        layout_preservation: bool = True,
        cell_gap: float = 8.0,
    ):
        self.heading_size_ratio = heading_size_ratio
        self.caption_max_chars = caption_max_chars
        self.caption_max_distance = caption_max_distance
        self.layout_preservation = layout_preservation
        self.cell_gap = cell_gap

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "PageAnalyzer":
        return cls(
            heading_size_ratio=config.heading_size_ratio,
            caption_max_chars=config.caption_max_chars,
            caption_max_distance=config.caption_max_distance,
            layout_preservation=config.layout_preservation,
            cell_gap=config.table_min_cell_gap,
        )

    # ─── Public API ───────────────────────────────────────────────────────

    def analyze(
        self,
        page: fitz.Page,
        page_index: Optional[int] = None,
    ) -> list[TextBlock]:
        """
        Classify the text of a page into blocks.

        Args:
            page: A loaded fitz page.
            page_index: 0-based index; defaults to ``page.number``.

        Returns:
            TextBlocks in reading order. Captions next to images are
            already classified; use ``attach_captions`` for table regions.
        """
        if page_index is None:
            page_index = page.number

        if not self.layout_preservation:
            return self._single_block(page, page_index)

        page_dict = page.get_text("dict", flags=_TEXT_FLAGS)
        lines = self.build_lines(page_dict)
        if not lines:
            return []

        groups = self.group_lines(lines)
        blocks = [self._to_block(g, page_index) for g in groups]
        return self.attach_captions(blocks, self.image_regions(page))

    def profile(
        self,
        page: fitz.Page,
        page_index: Optional[int] = None,
        raw_text: Optional[str] = None,
    ) -> PageProfile:
        """Glyph and raster statistics used by the OCR advisor."""
        if page_index is None:
            page_index = page.number
        if raw_text is None:
            raw_text = page.get_text("text")

        rect = page.rect
        page_area = max(rect.width * rect.height, 1.0)
        covered = 0.0
        pixels = 0
        dpi = 0.0
        images = self._image_info(page)
        for info in images:
            bbox = fitz.Rect(info["bbox"]) & rect
            if bbox.is_empty:
                continue
            covered += bbox.width * bbox.height
            pixels += info.get("width", 0) * info.get("height", 0)
            if bbox.width > 0:
                dpi = max(dpi, info.get("width", 0) / (bbox.width / 72.0))

        return PageProfile(
            page_index=page_index,
            glyph_count=sum(1 for ch in raw_text if not ch.isspace()),
            image_count=len(images),
            image_coverage=min(1.0, covered / page_area),
            image_pixels=pixels,
            effective_dpi=round(dpi, 1),
            width=rect.width,
            height=rect.height,
        )

    def image_regions(self, page: fitz.Page) -> list[BBox]:
        regions = []
        for info in self._image_info(page):
            r = fitz.Rect(info["bbox"]) & page.rect
            if not r.is_empty:
                regions.append(BBox.from_rect(r.x0, r.y0, r.x1, r.y1))
        return regions

    def attach_captions(
        self,
        blocks: list[TextBlock],
        regions: Iterable[BBox],
    ) -> list[TextBlock]:
        """Reclassify short italic paragraphs adjacent to a region as captions."""
        regions = list(regions)
        if not regions:
            return blocks
        result = []
        for block in blocks:
            if block.kind == TextBlockKind.PARAGRAPH and self._is_caption(block, regions):
                block = block.model_copy(update={"kind": TextBlockKind.CAPTION})
            result.append(block)
        return result

    # ─── Line building ────────────────────────────────────────────────────

    def build_lines(self, page_dict: dict) -> list[_Line]:
        """Collect fitz lines into visual lines sorted in reading order."""
        fragments: list[_Line] = []
        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                fragment = self._fragment(line)
                if fragment is not None:
                    fragments.append(fragment)

        fragments.sort(key=lambda f: (f.baseline, f.bbox.x))

        merged: list[list[_Line]] = []
        for fragment in fragments:
            if merged and abs(fragment.baseline - merged[-1][0].baseline) <= _BASELINE_TOLERANCE:
                merged[-1].append(fragment)
            else:
                merged.append([fragment])

        lines = []
        for parts in merged:
            parts.sort(key=lambda f: f.bbox.x)
            line = _Line(baseline=parts[0].baseline)
            pieces: list[str] = []
            previous: Optional[_Line] = None
            for part in parts:
                line.runs.extend(part.runs)
                pieces.append(part.text)
                if previous is not None and part.bbox.x - previous.bbox.x1 < self.cell_gap:
                    line.cells[-1] = f"{line.cells[-1]} {part.cells[0]}"
                    line.cells.extend(part.cells[1:])
                else:
                    line.cells.extend(part.cells)
                previous = part
            line.text = " ".join(pieces)
            lines.append(line)
        return lines

    def _fragment(self, line: dict) -> Optional[_Line]:
        runs: list[_Run] = []
        cells: list[str] = []
        baseline = None
        last_x1 = None
        for span in line.get("spans", []):
            text = span.get("text", "")
            if not text:
                continue
            font = font_from_span(span)
            bbox = BBox.from_rect(*span["bbox"])
            if baseline is None:
                baseline = float(span.get("origin", span["bbox"][2:])[1])
            if runs and runs[-1].font == font:
                runs[-1].text += text
                runs[-1].bbox = runs[-1].bbox.union(bbox)
            else:
                runs.append(_Run(text=text, font=font, bbox=bbox))
            if not text.strip():
                continue
            if last_x1 is None or bbox.x - last_x1 >= self.cell_gap:
                cells.append(text.strip())
            else:
                cells[-1] = f"{cells[-1]}{text}".strip()
            last_x1 = bbox.x1

        runs = [r for r in runs if r.text.strip()]
        if not runs:
            return None
        for run in runs:
            run.text = run.text.strip()
        fragment = _Line(baseline=round(baseline, 2), runs=runs, cells=cells)
        fragment.text = " ".join(r.text for r in runs)
        return fragment

    # ─── Grouping & classification ────────────────────────────────────────

    @staticmethod
    def body_size(lines: list[_Line]) -> Optional[float]:
        """Most common font size on the page, weighted by character count."""
        sizes: Counter[float] = Counter()
        for line in lines:
            for run in line.runs:
                if run.font.size:
                    sizes[round(run.font.size * 2) / 2] += len(run.text)
        if not sizes:
            return None
        return sizes.most_common(1)[0][0]

    def classify_line(self, line: _Line, body_size: Optional[float]) -> TextBlockKind:
        if LIST_MARKER_PATTERN.match(line.text) and not self._is_row(line):
            return TextBlockKind.LIST_ITEM
        size = line.font.size or 0.0
        if (
            body_size
            and line.is_uniform
            and size >= body_size * self.heading_size_ratio
        ):
            return TextBlockKind.HEADING
        return TextBlockKind.PARAGRAPH

    @staticmethod
    def _is_row(line: _Line) -> bool:
        """A numbered table row: two or more cells besides the marker."""
        cells = line.cells
        if cells and LIST_MARKER_PATTERN.fullmatch(f"{cells[0]} "):
            cells = cells[1:]
        return len(cells) >= 2

    def group_lines(self, lines: list[_Line]) -> list[_Group]:
        body = self.body_size(lines)
        groups: list[_Group] = []
        current: Optional[_Group] = None

        for line in lines:
            kind = self.classify_line(line, body)
            if current is not None and self._continues(current, line, kind):
                current.lines.append(line)
                continue
            current = _Group(kind=kind, lines=[line])
            groups.append(current)

        return groups

    @staticmethod
    def _continues(group: _Group, line: _Line, kind: TextBlockKind) -> bool:
        if kind == TextBlockKind.LIST_ITEM:
            return False
        previous = group.lines[-1]
        if line.style != previous.style:
            return False
        gap = line.bbox.y - previous.bbox.y1
        if gap > 0.8 * max(previous.bbox.height, 1.0):
            return False
        if group.kind == TextBlockKind.HEADING:
            return kind == TextBlockKind.HEADING
        if group.kind == TextBlockKind.LIST_ITEM:
            # Wrapped item text hangs past the marker
            return (
                kind == TextBlockKind.PARAGRAPH
                and line.bbox.x > group.lines[0].bbox.x + 1.0
            )
        return kind == TextBlockKind.PARAGRAPH

    def _is_caption(self, block: TextBlock, regions: list[BBox]) -> bool:
        if not block.font.italic or len(block.text) > self.caption_max_chars:
            return False
        return any(
            block.bbox.horizontal_overlap(region) > 0
            and block.bbox.vertical_gap(region) <= self.caption_max_distance
            for region in regions
        )

    @staticmethod
    def _to_block(group: _Group, page_index: int) -> TextBlock:
        return TextBlock(
            kind=group.kind,
            text=group.text,
            bbox=group.bbox,
            font=group.lines[0].font,
            page_index=page_index,
        )

    # ─── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _image_info(page: fitz.Page) -> list[dict]:
        try:
            return page.get_image_info()
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Image info unavailable on page {page.number}: {e}")
            return []

    @staticmethod
    def _single_block(page: fitz.Page, page_index: int) -> list[TextBlock]:
        text = page.get_text("text").strip()
        if not text:
            return []
        rect = page.rect
        return [TextBlock(
            kind=TextBlockKind.PARAGRAPH,
            text=text,
            bbox=BBox.from_rect(rect.x0, rect.y0, rect.x1, rect.y1),
            page_index=page_index,
        )]
