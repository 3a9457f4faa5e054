"""
Output Rendering
================
Turns an ExtractionResult into text, JSON or Markdown for the CLI and
downstream renderers. JSON is the lossless form of the data model.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .models import BBox, ExtractionResult, PageResult, TableRegion, TextBlockKind
from .page_analyzer import LIST_MARKER_PATTERN


class ExtractFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"

    @property
    def extension(self) -> str:
        return {
            ExtractFormat.TEXT: "txt",
            ExtractFormat.JSON: "json",
            ExtractFormat.MARKDOWN: "md",
        }[self]


def render(result: ExtractionResult, fmt: ExtractFormat) -> str:
    if fmt == ExtractFormat.JSON:
        return result.model_dump_json(indent=2)
    if fmt == ExtractFormat.MARKDOWN:
        return render_markdown(result)
    return result.text


def render_markdown(result: ExtractionResult) -> str:
    """
    Markdown view of the blocks: headings as ``##``, list items as ``-``,
    captions in italics and tables as pipe tables placed where their rows
    appear in the text.
    """
    parts: list[str] = []
    for page in result.pages:
        parts.extend(_page_markdown(page))
    return "\n\n".join(parts) + ("\n" if parts else "")


def _page_markdown(page: PageResult) -> list[str]:
    parts: list[str] = []
    emitted: set[int] = set()
    for block in page.blocks:
        table_idx = _containing_table(block.bbox, page.tables)
        if table_idx is not None:
            if table_idx not in emitted:
                emitted.add(table_idx)
                parts.append(markdown_table(page.tables[table_idx]))
            continue

        if block.kind == TextBlockKind.HEADING:
            parts.append(f"## {_one_line(block.text)}")
        elif block.kind == TextBlockKind.LIST_ITEM:
            parts.append(f"- {_one_line(LIST_MARKER_PATTERN.sub('', block.text, count=1))}")
        elif block.kind == TextBlockKind.CAPTION:
            parts.append(f"*{_one_line(block.text)}*")
        else:
            parts.append(_one_line(block.text))

    for idx, table in enumerate(page.tables):
        if idx not in emitted:
            parts.append(markdown_table(table))
    return parts


def markdown_table(table: TableRegion) -> str:
    header, *body = table.rows
    lines = [
        "| " + " | ".join(_cell(c) for c in header) + " |",
        "|" + "|".join(" --- " for _ in header) + "|",
    ]
    for row in body:
        lines.append("| " + " | ".join(_cell(c) for c in row) + " |")
    return "\n".join(lines)


def _containing_table(bbox: BBox, tables: list[TableRegion]) -> Optional[int]:
    cx = bbox.x + bbox.width / 2
    cy = bbox.y + bbox.height / 2
    for idx, table in enumerate(tables):
        t = table.bbox
        if t.x <= cx <= t.x1 and t.y <= cy <= t.y1:
            return idx
    return None


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _cell(text: str) -> str:
    return _one_line(text).replace("|", "\\|")
