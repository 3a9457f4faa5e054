"""
Shared fixtures: small real PDFs generated with PyMuPDF into tmp_path.
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import fitz  # PyMuPDF
import pytest

USER_PASSWORD = "1234"
OWNER_PASSWORD = "owner-secret"

TABLE_ROWS = [
    ("Name", "Quantity", "Price"),
    ("Apple", "12", "1.50"),
    ("Banana", "7", "0.25"),
    ("Cherry", "150", "9.00"),
]
NUMBERED_ROWS = [
    ("No.", "Item", "Price"),
    ("1.", "Alpha", "3.00"),
    ("2.", "Beta", "4.50"),
    ("3.", "Gamma", "1.25"),
]
TABLE_COLUMNS = (72, 220, 360)
TABLE_TOP = 220
ROW_SPACING = 16

PARAGRAPH_LINES = [
    "The engine reads every page of the document in order and keeps",
    "the position and font of each line so that the structure of the",
    "page can be rebuilt by downstream renderers without guessing.",
]


# ─── Builders ─────────────────────────────────────────────────────────────────


def add_text_page(doc: fitz.Document, heading: str, lines=PARAGRAPH_LINES) -> fitz.Page:
    page = doc.new_page()
    page.insert_text((72, 80), heading, fontsize=20, fontname="hebo")
    y = 120
    for line in lines:
        page.insert_text((72, y), line, fontsize=11, fontname="helv")
        y += 14
    return page


def add_table(page: fitz.Page, top: float = TABLE_TOP, rows=TABLE_ROWS):
    for r, row in enumerate(rows):
        y = top + r * ROW_SPACING
        for x, cell in zip(TABLE_COLUMNS, row):
            page.insert_text((x, y), cell, fontsize=11, fontname="helv")


def build_sample_document() -> fitz.Document:
    """Five text pages; page index 1 carries a 4-row x 3-column table."""
    doc = fitz.open()
    for number in range(5):
        if number == 1:
            page = add_text_page(
                doc, "Inventory", ["The following table lists current stock levels."]
            )
            add_table(page)
        else:
            add_text_page(doc, f"Section {number + 1}")
    doc.set_metadata({
        "title": "Sample Report",
        "author": "Records Office",
        "creationDate": "D:20240315120000+00'00'",
    })
    return doc


def gray_pixmap(width: int, height: int) -> fitz.Pixmap:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.clear_with(200)
    return pix


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def sample_pdf(tmp_path) -> Path:
    path = tmp_path / "sample.pdf"
    doc = build_sample_document()
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def sample_bytes(sample_pdf) -> bytes:
    return sample_pdf.read_bytes()


@pytest.fixture
def encrypted_pdf(tmp_path) -> Path:
    """The sample document behind AES-256 with user password "1234"."""
    path = tmp_path / "encrypted.pdf"
    doc = build_sample_document()
    doc.save(
        str(path),
        encryption=fitz.PDF_ENCRYPT_AES_256,
        owner_pw=OWNER_PASSWORD,
        user_pw=USER_PASSWORD,
    )
    doc.close()
    return path


@pytest.fixture
def restricted_pdf(tmp_path) -> Path:
    """AES-128, no user password, copying forbidden but accessibility allowed."""
    path = tmp_path / "restricted.pdf"
    doc = build_sample_document()
    doc.save(
        str(path),
        encryption=fitz.PDF_ENCRYPT_AES_128,
        owner_pw=OWNER_PASSWORD,
        user_pw="",
        permissions=int(fitz.PDF_PERM_ACCESSIBILITY | fitz.PDF_PERM_PRINT),
    )
    doc.close()
    return path


@pytest.fixture
def layout_pdf(tmp_path) -> Path:
    """Heading, paragraph, three list items and an image with an italic caption."""
    path = tmp_path / "layout.pdf"
    doc = fitz.open()
    page = add_text_page(doc, "Quarterly Report")
    page.insert_text((72, 180), "- First item", fontsize=11, fontname="helv")
    page.insert_text((72, 196), "- Second item", fontsize=11, fontname="helv")
    page.insert_text((72, 212), "1. Third item", fontsize=11, fontname="helv")
    page.insert_image(fitz.Rect(72, 260, 300, 400), pixmap=gray_pixmap(228, 140))
    page.insert_text((72, 415), "Figure 1: Regional sales", fontsize=9, fontname="heit")
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def list_pdf(tmp_path) -> Path:
    """A single-column bullet list and nothing else."""
    path = tmp_path / "list.pdf"
    doc = fitz.open()
    page = doc.new_page()
    for i, item in enumerate(["apples", "bananas", "cherries", "dates", "elderberries"]):
        page.insert_text((72, 100 + i * 16), f"- {item}", fontsize=11, fontname="helv")
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def scanned_pdf(tmp_path) -> Path:
    """Ten image-only pages, as produced by a scanner."""
    path = tmp_path / "scanned.pdf"
    doc = fitz.open()
    pix = gray_pixmap(620, 877)
    for _ in range(10):
        page = doc.new_page()
        page.insert_image(page.rect, pixmap=pix)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def docx_file(tmp_path) -> Path:
    path = tmp_path / "letter.docx"
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("[Content_Types].xml", "<Types/>")
        zf.writestr("word/document.xml", "<w:document/>")
    path.write_bytes(buffer.getvalue())
    return path


@pytest.fixture
def junk_file(tmp_path) -> Path:
    path = tmp_path / "junk.pdf"
    path.write_bytes(b"this is not a pdf at all\n" * 10)
    return path


@pytest.fixture
def numbered_table_page():
    """A page whose only content is a table with a numbered first column."""
    doc = fitz.open()
    page = doc.new_page()
    add_table(page, top=120, rows=NUMBERED_ROWS)
    yield page
    doc.close()
