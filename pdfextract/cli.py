"""
CLI Interface
=============
Command-line interface for the PDF extraction engine.

Usage:
    pdfextract extract <pdf_path> [--format text|json|markdown] [options]
    pdfextract info <pdf_path> [--password PW]
    pdfextract batch <directory> [--workers N] [--timeout S] [options]
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .api import check_encryption, get_result, try_common_passwords
from .batch import BatchExtractor, BatchItem
from .config import MB, ExtractionConfig
from .document import open_document, read_metadata
from .exceptions import EncryptedUnauthorizedError, ExtractError
from .mode import ModeSelector
from .models import ExtractionResult, ExtractionState
from .render import ExtractFormat, render

console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
FORMATS = [f.value for f in ExtractFormat]


def _build_config(
    passwords: tuple[str, ...] = (),
    memory_limit: Optional[int] = None,
    streaming_threshold: Optional[int] = None,
    no_tables: bool = False,
    no_layout: bool = False,
    log_level: str = "WARNING",
    log_file: Optional[str] = None,
) -> ExtractionConfig:
    overrides = dict(
        password_candidates=tuple(passwords),
        table_detection=not no_tables,
        layout_preservation=not no_layout,
        log_level=log_level,
        log_file=log_file,
    )
    if memory_limit is not None:
        overrides["memory_limit_bytes"] = memory_limit * MB
    if streaming_threshold is not None:
        overrides["streaming_threshold_bytes"] = streaming_threshold * MB
    try:
        return ExtractionConfig(**overrides)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _fail(error: ExtractError):
    console.print(f"[red]Error:[/] {error.user_message}")
    console.print(f"[dim]{error}[/]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pdfextract")
def cli():
    """PDF Extraction Engine: structured text, tables and metadata from PDFs."""
    pass


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "-f", "fmt",
    default=ExtractFormat.TEXT.value,
    type=click.Choice(FORMATS),
    help="Output format",
)
@click.option(
    "--output", "-o",
    default=None,
    help="Write the output to this file instead of stdout",
)
@click.option(
    "--password", "-p", "passwords",
    multiple=True,
    help="Candidate password (repeatable, tried in order)",
)
@click.option(
    "--memory-limit",
    default=None,
    type=click.IntRange(min=1),
    help="Memory limit in MB (default 256)",
)
@click.option(
    "--streaming-threshold",
    default=None,
    type=click.IntRange(min=1),
    help="File size in MB above which streaming is used (default 100)",
)
@click.option("--no-tables", is_flag=True, default=False, help="Skip table detection")
@click.option("--no-layout", is_flag=True, default=False, help="One plain block per page")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(LOG_LEVELS),
    help="Logging level",
)
@click.option("--log-file", default=None, help="Path to log file")
def extract(
    pdf_path: str,
    fmt: str,
    output: Optional[str],
    passwords: tuple[str, ...],
    memory_limit: Optional[int],
    streaming_threshold: Optional[int],
    no_tables: bool,
    no_layout: bool,
    log_level: str,
    log_file: Optional[str],
):
    """Extract text, blocks and tables from a single PDF."""
    config = _build_config(
        passwords, memory_limit, streaming_threshold,
        no_tables, no_layout, log_level, log_file,
    )
    try:
        with open_document(pdf_path, config) as handle:
            result = get_result(handle)
    except ExtractError as e:
        _fail(e)

    if result.state == ExtractionState.AUTH_FAILED:
        _fail(EncryptedUnauthorizedError(pdf_path, attempts=len(passwords)))

    text = render(result, ExtractFormat(fmt))
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        _display_summary(result, output)
    else:
        click.echo(text)

    if result.state == ExtractionState.PARTIALLY_FAILED:
        console.print(
            f"[yellow]Warning:[/] partial result "
            f"({result.stats.pages_processed}/{result.stats.total_pages} pages): "
            f"{result.error_message}"
        )


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--password", "-p", "passwords",
    multiple=True,
    help="Candidate password (repeatable, tried in order)",
)
def info(pdf_path: str, passwords: tuple[str, ...]):
    """Display PDF metadata, encryption, processing mode and OCR advice."""
    config = _build_config(passwords)
    try:
        with open_document(pdf_path, config) as handle:
            encryption = check_encryption(handle)
            if passwords and handle.is_locked:
                try_common_passwords(handle, passwords)
                encryption = check_encryption(handle)
            metadata = read_metadata(handle)
            mode = ModeSelector.from_config(config).select(
                handle.size_bytes,
                config.memory_limit_bytes,
                config.streaming_threshold_bytes,
                encrypted=encryption.is_encrypted,
            )
            result = None if handle.is_locked else get_result(handle)
    except ExtractError as e:
        _fail(e)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", Path(pdf_path).name)
    table.add_row("Pages", str(metadata.page_count))
    table.add_row("File Size", f"{metadata.file_size / MB:.2f} MB")
    if metadata.pdf_version:
        table.add_row("Format", metadata.pdf_version)
    for key in ("title", "author", "subject", "creator", "producer"):
        value = getattr(metadata, key)
        if value:
            table.add_row(key.title(), value)
    if metadata.creation_date:
        table.add_row("Created", metadata.creation_date)
    if metadata.modification_date:
        table.add_row("Modified", metadata.modification_date)

    table.add_row("Encrypted", "yes" if encryption.is_encrypted else "no")
    if encryption.is_encrypted:
        table.add_row("Security Level", encryption.security_level.value)
        table.add_row("Algorithm", encryption.algorithm or "unknown")
        table.add_row(
            "Authenticated",
            "[green]yes[/]" if encryption.authenticated else "[red]no[/]",
        )
        strategy = encryption.extraction_strategy
        table.add_row("Extraction", strategy.value)
        allowed = [
            name for name, allows in (
                ("text", strategy.allows_text_extraction()),
                ("tables", strategy.allows_table_extraction()),
                ("metadata", strategy.allows_metadata_extraction()),
            ) if allows
        ]
        table.add_row("Permits", ", ".join(allowed))

    table.add_row(
        "Processing Mode",
        mode.kind.value
        + (f" (chunk {mode.chunk_size / MB:.1f} MB)" if mode.is_streaming else ""),
    )

    if result is not None and result.ocr is not None:
        ocr = result.ocr
        table.add_row(
            "Image-dominant Pages",
            f"{len(ocr.image_dominant_pages)}/{result.stats.total_pages}",
        )
        table.add_row(
            "OCR Recommended",
            "[yellow]yes[/]" if ocr.recommended_ocr else "no",
        )
        if ocr.recommended_ocr:
            table.add_row(
                "OCR Estimate",
                f"{ocr.estimate.pages_to_process} pages, "
                f"~{ocr.estimate.estimated_time.total_seconds():.0f}s",
            )

    console.print(table)
    console.print()


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--workers", "-j",
    default=4,
    type=click.IntRange(min=1),
    help="Documents processed in parallel",
)
@click.option(
    "--timeout",
    default=None,
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds allowed per document",
)
@click.option(
    "--format", "-f", "fmt",
    default=ExtractFormat.TEXT.value,
    type=click.Choice(FORMATS),
    help="Output format",
)
@click.option(
    "--output-dir", "-o",
    default=None,
    help="Write one output file per document into this directory",
)
@click.option(
    "--password", "-p", "passwords",
    multiple=True,
    help="Candidate password (repeatable, tried in order)",
)
@click.option(
    "--memory-limit",
    default=None,
    type=click.IntRange(min=1),
    help="Shared memory limit in MB (default 256)",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(LOG_LEVELS),
    help="Logging level",
)
def batch(
    directory: str,
    workers: int,
    timeout: Optional[float],
    fmt: str,
    output_dir: Optional[str],
    passwords: tuple[str, ...],
    memory_limit: Optional[int],
    log_level: str,
):
    """Extract every PDF in a directory."""
    pdf_files = sorted(Path(directory).glob("*.pdf"))

    if not pdf_files:
        console.print(f"[yellow]No PDF files found in: {directory}[/]")
        return

    config = _build_config(passwords, memory_limit, log_level=log_level)
    out_format = ExtractFormat(fmt)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch PDF Extraction[/]\n"
            f"[dim]Found {len(pdf_files)} PDFs in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Extracting PDFs...", total=len(pdf_files))

        def on_done(item: BatchItem):
            progress.update(task, description=f"Done: {Path(item.source).name}")
            progress.advance(task)

        extractor = BatchExtractor(
            config,
            workers=workers,
            timeout=timeout,
            progress_callback=on_done,
        )
        items = extractor.run(pdf_files)

    if output_dir:
        target = Path(output_dir)
        target.mkdir(parents=True, exist_ok=True)
        for item in items:
            if item.result is None or item.result.state == ExtractionState.AUTH_FAILED:
                continue
            out_file = target / f"{Path(item.source).stem}.{out_format.extension}"
            out_file.write_text(render(item.result, out_format), encoding="utf-8")

    _display_batch_summary(items)

    if not any(item.succeeded or item.partial for item in items):
        sys.exit(1)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_summary(result: ExtractionResult, output: str):
    stats = result.stats
    table = Table(title="Extraction Summary", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Output", output)
    table.add_row("Pages", f"{stats.pages_processed}/{stats.total_pages}")
    table.add_row("Blocks", str(stats.blocks_found))
    table.add_row("Tables", str(stats.tables_found))
    table.add_row("Mode", stats.mode.value if stats.mode else "-")
    table.add_row("Elapsed", f"{stats.elapsed.total_seconds():.2f}s")
    if result.warnings:
        table.add_row("Warnings", str(len(result.warnings)))
    console.print(table)


def _display_batch_summary(items: list[BatchItem]):
    console.print()

    table = Table(title="Batch Extraction Summary", border_style="cyan")
    table.add_column("PDF", style="bold")
    table.add_column("Pages", justify="right")
    table.add_column("Blocks", justify="right")
    table.add_column("Tables", justify="right")
    table.add_column("Status", justify="center")

    for item in items:
        name = Path(item.source).name
        if item.result is None or item.result.state == ExtractionState.AUTH_FAILED:
            code = item.error_code.value if item.error_code else "error"
            table.add_row(name, "-", "-", "-", f"[red]✗ {code}[/]")
            continue
        stats = item.result.stats
        if item.succeeded:
            status = "[green]✓[/]"
        else:
            status = f"[yellow]⚠ {item.error_code.value}[/]"
        table.add_row(
            name,
            f"{stats.pages_processed}/{stats.total_pages}",
            str(stats.blocks_found),
            str(stats.tables_found),
            status,
        )

    console.print(table)
    console.print()

    ok = sum(1 for item in items if item.succeeded)
    console.print(
        f"[bold]Total:[/] {ok}/{len(items)} succeeded, "
        f"{sum(1 for item in items if item.partial)} partial, "
        f"{sum(1 for item in items if item.result is None)} failed to open"
    )
    console.print()


# ─── Entry point (for python -m pdfextract.cli) ───────────────────────────────


if __name__ == "__main__":
    cli()
