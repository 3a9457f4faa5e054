"""
Module entry point for: python -m pdfextract

Allows running the engine directly as a module:
    python -m pdfextract extract <pdf_path> [options]
    python -m pdfextract info <pdf_path>
    python -m pdfextract batch <directory> [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
