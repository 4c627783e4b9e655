"""Statement format selection: explicit format name or auto-detection."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .base import BaseParser, BankTransaction
from .coda import CodaParser
from .csv_parser import CsvStatementParser, get_bank_preset
from .mt940 import Mt940Parser

if TYPE_CHECKING:
    from lidgeld.config import Config

SUPPORTED_FORMATS = ("CSV", "MT940", "CODA")

# File extensions accepted for statement import without an explicit format
SUPPORTED_EXTENSIONS = {".csv", ".txt", ".mt940", ".sta", ".cod", ".coda"}


def is_supported_file(file_path: Path) -> bool:
    return Path(file_path).suffix.lower() in SUPPORTED_EXTENSIONS


def make_parser(
    fmt: str, config: Config | None = None, bank: str | None = None
) -> BaseParser:
    """Instantiate the parser for a format name (case-insensitive).

    bank selects a CSV bank preset; without it the preset configured in
    matching.yaml (if any) is used.

    Raises:
        ValueError: If the format or bank preset is not supported.
    """
    name = fmt.strip().upper()
    if name == "CSV":
        bank = bank or (config.csv_preset if config is not None else None)
        preset = get_bank_preset(bank) if bank else None
        if config is None:
            return CsvStatementParser(preset=preset)
        return CsvStatementParser(
            delimiter=config.csv_delimiter,
            columns=config.csv_columns,
            preset=preset,
        )
    if name == "MT940":
        return Mt940Parser()
    if name == "CODA":
        return CodaParser()
    raise ValueError(
        f"Unsupported statement format: {fmt!r} (expected one of {', '.join(SUPPORTED_FORMATS)})"
    )


def detect_format(
    content: str, config: Config | None = None, bank: str | None = None
) -> str:
    """Guess the statement format. MT940 wins when tags are present, then CODA.

    Raises:
        ValueError: If no parser recognises the content.
    """
    if Mt940Parser().detect(content):
        return "MT940"
    if CodaParser().detect(content):
        return "CODA"
    if make_parser("CSV", config, bank).detect(content):
        return "CSV"
    raise ValueError("Unrecognised statement format")


def parse_statement(
    fmt: str, content: str, config: Config | None = None, bank: str | None = None
) -> list[BankTransaction]:
    """Parse statement content in the given format. Never raises on bad content."""
    return make_parser(fmt, config, bank).parse(content)
