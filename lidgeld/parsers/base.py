"""Base parser: shared interface, data structures, and utility functions."""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

CREDIT = "CREDIT"
DEBIT = "DEBIT"


@dataclass
class BankTransaction:
    """One statement line, normalized by a parser. Lives only for a session."""
    date: str | None        # YYYY-MM-DD, None when the source date was unreadable
    amount: float | None    # always positive; direction is in side
    description: str
    side: str = CREDIT
    counterparty: str | None = None
    iban: str | None = None
    ref: str | None = None
    line_number: int | None = None
    raw: dict[str, str] = field(default_factory=dict)


@dataclass
class ParseWarning:
    line_number: int | None
    message: str

    def __str__(self) -> str:
        if self.line_number is None:
            return self.message
        return f"line {self.line_number}: {self.message}"


class BaseParser(ABC):
    """Abstract base for all statement parsers.

    Parsing is best effort: parse() never raises on malformed content.

    Attributes:
        warnings: Diagnostics collected during the last parse().
        skipped_count: Number of statement entries dropped entirely during
            the last parse(). Check this after parse() to detect data loss.
    """

    format_name: str = ""

    def __init__(self):
        self.warnings: list[ParseWarning] = []
        self.skipped_count: int = 0

    @abstractmethod
    def parse(self, content: str) -> list[BankTransaction]:
        """Parse statement text and return normalized transactions.

        Implementations should reset and fill self.warnings and
        self.skipped_count.
        """

    @abstractmethod
    def detect(self, content: str) -> bool:
        """Return True if this parser can handle the given content."""

    def parse_file(self, file_path: Path) -> list[BankTransaction]:
        return self.parse(read_statement(file_path))

    def _warn(self, line_number: int | None, message: str) -> None:
        self.warnings.append(ParseWarning(line_number, message))


def read_statement(file_path: Path) -> str:
    """Read a statement file as text.

    Bank exports are UTF-8 or Latin-1 (older Belgian banks); a UTF-8 BOM
    is dropped.
    """
    data = Path(file_path).read_bytes()
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return text


def compute_content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


_CURRENCY_RE = re.compile(r"[€$£]|EUR", re.IGNORECASE)


def parse_amount(value: str) -> float | None:
    """Parse a bank amount string into a float.

    Handles both decimal conventions:
        30.00, -30.00, 1,234.56    (dot decimal)
        30,00, 1.234,56, 1 234,56  (comma decimal, Belgian exports)
        € 30, EUR 30,00

    The last separator followed by one or two digits is taken as the
    decimal mark. Returns None if nothing numeric remains.
    """
    if value is None:
        return None
    s = _CURRENCY_RE.sub("", value).strip().replace(" ", "").replace("\u00a0", "")
    if not s:
        return None
    negative = s.startswith("-") or s.endswith("-")
    s = s.strip("+-")

    m = re.match(r"^(.*?)([.,])(\d{1,2})$", s)
    if m:
        whole, _, frac = m.groups()
        whole = re.sub(r"[.,]", "", whole)
        s = f"{whole or '0'}.{frac}"
    else:
        s = re.sub(r"[.,]", "", s)

    if not re.fullmatch(r"\d+(\.\d+)?", s):
        return None
    amount = float(s)
    return -amount if negative else amount


_DATE_FORMATS = (
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})"), ("y", "m", "d")),
    (re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$"), ("y", "m", "d")),
    (re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$"), ("d", "m", "y")),
    (re.compile(r"^(\d{4})(\d{2})(\d{2})$"), ("y", "m", "d")),
)


def parse_date(value: str) -> str | None:
    """Normalize a statement date to YYYY-MM-DD.

    Accepts YYYY-MM-DD (optionally followed by a time), YYYY/MM/DD,
    DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY and YYYYMMDD. Day-first is assumed
    for slash dates, as in Belgian exports. Returns None if invalid.
    """
    if not value:
        return None
    value = value.strip()
    for pattern, order in _DATE_FORMATS:
        m = pattern.match(value)
        if not m:
            continue
        parts = dict(zip(order, (int(g) for g in m.groups())))
        try:
            return date(parts["y"], parts["m"], parts["d"]).isoformat()
        except ValueError:
            return None
    return None


def parse_yymmdd(value: str) -> str | None:
    """SWIFT YYMMDD → YYYY-MM-DD (years are 20YY). None if invalid."""
    if not value or len(value) != 6 or not value.isdigit():
        return None
    try:
        return date(2000 + int(value[:2]), int(value[2:4]), int(value[4:6])).isoformat()
    except ValueError:
        return None
