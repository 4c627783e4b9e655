"""CSV bank statement parser.

The first non-blank line is a header row. Columns are located either by
header name (case-insensitive aliases per field, see matching.yaml), so
column order differs freely between bank exports, or by position when a
bank preset is used (KBC, ING, BNP Paribas Fortis).

Each physical line is one record. Quoted fields may contain the
delimiter, but a quote never spans lines: a line with an unbalanced quote
is split on the delimiter as-is and reported in self.warnings.

Every non-blank data line yields exactly one BankTransaction. Rows with a
missing or unreadable date/amount are kept as degraded records (None
fields) and reported in self.warnings.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass

from lidgeld.config import DEFAULT_CSV_COLUMNS

from .base import CREDIT, DEBIT, BaseParser, BankTransaction, parse_amount, parse_date

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "amount", "description")
OPTIONAL_FIELDS = ("counterparty", "iban", "ref")


@dataclass(frozen=True)
class BankPreset:
    """Fixed column layout of one bank's CSV export (0-based positions)."""
    name: str
    delimiter: str
    positions: dict[str, int]


BANK_PRESETS = {
    "KBC": BankPreset(
        "KBC", ";",
        {"date": 2, "amount": 7, "description": 8, "counterparty": 4, "iban": 5, "ref": 9},
    ),
    "ING": BankPreset(
        "ING", ",",
        {"date": 0, "amount": 6, "description": 8, "counterparty": 2, "iban": 3, "ref": 7},
    ),
    "BNP_PARIBAS_FORTIS": BankPreset(
        "BNP_PARIBAS_FORTIS", ";",
        {"date": 1, "amount": 3, "description": 4, "counterparty": 5, "ref": 6},
    ),
}


def get_bank_preset(name: str) -> BankPreset:
    """Look up a preset by name (case-insensitive, '-' and ' ' read as '_').

    Raises:
        ValueError: If no preset has that name.
    """
    key = name.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return BANK_PRESETS[key]
    except KeyError:
        raise ValueError(
            f"Unknown bank preset: {name!r} (expected one of {', '.join(BANK_PRESETS)})"
        ) from None


class CsvStatementParser(BaseParser):
    """Parse comma (or otherwise) delimited statement exports.

    Args:
        delimiter: Field separator. Belgian bank exports often use ';'.
        columns: Maps canonical field name (date, amount, description,
            counterparty, iban, ref) to the accepted header names. Defaults
            cover English and Dutch.
        preset: Bank layout; when given, its delimiter and column positions
            replace delimiter and columns.
    """

    format_name = "CSV"

    def __init__(
        self,
        delimiter: str = ",",
        columns: dict[str, list[str]] | None = None,
        preset: BankPreset | None = None,
    ):
        super().__init__()
        self.preset = preset
        self.delimiter = preset.delimiter if preset else delimiter
        self.columns = {
            name: [a.lower() for a in aliases]
            for name, aliases in (columns or DEFAULT_CSV_COLUMNS).items()
        }

    def detect(self, content: str) -> bool:
        """A CSV statement has a header naming at least an amount column.

        With a preset, the header only needs enough delimited columns.
        """
        header = _first_nonblank_line(content)
        if header is None or header.startswith(":"):
            return False
        names = [h.strip().strip('"').lower() for h in header.split(self.delimiter)]
        if self.preset is not None:
            return len(names) > max(self.preset.positions.values())
        return any(n in self.columns.get("amount", []) for n in names)

    def parse(self, content: str) -> list[BankTransaction]:
        self.warnings = []
        self.skipped_count = 0
        transactions: list[BankTransaction] = []
        header: list[str] | None = None
        index: dict[str, int | None] = {}

        for line_number, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            row = self._split_line(line, line_number)
            if header is None:
                header = [h.strip().lstrip("\ufeff") for h in row]
                index = self._resolve_columns(header, line_number)
                continue
            transactions.append(self._parse_row(row, header, index, line_number))

        if header is None:
            self._warn(None, "empty statement: no header row")
        if self.warnings:
            logger.warning(
                "CSV statement parsed with %d warning(s) over %d row(s)",
                len(self.warnings), len(transactions),
            )
        return transactions

    def _split_line(self, line: str, line_number: int) -> list[str]:
        if line.count('"') % 2:
            self._warn(line_number, "unbalanced quote, fields split on delimiter")
            return _plain_split(line, self.delimiter)
        try:
            return next(csv.reader([line], delimiter=self.delimiter, strict=True))
        except csv.Error as e:
            self._warn(line_number, f"unreadable quoting ({e}), fields split on delimiter")
            return _plain_split(line, self.delimiter)

    def _resolve_columns(
        self, header: list[str], line_number: int
    ) -> dict[str, int | None]:
        if self.preset is not None:
            return {
                name: self.preset.positions.get(name)
                for name in REQUIRED_FIELDS + OPTIONAL_FIELDS
            }
        lowered = [h.lower() for h in header]
        index: dict[str, int | None] = {}
        for name in REQUIRED_FIELDS + OPTIONAL_FIELDS:
            aliases = self.columns.get(name, [])
            index[name] = next(
                (i for i, h in enumerate(lowered) if h in aliases), None
            )
            if index[name] is None and name in REQUIRED_FIELDS:
                self._warn(line_number, f"no '{name}' column in header")
        return index

    def _parse_row(
        self,
        row: list[str],
        header: list[str],
        index: dict[str, int | None],
        line_number: int,
    ) -> BankTransaction:
        raw = {
            name: (row[i].strip() if i < len(row) else "")
            for i, name in enumerate(header)
        }
        if len(row) != len(header):
            self._warn(
                line_number,
                f"expected {len(header)} fields, found {len(row)}",
            )

        date_str = self._field(row, index.get("date"))
        amount_str = self._field(row, index.get("amount"))
        description = self._field(row, index.get("description"))

        date = parse_date(date_str)
        if date is None and index.get("date") is not None:
            self._warn(line_number, f"unreadable date {date_str!r}")

        amount = parse_amount(amount_str)
        side = CREDIT
        if amount is None:
            if index.get("amount") is not None:
                self._warn(line_number, f"unreadable amount {amount_str!r}")
        elif amount < 0:
            side = DEBIT
            amount = -amount

        return BankTransaction(
            date=date,
            amount=amount,
            description=description,
            side=side,
            counterparty=self._field(row, index.get("counterparty")) or None,
            iban=self._field(row, index.get("iban")).replace(" ", "") or None,
            ref=self._field(row, index.get("ref")) or None,
            line_number=line_number,
            raw=raw,
        )

    @staticmethod
    def _field(row: list[str], i: int | None) -> str:
        if i is None or i >= len(row):
            return ""
        return row[i].strip()


def _plain_split(line: str, delimiter: str) -> list[str]:
    return [cell.strip().strip('"') for cell in line.split(delimiter)]


def _first_nonblank_line(content: str) -> str | None:
    for line in content.splitlines():
        if line.strip():
            return line.lstrip("\ufeff").strip()
    return None
