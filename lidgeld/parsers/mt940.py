"""MT940 (SWIFT customer statement) parser.

Only the statement line (:61:) and information (:86:) tags are read:

    :61:2501150115C30,00NTRFNONREF//B5A15
    :86:Betaling lidgeld 0007 januari

A :61: line opens a transaction; an untagged line directly after it
(supplementary details) starts its description, and the next :86: line
appends to the description and closes it. A :61: that is not closed by a
:86: before the next :61: or the end of the statement is dropped (counted
in skipped_count). All other tags and continuation lines are ignored.

The bank reference after "//" (or else the customer reference, unless
NONREF) becomes the transaction ref.
"""

from __future__ import annotations

import logging
import re

from .base import CREDIT, DEBIT, BaseParser, BankTransaction, parse_amount, parse_yymmdd

logger = logging.getLogger(__name__)

# YYMMDD [MMDD entry date] mark [funds code] amount
_STATEMENT_LINE_RE = re.compile(
    r"^(?P<value_date>\d{6})(?P<entry_date>\d{4})?"
    r"(?P<mark>RC|RD|C|D)(?P<funds>[A-Z])?"
    r"(?P<amount>\d+(?:,\d*)?)"
    r"(?P<rest>.*)$"
)


class Mt940Parser(BaseParser):
    """Parse MT940 statement text."""

    format_name = "MT940"

    def detect(self, content: str) -> bool:
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith((":20:", ":61:", ":25:")):
                return True
        return False

    def parse(self, content: str) -> list[BankTransaction]:
        self.warnings = []
        self.skipped_count = 0
        transactions: list[BankTransaction] = []
        current: BankTransaction | None = None
        after_61 = False

        for line_number, line in enumerate(content.splitlines(), start=1):
            line = line.strip()
            follows_61, after_61 = after_61, False
            if line.startswith(":61:"):
                if current is not None:
                    self._drop(current)
                current = self._parse_statement_line(line, line_number)
                after_61 = True
            elif follows_61 and current is not None and line and not line.startswith(":"):
                current.description = line
                current.raw["supplementary"] = line
            elif line.startswith(":86:"):
                if current is None:
                    self._warn(line_number, ":86: without a preceding :61:")
                    continue
                current.description = f"{current.description} {line[4:].strip()}".strip()
                current.raw[":86:"] = line[4:]
                transactions.append(current)
                current = None

        if current is not None:
            self._drop(current)

        if self.skipped_count:
            logger.warning(
                "MT940 statement: dropped %d unclosed :61: line(s)",
                self.skipped_count,
            )
        return transactions

    def _drop(self, txn: BankTransaction) -> None:
        self.skipped_count += 1
        self._warn(txn.line_number, ":61: not followed by :86:, transaction dropped")

    def _parse_statement_line(self, line: str, line_number: int) -> BankTransaction:
        body = line[4:]
        m = _STATEMENT_LINE_RE.match(body)
        if m is None:
            return self._fallback_statement_line(line, line_number)

        date = parse_yymmdd(m.group("value_date"))
        if date is None:
            self._warn(line_number, f"unreadable value date {m.group('value_date')!r}")
        amount = parse_amount(m.group("amount"))
        side = CREDIT if m.group("mark") in ("C", "RD") else DEBIT
        return BankTransaction(
            date=date,
            amount=amount,
            description="",
            side=side,
            ref=_statement_line_ref(m.group("rest")),
            line_number=line_number,
            raw={":61:": body},
        )

    def _fallback_statement_line(self, line: str, line_number: int) -> BankTransaction:
        """Best-effort read of a non-standard :61: line.

        Takes the token after the tag and keeps only digits and dots.
        """
        self._warn(line_number, "non-standard :61: line, amount read loosely")
        parts = line.split(":")
        token = parts[2] if len(parts) > 2 else ""
        digits = re.sub(r"[^0-9.]", "", token)
        try:
            amount = float(digits) if digits else None
        except ValueError:
            amount = None
        return BankTransaction(
            date=None,
            amount=amount,
            description="",
            line_number=line_number,
            raw={":61:": line[4:]},
        )


def _statement_line_ref(rest: str) -> str | None:
    """Reference from the tail of a :61: line: 'NTRFNONREF//B5A15' → 'B5A15'."""
    customer_ref, _, bank_ref = rest[4:].partition("//")
    if bank_ref.strip():
        return bank_ref.strip()
    if customer_ref.strip() and customer_ref.strip().upper() != "NONREF":
        return customer_ref.strip()
    return None
