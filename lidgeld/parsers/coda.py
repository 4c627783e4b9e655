"""CODA (Belgian bank statement) parser.

CODA is a fixed-width format of 128-character records. The first
character is the record type, the second the article code:

    0   header
    1   old balance (account, statement date)
    21  movement: amount, sign, value date, communication
    22  movement continuation: more communication
    23  movement continuation: counterparty account and name
    3x  information records (ignored)
    4   free message (ignored)
    8   new balance (ignored)
    9   trailer (ignored)

Each 21 record with detail number 0000 is one transaction; 22 and 23
records enrich the movement before them. Detail records of a globalised
movement (detail number other than 0000) repeat amounts already counted
in the total and are left out.
"""

from __future__ import annotations

import logging

from .base import CREDIT, DEBIT, BaseParser, BankTransaction, parse_yymmdd

logger = logging.getLogger(__name__)

RECORD_LENGTH = 128
# Trailing blanks may be trimmed, but a 21 record must reach its value date
_MIN_MOVEMENT_LENGTH = 53


def parse_ddmmyy(value: str) -> str | None:
    """CODA DDMMYY → YYYY-MM-DD. None if invalid."""
    if len(value) != 6 or not value.isdigit():
        return None
    return parse_yymmdd(value[4:6] + value[2:4] + value[0:2])


def format_structured_communication(digits: str) -> str:
    """'123456789002' → '+++123/4567/89002+++'."""
    return f"+++{digits[:3]}/{digits[3:7]}/{digits[7:]}+++"


class CodaParser(BaseParser):
    """Parse CODA statement text."""

    format_name = "CODA"

    def detect(self, content: str) -> bool:
        lines = [line for line in content.splitlines() if line.strip()]
        if not lines or not lines[0].startswith("00000"):
            return False
        return any(line.startswith(("1", "21")) for line in lines[1:])

    def parse(self, content: str) -> list[BankTransaction]:
        self.warnings = []
        self.skipped_count = 0
        transactions: list[BankTransaction] = []
        current: BankTransaction | None = None
        statement_date: str | None = None

        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            if not raw_line.strip():
                continue
            line = raw_line.ljust(RECORD_LENGTH)
            record = line[:2]

            if line[0] == "1":
                statement_date = parse_ddmmyy(line[58:64])
                current = None
            elif record == "21":
                current = None
                if len(raw_line.rstrip()) < _MIN_MOVEMENT_LENGTH:
                    self.skipped_count += 1
                    self._warn(
                        line_number,
                        f"movement record too short ({len(raw_line.rstrip())} characters), skipped",
                    )
                    continue
                if line[6:10] != "0000":
                    logger.debug("CODA line %d: globalisation detail skipped", line_number)
                    continue
                current = self._parse_movement(line, line_number, statement_date)
                transactions.append(current)
            elif record == "22":
                if current is not None:
                    self._append_communication(current, line[10:63])
            elif record == "23":
                if current is not None:
                    current.iban = line[10:44].strip().replace(" ", "") or None
                    current.counterparty = line[47:82].strip() or None
                    current.raw["23"] = raw_line
                    self._append_communication(current, line[82:125])
            elif line[0] in "03489":
                continue
            else:
                self._warn(line_number, f"unknown record type {record.strip()!r}")

        if self.warnings:
            logger.warning(
                "CODA statement parsed with %d warning(s), %d movement(s) skipped",
                len(self.warnings), self.skipped_count,
            )
        return transactions

    def _parse_movement(
        self, line: str, line_number: int, statement_date: str | None
    ) -> BankTransaction:
        amount_str = line[32:47]
        amount = int(amount_str) / 1000 if amount_str.isdigit() else None
        if amount is None:
            self._warn(line_number, f"unreadable amount {amount_str.strip()!r}")

        date = parse_ddmmyy(line[47:53]) or parse_ddmmyy(line[115:121]) or statement_date
        if date is None:
            self._warn(line_number, f"unreadable value date {line[47:53]!r}")

        if line[61] == "1" and line[62:65] == "101" and line[65:77].isdigit():
            communication = format_structured_communication(line[65:77])
        else:
            communication = line[62:115]

        txn = BankTransaction(
            date=date,
            amount=amount,
            description="",
            side=DEBIT if line[31] == "1" else CREDIT,
            ref=line[10:31].strip() or None,
            line_number=line_number,
            raw={"21": line.rstrip()},
        )
        self._append_communication(txn, communication)
        return txn

    @staticmethod
    def _append_communication(txn: BankTransaction, text: str) -> None:
        comm = txn.raw.get("communication", "") + text
        txn.raw["communication"] = comm
        txn.description = " ".join(comm.split())
