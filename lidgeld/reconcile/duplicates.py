"""Possible-duplicate detection for statement transactions.

A transaction is a possible duplicate of a previously imported one when
both go the same direction with the same amount, and either their dates
lie within a small window or both carry the same reference.

Flags are advisory: they are shown to the user and never change how a
transaction is matched.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Protocol

from lidgeld.config import DEFAULT_AMOUNT_TOLERANCE, DEFAULT_DUPLICATE_WINDOW_DAYS
from lidgeld.parsers.base import BankTransaction


class _StatementLine(Protocol):
    date: str | None
    amount: float | None
    side: str
    ref: str | None


def is_possible_duplicate(
    txn: _StatementLine,
    other: _StatementLine,
    window_days: int = DEFAULT_DUPLICATE_WINDOW_DAYS,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
) -> bool:
    if txn.amount is None or other.amount is None or txn.side != other.side:
        return False
    if abs(txn.amount - other.amount) >= tolerance:
        return False
    if txn.ref and other.ref and txn.ref == other.ref:
        return True
    if txn.date and other.date:
        delta = date.fromisoformat(txn.date) - date.fromisoformat(other.date)
        return abs(delta.days) <= window_days
    return False


def flag_duplicates(
    transactions: list[BankTransaction],
    previous: Iterable[_StatementLine],
    window_days: int = DEFAULT_DUPLICATE_WINDOW_DAYS,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
) -> list[bool]:
    """One flag per transaction, in input order.

    Only earlier imports are compared; two equal payments within one
    statement are not flagged.
    """
    previous = list(previous)
    return [
        any(is_possible_duplicate(txn, p, window_days, tolerance) for p in previous)
        for txn in transactions
    ]
