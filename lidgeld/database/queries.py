"""Fee list queries: filtering, sorting, pagination and status overview.

These work on fee lists already loaded from the repository, with the
status always derived at query time (effective_status), never taken
from a stored OVERDUE flag.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from lidgeld.database.models import Fee, FeeStatus, PaymentMethod
from lidgeld.reconcile.lifecycle import effective_status


@dataclass
class FeeFilter:
    search: str | None = None
    status: FeeStatus | None = None
    year: int | None = None
    method: PaymentMethod | None = None
    period_from: str | None = None     # YYYY-MM-DD
    period_to: str | None = None       # YYYY-MM-DD
    categories: list[str] = field(default_factory=list)
    amount_min: float | None = None
    amount_max: float | None = None
    only_with_mandate: bool = False
    only_overdue: bool = False


def _matches_search(fee: Fee, term: str) -> bool:
    term = term.lower()
    return (
        term in fee.member_number.lower()
        or term in fee.member_name.lower()
        or term in fee.period_start
        or term in fee.period_end
    )


def filter_fees(
    fees: list[Fee], filters: FeeFilter, now: datetime | None = None
) -> list[Fee]:
    result: list[Fee] = []
    for fee in fees:
        status = effective_status(fee, now)
        if filters.search and not _matches_search(fee, filters.search):
            continue
        if filters.status is not None and status != filters.status:
            continue
        if filters.year is not None and fee.period_start[:4] != str(filters.year):
            continue
        if filters.method is not None and fee.method != filters.method:
            continue
        if filters.period_from and fee.period_start < filters.period_from:
            continue
        if filters.period_to and fee.period_end > filters.period_to:
            continue
        if filters.categories and fee.category not in filters.categories:
            continue
        if filters.amount_min is not None and fee.amount < filters.amount_min:
            continue
        if filters.amount_max is not None and fee.amount > filters.amount_max:
            continue
        if filters.only_with_mandate and not fee.has_mandate:
            continue
        if filters.only_overdue and status != FeeStatus.OVERDUE:
            continue
        result.append(fee)
    return result


SORT_KEYS = {
    "member_number": lambda f: f.member_number,
    "member_name": lambda f: f.member_name.lower(),
    "period_start": lambda f: f.period_start,
    "due_date": lambda f: f.due_date,
    "amount": lambda f: f.amount,
    "status": lambda f: f.status.value,
    "method": lambda f: f.method.value,
    "paid_at": lambda f: f.paid_at or "",
}


def sort_fees(fees: list[Fee], sort_by: str = "due_date", descending: bool = False) -> list[Fee]:
    """Return a sorted copy. Ties keep their input order.

    Raises:
        ValueError: On an unknown sort key.
    """
    key = SORT_KEYS.get(sort_by)
    if key is None:
        raise ValueError(
            f"Cannot sort on {sort_by!r} (choose from {', '.join(sorted(SORT_KEYS))})"
        )
    return sorted(fees, key=key, reverse=descending)


@dataclass
class Page:
    data: list[Fee]
    total: int
    page: int
    per_page: int

    @property
    def has_more(self) -> bool:
        return self.page * self.per_page < self.total

    @property
    def page_count(self) -> int:
        return max(1, -(-self.total // self.per_page))


def paginate_fees(fees: list[Fee], page: int = 1, per_page: int = 25) -> Page:
    """Slice out one 1-based page."""
    if page < 1 or per_page < 1:
        raise ValueError("page and per_page must be positive")
    start = (page - 1) * per_page
    return Page(
        data=fees[start:start + per_page],
        total=len(fees),
        page=page,
        per_page=per_page,
    )


def status_counts(fees: list[Fee], now: datetime | None = None) -> dict[FeeStatus, int]:
    counts = Counter(effective_status(f, now) for f in fees)
    return {s: counts.get(s, 0) for s in FeeStatus}


def outstanding_total(fees: list[Fee], now: datetime | None = None) -> float:
    """Sum of all unpaid fee amounts (open and overdue)."""
    return round(
        sum(f.amount for f in fees if effective_status(f, now) != FeeStatus.PAID), 2
    )
