"""Fee lifecycle: status transitions and applying confirmed matches.

Stored statuses only move OPEN → PAID here. OVERDUE is a derived
classification (see effective_status): it is recomputed on every read
and never written eagerly.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime

from lidgeld.database.models import Fee, FeeStatus
from lidgeld.reconcile.match import MatchConfidence, MatchResult

APPLIED_CONFIDENCES = frozenset({
    MatchConfidence.CERTAIN,
    MatchConfidence.POSSIBLE,
    MatchConfidence.MANUAL,
})


def mark_paid(fee: Fee, paid_at: str) -> Fee:
    """Return a copy of fee with status PAID and paid_at set.

    The input fee is not modified; sepa_batch_ref and every other field
    are carried over unchanged.
    """
    return replace(fee, status=FeeStatus.PAID, paid_at=paid_at)


def effective_status(fee: Fee, now: datetime | None = None) -> FeeStatus:
    """Classify a fee at read time.

    An unpaid fee whose due date lies before today is OVERDUE, whatever
    its stored status says.
    """
    if fee.status == FeeStatus.PAID or fee.paid_at:
        return FeeStatus.PAID
    today = (now or datetime.now()).date().isoformat()
    if fee.due_date[:10] < today:
        return FeeStatus.OVERDUE
    return FeeStatus.OPEN


def _applicable(result: MatchResult) -> bool:
    return (
        result.confidence in APPLIED_CONFIDENCES
        and result.match is not None
        and bool(result.transaction.date)
    )


def _partition(matches: list[MatchResult]) -> tuple[list[Fee], list[MatchResult]]:
    paid: list[Fee] = []
    unresolved: list[MatchResult] = []
    seen: set[str] = set()
    for result in matches:
        if not _applicable(result) or result.match.id in seen:
            unresolved.append(result)
            continue
        seen.add(result.match.id)
        paid.append(mark_paid(result.match, result.transaction.date))
    return paid, unresolved


def apply_confirmed_matches(matches: list[MatchResult]) -> list[Fee]:
    """PAID copies of every fee confirmed by a certain/possible/manual match.

    paid_at is the transaction date. A fee confirmed by more than one
    transaction is paid by the first one; the others stay unresolved.
    """
    return _partition(matches)[0]


def unresolved_matches(matches: list[MatchResult]) -> list[MatchResult]:
    """Matches that apply_confirmed_matches does not turn into a payment.

    These must be shown to the user: unknown confidence, transactions
    without a readable date, and repeat payments for an already matched fee.
    """
    return _partition(matches)[1]


@dataclass
class ReconciliationSummary:
    paid: list[Fee] = field(default_factory=list)
    unresolved: list[MatchResult] = field(default_factory=list)
    by_confidence: dict[MatchConfidence, int] = field(default_factory=dict)

    @property
    def paid_total(self) -> float:
        return round(sum(f.amount for f in self.paid), 2)


def summarize(matches: list[MatchResult]) -> ReconciliationSummary:
    paid, unresolved = _partition(matches)
    counts = Counter(r.confidence for r in matches)
    return ReconciliationSummary(
        paid=paid,
        unresolved=unresolved,
        by_confidence={c: counts.get(c, 0) for c in MatchConfidence},
    )
