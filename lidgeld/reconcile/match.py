"""Match engine: pairs statement transactions with outstanding fees.

Tiers (first hit wins):
1. Member number: a member-number token in the description plus an
   amount match on one of that member's outstanding fees → certain.
2. Match rule: the first active user rule (highest priority first) whose
   criteria fit the transaction names a member with exactly one
   outstanding fee of that amount → possible.
3. Amount uniqueness: exactly one outstanding fee with the same amount
   → possible.
4. Otherwise → unknown. Ambiguous matches are never auto-resolved.

The engine is pure: it does not mutate fees or transactions, and the
same inputs always give the same results.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum

from lidgeld.config import DEFAULT_AMOUNT_TOLERANCE, DEFAULT_MEMBER_NUMBER_PATTERN
from lidgeld.database.models import Fee, FeeStatus
from lidgeld.parsers.base import DEBIT, BankTransaction


class MatchConfidence(str, Enum):
    CERTAIN = "certain"
    POSSIBLE = "possible"
    MANUAL = "manual"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _CONFIDENCE_LABELS[self]


_CONFIDENCE_LABELS = {
    MatchConfidence.CERTAIN: "Zeker",
    MatchConfidence.POSSIBLE: "Mogelijk",
    MatchConfidence.MANUAL: "Handmatig",
    MatchConfidence.UNKNOWN: "Onbekend",
}


@dataclass(frozen=True)
class MatchResult:
    transaction: BankTransaction
    match: Fee | None
    confidence: MatchConfidence

    def __post_init__(self):
        if self.confidence == MatchConfidence.UNKNOWN and self.match is not None:
            raise ValueError("unknown confidence cannot carry a match")
        if self.confidence != MatchConfidence.UNKNOWN and self.match is None:
            raise ValueError(f"{self.confidence.value} confidence requires a match")


@dataclass(frozen=True)
class MatchRule:
    """A user rule linking payments to a member.

    Every criterion that is set must hold: a keyword in the description
    (any of contains, case-insensitive), the counterparty IBAN, and the
    amount within amount_tolerance of target_amount.
    """
    name: str
    member_number: str
    contains: tuple[str, ...] = ()
    iban: str | None = None
    target_amount: float | None = None
    amount_tolerance: float = DEFAULT_AMOUNT_TOLERANCE
    priority: int = 100
    active: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> MatchRule:
        """Build a rule from a matching.yaml entry. Raises ValueError."""
        name = str(data.get("name") or "").strip()
        member_number = str(data.get("member_number") or "").strip()
        if not name or not member_number:
            raise ValueError(f"Match rule needs a name and a member_number: {data!r}")
        contains = data.get("contains") or ()
        if isinstance(contains, str):
            contains = (contains,)
        rule = cls(
            name=name,
            member_number=member_number,
            contains=tuple(str(k) for k in contains),
            iban=(str(data["iban"]).replace(" ", "").upper() if data.get("iban") else None),
            target_amount=(float(data["amount"]) if data.get("amount") is not None else None),
            amount_tolerance=float(data.get("amount_tolerance", DEFAULT_AMOUNT_TOLERANCE)),
            priority=int(data.get("priority", 100)),
            active=bool(data.get("active", True)),
        )
        if not (rule.contains or rule.iban or rule.target_amount is not None):
            raise ValueError(f"Match rule '{name}' has no criteria")
        return rule

    def matches(self, txn: BankTransaction) -> bool:
        if self.contains:
            description = (txn.description or "").lower()
            if not any(k.lower() in description for k in self.contains):
                return False
        if self.iban:
            if not txn.iban or self.iban not in txn.iban.replace(" ", "").upper():
                return False
        if self.target_amount is not None:
            if txn.amount is None or abs(txn.amount - self.target_amount) > self.amount_tolerance:
                return False
        return True


def sort_rules(rules: list[MatchRule]) -> list[MatchRule]:
    """Active rules, highest priority first; equal priorities keep their order."""
    return sorted((r for r in rules if r.active), key=lambda r: -r.priority)


def is_outstanding(fee: Fee) -> bool:
    """A fee can still receive a payment: OPEN or OVERDUE and no paid_at."""
    return fee.status in (FeeStatus.OPEN, FeeStatus.OVERDUE) and not fee.paid_at


def amounts_equal(a: float, b: float, tolerance: float = DEFAULT_AMOUNT_TOLERANCE) -> bool:
    return abs(a - b) < tolerance


def extract_member_number(
    description: str, pattern: str = DEFAULT_MEMBER_NUMBER_PATTERN
) -> str | None:
    """Return the first member-number token in a description, or None."""
    if not description:
        return None
    m = re.search(pattern, description)
    return m.group(0) if m else None


def match_transaction(
    txn: BankTransaction,
    open_fees: list[Fee],
    member_number_pattern: str = DEFAULT_MEMBER_NUMBER_PATTERN,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
    rules: list[MatchRule] | None = None,
) -> MatchResult:
    """Run the tiers for a single transaction.

    rules must already be filtered and ordered (see sort_rules).
    """
    if txn.amount is None or txn.side == DEBIT:
        return MatchResult(txn, None, MatchConfidence.UNKNOWN)

    candidates = [
        f for f in open_fees
        if is_outstanding(f) and amounts_equal(f.amount, txn.amount, tolerance)
    ]

    member_number = extract_member_number(txn.description, member_number_pattern)
    if member_number is not None:
        by_member = [f for f in candidates if f.member_number == member_number]
        if len(by_member) == 1:
            return MatchResult(txn, by_member[0], MatchConfidence.CERTAIN)

    rule = next((r for r in rules or () if r.matches(txn)), None)
    if rule is not None:
        by_rule = [f for f in candidates if f.member_number == rule.member_number]
        if len(by_rule) == 1:
            return MatchResult(txn, by_rule[0], MatchConfidence.POSSIBLE)

    if len(candidates) == 1:
        return MatchResult(txn, candidates[0], MatchConfidence.POSSIBLE)

    return MatchResult(txn, None, MatchConfidence.UNKNOWN)


def guess_matches(
    transactions: list[BankTransaction],
    open_fees: list[Fee],
    member_number_pattern: str = DEFAULT_MEMBER_NUMBER_PATTERN,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
    rules: list[MatchRule] | None = None,
) -> list[MatchResult]:
    """One MatchResult per transaction, in input order."""
    ordered = sort_rules(rules) if rules else None
    return [
        match_transaction(txn, open_fees, member_number_pattern, tolerance, ordered)
        for txn in transactions
    ]


def set_manual_match(result: MatchResult, fee: Fee | None) -> MatchResult:
    """Record an explicit user choice.

    Any chosen fee gives confidence manual, even when it equals the
    engine's own guess; clearing the match gives unknown.
    """
    if fee is None:
        return replace(result, match=None, confidence=MatchConfidence.UNKNOWN)
    return replace(result, match=fee, confidence=MatchConfidence.MANUAL)
