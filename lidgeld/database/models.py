"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4()).

Status and payment method values are canonical English/enum values; the
Dutch spellings only exist as display labels.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FeeStatus(str, Enum):
    OPEN = "OPEN"
    PAID = "PAID"
    OVERDUE = "OVERDUE"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def from_label(cls, value: str) -> FeeStatus:
        """Accept canonical values, display labels and legacy Dutch values."""
        key = value.strip().upper()
        if key in cls.__members__:
            return cls[key]
        for status, label in _STATUS_LABELS.items():
            if label.upper() == key:
                return status
        legacy = _LEGACY_STATUS.get(key)
        if legacy is None:
            raise ValueError(f"Unknown fee status: {value!r}")
        return legacy


_STATUS_LABELS = {
    FeeStatus.OPEN: "Openstaand",
    FeeStatus.PAID: "Betaald",
    FeeStatus.OVERDUE: "Vervallen",
}

_LEGACY_STATUS = {
    "OPENSTAAND": FeeStatus.OPEN,
    "BETAALD": FeeStatus.PAID,
    "VERVALLEN": FeeStatus.OVERDUE,
    "ACHTERSTALLIG": FeeStatus.OVERDUE,
}


class PaymentMethod(str, Enum):
    SEPA = "SEPA"
    OVERSCHRIJVING = "OVERSCHRIJVING"
    BANCONTACT = "BANCONTACT"
    CASH = "CASH"

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]

    @classmethod
    def from_label(cls, value: str) -> PaymentMethod:
        key = value.strip().upper()
        if key in cls.__members__:
            return cls[key]
        for method, label in _METHOD_LABELS.items():
            if label.upper() == key:
                return method
        if key in ("TRANSFER", "BANK TRANSFER"):
            return cls.OVERSCHRIJVING
        if key in ("CONTANT", "CONTANTEN"):
            return cls.CASH
        raise ValueError(f"Unknown payment method: {value!r}")


_METHOD_LABELS = {
    PaymentMethod.SEPA: "SEPA-domiciliëring",
    PaymentMethod.OVERSCHRIJVING: "Overschrijving",
    PaymentMethod.BANCONTACT: "Bancontact",
    PaymentMethod.CASH: "Cash",
}


class ScreenType(str, Enum):
    LEDENLIJST = "LEDENLIJST"
    MEDEDELINGEN = "MEDEDELINGEN"
    MULTIMEDIA = "MULTIMEDIA"


@dataclass
class Fee:
    member_id: str
    member_number: str
    member_first_name: str
    member_last_name: str
    period_start: str      # YYYY-MM-DD
    period_end: str        # YYYY-MM-DD, inclusive
    due_date: str          # YYYY-MM-DD
    amount: float          # EUR
    method: PaymentMethod
    id: str = field(default_factory=_new_id)
    status: FeeStatus = FeeStatus.OPEN
    paid_at: str | None = None
    has_mandate: bool = False
    sepa_batch_ref: str | None = None
    category: str | None = None
    member_email: str | None = None
    reference: str | None = None
    transaction_id: str | None = None
    notes: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def member_name(self) -> str:
        return f"{self.member_first_name} {self.member_last_name}".strip()

    def validate(self) -> list[str]:
        """Return the stored-state invariants this fee violates."""
        problems: list[str] = []
        if self.status == FeeStatus.PAID and not self.paid_at:
            problems.append("PAID fee without paid_at")
        if self.status == FeeStatus.OVERDUE and self.paid_at:
            problems.append("OVERDUE fee with paid_at")
        if self.sepa_batch_ref and self.method != PaymentMethod.SEPA:
            problems.append("sepa_batch_ref on a non-SEPA fee")
        if self.period_start > self.period_end:
            problems.append("period_start after period_end")
        if self.period_end >= self.due_date:
            problems.append("due_date not after period_end")
        if self.amount < 0:
            problems.append("negative amount")
        return problems


IMPORT_COMPLETED = "completed"
IMPORT_REIMPORTED = "reimported"


@dataclass
class Import:
    file_name: str
    file_hash: str
    statement_format: str
    id: str = field(default_factory=_new_id)
    record_count: int = 0
    matched_count: int = 0
    unresolved_count: int = 0
    status: str = IMPORT_COMPLETED
    created_at: str = field(default_factory=_now)


@dataclass
class StatementTransaction:
    """A statement line stored with its import, used to spot duplicates later."""
    import_id: str
    date: str | None
    amount: float | None
    side: str
    description: str = ""
    counterparty: str | None = None
    iban: str | None = None
    ref: str | None = None
    fee_id: str | None = None
    confidence: str = "unknown"
    line_number: int | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class PublicScreen:
    name: str
    type: ScreenType
    public_token: str
    id: str = field(default_factory=_new_id)
    active: bool = False
    config: dict = field(default_factory=dict)
    updated_at: str = field(default_factory=_now)
