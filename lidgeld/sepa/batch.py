"""SEPA direct-debit batches: eligibility, batch reference, totals, XML.

The XML follows the shape of an ISO-20022 pain.008.001.02 document
(GrpHdr plus one PmtInf carrying the aggregate totals). Per-transaction
DrctDbtTxInf blocks with debtor and mandate details are not emitted, so
the file is a structural skeleton, not a bank-ready instruction.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from lidgeld.database.models import Fee, FeeStatus, PaymentMethod

logger = logging.getLogger(__name__)

PAIN_008_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.008.001.02"


@dataclass(frozen=True)
class SepaBatch:
    batch_ref: str
    execution_date: str     # YYYY-MM-DD requested collection date
    created_at: str         # ISO timestamp, CreDtTm
    fees: tuple[Fee, ...]
    total_amount: float
    xml: str

    @property
    def count(self) -> int:
        return len(self.fees)

    @property
    def file_name(self) -> str:
        return f"{self.batch_ref}.xml"


@dataclass
class SepaEligibility:
    """Outcome of checking a fee list before generating a batch."""
    eligible: list[Fee] = field(default_factory=list)
    without_mandate: list[Fee] = field(default_factory=list)
    already_batched: list[Fee] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def collectable(self) -> list[Fee]:
        """Eligible fees not yet part of an earlier batch."""
        return [f for f in self.eligible if not f.sepa_batch_ref]


def _is_open_sepa(fee: Fee) -> bool:
    return fee.method == PaymentMethod.SEPA and fee.status == FeeStatus.OPEN


def select_eligible(fees: list[Fee]) -> list[Fee]:
    """Fees that can be collected: SEPA method, OPEN, with a mandate."""
    return [f for f in fees if _is_open_sepa(f) and f.has_mandate]


def check_eligibility(fees: list[Fee]) -> SepaEligibility:
    """Select eligible fees and collect the user-facing warnings.

    Warnings never block generation; an empty batch is still valid.
    """
    eligible = select_eligible(fees)
    without_mandate = [f for f in fees if _is_open_sepa(f) and not f.has_mandate]
    already_batched = [f for f in eligible if f.sepa_batch_ref]

    warnings: list[str] = []
    if not eligible:
        warnings.append("Geen SEPA-transacties gevonden")
    if without_mandate:
        warnings.append(f"{len(without_mandate)} SEPA-lidgelden zonder mandaat")
    if already_batched:
        refs = sorted({f.sepa_batch_ref for f in already_batched})
        warnings.append(
            f"{len(already_batched)} lidgelden zitten al in een SEPA-batch"
            f" ({', '.join(refs)})"
        )
    return SepaEligibility(
        eligible=eligible,
        without_mandate=without_mandate,
        already_batched=already_batched,
        warnings=warnings,
    )


def make_batch_ref(now: datetime) -> str:
    return f"SEPA-{now:%Y%m%d-%H%M%S}"


def default_execution_date(today: date | None = None, offset_days: int = 2) -> str:
    """Collection date proposed to the user: today plus offset_days."""
    today = today or date.today()
    return (today + timedelta(days=offset_days)).isoformat()


def generate_batch(
    fees: list[Fee],
    execution_date: str | date,
    now: datetime | None = None,
    creditor: dict | None = None,
) -> SepaBatch:
    """Build a batch over the given fees.

    The caller selects the fees (see select_eligible) and persists the
    batch reference once the file is accepted (see sepa.export).
    """
    now = (now or datetime.now()).replace(microsecond=0)
    if isinstance(execution_date, date):
        execution_date = execution_date.isoformat()
    batch_ref = make_batch_ref(now)
    total = round(sum(f.amount for f in fees), 2)
    xml = render_pain008(
        batch_ref=batch_ref,
        created_at=now.isoformat(),
        count=len(fees),
        total_amount=total,
        execution_date=execution_date,
        creditor=creditor,
    )
    if not fees:
        logger.warning("Generated empty SEPA batch %s", batch_ref)
    return SepaBatch(
        batch_ref=batch_ref,
        execution_date=execution_date,
        created_at=now.isoformat(),
        fees=tuple(fees),
        total_amount=total,
        xml=xml,
    )


def _sub(parent: ET.Element, tag: str, text: str | None = None) -> ET.Element:
    el = ET.SubElement(parent, tag)
    if text is not None:
        el.text = text
    return el


def render_pain008(
    batch_ref: str,
    created_at: str,
    count: int,
    total_amount: float,
    execution_date: str,
    creditor: dict | None = None,
) -> str:
    """Serialize the pain.008 skeleton as a UTF-8 XML string."""
    creditor = creditor or {}
    ctrl_sum = f"{total_amount:.2f}"

    doc = ET.Element("Document", xmlns=PAIN_008_NAMESPACE)
    root = _sub(doc, "CstmrDrctDbtInitn")

    hdr = _sub(root, "GrpHdr")
    _sub(hdr, "MsgId", batch_ref)
    _sub(hdr, "CreDtTm", created_at)
    _sub(hdr, "NbOfTxs", str(count))
    _sub(hdr, "CtrlSum", ctrl_sum)
    if creditor.get("name"):
        _sub(_sub(hdr, "InitgPty"), "Nm", creditor["name"])

    pmt = _sub(root, "PmtInf")
    _sub(pmt, "PmtInfId", f"{batch_ref}-001")
    _sub(pmt, "PmtMtd", "DD")
    _sub(pmt, "NbOfTxs", str(count))
    _sub(pmt, "CtrlSum", ctrl_sum)
    _sub(pmt, "ReqdColltnDt", execution_date)
    if creditor.get("name"):
        _sub(_sub(pmt, "Cdtr"), "Nm", creditor["name"])
    if creditor.get("iban"):
        _sub(_sub(_sub(pmt, "CdtrAcct"), "Id"), "IBAN", creditor["iban"])
    if creditor.get("bic"):
        _sub(_sub(_sub(pmt, "CdtrAgt"), "FinInstnId"), "BIC", creditor["bic"])
    if creditor.get("creditor_id"):
        othr = _sub(_sub(_sub(_sub(pmt, "CdtrSchmeId"), "Id"), "PrvtId"), "Othr")
        _sub(othr, "Id", creditor["creditor_id"])
        _sub(_sub(othr, "SchmeNm"), "Prtry", "SEPA")

    ET.indent(doc, space="  ")
    body = ET.tostring(doc, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'
