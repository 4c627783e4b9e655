"""Reconciliation session: statement → matches → user review → persist.

    load → (override ...) → confirm
                          ↘ discard

Nothing is written before confirm(); confirm() commits the paid fees, the
import record and its statement lines in one database transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from lidgeld.database.models import (
    IMPORT_COMPLETED,
    IMPORT_REIMPORTED,
    Fee,
    Import,
    StatementTransaction,
)
from lidgeld.database.repository import DuplicateImportError
from lidgeld.parsers.base import ParseWarning, compute_content_hash, read_statement
from lidgeld.parsers.registry import detect_format, make_parser
from lidgeld.reconcile.duplicates import flag_duplicates
from lidgeld.reconcile.lifecycle import ReconciliationSummary, summarize
from lidgeld.reconcile.match import MatchResult, MatchRule, guess_matches, set_manual_match

if TYPE_CHECKING:
    from lidgeld.config import Config
    from lidgeld.database.repository import Repository

logger = logging.getLogger(__name__)


class SessionStateError(Exception):
    """Raised when a session operation is called in the wrong state."""


class ReconciliationSession:
    """Holds one statement import while the user reviews the matches.

    Args:
        repo: Repository providing outstanding fees and receiving updates.
        config: Optional Config for CSV layout and matching settings.
    """

    def __init__(self, repo: Repository, config: Config | None = None):
        self.repo = repo
        self.config = config
        self.file_name: str | None = None
        self.statement_format: str | None = None
        self.file_hash: str | None = None
        self.results: list[MatchResult] = []
        self.duplicate_flags: list[bool] = []
        self.warnings: list[ParseWarning] = []
        self.skipped_count = 0
        self.duplicate_of: Import | None = None
        self._fees_by_id: dict[str, Fee] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def possible_duplicates(self) -> list[int]:
        """Indexes of transactions resembling a line of an earlier import."""
        return [i for i, flagged in enumerate(self.duplicate_flags) if flagged]

    def load(
        self, file_path: Path, fmt: str | None = None, bank: str | None = None
    ) -> list[MatchResult]:
        file_path = Path(file_path)
        return self.load_content(read_statement(file_path), fmt, file_path.name, bank)

    def load_content(
        self,
        content: str,
        fmt: str | None = None,
        file_name: str = "statement",
        bank: str | None = None,
    ) -> list[MatchResult]:
        """Parse a statement and guess matches against outstanding fees.

        Raises:
            ValueError: If fmt or bank is unsupported, fmt is not given and
                the content cannot be recognised, or a match rule is invalid.
        """
        fmt = (fmt or detect_format(content, self.config, bank)).upper()
        parser = make_parser(fmt, self.config, bank)
        transactions = parser.parse(content)
        rules = [MatchRule.from_dict(r) for r in self.config.match_rules] if self.config else []

        self.file_name = file_name
        self.statement_format = fmt
        self.file_hash = compute_content_hash(content)
        self.warnings = list(parser.warnings)
        self.skipped_count = parser.skipped_count
        self.duplicate_of = self.repo.get_import_by_hash(self.file_hash)
        if self.duplicate_of is not None:
            logger.warning(
                "Statement %s was already imported on %s",
                file_name, self.duplicate_of.created_at,
            )

        open_fees = self.repo.get_outstanding_fees()
        self._fees_by_id = {f.id: f for f in open_fees}
        if self.config is not None:
            self.results = guess_matches(
                transactions, open_fees,
                member_number_pattern=self.config.member_number_pattern,
                tolerance=self.config.amount_tolerance,
                rules=rules,
            )
            self.duplicate_flags = flag_duplicates(
                transactions, self.repo.list_statement_transactions(),
                window_days=self.config.duplicate_window_days,
                tolerance=self.config.amount_tolerance,
            )
        else:
            self.results = guess_matches(transactions, open_fees)
            self.duplicate_flags = flag_duplicates(
                transactions, self.repo.list_statement_transactions(),
            )
        self._loaded = True

        logger.info(
            "Loaded %s (%s): %d transaction(s), %d open fee(s), %d warning(s),"
            " %d possible duplicate(s)",
            file_name, fmt, len(transactions), len(open_fees), len(self.warnings),
            len(self.possible_duplicates),
        )
        return self.results

    def override(self, index: int, fee_id: str | None) -> MatchResult:
        """Set (or clear, with None) the fee for result number index.

        Raises:
            SessionStateError: If nothing is loaded.
            IndexError: If index is out of range.
            KeyError: If fee_id is not an outstanding fee.
        """
        self._require_loaded()
        if not 0 <= index < len(self.results):
            raise IndexError(f"No transaction #{index} in this statement")
        fee = None
        if fee_id is not None:
            fee = self._fees_by_id.get(fee_id)
            if fee is None:
                raise KeyError(f"Fee '{fee_id}' is not an outstanding fee")
        result = set_manual_match(self.results[index], fee)
        self.results[index] = result
        return result

    def preview(self) -> ReconciliationSummary:
        self._require_loaded()
        return summarize(self.results)

    def confirm(
        self, now: datetime | None = None, force: bool = False
    ) -> ReconciliationSummary:
        """Persist the confirmed payments, the import and its statement lines.

        A statement imported before is only accepted with force; it is then
        recorded with status 'reimported'.

        Raises:
            SessionStateError: If nothing is loaded.
            DuplicateImportError: If this statement was confirmed before and
                force is not set.
        """
        self._require_loaded()
        if self.duplicate_of is not None and not force:
            raise DuplicateImportError(self.file_hash or "", self.duplicate_of.id)

        summary = summarize(self.results)
        imp = Import(
            file_name=self.file_name or "statement",
            file_hash=self.file_hash or "",
            statement_format=self.statement_format or "",
            record_count=len(self.results),
            matched_count=len(summary.paid),
            unresolved_count=len(summary.unresolved),
            status=IMPORT_REIMPORTED if self.duplicate_of is not None else IMPORT_COMPLETED,
            created_at=(now or datetime.now(timezone.utc)).isoformat(),
        )
        self.repo.save_paid_fees(summary.paid, imp, self._statement_lines(imp.id))
        logger.info(
            "Confirmed %s (%s): %d fee(s) paid (%.2f EUR), %d unresolved",
            imp.file_name, imp.status, len(summary.paid), summary.paid_total,
            len(summary.unresolved),
        )
        self._reset()
        return summary

    def discard(self) -> None:
        """Drop the loaded statement without writing anything."""
        if self._loaded:
            logger.info("Discarded reconciliation of %s", self.file_name)
        self._reset()

    def _statement_lines(self, import_id: str) -> list[StatementTransaction]:
        lines = []
        for result in self.results:
            txn = result.transaction
            lines.append(StatementTransaction(
                import_id=import_id,
                date=txn.date,
                amount=txn.amount,
                side=txn.side,
                description=txn.description,
                counterparty=txn.counterparty,
                iban=txn.iban,
                ref=txn.ref,
                fee_id=result.match.id if result.match else None,
                confidence=result.confidence.value,
                line_number=txn.line_number,
            ))
        return lines

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise SessionStateError("No statement loaded")

    def _reset(self) -> None:
        self.file_name = None
        self.statement_format = None
        self.file_hash = None
        self.results = []
        self.duplicate_flags = []
        self.warnings = []
        self.skipped_count = 0
        self.duplicate_of = None
        self._fees_by_id = {}
        self._loaded = False
