"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .models import (
    Fee,
    FeeStatus,
    Import,
    PaymentMethod,
    PublicScreen,
    ScreenType,
    StatementTransaction,
)


class DuplicateImportError(Exception):
    """Raised when attempting to import a statement with a hash that already exists."""

    def __init__(self, file_hash: str, existing_import_id: str | None = None):
        self.file_hash = file_hash
        self.existing_import_id = existing_import_id
        super().__init__(f"Import with file_hash '{file_hash}' already exists")


class FeeNotFoundError(Exception):
    def __init__(self, fee_id: str):
        self.fee_id = fee_id
        super().__init__(f"Fee '{fee_id}' not found")


class InvalidFeeError(Exception):
    """Raised when a fee violates its stored-state invariants."""

    def __init__(self, fee_id: str, problems: list[str]):
        self.fee_id = fee_id
        self.problems = problems
        super().__init__(f"Invalid fee '{fee_id}': {'; '.join(problems)}")


class StaleBatchError(Exception):
    """Raised when fees changed between batch generation and ref assignment."""

    def __init__(self, batch_ref: str, fee_ids: list[str]):
        self.batch_ref = batch_ref
        self.fee_ids = fee_ids
        super().__init__(
            f"Cannot assign {batch_ref}: {len(fee_ids)} fee(s) are no longer "
            f"open SEPA fees without a batch"
        )


_FEE_COLUMNS = (
    "id", "member_id", "member_number", "member_first_name",
    "member_last_name", "member_email", "period_start", "period_end",
    "due_date", "amount", "method", "status", "paid_at", "has_mandate",
    "sepa_batch_ref", "category", "reference", "transaction_id", "notes",
    "created_at", "updated_at",
)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(migrations_dir.glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    sql_text = sql_file.read_text()
                    for statement in sql_text.split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Fees ────────────────────────────────────────────────

    @staticmethod
    def _fee_params(fee: Fee) -> tuple:
        return (
            fee.id, fee.member_id, fee.member_number, fee.member_first_name,
            fee.member_last_name, fee.member_email, fee.period_start,
            fee.period_end, fee.due_date, round(fee.amount, 2),
            PaymentMethod(fee.method).value, FeeStatus(fee.status).value,
            fee.paid_at, int(bool(fee.has_mandate)), fee.sepa_batch_ref,
            fee.category, fee.reference, fee.transaction_id, fee.notes,
            fee.created_at, fee.updated_at,
        )

    def insert_fee(self, fee: Fee) -> Fee:
        problems = fee.validate()
        if problems:
            raise InvalidFeeError(fee.id, problems)
        self.conn.execute(
            f"INSERT INTO fees ({', '.join(_FEE_COLUMNS)})"
            f" VALUES ({', '.join('?' * len(_FEE_COLUMNS))})",
            self._fee_params(fee),
        )
        self.conn.commit()
        return fee

    def insert_fees_batch(self, fees: list[Fee]):
        """Insert multiple fees atomically.

        Every fee is validated before the first insert, so an invalid fee
        leaves the table untouched.
        """
        for fee in fees:
            problems = fee.validate()
            if problems:
                raise InvalidFeeError(fee.id, problems)
        try:
            self.conn.execute("BEGIN")
            self.conn.executemany(
                f"INSERT INTO fees ({', '.join(_FEE_COLUMNS)})"
                f" VALUES ({', '.join('?' * len(_FEE_COLUMNS))})",
                [self._fee_params(f) for f in fees],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_fee(self, fee_id: str) -> Fee | None:
        row = self.conn.execute(
            "SELECT * FROM fees WHERE id = ?", (fee_id,)
        ).fetchone()
        return self._row_to_fee(row) if row else None

    def list_fees(self, status: FeeStatus | None = None) -> list[Fee]:
        if status is None:
            rows = self.conn.execute(
                "SELECT * FROM fees ORDER BY due_date, member_number, rowid"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM fees WHERE status = ?"
                " ORDER BY due_date, member_number, rowid",
                (FeeStatus(status).value,),
            ).fetchall()
        return [self._row_to_fee(r) for r in rows]

    def get_outstanding_fees(self) -> list[Fee]:
        """Fees that can still receive a payment (OPEN or stored OVERDUE)."""
        rows = self.conn.execute(
            "SELECT * FROM fees"
            " WHERE status IN ('OPEN', 'OVERDUE') AND paid_at IS NULL"
            " ORDER BY due_date, member_number, rowid"
        ).fetchall()
        return [self._row_to_fee(r) for r in rows]

    def get_fees_by_batch_ref(self, batch_ref: str) -> list[Fee]:
        rows = self.conn.execute(
            "SELECT * FROM fees WHERE sepa_batch_ref = ? ORDER BY member_number, rowid",
            (batch_ref,),
        ).fetchall()
        return [self._row_to_fee(r) for r in rows]

    _FEE_UPDATE_COLS = frozenset({
        "status", "paid_at", "sepa_batch_ref", "has_mandate", "method",
        "amount", "due_date", "reference", "transaction_id", "notes",
    })

    def update_fee(self, fee_id: str, *, commit: bool = True, **kwargs) -> Fee:
        """Apply a partial update to one fee and return the stored result.

        Raises:
            ValueError: On unknown column names.
            FeeNotFoundError: If no fee has this id.
            InvalidFeeError: If the update would break a fee invariant.
        """
        unknown = set(kwargs.keys()) - self._FEE_UPDATE_COLS
        if unknown:
            raise ValueError(f"Unknown columns for update_fee: {unknown}")
        current = self.get_fee(fee_id)
        if current is None:
            raise FeeNotFoundError(fee_id)

        if "status" in kwargs:
            kwargs["status"] = FeeStatus(kwargs["status"])
        if "method" in kwargs:
            kwargs["method"] = PaymentMethod(kwargs["method"])
        for col, val in kwargs.items():
            setattr(current, col, val)
        problems = current.validate()
        if problems:
            raise InvalidFeeError(fee_id, problems)

        current.updated_at = _utcnow()
        sets = [f"{col} = ?" for col in kwargs] + ["updated_at = ?"]
        vals: list = [self._column_value(col, val) for col, val in kwargs.items()]
        vals += [current.updated_at, fee_id]
        self.conn.execute(
            f"UPDATE fees SET {', '.join(sets)} WHERE id = ?", vals
        )
        if commit:
            self.conn.commit()
        return current

    @staticmethod
    def _column_value(col: str, val):
        if col == "has_mandate":
            return int(bool(val))
        if col == "amount":
            return round(val, 2)
        if isinstance(val, (FeeStatus, PaymentMethod)):
            return val.value
        return val

    def save_paid_fees(
        self,
        fees: Iterable[Fee],
        imp: Import | None = None,
        transactions: Iterable[StatementTransaction] = (),
    ) -> int:
        """Persist PAID fees (and the import row recording them) atomically.

        Either all status changes, the import row and its statement lines
        are committed, or nothing is.

        Raises:
            DuplicateImportError: If imp carries a file hash already imported.
        """
        count = 0
        try:
            self.conn.execute("BEGIN")
            for fee in fees:
                self.update_fee(
                    fee.id, commit=False,
                    status=FeeStatus.PAID, paid_at=fee.paid_at,
                )
                count += 1
            if imp is not None:
                self._insert_import_row(imp)
            for txn in transactions:
                self._insert_statement_transaction(txn)
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if imp is not None and "file_hash" in str(e):
                existing = self.get_import_by_hash(imp.file_hash)
                raise DuplicateImportError(
                    imp.file_hash, existing.id if existing else None,
                ) from e
            raise
        except Exception:
            self.conn.rollback()
            raise
        return count

    def begin_batch_assignment(self, fee_ids: list[str], batch_ref: str) -> None:
        """Open a transaction assigning batch_ref to fee_ids, without committing.

        The caller must finish with commit() or rollback(). Only open SEPA
        fees without an existing batch ref are eligible; anything else
        rolls back and raises StaleBatchError.
        """
        self.conn.execute("BEGIN")
        try:
            stale: list[str] = []
            now = _utcnow()
            for fee_id in fee_ids:
                cur = self.conn.execute(
                    "UPDATE fees SET sepa_batch_ref = ?, updated_at = ?"
                    " WHERE id = ? AND method = 'SEPA' AND status = 'OPEN'"
                    " AND sepa_batch_ref IS NULL",
                    (batch_ref, now, fee_id),
                )
                if cur.rowcount != 1:
                    stale.append(fee_id)
            if stale:
                raise StaleBatchError(batch_ref, stale)
        except Exception:
            self.conn.rollback()
            raise

    def commit(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    # ── Imports ─────────────────────────────────────────────

    def _insert_import_row(self, imp: Import):
        self.conn.execute(
            "INSERT INTO imports (id, file_name, file_hash, statement_format,"
            " record_count, matched_count, unresolved_count, status, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (imp.id, imp.file_name, imp.file_hash, imp.statement_format,
             imp.record_count, imp.matched_count, imp.unresolved_count,
             imp.status, imp.created_at),
        )

    def insert_import(self, imp: Import) -> Import:
        """Insert an import record.

        Raises:
            DuplicateImportError: If a statement with the same hash was already imported.
        """
        try:
            self._insert_import_row(imp)
            self.conn.commit()
            return imp
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "file_hash" in str(e) or "UNIQUE constraint failed" in str(e):
                existing = self.get_import_by_hash(imp.file_hash)
                raise DuplicateImportError(
                    imp.file_hash,
                    existing.id if existing else None,
                ) from e
            raise

    def get_import_by_hash(self, file_hash: str) -> Import | None:
        """The first import of a statement, or None."""
        row = self.conn.execute(
            "SELECT * FROM imports WHERE file_hash = ? ORDER BY created_at, rowid LIMIT 1",
            (file_hash,),
        ).fetchone()
        return self._row_to_import(row) if row else None

    def list_imports(self) -> list[Import]:
        rows = self.conn.execute(
            "SELECT * FROM imports ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [self._row_to_import(r) for r in rows]

    def _insert_statement_transaction(self, txn: StatementTransaction):
        self.conn.execute(
            "INSERT INTO statement_transactions (id, import_id, line_number, booking_date,"
            " amount, side, description, counterparty, iban, ref, fee_id, confidence)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (txn.id, txn.import_id, txn.line_number, txn.date, txn.amount, txn.side,
             txn.description, txn.counterparty, txn.iban, txn.ref, txn.fee_id,
             txn.confidence),
        )

    def list_statement_transactions(
        self, import_id: str | None = None
    ) -> list[StatementTransaction]:
        if import_id is None:
            rows = self.conn.execute(
                "SELECT * FROM statement_transactions ORDER BY rowid"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM statement_transactions WHERE import_id = ?"
                " ORDER BY line_number",
                (import_id,),
            ).fetchall()
        return [self._row_to_statement_transaction(r) for r in rows]

    # ── Public screens ──────────────────────────────────────

    def insert_screen(self, screen: PublicScreen) -> PublicScreen:
        self.conn.execute(
            "INSERT INTO public_screens"
            " (id, name, type, active, public_token, config, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (screen.id, screen.name, ScreenType(screen.type).value,
             int(screen.active), screen.public_token,
             json.dumps(screen.config), screen.updated_at),
        )
        self.conn.commit()
        return screen

    def update_screen(self, screen: PublicScreen) -> bool:
        cur = self.conn.execute(
            "UPDATE public_screens SET name = ?, type = ?, active = ?,"
            " public_token = ?, config = ?, updated_at = ? WHERE id = ?",
            (screen.name, ScreenType(screen.type).value, int(screen.active),
             screen.public_token, json.dumps(screen.config),
             screen.updated_at, screen.id),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def delete_screen(self, screen_id: str) -> bool:
        cur = self.conn.execute(
            "DELETE FROM public_screens WHERE id = ?", (screen_id,)
        )
        self.conn.commit()
        return cur.rowcount == 1

    def get_screen(self, screen_id: str) -> PublicScreen | None:
        row = self.conn.execute(
            "SELECT * FROM public_screens WHERE id = ?", (screen_id,)
        ).fetchone()
        return self._row_to_screen(row) if row else None

    def get_screen_by_token(self, token: str) -> PublicScreen | None:
        row = self.conn.execute(
            "SELECT * FROM public_screens WHERE public_token = ?", (token,)
        ).fetchone()
        return self._row_to_screen(row) if row else None

    def list_screens(self) -> list[PublicScreen]:
        rows = self.conn.execute(
            "SELECT * FROM public_screens ORDER BY rowid"
        ).fetchall()
        return [self._row_to_screen(r) for r in rows]

    # ── Row mappers ─────────────────────────────────────────

    @staticmethod
    def _row_to_fee(row: sqlite3.Row) -> Fee:
        return Fee(
            id=row["id"],
            member_id=row["member_id"],
            member_number=row["member_number"],
            member_first_name=row["member_first_name"],
            member_last_name=row["member_last_name"],
            member_email=row["member_email"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            due_date=row["due_date"],
            amount=row["amount"],
            method=PaymentMethod(row["method"]),
            status=FeeStatus(row["status"]),
            paid_at=row["paid_at"],
            has_mandate=bool(row["has_mandate"]),
            sepa_batch_ref=row["sepa_batch_ref"],
            category=row["category"],
            reference=row["reference"],
            transaction_id=row["transaction_id"],
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_import(row: sqlite3.Row) -> Import:
        return Import(
            id=row["id"],
            file_name=row["file_name"],
            file_hash=row["file_hash"],
            statement_format=row["statement_format"],
            record_count=row["record_count"],
            matched_count=row["matched_count"],
            unresolved_count=row["unresolved_count"],
            status=row["status"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_statement_transaction(row: sqlite3.Row) -> StatementTransaction:
        return StatementTransaction(
            id=row["id"],
            import_id=row["import_id"],
            line_number=row["line_number"],
            date=row["booking_date"],
            amount=row["amount"],
            side=row["side"],
            description=row["description"],
            counterparty=row["counterparty"],
            iban=row["iban"],
            ref=row["ref"],
            fee_id=row["fee_id"],
            confidence=row["confidence"],
        )

    @staticmethod
    def _row_to_screen(row: sqlite3.Row) -> PublicScreen:
        return PublicScreen(
            id=row["id"],
            name=row["name"],
            type=ScreenType(row["type"]),
            active=bool(row["active"]),
            public_token=row["public_token"],
            config=json.loads(row["config"]),
            updated_at=row["updated_at"],
        )
