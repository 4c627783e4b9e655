"""Tests for Repository CRUD operations."""

import sqlite3

import pytest

from lidgeld.database.models import (
    IMPORT_REIMPORTED,
    FeeStatus,
    Import,
    PaymentMethod,
    PublicScreen,
    ScreenType,
    StatementTransaction,
)
from lidgeld.database.repository import (
    DuplicateImportError,
    FeeNotFoundError,
    InvalidFeeError,
    Repository,
    StaleBatchError,
)
from tests.conftest import MIGRATIONS_DIR, make_fee


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


@pytest.fixture
def sample_import():
    return Import(file_name="jan.csv", file_hash="sha256_abc", statement_format="CSV")


# ── Fee CRUD ───────────────────────────────────────────────


class TestFeeCrud:
    def test_insert_and_get(self, repo):
        fee = make_fee(category="Volwassene", member_email="amina@example.org")
        repo.insert_fee(fee)
        found = repo.get_fee(fee.id)
        assert found == fee
        assert found.method == PaymentMethod.SEPA
        assert found.has_mandate is True

    def test_get_missing(self, repo):
        assert repo.get_fee("nope") is None

    def test_insert_rejects_invalid(self, repo):
        fee = make_fee(status=FeeStatus.PAID)
        with pytest.raises(InvalidFeeError) as exc:
            repo.insert_fee(fee)
        assert "PAID fee without paid_at" in exc.value.problems
        assert repo.list_fees() == []

    def test_batch_insert_is_atomic(self, repo):
        good = make_fee(id="good")
        bad = make_fee(id="bad", method=PaymentMethod.CASH, sepa_batch_ref="SEPA-X")
        with pytest.raises(InvalidFeeError):
            repo.insert_fees_batch([good, bad])
        assert repo.list_fees() == []

    def test_batch_insert_duplicate_id_rolls_back(self, repo):
        repo.insert_fee(make_fee(id="x"))
        with pytest.raises(sqlite3.IntegrityError):
            repo.insert_fees_batch([make_fee(id="y"), make_fee(id="x")])
        assert [f.id for f in repo.list_fees()] == ["x"]

    def test_list_by_status(self, repo):
        repo.insert_fees_batch([
            make_fee(id="o"),
            make_fee(id="p", status=FeeStatus.PAID, paid_at="2025-01-20"),
        ])
        assert [f.id for f in repo.list_fees(FeeStatus.PAID)] == ["p"]
        assert len(repo.list_fees()) == 2

    def test_outstanding_fees(self, repo):
        repo.insert_fees_batch([
            make_fee(id="open"),
            make_fee(id="overdue", status=FeeStatus.OVERDUE),
            make_fee(id="paid", status=FeeStatus.PAID, paid_at="2025-01-20"),
        ])
        assert {f.id for f in repo.get_outstanding_fees()} == {"open", "overdue"}

    def test_amount_rounded_to_cents(self, repo):
        fee = repo.insert_fee(make_fee(amount=30.004))
        assert repo.get_fee(fee.id).amount == 30.0


class TestUpdateFee:
    def test_partial_update(self, repo):
        fee = repo.insert_fee(make_fee())
        updated = repo.update_fee(fee.id, status="PAID", paid_at="2025-01-20")
        assert updated.status == FeeStatus.PAID
        stored = repo.get_fee(fee.id)
        assert stored.paid_at == "2025-01-20"
        assert stored.updated_at == updated.updated_at

    def test_unknown_column(self, repo):
        fee = repo.insert_fee(make_fee())
        with pytest.raises(ValueError, match="Unknown columns"):
            repo.update_fee(fee.id, member_number="0009")

    def test_missing_fee(self, repo):
        with pytest.raises(FeeNotFoundError):
            repo.update_fee("nope", notes="x")

    def test_invariant_violation_not_written(self, repo):
        fee = repo.insert_fee(make_fee())
        with pytest.raises(InvalidFeeError):
            repo.update_fee(fee.id, status=FeeStatus.PAID)
        assert repo.get_fee(fee.id).status == FeeStatus.OPEN

    def test_batch_ref_on_non_sepa_rejected(self, repo):
        fee = repo.insert_fee(make_fee(method=PaymentMethod.OVERSCHRIJVING))
        with pytest.raises(InvalidFeeError):
            repo.update_fee(fee.id, sepa_batch_ref="SEPA-20250301-140509")


class TestSavePaidFees:
    def test_saves_fees_and_import(self, repo, sample_import):
        fee = repo.insert_fee(make_fee())
        fee.status = FeeStatus.PAID
        fee.paid_at = "2025-01-20"
        assert repo.save_paid_fees([fee], sample_import) == 1
        assert repo.get_fee(fee.id).status == FeeStatus.PAID
        assert repo.get_import_by_hash("sha256_abc") is not None

    def test_duplicate_import_rolls_back_fees(self, repo, sample_import):
        repo.insert_import(sample_import)
        fee = repo.insert_fee(make_fee())
        fee.paid_at = "2025-01-20"
        again = Import(file_name="jan.csv", file_hash="sha256_abc", statement_format="CSV")
        with pytest.raises(DuplicateImportError) as exc:
            repo.save_paid_fees([fee], again)
        assert exc.value.existing_import_id == sample_import.id
        assert repo.get_fee(fee.id).status == FeeStatus.OPEN

    def test_saves_statement_lines(self, repo, sample_import):
        fee = repo.insert_fee(make_fee())
        fee.paid_at = "2025-01-20"
        lines = [
            StatementTransaction(import_id=sample_import.id, date="2025-01-20", amount=30.0,
                                 side="CREDIT", description="Lidgeld 0001", ref="B5A15",
                                 fee_id=fee.id, confidence="certain", line_number=2),
            StatementTransaction(import_id=sample_import.id, date="2025-01-21", amount=12.0,
                                 side="DEBIT", line_number=3),
        ]
        repo.save_paid_fees([fee], sample_import, lines)
        stored = repo.list_statement_transactions(sample_import.id)
        assert [s.line_number for s in stored] == [2, 3]
        assert stored[0].fee_id == fee.id
        assert stored[0].ref == "B5A15"
        assert stored[1].fee_id is None
        assert len(repo.list_statement_transactions()) == 2

    def test_duplicate_import_discards_statement_lines(self, repo, sample_import):
        repo.insert_import(sample_import)
        again = Import(file_name="jan.csv", file_hash="sha256_abc", statement_format="CSV")
        line = StatementTransaction(import_id=again.id, date="2025-01-20", amount=30.0,
                                    side="CREDIT")
        with pytest.raises(DuplicateImportError):
            repo.save_paid_fees([], again, [line])
        assert repo.list_statement_transactions() == []

    def test_reimport_recorded_alongside_original(self, repo, sample_import):
        repo.save_paid_fees([], sample_import)
        again = Import(file_name="jan.csv", file_hash="sha256_abc", statement_format="CSV",
                       status=IMPORT_REIMPORTED)
        repo.save_paid_fees([], again)
        assert len(repo.list_imports()) == 2
        assert repo.get_import_by_hash("sha256_abc").id == sample_import.id

    def test_missing_fee_rolls_back(self, repo):
        a = repo.insert_fee(make_fee(id="a"))
        a.paid_at = "2025-01-20"
        ghost = make_fee(id="ghost", paid_at="2025-01-20")
        with pytest.raises(FeeNotFoundError):
            repo.save_paid_fees([a, ghost])
        assert repo.get_fee("a").status == FeeStatus.OPEN


class TestBatchAssignment:
    def test_assign_and_commit(self, repo):
        repo.insert_fees_batch([make_fee(id="a"), make_fee(id="b")])
        repo.begin_batch_assignment(["a", "b"], "SEPA-1")
        repo.commit()
        assert {f.id for f in repo.get_fees_by_batch_ref("SEPA-1")} == {"a", "b"}

    def test_rollback_discards(self, repo):
        repo.insert_fee(make_fee(id="a"))
        repo.begin_batch_assignment(["a"], "SEPA-1")
        repo.rollback()
        assert repo.get_fee("a").sepa_batch_ref is None

    def test_non_sepa_fee_is_stale(self, repo):
        repo.insert_fees_batch([
            make_fee(id="a"),
            make_fee(id="cash", method=PaymentMethod.CASH),
        ])
        with pytest.raises(StaleBatchError) as exc:
            repo.begin_batch_assignment(["a", "cash"], "SEPA-1")
        assert exc.value.fee_ids == ["cash"]
        assert repo.get_fee("a").sepa_batch_ref is None


# ── Import CRUD ────────────────────────────────────────────


class TestImportCrud:
    def test_insert_and_retrieve_by_hash(self, repo, sample_import):
        repo.insert_import(sample_import)
        found = repo.get_import_by_hash("sha256_abc")
        assert found is not None
        assert found.file_name == "jan.csv"
        assert found.status == "completed"

    def test_duplicate_hash_raises(self, repo, sample_import):
        repo.insert_import(sample_import)
        dup = Import(file_name="copy.csv", file_hash="sha256_abc", statement_format="CSV")
        with pytest.raises(DuplicateImportError):
            repo.insert_import(dup)

    def test_list_newest_first(self, repo):
        repo.insert_import(Import(file_name="a", file_hash="h1", statement_format="CSV",
                                  created_at="2025-01-01T00:00:00"))
        repo.insert_import(Import(file_name="b", file_hash="h2", statement_format="MT940",
                                  created_at="2025-02-01T00:00:00"))
        assert [i.file_name for i in repo.list_imports()] == ["b", "a"]


# ── Public screens ─────────────────────────────────────────


class TestScreenCrud:
    def test_round_trip_with_config(self, repo):
        screen = PublicScreen(
            name="Inkom", type=ScreenType.MEDEDELINGEN, public_token="screen-abc",
            config={"items": [{"title": "Iftar", "date": "2025-03-10"}]},
        )
        repo.insert_screen(screen)
        assert repo.get_screen(screen.id) == screen
        assert repo.get_screen_by_token("screen-abc").id == screen.id

    def test_update_and_delete(self, repo):
        screen = repo.insert_screen(
            PublicScreen(name="Zaal", type=ScreenType.LEDENLIJST, public_token="screen-x")
        )
        screen.active = True
        assert repo.update_screen(screen) is True
        assert repo.get_screen(screen.id).active is True
        assert repo.delete_screen(screen.id) is True
        assert repo.delete_screen(screen.id) is False
        assert repo.list_screens() == []
