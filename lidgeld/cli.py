"""CLI entry point for lidgeld.

Commands:
    lidgeld load-fees FILE            Load fees from a CSV export
    lidgeld fees [filters]            List fees (status derived at read time)
    lidgeld status                    Fee counts per status, outstanding total
    lidgeld reconcile FILE            Preview statement matches
        [--format CSV|MT940|CODA] [--bank PRESET] [--match N=FEE_ID|none ...]
        [--apply] [--force]
    lidgeld sepa [--execution-date D] [--out DIR] [--dry-run]
                                      Generate a SEPA direct-debit batch file
    lidgeld imports                   List confirmed statement imports
    lidgeld screens list|add|remove|activate|deactivate
                                      Manage public display screens
"""

from __future__ import annotations

import argparse
import csv
import logging
import os
import sqlite3
import sys
from datetime import date, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on LIDGELD_LOG_LEVEL env var."""
    level = os.environ.get("LIDGELD_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load application config from config directory."""
    from lidgeld.config import Config

    config_dir = os.environ.get("LIDGELD_CONFIG_DIR", "config")
    return Config(config_dir=config_dir)


def _get_migrations_dir() -> Path:
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("LIDGELD_MIGRATIONS_DIR", default))


def _get_repo():
    """Create a Repository connected to the configured database, schema applied."""
    from lidgeld.database.repository import Repository

    db_path = os.environ.get("LIDGELD_DB_PATH", "lidgeld.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_export_dir() -> Path:
    return Path(os.environ.get("LIDGELD_EXPORT_DIR", "export"))


def _fmt_amount(amount: float | None) -> str:
    return "?" if amount is None else f"{amount:.2f}"


# ── Command handlers ─────────────────────────────────────


_FEE_CSV_REQUIRED = ("member_number", "period_start", "period_end", "amount", "method")


def _fee_from_row(row: dict):
    """Build a Fee from a CSV row. Raises ValueError on unusable rows."""
    from lidgeld.database.models import Fee, FeeStatus, PaymentMethod
    from lidgeld.parsers.base import parse_amount, parse_date

    # Extra cells beyond the header land under the None key
    cells = {
        k.strip().lower(): (v or "").strip()
        for k, v in row.items() if k is not None
    }

    def get(key: str) -> str:
        return cells.get(key, "")

    missing = [k for k in _FEE_CSV_REQUIRED if not get(k)]
    if missing:
        raise ValueError(f"missing {', '.join(missing)}")

    period_start = parse_date(get("period_start"))
    period_end = parse_date(get("period_end"))
    if period_start is None or period_end is None:
        raise ValueError("unreadable period")
    # Fees fall due 15 days after the billing period unless stated
    due_date = parse_date(get("due_date")) or (
        date.fromisoformat(period_end) + timedelta(days=15)
    ).isoformat()
    amount = parse_amount(get("amount"))
    if amount is None:
        raise ValueError(f"unreadable amount {get('amount')!r}")

    status = FeeStatus.from_label(get("status") or "OPEN")
    paid_at = parse_date(get("paid_at"))
    if get("paid_at") and paid_at is None:
        raise ValueError(f"unreadable paid_at {get('paid_at')!r}")
    if status == FeeStatus.PAID and paid_at is None:
        raise ValueError("PAID fee without paid_at")

    fields = dict(
        member_id=get("member_id") or get("member_number"),
        member_number=get("member_number"),
        member_first_name=get("first_name"),
        member_last_name=get("last_name"),
        member_email=get("email") or None,
        period_start=period_start,
        period_end=period_end,
        due_date=due_date,
        amount=amount,
        method=PaymentMethod.from_label(get("method")),
        status=status,
        paid_at=paid_at,
        has_mandate=get("has_mandate").lower() in ("1", "true", "yes", "ja"),
        category=get("category") or None,
    )
    if get("id"):
        fields["id"] = get("id")
    fee = Fee(**fields)
    problems = fee.validate()
    if problems:
        raise ValueError("; ".join(problems))
    return fee


def cmd_load_fees(args: argparse.Namespace) -> int:
    """Load fees from a CSV file (one fee per row) in a single transaction."""
    from lidgeld.database.repository import InvalidFeeError

    filepath = args.file
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1

    fees = []
    errors = 0
    with open(filepath, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f, delimiter=args.delimiter)
        for row in reader:
            try:
                fees.append(_fee_from_row(row))
            except ValueError as e:
                errors += 1
                print(f"  line {reader.line_num}: skipped ({e})")

    repo = _get_repo()
    try:
        repo.insert_fees_batch(fees)
    except (InvalidFeeError, sqlite3.IntegrityError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()

    print(f"Loaded {len(fees)} fee(s), {errors} row(s) skipped.")
    return 1 if errors else 0


def cmd_fees(args: argparse.Namespace) -> int:
    """List fees with filters, sorting and paging."""
    from lidgeld.database.models import FeeStatus, PaymentMethod
    from lidgeld.database.queries import FeeFilter, filter_fees, paginate_fees, sort_fees
    from lidgeld.reconcile.lifecycle import effective_status

    try:
        filters = FeeFilter(
            search=args.search,
            status=FeeStatus.from_label(args.status) if args.status else None,
            year=args.year,
            method=PaymentMethod.from_label(args.method) if args.method else None,
            only_with_mandate=args.mandate,
            only_overdue=args.overdue,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    repo = _get_repo()
    try:
        fees = filter_fees(repo.list_fees(), filters)
    finally:
        repo.close()

    try:
        fees = sort_fees(fees, args.sort, descending=args.desc)
        page = paginate_fees(fees, args.page, args.per_page)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if not page.data:
        print("No fees found.")
        return 0

    print(f"Fees {page.page}/{page.page_count} ({page.total} total):")
    print("-" * 96)
    for fee in page.data:
        batch = fee.sepa_batch_ref or ""
        print(
            f"  {fee.id[:8]}  {fee.member_number:<6}  {fee.member_name[:24]:<24}"
            f"  {fee.period_start[:7]}  {fee.amount:>8.2f}  {fee.method.value:<14}"
            f"  {effective_status(fee).label:<10}  {batch}"
        )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Display fee counts per derived status."""
    from lidgeld.database.queries import outstanding_total, status_counts

    repo = _get_repo()
    try:
        fees = repo.list_fees()
        imports = repo.list_imports()
    finally:
        repo.close()

    counts = status_counts(fees)
    print("Lidgeld Status")
    print("=" * 40)
    print(f"  Total fees:          {len(fees):,}")
    for status, count in counts.items():
        print(f"  {status.label + ':':<20} {count:,}")
    print(f"  Outstanding:         {outstanding_total(fees):.2f} EUR")
    print(f"  Statement imports:   {len(imports):,}")
    return 0


def _parse_overrides(values: list[str]) -> list[tuple[int, str | None]]:
    """'3=fee-id' / '3=none' → [(3, 'fee-id'), (3, None)]. Raises ValueError."""
    overrides = []
    for value in values:
        idx, sep, fee_id = value.partition("=")
        if not sep or not idx.strip().isdigit() or not fee_id.strip():
            raise ValueError(f"Invalid --match value {value!r} (expected N=FEE_ID or N=none)")
        fee_id = fee_id.strip()
        overrides.append((int(idx), None if fee_id.lower() == "none" else fee_id))
    return overrides


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Match a bank statement against open fees; with --apply, record payments."""
    from lidgeld.database.repository import DuplicateImportError
    from lidgeld.parsers.registry import SUPPORTED_EXTENSIONS, is_supported_file
    from lidgeld.reconcile.session import ReconciliationSession

    filepath = args.file
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1
    if args.format is None and not is_supported_file(filepath):
        print(
            f"Error: Unsupported statement file type '{filepath.suffix}'"
            f" (expected {', '.join(sorted(SUPPORTED_EXTENSIONS))}, or pass --format)"
        )
        return 1

    try:
        overrides = _parse_overrides(args.match or [])
        config = _get_config()
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    repo = _get_repo()
    session = ReconciliationSession(repo, config)
    try:
        try:
            session.load(filepath, args.format, args.bank)
            for index, fee_id in overrides:
                session.override(index, fee_id)
        except (ValueError, IndexError, KeyError, FileNotFoundError) as e:
            print(f"Error: {e}")
            return 1

        for warning in session.warnings:
            print(f"  warning: {warning}")
        if session.duplicate_of is not None:
            print(
                f"  warning: statement already imported on"
                f" {session.duplicate_of.created_at}"
            )

        duplicates = set(session.possible_duplicates)
        print(f"{filepath.name}: {len(session.results)} transaction(s)")
        print("-" * 96)
        for i, result in enumerate(session.results):
            txn = result.transaction
            fee = result.match
            target = (
                f"{fee.member_number} {fee.member_name[:20]} {fee.period_start[:7]}"
                if fee else "-"
            )
            flag = "dup?" if i in duplicates else ""
            print(
                f"  #{i:<3} {txn.date or '?':<10}  {_fmt_amount(txn.amount):>8}"
                f"  {txn.description[:30]:<30}  {result.confidence.label:<9}  {target}  {flag}"
                .rstrip()
            )
        if duplicates:
            print(f"\n{len(duplicates)} transaction(s) resemble lines of an earlier import (dup?).")

        summary = session.preview()
        print(
            f"\n{len(summary.paid)} payment(s) to record ({summary.paid_total:.2f} EUR),"
            f" {len(summary.unresolved)} unresolved."
        )

        if not args.apply:
            session.discard()
            print("Preview only. Re-run with --apply to record the payments.")
            return 0

        try:
            summary = session.confirm(force=args.force)
        except DuplicateImportError:
            session.discard()
            print("Error: Statement already imported. Use --force to import it again.")
            return 1
        print(f"Recorded {len(summary.paid)} payment(s).")
        return 0
    finally:
        repo.close()


def cmd_sepa(args: argparse.Namespace) -> int:
    """Generate a SEPA direct-debit batch file for open SEPA fees."""
    from lidgeld.database.models import FeeStatus
    from lidgeld.database.repository import StaleBatchError
    from lidgeld.sepa.batch import check_eligibility, default_execution_date, generate_batch
    from lidgeld.sepa.export import export_batch

    try:
        config = _get_config()
        creditor = config.creditor
        offset_days = config.execution_offset_days
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    execution_date = args.execution_date
    if execution_date is None:
        execution_date = default_execution_date(offset_days=offset_days)
    else:
        try:
            date.fromisoformat(execution_date)
        except ValueError:
            print(f"Error: Invalid execution date: {execution_date}")
            return 1

    repo = _get_repo()
    try:
        check = check_eligibility(repo.list_fees(FeeStatus.OPEN))
        for warning in check.warnings:
            print(f"  warning: {warning}")

        fees = check.collectable
        batch = generate_batch(fees, execution_date, creditor=creditor)
        print(
            f"{batch.batch_ref}: {batch.count} transaction(s),"
            f" {batch.total_amount:.2f} EUR, collection on {batch.execution_date}"
        )
        if args.dry_run:
            print(batch.xml)
            return 0
        if not fees:
            print("Nothing to collect, no file written.")
            return 0

        out_dir = args.out or _get_export_dir()
        try:
            path = export_batch(batch, out_dir, repo)
        except (OSError, StaleBatchError) as e:
            logger.error("SEPA export failed: %s", e)
            print(f"Error: {e}")
            return 1
        print(f"Written {path}")
        return 0
    finally:
        repo.close()


def cmd_imports(args: argparse.Namespace) -> int:
    """List confirmed statement imports."""
    repo = _get_repo()
    try:
        imports = repo.list_imports()
    finally:
        repo.close()

    if not imports:
        print("No statements imported yet.")
        return 0
    for imp in imports:
        print(
            f"  {imp.created_at[:19]}  {imp.statement_format:<6}  {imp.file_name:<30}"
            f"  rows={imp.record_count}  paid={imp.matched_count}"
            f"  unresolved={imp.unresolved_count}"
            + ("  (reimported)" if imp.status == "reimported" else "")
        )
    return 0


def cmd_screens(args: argparse.Namespace) -> int:
    """Manage public display screens."""
    from lidgeld.screens.store import ScreenService, SqliteScreenStore

    sub = getattr(args, "screens_command", None)
    if sub is None:
        print("Usage: lidgeld screens {list,add,remove,activate,deactivate}")
        return 1

    repo = _get_repo()
    service = ScreenService(SqliteScreenStore(repo))
    try:
        if sub == "list":
            screens = service.list()
            if not screens:
                print("No public screens.")
            for s in screens:
                state = "active" if s.active else "inactive"
                print(f"  {s.id}  {s.type.value:<13} {state:<9} {s.public_token}  {s.name}")
            return 0
        if sub == "add":
            screen = service.create(args.name, args.type.upper(), active=args.active)
            print(f"Created screen {screen.id} (token {screen.public_token})")
            return 0
        if sub == "remove":
            if not service.remove(args.id):
                print(f"Error: Screen '{args.id}' not found.")
                return 1
            print(f"Removed screen {args.id}")
            return 0
        if sub in ("activate", "deactivate"):
            from lidgeld.screens.store import ScreenNotFoundError

            try:
                service.set_active(args.id, sub == "activate")
            except ScreenNotFoundError as e:
                print(f"Error: {e}")
                return 1
            print(f"Screen {args.id} {sub}d")
            return 0
    finally:
        repo.close()

    print(f"Unknown screens command: {sub}")
    return 1


_COMMANDS = {
    "load-fees": cmd_load_fees,
    "fees": cmd_fees,
    "status": cmd_status,
    "reconcile": cmd_reconcile,
    "sepa": cmd_sepa,
    "imports": cmd_imports,
    "screens": cmd_screens,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="lidgeld",
        description="Lidgeld membership fee reconciliation and SEPA export",
    )
    subparsers = parser.add_subparsers(dest="command")

    # load-fees
    load_p = subparsers.add_parser("load-fees", help="Load fees from a CSV export")
    load_p.add_argument("file", type=Path, help="Fee CSV file")
    load_p.add_argument("--delimiter", default=",", help="Field separator (default ',')")

    # fees
    fees_p = subparsers.add_parser("fees", help="List fees")
    fees_p.add_argument("--search", help="Member number, name or period")
    fees_p.add_argument("--status", help="OPEN, PAID or OVERDUE (Dutch labels accepted)")
    fees_p.add_argument("--method", help="SEPA, OVERSCHRIJVING, BANCONTACT or CASH")
    fees_p.add_argument("--year", type=int, help="Billing year")
    fees_p.add_argument("--mandate", action="store_true", help="Only fees with a SEPA mandate")
    fees_p.add_argument("--overdue", action="store_true", help="Only overdue fees")
    fees_p.add_argument("--sort", default="due_date", help="Sort key (default due_date)")
    fees_p.add_argument("--desc", action="store_true", help="Sort descending")
    fees_p.add_argument("--page", type=int, default=1)
    fees_p.add_argument("--per-page", type=int, default=25)

    # status
    subparsers.add_parser("status", help="Fee counts per status")

    # reconcile
    rec_p = subparsers.add_parser("reconcile", help="Match a bank statement against open fees")
    rec_p.add_argument("file", type=Path, help="CSV, MT940 or CODA statement")
    rec_p.add_argument("--format", choices=["CSV", "MT940", "CODA", "csv", "mt940", "coda"],
                       help="Statement format (auto-detected by default)")
    rec_p.add_argument("--bank", help="CSV column preset: KBC, ING or BNP_PARIBAS_FORTIS")
    rec_p.add_argument("--match", action="append", metavar="N=FEE_ID",
                       help="Manually assign transaction N to a fee (or N=none)")
    rec_p.add_argument("--apply", action="store_true", help="Record the confirmed payments")
    rec_p.add_argument("--force", action="store_true",
                       help="Apply even if the statement was imported before")

    # sepa
    sepa_p = subparsers.add_parser("sepa", help="Generate a SEPA direct-debit batch")
    sepa_p.add_argument("--execution-date", help="Collection date YYYY-MM-DD")
    sepa_p.add_argument("--out", type=Path, help="Output directory")
    sepa_p.add_argument("--dry-run", action="store_true",
                        help="Print the XML without writing or assigning")

    # imports
    subparsers.add_parser("imports", help="List confirmed statement imports")

    # screens
    scr_p = subparsers.add_parser("screens", help="Manage public display screens")
    scr_sub = scr_p.add_subparsers(dest="screens_command")
    scr_sub.add_parser("list", help="List screens")
    scr_add_p = scr_sub.add_parser("add", help="Add a screen")
    scr_add_p.add_argument("name", help="Display name")
    scr_add_p.add_argument("type", choices=["LEDENLIJST", "MEDEDELINGEN", "MULTIMEDIA",
                                            "ledenlijst", "mededelingen", "multimedia"])
    scr_add_p.add_argument("--active", action="store_true", help="Activate immediately")
    for name in ("remove", "activate", "deactivate"):
        p = scr_sub.add_parser(name, help=f"{name.capitalize()} a screen")
        p.add_argument("id", help="Screen ID")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
