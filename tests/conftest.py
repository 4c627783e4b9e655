"""Shared test fixtures."""

from pathlib import Path

from lidgeld.database.models import Fee, PaymentMethod

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"

MIGRATIONS_DIR = Path(__file__).parent.parent / "lidgeld" / "database" / "migrations"


def make_fee(**overrides) -> Fee:
    """A January 2025 OPEN SEPA fee for member 0001, due 15 February."""
    defaults = dict(
        member_id="m-0001",
        member_number="0001",
        member_first_name="Amina",
        member_last_name="Yilmaz",
        period_start="2025-01-01",
        period_end="2025-01-31",
        due_date="2025-02-15",
        amount=30.0,
        method=PaymentMethod.SEPA,
        has_mandate=True,
    )
    defaults.update(overrides)
    return Fee(**defaults)


def coda_movement(
    amount: float,
    communication: str = "",
    sign: str = "0",
    value_date: str = "150125",
    ref: str = "B5A15BI0001",
    detail: str = "0000",
    structured: str | None = None,
) -> str:
    """A 128-character CODA 21 record (sign 0 = credit, 1 = debit)."""
    comm = ("101" + structured) if structured else communication
    line = (
        "21" + "0001" + detail + ref.ljust(21) + sign
        + f"{round(amount * 1000):015d}" + value_date + "00150000"
        + ("1" if structured else "0") + comm.ljust(53)[:53]
        + value_date + "001" + "0" + "0" + " " + "0"
    )
    assert len(line) == 128
    return line


def coda_statement(*records: str, statement_date: str = "150125") -> str:
    """Wrap movement records in header, old balance and trailer records."""
    header = ("00000" + statement_date + "00500").ljust(128)
    old_balance = ("12001" + "BE68539007547034 EUR".ljust(37) + "0" + "0" * 15 + statement_date).ljust(128)
    new_balance = ("82001" + "BE68539007547034 EUR".ljust(37) + "0" + "0" * 15).ljust(128)
    trailer = "9".ljust(128)
    return "\n".join([header, old_balance, *records, new_balance, trailer]) + "\n"
