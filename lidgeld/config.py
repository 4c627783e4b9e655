"""YAML configuration loader for lidgeld.

Loads the seed config files from the config/ directory:
  organisation.yaml, matching.yaml
"""

from pathlib import Path

import yaml

DEFAULT_MEMBER_NUMBER_PATTERN = r"000\d"
DEFAULT_AMOUNT_TOLERANCE = 0.01
DEFAULT_EXECUTION_OFFSET_DAYS = 2
DEFAULT_DUPLICATE_WINDOW_DAYS = 1

DEFAULT_CSV_COLUMNS = {
    "date": ["date", "datum", "boekingsdatum", "valutadatum"],
    "amount": ["amount", "bedrag"],
    "description": ["description", "omschrijving", "mededeling", "details"],
    "counterparty": ["counterparty", "tegenpartij", "naam tegenpartij"],
    "iban": ["iban", "rekening tegenpartij", "tegenrekening"],
    "ref": ["ref", "reference", "referentie"],
}


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._organisation: dict | None = None
        self._matching: dict | None = None

    def _load(self, filename: str) -> dict:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping at the top of {path}")
        return data

    @property
    def organisation(self) -> dict:
        if self._organisation is None:
            self._organisation = self._load("organisation.yaml")
        return self._organisation

    @property
    def matching(self) -> dict:
        if self._matching is None:
            self._matching = self._load("matching.yaml")
        return self._matching

    @property
    def creditor(self) -> dict:
        """Creditor block for SEPA files: name, iban, bic, creditor_id."""
        return self.organisation.get("creditor") or {}

    @property
    def execution_offset_days(self) -> int:
        sepa = self.organisation.get("sepa") or {}
        return int(sepa.get("execution_offset_days", DEFAULT_EXECUTION_OFFSET_DAYS))

    @property
    def member_number_pattern(self) -> str:
        return self.matching.get("member_number_pattern") or DEFAULT_MEMBER_NUMBER_PATTERN

    @property
    def amount_tolerance(self) -> float:
        return float(self.matching.get("amount_tolerance", DEFAULT_AMOUNT_TOLERANCE))

    @property
    def csv_delimiter(self) -> str:
        csv_cfg = self.matching.get("csv") or {}
        return csv_cfg.get("delimiter") or ","

    @property
    def csv_columns(self) -> dict[str, list[str]]:
        """Header aliases per canonical field, merged over the defaults.

        Aliases are lowercased; header matching is case-insensitive.
        """
        csv_cfg = self.matching.get("csv") or {}
        configured = csv_cfg.get("columns") or {}
        columns: dict[str, list[str]] = {}
        for name, defaults in DEFAULT_CSV_COLUMNS.items():
            aliases = configured.get(name)
            if isinstance(aliases, str):
                aliases = [aliases]
            columns[name] = [a.lower() for a in (aliases or defaults)]
        return columns

    @property
    def csv_preset(self) -> str | None:
        """Bank layout name (KBC, ING, BNP_PARIBAS_FORTIS), if configured."""
        csv_cfg = self.matching.get("csv") or {}
        return csv_cfg.get("preset") or None

    @property
    def duplicate_window_days(self) -> int:
        return int(self.matching.get("duplicate_window_days", DEFAULT_DUPLICATE_WINDOW_DAYS))

    @property
    def match_rules(self) -> list[dict]:
        rules = self.matching.get("rules") or []
        if not isinstance(rules, list):
            raise ValueError(f"Expected a list under 'rules' in {self.config_dir / 'matching.yaml'}")
        return rules
