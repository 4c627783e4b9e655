"""Tests for lidgeld.config: YAML configuration loader."""

import pytest

from lidgeld.config import (
    DEFAULT_CSV_COLUMNS,
    DEFAULT_DUPLICATE_WINDOW_DAYS,
    DEFAULT_EXECUTION_OFFSET_DAYS,
    Config,
)
from tests.conftest import FIXTURE_CONFIG_DIR


class TestConfigInit:
    def test_loads_from_config_dir(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.config_dir == FIXTURE_CONFIG_DIR

    def test_raises_on_missing_directory(self):
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config("/nonexistent/path")

    def test_raises_on_file_not_directory(self, tmp_path):
        f = tmp_path / "not_a_dir.yaml"
        f.write_text("test: true")
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config(f)


class TestOrganisation:
    def test_creditor(self):
        creditor = Config(FIXTURE_CONFIG_DIR).creditor
        assert creditor["name"] == "Test Vereniging vzw"
        assert creditor["iban"] == "BE71096123456769"
        assert creditor["bic"] == "GKCCBEBB"

    def test_execution_offset(self):
        assert Config(FIXTURE_CONFIG_DIR).execution_offset_days == 3

    def test_lazy_loading(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config._organisation is None
        _ = config.creditor
        assert config._organisation is not None

    def test_caches_after_first_load(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.organisation is config.organisation

    def test_defaults_without_sepa_block(self, tmp_path):
        (tmp_path / "organisation.yaml").write_text("creditor:\n  name: X\n")
        assert Config(tmp_path).execution_offset_days == DEFAULT_EXECUTION_OFFSET_DAYS


class TestMatching:
    def test_member_number_pattern(self):
        assert Config(FIXTURE_CONFIG_DIR).member_number_pattern == r"000\d"

    def test_amount_tolerance(self):
        assert Config(FIXTURE_CONFIG_DIR).amount_tolerance == 0.01

    def test_csv_settings(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.csv_delimiter == ","
        assert "omschrijving" in config.csv_columns["description"]

    def test_csv_columns_lowercased_and_defaulted(self, tmp_path):
        (tmp_path / "matching.yaml").write_text(
            "csv:\n  delimiter: ';'\n  columns:\n    amount: Bedrag\n"
        )
        config = Config(tmp_path)
        assert config.csv_delimiter == ";"
        assert config.csv_columns["amount"] == ["bedrag"]
        assert config.csv_columns["date"] == DEFAULT_CSV_COLUMNS["date"]

    def test_optional_columns_defaulted(self):
        columns = Config(FIXTURE_CONFIG_DIR).csv_columns
        assert "tegenpartij" in columns["counterparty"]
        assert "iban" in columns["iban"]
        assert "referentie" in columns["ref"]

    def test_preset_and_rule_defaults(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.csv_preset is None
        assert config.duplicate_window_days == DEFAULT_DUPLICATE_WINDOW_DAYS
        assert config.match_rules == []

    def test_preset_window_and_rules(self, tmp_path):
        (tmp_path / "matching.yaml").write_text(
            "csv:\n  preset: KBC\n"
            "duplicate_window_days: 3\n"
            "rules:\n  - name: Benali\n    member_number: '0002'\n    contains: [benali]\n"
        )
        config = Config(tmp_path)
        assert config.csv_preset == "KBC"
        assert config.duplicate_window_days == 3
        assert config.match_rules[0]["member_number"] == "0002"

    def test_rules_must_be_a_list(self, tmp_path):
        (tmp_path / "matching.yaml").write_text("rules:\n  name: Benali\n")
        with pytest.raises(ValueError, match="Expected a list under 'rules'"):
            Config(tmp_path).match_rules


class TestMissingConfigFile:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            Config(tmp_path).matching

    def test_empty_file(self, tmp_path):
        (tmp_path / "matching.yaml").write_text("")
        with pytest.raises(ValueError, match="Empty config file"):
            Config(tmp_path).matching

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "matching.yaml").write_text("csv: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            Config(tmp_path).matching

    def test_not_a_mapping(self, tmp_path):
        (tmp_path / "organisation.yaml").write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="Expected a mapping"):
            Config(tmp_path).organisation
