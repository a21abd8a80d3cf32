"""Tests for configuration loading."""

from datetime import date
from pathlib import Path

import pytest
from fixtures import PROVIDERS_YAML

from statements_hledger.config import (
    NORMALIZE_SPACES_TO_DASHES,
    ConfigValidationError,
    default_backfill_date,
    load_import_config,
    load_prices_config,
    load_settings,
)


def write_providers(root: Path, content: str) -> None:
    path = root / "config" / "import" / "providers.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def write_prices(root: Path, content: str) -> None:
    path = root / "config" / "prices.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


PATHS = """\
paths:
  import: import/incoming
  pending: import/pending
  done: import/done
  unrecognized: import/unrecognized
  rules: ledger/rules
"""


class TestLoadImportConfig:
    """Tests for load_import_config."""

    def test_sample_config(self, ledger_dir):
        config = load_import_config(ledger_dir)

        assert config.paths.import_dir == "import/incoming"
        assert config.paths.rules == "ledger/rules"
        assert list(config.providers) == ["ubs", "revolut"]

        rule = config.providers["ubs"].detect[0]
        assert rule.skip_rows == 2
        assert rule.currency_field == "Currency"
        assert rule.delimiter == ","
        assert [m.field for m in rule.metadata] == [
            "account-number",
            "from-date",
            "until-date",
            "closing-balance",
        ]
        assert rule.metadata[0].normalize == NORMALIZE_SPACES_TO_DASHES
        assert config.providers["ubs"].currencies == {"CHF": "chf", "EUR": "eur"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="Configuration file not found"):
            load_import_config(tmp_path)

    def test_invalid_yaml(self, tmp_path):
        write_providers(tmp_path, "paths: [unclosed")
        with pytest.raises(ConfigValidationError, match="Failed to parse"):
            load_import_config(tmp_path)

    @pytest.mark.parametrize("missing", ["import", "pending", "done", "unrecognized", "rules"])
    def test_required_paths(self, tmp_path, missing):
        content = PROVIDERS_YAML.replace(f"  {missing}: ", f"  other-{missing}: ", 1)
        write_providers(tmp_path, content)

        with pytest.raises(ConfigValidationError, match=f"'paths.{missing}' is required"):
            load_import_config(tmp_path)

    def test_providers_required(self, tmp_path):
        write_providers(tmp_path, PATHS)
        with pytest.raises(ConfigValidationError, match="'providers' section is required"):
            load_import_config(tmp_path)

    def test_empty_detect_rejected(self, tmp_path):
        write_providers(
            tmp_path, PATHS + "providers:\n  ubs:\n    detect: []\n    currencies:\n      CHF: chf\n"
        )
        with pytest.raises(ConfigValidationError, match="'detect' must be a non-empty array"):
            load_import_config(tmp_path)

    def test_invalid_filename_pattern(self, tmp_path):
        write_providers(
            tmp_path,
            PATHS
            + "providers:\n  ubs:\n    detect:\n"
            + '      - header: "a,b"\n        currencyField: b\n        filenamePattern: "(["\n'
            + "    currencies:\n      CHF: chf\n",
        )
        with pytest.raises(ConfigValidationError, match="not a valid regex"):
            load_import_config(tmp_path)

    def test_unknown_normalization_rejected(self, tmp_path):
        write_providers(
            tmp_path,
            PATHS
            + "providers:\n  ubs:\n    detect:\n"
            + '      - header: "a,b"\n        currencyField: b\n        skipRows: 1\n'
            + "        metadata:\n          - field: x\n            row: 0\n            column: 0\n"
            + "            normalize: upper\n"
            + "    currencies:\n      CHF: chf\n",
        )
        with pytest.raises(ConfigValidationError, match="normalize must be 'spaces-to-dashes'"):
            load_import_config(tmp_path)

    def test_negative_skip_rows_rejected(self, tmp_path):
        write_providers(
            tmp_path,
            PATHS
            + "providers:\n  ubs:\n    detect:\n"
            + '      - header: "a,b"\n        currencyField: b\n        skipRows: -1\n'
            + "    currencies:\n      CHF: chf\n",
        )
        with pytest.raises(ConfigValidationError, match="skipRows must be a non-negative number"):
            load_import_config(tmp_path)


class TestLoadPricesConfig:
    """Tests for load_prices_config."""

    def test_sample_config(self, ledger_dir):
        config = load_prices_config(ledger_dir)

        assert list(config.currencies) == ["EUR", "BTC"]
        assert config.currencies["EUR"].backfill_date == "2024-06-01"
        assert config.currencies["EUR"].fmt_base is None
        assert config.currencies["BTC"].fmt_base == "BTC"

    def test_unquoted_date_is_kept(self, tmp_path):
        write_prices(
            tmp_path,
            "currencies:\n  EUR:\n    source: ecb\n    pair: EUR/CHF\n    file: eur.journal\n"
            "    backfill_date: 2024-06-01\n",
        )
        assert load_prices_config(tmp_path).currencies["EUR"].backfill_date == "2024-06-01"

    def test_missing_required_field(self, tmp_path):
        write_prices(tmp_path, "currencies:\n  EUR:\n    source: ecb\n    pair: EUR/CHF\n")
        with pytest.raises(ConfigValidationError, match="missing required field 'file'"):
            load_prices_config(tmp_path)

    def test_default_backfill_date(self):
        assert default_backfill_date() == f"{date.today().year}-01-01"


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, monkeypatch):
        for name in (
            "STATEMENTS_HLEDGER_BIN",
            "STATEMENTS_PRICEHIST_BIN",
            "STATEMENTS_WORKSPACE_DIR",
            "STATEMENTS_AGENT",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = load_settings()

        assert settings.hledger_bin == "hledger"
        assert settings.pricehist_bin == "pricehist"
        assert settings.agent == "accountant"

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STATEMENTS_HLEDGER_BIN", "/opt/hledger")
        monkeypatch.setenv("STATEMENTS_WORKSPACE_DIR", str(tmp_path))
        monkeypatch.setenv("STATEMENTS_AGENT", "assistant")

        settings = load_settings()

        assert settings.hledger_bin == "/opt/hledger"
        assert settings.workspace_base_dir == tmp_path
        assert settings.agent == "assistant"
