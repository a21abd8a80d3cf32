"""
Configuration management (SSOT).

This module defines ALL configuration for the statement import pipeline.
All config keys are defined here; no other module should invent config keys.

Sources:
- config/import/providers.yaml: directory layout and provider detection rules
- config/prices.yaml: currencies to fetch market prices for
- Environment variables: runtime settings (binaries, workspace location, caller)

Key invariants:
- Provider and detection-rule order is preserved exactly as written in YAML;
  classification is first-match, so order is significant.
- Missing or malformed required fields fail at load time, never later.
"""

import os
import re
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import yaml

IMPORT_CONFIG_FILE = "config/import/providers.yaml"
PRICES_CONFIG_FILE = "config/prices.yaml"

REQUIRED_PATH_FIELDS = ("import", "pending", "done", "unrecognized", "rules")
REQUIRED_DETECTION_FIELDS = ("header", "currencyField")
REQUIRED_CURRENCY_FIELDS = ("source", "pair", "file")

# Only supported metadata normalization
NORMALIZE_SPACES_TO_DASHES = "spaces-to-dashes"


class ConfigValidationError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


@dataclass
class MetadataExtraction:
    """A (row, column) cell read from the rows skipped before the CSV header."""

    field: str  # Placeholder name usable in rename_pattern (e.g. "account-number")
    row: int  # 0-indexed within the skipped rows
    column: int  # 0-indexed
    normalize: str | None = None  # Only "spaces-to-dashes"


@dataclass
class DetectionRule:
    """Declarative rule matching a CSV export to a provider.

    Evaluated as: filename pattern (if set), then exact header equality after
    skipping ``skip_rows`` lines, then a non-empty currency field in the first
    data row.
    """

    header: str
    currency_field: str
    filename_pattern: str | None = None
    skip_rows: int = 0
    delimiter: str = ","
    rename_pattern: str | None = None
    metadata: list[MetadataExtraction] = field(default_factory=list)


@dataclass
class ProviderConfig:
    """Detection rules and currency code mapping for one provider."""

    detect: list[DetectionRule]
    currencies: dict[str, str]


@dataclass
class ImportPaths:
    """Directory layout, relative to the ledger repository root."""

    import_dir: str  # "import" in YAML: incoming CSVs
    pending: str
    done: str
    unrecognized: str
    rules: str


@dataclass
class ImportConfig:
    """Validated providers.yaml."""

    paths: ImportPaths
    providers: dict[str, ProviderConfig]


@dataclass
class CurrencyConfig:
    """Price source for one ticker."""

    source: str  # pricehist source, e.g. "ecb"
    pair: str  # e.g. "EUR/CHF"
    file: str  # journal file under ledger/currencies/
    fmt_base: str | None = None
    backfill_date: str | None = None


@dataclass
class PricesConfig:
    """Validated prices.yaml."""

    currencies: dict[str, CurrencyConfig]


@dataclass
class Settings:
    """Runtime settings taken from the environment.

    Environment variables:
    - STATEMENTS_HLEDGER_BIN: hledger executable (default: hledger)
    - STATEMENTS_PRICEHIST_BIN: pricehist executable (default: pricehist)
    - STATEMENTS_WORKSPACE_DIR: where isolation worktrees are created (default: temp dir)
    - STATEMENTS_AGENT: caller identity used by the CLI (default: accountant)
    """

    hledger_bin: str = "hledger"
    pricehist_bin: str = "pricehist"
    workspace_base_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    agent: str = "accountant"


ConfigLoader = Callable[[Path], ImportConfig]
PricesConfigLoader = Callable[[Path], PricesConfig]


def load_settings() -> Settings:
    """Build runtime settings from environment variables."""
    workspace_dir = os.environ.get("STATEMENTS_WORKSPACE_DIR", "")
    return Settings(
        hledger_bin=os.environ.get("STATEMENTS_HLEDGER_BIN", "hledger"),
        pricehist_bin=os.environ.get("STATEMENTS_PRICEHIST_BIN", "pricehist"),
        workspace_base_dir=Path(workspace_dir) if workspace_dir else Path(tempfile.gettempdir()),
        agent=os.environ.get("STATEMENTS_AGENT", "accountant"),
    )


def _read_yaml(config_path: Path, relative_name: str, missing_hint: str) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigValidationError(f"Configuration file not found: {relative_name}. {missing_hint}")

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse {relative_name}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Invalid config: {relative_name} must contain a YAML object")
    return data


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _validate_paths(paths: Any) -> ImportPaths:
    if not isinstance(paths, dict):
        raise ConfigValidationError("Invalid config: 'paths' must be an object")

    for name in REQUIRED_PATH_FIELDS:
        if not _is_non_empty_str(paths.get(name)):
            raise ConfigValidationError(f"Invalid config: 'paths.{name}' is required")

    return ImportPaths(
        import_dir=paths["import"],
        pending=paths["pending"],
        done=paths["done"],
        unrecognized=paths["unrecognized"],
        rules=paths["rules"],
    )


def _validate_metadata(where: str, items: Any) -> list[MetadataExtraction]:
    if not isinstance(items, list):
        raise ConfigValidationError(f"Invalid config: {where}.metadata must be an array")

    extractions: list[MetadataExtraction] = []
    for i, item in enumerate(items):
        prefix = f"{where}.metadata[{i}]"
        if not isinstance(item, dict):
            raise ConfigValidationError(f"Invalid config: {prefix} must be an object")
        if not _is_non_empty_str(item.get("field")):
            raise ConfigValidationError(f"Invalid config: {prefix}.field is required")
        if not _is_non_negative_int(item.get("row")):
            raise ConfigValidationError(
                f"Invalid config: {prefix}.row must be a non-negative number"
            )
        if not _is_non_negative_int(item.get("column")):
            raise ConfigValidationError(
                f"Invalid config: {prefix}.column must be a non-negative number"
            )
        normalize = item.get("normalize")
        if normalize is not None and normalize != NORMALIZE_SPACES_TO_DASHES:
            raise ConfigValidationError(
                f"Invalid config: {prefix}.normalize must be '{NORMALIZE_SPACES_TO_DASHES}'"
            )
        extractions.append(
            MetadataExtraction(
                field=item["field"],
                row=item["row"],
                column=item["column"],
                normalize=normalize,
            )
        )
    return extractions


def _validate_detection_rule(provider: str, index: int, rule: Any) -> DetectionRule:
    where = f"provider '{provider}' detect[{index}]"
    if not isinstance(rule, dict):
        raise ConfigValidationError(f"Invalid config: {where} must be an object")

    for name in REQUIRED_DETECTION_FIELDS:
        if not _is_non_empty_str(rule.get(name)):
            raise ConfigValidationError(f"Invalid config: {where}.{name} is required")

    filename_pattern = rule.get("filenamePattern")
    if filename_pattern is not None:
        if not isinstance(filename_pattern, str):
            raise ConfigValidationError(f"Invalid config: {where}.filenamePattern must be a string")
        try:
            re.compile(filename_pattern)
        except re.error as e:
            raise ConfigValidationError(
                f"Invalid config: {where}.filenamePattern is not a valid regex"
            ) from e

    skip_rows = rule.get("skipRows", 0)
    if not _is_non_negative_int(skip_rows):
        raise ConfigValidationError(
            f"Invalid config: {where}.skipRows must be a non-negative number"
        )

    delimiter = rule.get("delimiter", ",")
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        raise ConfigValidationError(
            f"Invalid config: {where}.delimiter must be a single character"
        )

    rename_pattern = rule.get("renamePattern")
    if rename_pattern is not None and not isinstance(rename_pattern, str):
        raise ConfigValidationError(f"Invalid config: {where}.renamePattern must be a string")

    metadata = rule.get("metadata")

    return DetectionRule(
        header=rule["header"],
        currency_field=rule["currencyField"],
        filename_pattern=filename_pattern,
        skip_rows=skip_rows,
        delimiter=delimiter,
        rename_pattern=rename_pattern,
        metadata=_validate_metadata(where, metadata) if metadata is not None else [],
    )


def _validate_provider(name: str, data: Any) -> ProviderConfig:
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Invalid config for provider '{name}': expected an object")

    detect = data.get("detect")
    if not isinstance(detect, list) or not detect:
        raise ConfigValidationError(
            f"Invalid config for provider '{name}': 'detect' must be a non-empty array"
        )
    rules = [_validate_detection_rule(name, i, rule) for i, rule in enumerate(detect)]

    currencies = data.get("currencies")
    if not isinstance(currencies, dict):
        raise ConfigValidationError(
            f"Invalid config for provider '{name}': 'currencies' must be an object"
        )
    for key, value in currencies.items():
        if not isinstance(value, str):
            raise ConfigValidationError(
                f"Invalid config for provider '{name}': currencies.{key} must be a string"
            )
    if not currencies:
        raise ConfigValidationError(
            f"Invalid config for provider '{name}': 'currencies' must contain at least one mapping"
        )

    return ProviderConfig(detect=rules, currencies={str(k): v for k, v in currencies.items()})


def load_import_config(directory: Path) -> ImportConfig:
    """
    Load and validate config/import/providers.yaml below ``directory``.

    Raises:
        ConfigValidationError: file missing, invalid YAML, or missing required fields
    """
    data = _read_yaml(
        Path(directory) / IMPORT_CONFIG_FILE,
        IMPORT_CONFIG_FILE,
        "Please create this file to configure statement imports.",
    )

    if not data.get("paths"):
        raise ConfigValidationError("Invalid config: 'paths' section is required")
    paths = _validate_paths(data["paths"])

    providers = data.get("providers")
    if not isinstance(providers, dict):
        raise ConfigValidationError("Invalid config: 'providers' section is required")
    if not providers:
        raise ConfigValidationError(
            "Invalid config: 'providers' section must contain at least one provider"
        )

    return ImportConfig(
        paths=paths,
        providers={str(name): _validate_provider(str(name), cfg) for name, cfg in providers.items()},
    )


def default_backfill_date() -> str:
    """January 1st of the current year."""
    return f"{date.today().year}-01-01"


def load_prices_config(directory: Path) -> PricesConfig:
    """
    Load and validate config/prices.yaml below ``directory``.

    Raises:
        ConfigValidationError: file missing, invalid YAML, or missing required fields
    """
    data = _read_yaml(
        Path(directory) / PRICES_CONFIG_FILE,
        PRICES_CONFIG_FILE,
        "Please create this file to configure price updates.",
    )

    currencies = data.get("currencies")
    if not isinstance(currencies, dict):
        raise ConfigValidationError("Invalid config: 'currencies' section is required")
    if not currencies:
        raise ConfigValidationError(
            "Invalid config: 'currencies' section must contain at least one currency"
        )

    result: dict[str, CurrencyConfig] = {}
    for ticker, cfg in currencies.items():
        if not isinstance(cfg, dict):
            raise ConfigValidationError(
                f"Invalid config for currency '{ticker}': expected an object"
            )
        for name in REQUIRED_CURRENCY_FIELDS:
            if not _is_non_empty_str(cfg.get(name)):
                raise ConfigValidationError(
                    f"Invalid config for currency '{ticker}': missing required field '{name}'"
                )
        fmt_base = cfg.get("fmt_base")
        backfill = cfg.get("backfill_date")
        result[str(ticker)] = CurrencyConfig(
            source=cfg["source"],
            pair=cfg["pair"],
            file=cfg["file"],
            fmt_base=fmt_base if isinstance(fmt_base, str) else None,
            # YAML turns unquoted 2025-01-01 into a date
            backfill_date=str(backfill) if isinstance(backfill, (str, date)) else None,
        )

    return PricesConfig(currencies=result)
