"""Market price updates.

Fetches end-of-day prices with pricehist for every currency in
config/prices.yaml and merges the ``P`` directives into
``ledger/currencies/<file>``. The journals are updated inside an isolation
workspace and merged back as a single commit.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from ..config import (
    ConfigValidationError,
    CurrencyConfig,
    PricesConfigLoader,
    default_backfill_date,
    load_prices_config,
)
from ..ledger import update_price_journal, yesterday
from ..ledger.journal import CURRENCIES_DIR
from ..workspace import IsolationWorkspace, WorkspaceError, merge_workspace, run_isolated

logger = logging.getLogger(__name__)


class PriceFetchError(Exception):
    """pricehist could not be run or returned an error."""

    pass


class PriceFetcher(Protocol):
    """Runs pricehist with the given arguments and returns its stdout."""

    def __call__(self, args: list[str]) -> str: ...


class PricehistFetcher:
    """Default fetcher: runs the pricehist binary as a subprocess."""

    def __init__(self, binary: str = "pricehist") -> None:
        self.binary = binary

    def __call__(self, args: list[str]) -> str:
        command = [self.binary, *args]
        logger.debug("Running: %s", " ".join(command))
        try:
            completed = subprocess.run(command, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise PriceFetchError(f"{self.binary} not found. Is pricehist installed?") from e
        except subprocess.CalledProcessError as e:
            raise PriceFetchError(e.stderr.strip() or f"{self.binary} exited with {e.returncode}") from e
        return completed.stdout.strip()


def build_pricehist_args(start_date: str, end_date: str, currency: CurrencyConfig) -> list[str]:
    args = ["fetch", "-o", "ledger", "-s", start_date, "-e", end_date, currency.source, currency.pair]
    if currency.fmt_base:
        args.extend(["--fmt-base", currency.fmt_base])
    return args


@dataclass
class PriceResult:
    ticker: str
    price_line: str | None = None
    file: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"ticker": self.ticker, "error": self.error}
        return {"ticker": self.ticker, "price_line": self.price_line, "file": self.file}


@dataclass
class PriceUpdateReport:
    success: bool
    end_date: str
    backfill: bool = False
    results: list[PriceResult] = field(default_factory=list)
    commit_message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "end_date": self.end_date,
            "backfill": self.backfill,
            "results": [r.to_dict() for r in self.results],
        }
        if self.commit_message:
            d["commit_message"] = self.commit_message
        if self.error:
            d["error"] = self.error
        return d


class PriceUpdateService:
    """Fetches prices and merges them into the ledger.

    Usage:
        service = PriceUpdateService(PricehistFetcher())
        report = service.run_update(Path("/path/to/ledger"), backfill=False)
    """

    def __init__(
        self,
        fetcher: PriceFetcher,
        config_loader: PricesConfigLoader = load_prices_config,
        workspace_base_dir: Path | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.config_loader = config_loader
        self.workspace_base_dir = workspace_base_dir

    def run_update(self, directory: Path, backfill: bool = False) -> PriceUpdateReport:
        directory = Path(directory)
        end_date = yesterday()
        report = PriceUpdateReport(success=False, end_date=end_date, backfill=backfill)

        try:
            config = self.config_loader(directory)
        except ConfigValidationError as e:
            report.error = str(e)
            return report

        def update(workspace: IsolationWorkspace) -> None:
            for ticker, currency in config.currencies.items():
                start_date = (currency.backfill_date or default_backfill_date()) if backfill else end_date
                report.results.append(
                    self._update_currency(workspace.path, ticker, currency, start_date, end_date)
                )

            if any(r.error is None for r in report.results):
                report.commit_message = f"Update prices: {end_date}"
                merge_workspace(workspace, report.commit_message)

        try:
            run_isolated(directory, update, base_dir=self.workspace_base_dir)
        except WorkspaceError as e:
            logger.error("Price update failed: %s", e)
            report.error = str(e)
            return report

        report.success = all(r.error is None for r in report.results)
        return report

    def fetch_prices(self, ticker: str, currency: CurrencyConfig, start_date: str, end_date: str) -> list[str]:
        """Price directives for one currency, oldest first."""
        output = self.fetcher(build_pricehist_args(start_date, end_date, currency))
        lines = [line for line in output.split("\n") if line.startswith("P ")]
        if not lines:
            raise PriceFetchError(f"No price lines in pricehist output: {output}")
        return lines

    def _update_currency(
        self,
        root: Path,
        ticker: str,
        currency: CurrencyConfig,
        start_date: str,
        end_date: str,
    ) -> PriceResult:
        try:
            lines = self.fetch_prices(ticker, currency, start_date, end_date)
        except PriceFetchError as e:
            logger.warning("Failed to fetch %s prices: %s", ticker, e)
            return PriceResult(ticker=ticker, error=str(e))

        update_price_journal(root / CURRENCIES_DIR / currency.file, lines)
        logger.info("Updated %s prices (%d line(s))", ticker, len(lines))
        return PriceResult(ticker=ticker, price_line=lines[-1], file=currency.file)
