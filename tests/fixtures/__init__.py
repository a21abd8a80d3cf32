"""
Test fixtures for statement imports.

Sample provider configuration, rules, CSV exports and canned hledger output
for one UBS checking account, plus a scripted stand-in for the hledger
executor.
"""

import subprocess
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

from statements_hledger.ledger import LedgerResult

PROVIDERS_YAML = """\
paths:
  import: import/incoming
  pending: import/pending
  done: import/done
  unrecognized: import/unrecognized
  rules: ledger/rules

providers:
  ubs:
    detect:
      - header: "Date,Description,Amount,Balance,Currency"
        currencyField: Currency
        skipRows: 2
        metadata:
          - field: account-number
            row: 0
            column: 1
            normalize: spaces-to-dashes
          - field: from-date
            row: 1
            column: 1
          - field: until-date
            row: 1
            column: 3
          - field: closing-balance
            row: 1
            column: 5
    currencies:
      CHF: chf
      EUR: eur
  revolut:
    detect:
      - filenamePattern: "^account-statement_"
        header: "Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance"
        currencyField: Currency
        renamePattern: "{provider}-{currency}-statement.csv"
    currencies:
      EUR: eur
"""

PRICES_YAML = """\
currencies:
  EUR:
    source: ecb
    pair: EUR/CHF
    file: eur.journal
    backfill_date: "2024-06-01"
  BTC:
    source: coinbase
    pair: BTC/CHF
    file: btc.journal
    fmt_base: BTC
"""

UBS_RULES = """\
# UBS checking account (CHF)
source ../../import/pending/ubs/chf/*.csv

skip 3
fields date, description, amount, balance, currency

currency CHF
account1 assets:bank:ubs:checking
account2 expenses:unknown

if COOP|MIGROS
  account2 expenses:groceries

if SALARY
  account2 income:salary
"""

UBS_CSV = """\
Account,CH12 3456 7890
From,2024-01-01,Until,2024-01-31,Closing balance,2324.79
Date,Description,Amount,Balance,Currency
2024-01-15,COOP Basel,-25.20,2324.79,CHF
"""

REVOLUT_CSV = """\
Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance
CARD_PAYMENT,Current,2024-02-01 10:00:00,2024-02-02 09:00:00,Bakery,-4.50,0.00,EUR,COMPLETED,95.50
"""

MAIN_JOURNAL = """\
; Main journal
include ledger/accounts.journal
"""

PRINT_MATCHED = """\
2024-01-15 COOP Basel
    expenses:groceries              CHF25.20
    assets:bank:ubs:checking       CHF-25.20 = CHF2324.79

"""

PRINT_UNKNOWN = """\
2024-01-15 COOP Basel
    expenses:unknown                CHF25.20
    assets:bank:ubs:checking       CHF-25.20 = CHF2324.79

"""

REGISTER_CSV = (
    '"txnidx","date","code","description","account","amount","total"\n'
    '"1","2024-01-15","","COOP Basel","assets:bank:ubs:checking","CHF-25.20","CHF2324.79"\n'
)


def git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return completed.stdout.strip()


class ScriptedExecutor:
    """Fake hledger: answers by subcommand and records every call."""

    def __init__(self, responses: dict[str, LedgerResult | Callable] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[list[str]] = []

    def __call__(self, args: list[str]) -> LedgerResult:
        self.calls.append(list(args))
        response = self.responses.get(args[0])
        if callable(response):
            return response(args)
        return response or LedgerResult(stdout="", stderr="", exit_code=0)

    def commands(self) -> list[str]:
        return [call[0] for call in self.calls]


def ok(stdout: str = "") -> LedgerResult:
    return LedgerResult(stdout=stdout, stderr="", exit_code=0)


def failed(stderr: str) -> LedgerResult:
    return LedgerResult(stdout="", stderr=stderr, exit_code=1)


def balance_output(amount: str, account: str = "assets:bank:ubs:checking") -> LedgerResult:
    return ok(f"         {amount}  {account}\n")


def ledger_executor(
    print_output: str = PRINT_MATCHED, balance: str = "CHF 2324.79"
) -> ScriptedExecutor:
    """Executor answering like hledger for one imported UBS statement."""
    return ScriptedExecutor(
        {
            "print": ok(print_output),
            "register": ok(REGISTER_CSV),
            "bal": lambda args: balance_output(balance) if "-e" in args else ok(),
        }
    )


def write_ledger_files(root: Path) -> None:
    """Config, rules and journals of a small ledger repository."""
    (root / "config" / "import").mkdir(parents=True, exist_ok=True)
    (root / "config" / "import" / "providers.yaml").write_text(PROVIDERS_YAML)
    (root / "config" / "prices.yaml").write_text(PRICES_YAML)
    (root / "ledger" / "rules").mkdir(parents=True, exist_ok=True)
    (root / "ledger" / "rules" / "ubs-chf.rules").write_text(UBS_RULES)
    (root / "ledger" / "accounts.journal").write_text("; accounts\n")
    (root / ".hledger.journal").write_text(MAIN_JOURNAL)


def add_incoming(root: Path, name: str = "statement.csv", content: str = UBS_CSV) -> Path:
    incoming = root / "import" / "incoming"
    incoming.mkdir(parents=True, exist_ok=True)
    path = incoming / name
    path.write_text(content)
    return path


def add_pending(
    root: Path,
    name: str = "statement.csv",
    content: str = UBS_CSV,
    provider: str = "ubs",
    currency: str = "chf",
) -> Path:
    pending = root / "import" / "pending" / provider / currency
    pending.mkdir(parents=True, exist_ok=True)
    path = pending / name
    path.write_text(content)
    return path


def undeletable(name: str):
    """Patch Path.unlink so that deleting any file called ``name`` is refused."""
    original = Path.unlink

    def unlink(path: Path, missing_ok: bool = False) -> None:
        if path.name == name:
            raise PermissionError(13, "Permission denied", str(path))
        return original(path, missing_ok=missing_ok)

    return patch.object(Path, "unlink", autospec=True, side_effect=unlink)
