"""
hledger command execution and output parsing.

All ledger queries go through a LedgerExecutor so that services can be run
against a scripted executor in tests. The default executor shells out to the
hledger binary and never raises: a missing binary is reported as exit code 127.
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .dates import next_day

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127

TRANSACTION_HEADER_PATTERN = re.compile(r"^(\d{4})-\d{2}-\d{2}\s+")
TRANSACTION_DESCRIPTION_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})\s+(.+)$")
UNKNOWN_POSTING_PATTERN = re.compile(
    r"^\s+(income:unknown|expenses:unknown)\s+([^\s]+(?:\s+[^\s=]+)?)\s*(?:=\s*(.+))?$"
)
REGISTER_DATE_PATTERN = re.compile(r'^"?\d+"?,"?(\d{4}-\d{2}-\d{2})"?')
BALANCE_AMOUNT_PATTERN = re.compile(r"^\s*(.+?)\s{2,}")


@dataclass
class LedgerResult:
    """Captured output of one hledger invocation."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class LedgerExecutor(Protocol):
    """Runs hledger with the given arguments."""

    def __call__(self, args: list[str]) -> LedgerResult: ...


class HledgerExecutor:
    """Default executor: runs the hledger binary as a subprocess.

    There is no timeout; a hanging hledger hangs the caller.
    """

    def __init__(self, binary: str = "hledger") -> None:
        self.binary = binary

    def __call__(self, args: list[str]) -> LedgerResult:
        command = [self.binary, *args]
        logger.debug("Running: %s", " ".join(command))
        try:
            completed = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError:
            return LedgerResult(
                stdout="",
                stderr=f"{self.binary} not found. Is hledger installed?",
                exit_code=COMMAND_NOT_FOUND,
            )
        except OSError as e:
            return LedgerResult(stdout="", stderr=str(e), exit_code=1)

        return LedgerResult(
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
        )


@dataclass
class UnknownPosting:
    """A posting hledger routed to income:unknown or expenses:unknown."""

    date: str
    description: str
    amount: str
    account: str
    balance: str | None = None
    csv_row: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "account": self.account,
        }
        if self.balance:
            d["balance"] = self.balance
        if self.csv_row is not None:
            d["csv_row"] = self.csv_row
        return d


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def parse_unknown_postings(output: str) -> list[UnknownPosting]:
    """
    Extract unknown postings from ``hledger print`` output.

    Example::

        2026-01-16 Coffee shop
            expenses:unknown            CHF10.00 = CHF2364.69
            assets:bank:ubs:checking   CHF-10.00
    """
    postings: list[UnknownPosting] = []
    current_date = ""
    current_description = ""

    for line in output.split("\n"):
        header = TRANSACTION_DESCRIPTION_PATTERN.match(line)
        if header:
            current_date = header.group(1)
            current_description = header.group(2).strip()
            continue

        posting = UNKNOWN_POSTING_PATTERN.match(line)
        if posting and current_date:
            balance = posting.group(3)
            postings.append(
                UnknownPosting(
                    date=current_date,
                    description=current_description,
                    amount=posting.group(2).strip(),
                    account=posting.group(1),
                    balance=balance.strip() if balance else None,
                )
            )

    return postings


def count_transactions(output: str) -> int:
    """Number of transactions in ``hledger print`` output."""
    return sum(1 for line in output.split("\n") if TRANSACTION_HEADER_PATTERN.match(line))


def extract_transaction_years(output: str) -> set[int]:
    """Distinct years of the transaction dates in ``hledger print`` output."""
    years: set[int] = set()
    for line in output.split("\n"):
        match = TRANSACTION_HEADER_PATTERN.match(line)
        if match:
            years.add(int(match.group(1)))
    return years


def validate_ledger(main_journal: Path | str, executor: LedgerExecutor) -> ValidationResult:
    """Run ``hledger check --strict`` and ``hledger bal`` against the journal."""
    result = ValidationResult()

    check = executor(["check", "--strict", "-f", str(main_journal)])
    if not check.success:
        message = check.stderr.strip() or check.stdout.strip()
        result.errors.append(f"hledger check --strict failed: {message}")

    balance = executor(["bal", "-f", str(main_journal)])
    if not balance.success:
        message = balance.stderr.strip() or balance.stdout.strip()
        result.errors.append(f"hledger bal failed: {message}")

    return result


def get_last_transaction_date(
    main_journal: Path | str,
    account: str,
    executor: LedgerExecutor,
) -> str | None:
    """Date of the most recent posting to ``account``, or None."""
    result = executor(["register", account, "-f", str(main_journal), "-O", "csv"])
    if not result.success or not result.stdout.strip():
        return None

    lines = result.stdout.strip().split("\n")
    if len(lines) < 2:
        # Header only
        return None

    match = REGISTER_DATE_PATTERN.match(lines[-1])
    return match.group(1) if match else None


def get_account_balance(
    main_journal: Path | str,
    account: str,
    as_of: str,
    executor: LedgerExecutor,
) -> str | None:
    """
    Balance of ``account`` at the end of ``as_of`` (e.g. "CHF 2324.79").

    Returns "0" when hledger prints nothing and None when the query fails.
    """
    result = executor(
        ["bal", account, "-f", str(main_journal), "-e", next_day(as_of), "-N", "--flat"]
    )
    if not result.success:
        return None

    output = result.stdout.strip()
    if not output:
        return "0"

    match = BALANCE_AMOUNT_PATTERN.match(output)
    return match.group(1).strip() if match else output
