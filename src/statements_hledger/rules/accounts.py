"""
Account declarations for year journals.

``hledger check --strict`` rejects postings to undeclared accounts, so every
account a rules file can produce must be declared in the year journal before
anything is imported into it.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Account names end at two spaces, a tab or an inline comment (hledger syntax)
RULES_ACCOUNT_PATTERN = re.compile(r"(?:^|\s)account[12]\s+(.+?)(?:\s{2,}|\t|\s+[;#]|$)")
DECLARATION_PATTERN = re.compile(r"^account\s+(.+?)(?:\s{2,}|\t|\s+;|$)")


@dataclass
class AccountDeclarationResult:
    added: list[str] = field(default_factory=list)
    updated: bool = False


def _is_comment(stripped: str) -> bool:
    return stripped.startswith("#") or stripped.startswith(";")


def extract_accounts_from_rules_file(rules_path: Path | str) -> set[str]:
    """Accounts named by ``account1``/``account2`` in a rules file."""
    rules_path = Path(rules_path)
    accounts: set[str] = set()
    if not rules_path.exists():
        return accounts

    for line in rules_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or _is_comment(stripped):
            continue
        match = RULES_ACCOUNT_PATTERN.search(stripped)
        if match:
            accounts.add(match.group(1).strip())

    return accounts


def collect_accounts(rules_paths: Iterable[Path | str]) -> set[str]:
    """Union of the accounts of all ``rules_paths``."""
    accounts: set[str] = set()
    for rules_path in rules_paths:
        accounts |= extract_accounts_from_rules_file(rules_path)
    return accounts


def sort_account_declarations(accounts: Iterable[str]) -> list[str]:
    return sorted(accounts)


def ensure_account_declarations(
    journal_path: Path | str,
    accounts: Iterable[str],
) -> AccountDeclarationResult:
    """
    Make sure every account in ``accounts`` is declared in ``journal_path``.

    The journal is rewritten as: leading comments, a blank line, all
    ``account`` declarations sorted by name, a blank line, then everything
    else. Existing declaration lines are kept verbatim. Nothing is written if
    all accounts are already declared.

    Raises:
        FileNotFoundError: journal does not exist
    """
    journal_path = Path(journal_path)
    if not journal_path.exists():
        raise FileNotFoundError(f"Year journal not found: {journal_path}")

    lines = journal_path.read_text(encoding="utf-8").split("\n")

    comment_lines: list[str] = []
    declarations: dict[str, str] = {}
    other_lines: list[str] = []
    in_declarations = False
    declarations_ended = False
    seen_content = False

    for line in lines:
        stripped = line.strip()

        if _is_comment(stripped):
            if seen_content:
                other_lines.append(line)
            else:
                comment_lines.append(line)
            continue

        match = DECLARATION_PATTERN.match(stripped)
        if match:
            in_declarations = True
            declarations.setdefault(match.group(1).strip(), stripped)
            continue

        if not stripped:
            # Blank lines inside the declaration block are regenerated
            if not in_declarations or declarations_ended:
                other_lines.append(line)
            continue

        if in_declarations:
            declarations_ended = True
        seen_content = True
        other_lines.append(line)

    missing = {a for a in accounts if a not in declarations}
    if not missing:
        return AccountDeclarationResult()

    for account in missing:
        declarations[account] = f"account {account}"

    # Drop blank lines that used to separate comments from the old block
    while other_lines and not other_lines[0].strip():
        other_lines.pop(0)

    content: list[str] = list(comment_lines)
    content.append("")
    content.extend(declarations[name] for name in sort_account_declarations(declarations))
    content.append("")
    content.extend(other_lines)

    text = "\n".join(content)
    if not text.endswith("\n"):
        text += "\n"
    journal_path.write_text(text, encoding="utf-8")

    added = sorted(missing)
    logger.info("Declared %d account(s) in %s", len(added), journal_path.name)
    return AccountDeclarationResult(added=added, updated=True)
