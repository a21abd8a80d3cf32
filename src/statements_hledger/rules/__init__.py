"""
hledger rules files: source index, directive parsing and account declarations.
"""

from .accounts import (
    AccountDeclarationResult,
    collect_accounts,
    ensure_account_declarations,
    extract_accounts_from_rules_file,
    sort_account_declarations,
)
from .matcher import (
    RulesMapping,
    find_rules_for_csv,
    load_rules_mapping,
    parse_source_directive,
    resolve_source_path,
)
from .parser import (
    AmountFields,
    RulesConfig,
    parse_account1,
    parse_amount_fields,
    parse_date_field,
    parse_rules_file,
)

__all__ = [
    # Accounts
    "AccountDeclarationResult",
    "collect_accounts",
    "ensure_account_declarations",
    "extract_accounts_from_rules_file",
    "sort_account_declarations",
    # Index
    "RulesMapping",
    "find_rules_for_csv",
    "load_rules_mapping",
    "parse_source_directive",
    "resolve_source_path",
    # Directives
    "AmountFields",
    "RulesConfig",
    "parse_account1",
    "parse_amount_fields",
    "parse_date_field",
    "parse_rules_file",
]
