"""
Caller restriction for ledger-mutating operations.

Only the accountant agent may run imports, reconciliations or price updates.
Every other caller gets a structured denial and nothing else happens.
"""

from typing import Any

ACCOUNTANT_AGENT = "accountant"
RESTRICTED_MESSAGE = "This tool is restricted to the accountant agent only."


def is_authorized(caller: str | None) -> bool:
    """Return True if ``caller`` may run restricted operations."""
    return caller == ACCOUNTANT_AGENT


def check_caller(caller: str | None, operation: str, **extra: Any) -> dict[str, Any] | None:
    """
    Check the calling agent.

    Args:
        caller: Identity of the invoking agent
        operation: Short prompt naming the operation, used in the hint
        **extra: Additional fields merged into the denial

    Returns:
        None if authorized, otherwise the denial as a dict
    """
    if is_authorized(caller):
        return None

    denial: dict[str, Any] = {
        "success": False,
        "error": RESTRICTED_MESSAGE,
        "hint": f"Use: Task(subagent_type='{ACCOUNTANT_AGENT}', prompt='{operation}')",
        "caller": caller or "main assistant",
    }
    denial.update(extra)
    return denial
