"""Status and priority normalization utilities.

Centralized so every analyzer compares canonical names. Uses the workflow
and priority tables from config.py (STATUS_ALIASES, TERMINAL_STATUSES,
PRIORITY_ALIASES).
"""

from __future__ import annotations

from .config import STATUS_ALIASES, TERMINAL_STATUSES, URGENT_PRIORITIES, normalize_priority_name

DONE_STATUSES_LOWER: frozenset[str] = frozenset({s.lower() for s in TERMINAL_STATUSES} | {"completed"})


def normalize_workflow_status(value: str | None) -> str:
    """Map raw Jira status to canonical workflow status names.

    Returns "Unknown" for empty values and the stripped input for statuses
    with no alias, so custom workflows still pass through.

    Examples
    --------
    >>> normalize_workflow_status("in progress")
    'In Progress'
    >>> normalize_workflow_status("canceled")
    'Cancelled'
    """
    if not value:
        return "Unknown"
    text = str(value).strip()
    return STATUS_ALIASES.get(text.lower(), text)


def is_terminal_status(value: str | None) -> bool:
    """True when the status means the item is closed and needs no nudges."""
    if not value:
        return False
    return normalize_workflow_status(value).lower() in DONE_STATUSES_LOWER


def is_urgent_priority(priority: str | None) -> bool:
    """True for Blocker/Critical items (after alias normalization)."""
    return normalize_priority_name(priority) in URGENT_PRIORITIES
