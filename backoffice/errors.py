"""
backoffice/errors.py

Error taxonomy shared by engines and routes.

- ValidationError: save is blocked entirely; carries per-field messages.
- Policy notices: deletes of history-bearing entities are refused, never applied.
"""

from __future__ import annotations

from typing import Dict


class ValidationError(Exception):
    """Raised by engines when a save must be blocked (no partial apply)."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__(", ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = dict(errors)


class NotFound(LookupError):
    """Referenced document item (project, milestone, invoice...) does not exist."""


# Delete is disabled for every entity that carries business history.
DELETION_DISABLED = {
    "customer": "Deletion is disabled to preserve the customer history.",
    "call": "Deletion is disabled to preserve the calls history.",
    "proposal": "Deletion is disabled to preserve the proposals history.",
    "service": "Deletion is disabled to preserve the services history.",
    "project": "Deletion is disabled to preserve the projects history.",
    "billing": "Deletion is disabled to preserve the billing history.",
    "task": "Deletion is disabled to preserve the tasks history.",
}


def deletion_notice(entity: str) -> str:
    """User-facing notice for a refused delete. Never mutates anything."""
    return DELETION_DISABLED[entity]


class ConfirmationRequired(Exception):
    """A status change is waiting for an explicit confirmation; nothing was saved."""

    def __init__(self, next_status: str):
        super().__init__(f"Confirmation required to set status {next_status}")
        self.next_status = next_status


class PermissionDenied(Exception):
    """The current role may not perform this change; nothing was saved."""
