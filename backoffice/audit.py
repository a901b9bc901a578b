"""
backoffice/audit.py

Audit logging of document writes.

Goals:
- Capture WHO changed WHICH item of WHICH document, with BEFORE/AFTER snapshots.
- Store a name snapshot to preserve identity even if the user is renamed later.
- Store IP address for traceability when a request is in flight.

IMPORTANT:
- This helper ADDS AuditLog entries to the current SQLAlchemy session.
  The caller's LocalStore.transaction() controls commit/rollback, so the entry
  lands in the same commit as the document write it describes.
- Background writers (reconciler, derivation timer) have no request and no user;
  their entries carry user_id=None.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_SEND = "SEND"
ACTION_SYNC = "SYNC"


def _actor():
    if not has_request_context():
        return None
    if current_user and current_user.is_authenticated:
        return current_user
    return None


def log_document_change(
    document: str,
    item_id: Optional[str],
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add an AuditLog entry to the current db session.

    Parameters:
        document: store key ("projects", "invoices", ...)
        item_id: id of the item inside the document, if any
        action: CREATE / UPDATE / SEND / SYNC
        before: dict snapshot (optional)
        after: dict snapshot (optional)
    """
    if not document or not action:
        raise TypeError("log_document_change requires 'document' and 'action'.")

    actor = _actor()
    entry = AuditLog(
        user_id=actor.id if actor is not None else None,
        username_snapshot=(actor.name or actor.email) if actor is not None else None,
        entity_type=document,
        entity_id=str(item_id) if item_id is not None else None,
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
