"""
backoffice/store.py

The local persisted store: named keys holding raw JSON strings, one StoredDocument
row per key.

Rules:
- TRACKED_KEYS is the snapshot contract with the remote store. A key that is not
  listed here is never synchronized.
- Every write goes through LocalStore.transaction(): a process-wide re-entrant lock,
  one commit for the outermost block, rollback on error, then one document_changed
  event per key whose raw value actually changed.
- Corrupt persisted JSON never propagates: it is logged and read as empty.

IMPORTANT:
- Derivation and reconciliation both do read-compute-write inside a single
  transaction() block, so neither can clobber the other's write.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .entities import Invoice, Project, Proposal, Service
from .events import document_changed
from .extensions import db
from .models import StoredDocument

logger = logging.getLogger(__name__)

CUSTOMERS = "customers"
CALLS = "calls"
PROPOSALS = "proposals"
PROJECTS = "projects"
SERVICES = "otherServices"
INVOICES = "invoices"
COMPANY_SETTINGS = "companySettings"
USERS = "users"

TRACKED_KEYS = (
    CUSTOMERS,
    CALLS,
    PROPOSALS,
    PROJECTS,
    SERVICES,
    INVOICES,
    COMPANY_SETTINGS,
    USERS,
)

APP_DATA_UPDATED_AT_KEY = "appDataUpdatedAt"

_mutation_lock = threading.RLock()
_tx_state = threading.local()


class LocalStore:
    """Typed access to the named documents of the local store."""

    # -----------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["LocalStore"]:
        """
        Serialize a read-compute-write sequence against every other writer.

        Nested blocks join the outermost one; only the outermost commits and
        emits change events.
        """
        _mutation_lock.acquire()
        depth = getattr(_tx_state, "depth", 0)
        if depth == 0:
            _tx_state.changed = []
        _tx_state.depth = depth + 1

        changed: List[str] = []
        try:
            yield self
            if depth == 0:
                db.session.commit()
                changed = list(_tx_state.changed)
        except Exception:
            if depth == 0:
                db.session.rollback()
            raise
        finally:
            _tx_state.depth = depth
            if depth == 0:
                _tx_state.changed = []
            _mutation_lock.release()

        for key in changed:
            document_changed.send(self, key=key)

    def _mark_changed(self, key: str) -> None:
        pending = getattr(_tx_state, "changed", None)
        if pending is not None and key not in pending:
            pending.append(key)

    # -----------------------------------------------------------------
    # Raw key access
    # -----------------------------------------------------------------
    def get_raw(self, key: str) -> Optional[str]:
        row = db.session.get(StoredDocument, key)
        return row.value if row is not None else None

    def set_raw(self, key: str, value: str) -> bool:
        """Write a raw value. Returns False (and writes nothing) when unchanged."""
        with self.transaction():
            row = db.session.get(StoredDocument, key)
            if row is not None and row.value == value:
                return False
            if row is None:
                db.session.add(StoredDocument(key=key, value=value))
            else:
                row.value = value
            db.session.flush()
            self._mark_changed(key)
            return True

    def delete(self, key: str) -> bool:
        with self.transaction():
            row = db.session.get(StoredDocument, key)
            if row is None:
                return False
            db.session.delete(row)
            db.session.flush()
            self._mark_changed(key)
            return True

    # -----------------------------------------------------------------
    # JSON documents
    # -----------------------------------------------------------------
    def _load_json(self, key: str):
        raw = self.get_raw(key)
        if raw is None or raw == "":
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Corrupt JSON in stored key %r; reading it as empty", key)
            return None

    def load_collection(self, key: str) -> List[dict]:
        value = self._load_json(key)
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning("Stored key %r is not a list; reading it as empty", key)
            return []
        return [item for item in value if isinstance(item, dict)]

    def load_object(self, key: str) -> dict:
        value = self._load_json(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            logger.warning("Stored key %r is not an object; reading it as empty", key)
            return {}
        return value

    def save_json(self, key: str, value) -> bool:
        return self.set_raw(key, json.dumps(value, ensure_ascii=False))

    def save_collection(self, key: str, items: List[dict]) -> bool:
        return self.save_json(key, list(items))

    # -----------------------------------------------------------------
    # Typed accessors
    # -----------------------------------------------------------------
    def customers(self) -> List[dict]:
        return self.load_collection(CUSTOMERS)

    def calls(self) -> List[dict]:
        return self.load_collection(CALLS)

    def company_settings(self) -> dict:
        return self.load_object(COMPANY_SETTINGS)

    def save_company_settings(self, settings: dict) -> bool:
        return self.save_json(COMPANY_SETTINGS, dict(settings))

    def proposals(self) -> List[Proposal]:
        return [Proposal.from_dict(item) for item in self.load_collection(PROPOSALS)]

    def save_proposals(self, proposals: List[Proposal]) -> bool:
        return self.save_collection(PROPOSALS, [p.to_dict() for p in proposals])

    def services(self) -> List[Service]:
        return [Service.from_dict(item) for item in self.load_collection(SERVICES)]

    def save_services(self, services: List[Service]) -> bool:
        return self.save_collection(SERVICES, [s.to_dict() for s in services])

    def projects(self) -> List[Project]:
        return [Project.from_dict(item) for item in self.load_collection(PROJECTS)]

    def save_projects(self, projects: List[Project]) -> bool:
        return self.save_collection(PROJECTS, [p.to_dict() for p in projects])

    def invoices(self) -> List[Invoice]:
        return [Invoice.from_dict(item) for item in self.load_collection(INVOICES)]

    def save_invoices(self, invoices: List[Invoice]) -> bool:
        return self.save_collection(INVOICES, [i.to_dict() for i in invoices])

    # -----------------------------------------------------------------
    # Snapshot (the document exchanged with the remote store)
    # -----------------------------------------------------------------
    def snapshot(self) -> Dict[str, str]:
        """Tracked key -> raw value; absent keys are omitted."""
        rows = StoredDocument.query.filter(StoredDocument.key.in_(TRACKED_KEYS)).all()
        by_key = {row.key: row.value for row in rows}
        return {key: by_key[key] for key in TRACKED_KEYS if key in by_key}

    def apply_snapshot(self, data: Dict[str, object]) -> None:
        """Overwrite tracked keys from data; tracked keys absent from data are deleted."""
        with self.transaction():
            for key in TRACKED_KEYS:
                value = data.get(key)
                if value is None:
                    self.delete(key)
                elif isinstance(value, str):
                    self.set_raw(key, value)
                else:
                    self.save_json(key, value)

    def updated_at(self) -> Optional[str]:
        return self.get_raw(APP_DATA_UPDATED_AT_KEY) or None

    def set_updated_at(self, value: Optional[str]) -> None:
        if value:
            self.set_raw(APP_DATA_UPDATED_AT_KEY, value)
        else:
            self.delete(APP_DATA_UPDATED_AT_KEY)


def serialize_snapshot(snapshot: Dict[str, str]) -> str:
    """Stable serialized form used to detect local changes between pushes."""
    return json.dumps(snapshot, sort_keys=True, ensure_ascii=False)
