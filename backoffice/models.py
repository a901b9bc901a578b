"""
Consulting Back Office – Persistence Models

Tables:
- users: login accounts with a role (Admin / Worker / Customer)
- stored_documents: the local persisted store, one JSON document per named key
  (customers, calls, proposals, projects, otherServices, invoices, companySettings,
  users, appDataUpdatedAt)
- app_data: the remote snapshot row served by GET/PUT /app-data
- audit_logs: who wrote which document, with BEFORE/AFTER snapshots

IMPORTANT:
- Entity collections are NOT normalized into tables. They are exchanged as whole JSON
  documents with the remote snapshot store; see backoffice/store.py for typed access.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db

ROLE_ADMIN = "Admin"
ROLE_WORKER = "Worker"
ROLE_CUSTOMER = "Customer"
ROLES = (ROLE_ADMIN, ROLE_WORKER, ROLE_CUSTOMER)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(20), nullable=False, default=ROLE_WORKER, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Customer users only see these project ids (JSON list)
    project_ids_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_worker(self) -> bool:
        return self.role == ROLE_WORKER

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER

    def can_edit(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_WORKER)

    @property
    def project_ids(self) -> list[str]:
        if not self.project_ids_json:
            return []
        try:
            value = json.loads(self.project_ids_json)
        except ValueError:
            return []
        return [str(v) for v in value] if isinstance(value, list) else []

    @project_ids.setter
    def project_ids(self, value: list[str] | None):
        self.project_ids_json = json.dumps(list(value or []))

    def can_see_project(self, project_id: str) -> bool:
        """Customers see only their assigned projects; staff see all."""
        if not self.is_customer:
            return True
        allowed = self.project_ids
        return bool(allowed) and project_id in allowed

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "isActive": self.is_active,
            "projectIds": self.project_ids,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


# ---------------------------------------------------------------------
# Local persisted store
# ---------------------------------------------------------------------
class StoredDocument(db.Model):
    """One named key of the local store; value is the raw JSON string."""

    __tablename__ = "stored_documents"

    key = db.Column(db.String(80), primary_key=True)
    value = db.Column(db.Text, nullable=False)

    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<StoredDocument {self.key}>"


# ---------------------------------------------------------------------
# Remote snapshot (server side of /app-data)
# ---------------------------------------------------------------------
class AppDataRecord(db.Model):
    """
    The whole application snapshot as one row.

    data_json: JSON object mapping key -> raw JSON string.
    updated_at: stamped by the server on every PUT.
    """

    __tablename__ = "app_data"

    id = db.Column(db.Integer, primary_key=True)
    data_json = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Audit trail of document writes."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(255), nullable=True)

    # Document key ("projects", "invoices", ...) and the item inside it, if any
    entity_type = db.Column(db.String(80), nullable=False, index=True)
    entity_id = db.Column(db.String(120), nullable=True, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
