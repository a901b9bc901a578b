"""
User Management (Admin Only) and self-service profile.

Rules enforced:
- Only Admin lists, creates and updates users (roles, activation, customer projects).
- Any user may update their own name and password (PUT /users/me).
- Editing another user's profile without Admin rights is refused (403), never applied.
- UI never trusted: we validate server-side.

Audit:
- CREATE / UPDATE logged
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user

from ...audit import ACTION_CREATE, ACTION_UPDATE, log_document_change
from ...extensions import db
from ...models import ROLES, ROLE_WORKER, User
from ...security import admin_required, api_login_required
from ...utils import json_body

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/users")

MIN_PASSWORD_LENGTH = 6


def _project_ids(value):
    """Parse an optional list of project ids. Returns None if absent/invalid."""
    if not isinstance(value, list):
        return None
    return [str(v).strip() for v in value if str(v).strip()]


def _validate_password(errors: dict, password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"


# ---------------------------------------------------------------------
# LIST USERS
# ---------------------------------------------------------------------

@users_bp.route("", methods=["GET"])
@admin_required
def list_users():
    """Admin view: list all users."""
    users = User.query.order_by(User.email.asc()).all()
    return jsonify([u.to_dict() for u in users])


# ---------------------------------------------------------------------
# CREATE USER
# ---------------------------------------------------------------------

@users_bp.route("", methods=["POST"])
@admin_required
def create_user():
    """
    Create a new system user.

    Required:
    - email (unique)
    - password
    - role (Admin / Worker / Customer), defaults to Worker
    """
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    role = str(data.get("role") or ROLE_WORKER).strip()

    errors = {}
    if not email:
        errors["email"] = "Email is required"
    elif User.query.filter_by(email=email).first():
        errors["email"] = "Email already exists"
    _validate_password(errors, password)
    if role not in ROLES:
        errors["role"] = "Role must be Admin, Worker or Customer"
    if errors:
        return jsonify({"errors": errors}), 400

    user = User(
        email=email,
        name=str(data.get("name") or "").strip() or None,
        role=role,
        is_active=True,
    )
    user.set_password(password)
    user.project_ids = _project_ids(data.get("projectIds")) or []

    db.session.add(user)
    db.session.flush()
    log_document_change("users", user.id, ACTION_CREATE, after=user.to_dict())
    db.session.commit()

    logger.info("Created user %s (%s)", user.email, user.role)
    return jsonify(user.to_dict()), 201


# ---------------------------------------------------------------------
# UPDATE USER (admin)
# ---------------------------------------------------------------------

@users_bp.route("/<int:user_id>", methods=["PUT"])
@admin_required
def update_user(user_id: int):
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "Not found"}), 404

    data = json_body()
    before = user.to_dict()
    errors = {}

    if "role" in data:
        role = str(data.get("role") or "").strip()
        if role not in ROLES:
            errors["role"] = "Role must be Admin, Worker or Customer"
        elif user.id == current_user.id and role != user.role:
            errors["role"] = "You cannot change your own role"
        else:
            user.role = role
    if "isActive" in data and user.id == current_user.id and not data.get("isActive"):
        errors["isActive"] = "You cannot deactivate yourself"
    if "password" in data and data.get("password"):
        _validate_password(errors, str(data.get("password")))
    if errors:
        db.session.rollback()
        return jsonify({"errors": errors}), 400

    if "name" in data:
        user.name = str(data.get("name") or "").strip() or None
    if "isActive" in data:
        user.is_active = bool(data.get("isActive"))
    project_ids = _project_ids(data.get("projectIds"))
    if project_ids is not None:
        user.project_ids = project_ids
    if data.get("password"):
        user.set_password(str(data.get("password")))

    log_document_change("users", user.id, ACTION_UPDATE, before=before, after=user.to_dict())
    db.session.commit()
    return jsonify(user.to_dict())


# ---------------------------------------------------------------------
# OWN PROFILE
# ---------------------------------------------------------------------

@users_bp.route("/me", methods=["PUT"])
@api_login_required
def update_profile():
    """Self-service: name and password only. Role and projects are ignored."""
    data = json_body()
    errors = {}
    if data.get("password"):
        _validate_password(errors, str(data.get("password")))
    if errors:
        return jsonify({"errors": errors}), 400

    before = current_user.to_dict()
    if "name" in data:
        current_user.name = str(data.get("name") or "").strip() or None
    if data.get("password"):
        current_user.set_password(str(data.get("password")))

    log_document_change("users", current_user.id, ACTION_UPDATE, before=before, after=current_user.to_dict())
    db.session.commit()
    return jsonify(current_user.to_dict())
