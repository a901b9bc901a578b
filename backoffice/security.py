"""
backoffice/security.py

Access control helpers for the back office JSON API.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Admin: full access, including user management.
- Worker: edits everything, but cannot edit or invoice billing milestones that are
  already sent or paid (enforced by the billing/invoicing engines).
- Customer: read-only, and only sees the projects listed in its projectIds.

This module also provides a global safety net:
- customer_readonly_guard() blocks POST/PUT/PATCH/DELETE for Customers.
  Wired via app.before_request in the app factory.

Tokens:
- POST /auth/login issues a signed bearer token (itsdangerous); the login manager's
  request_loader resolves "Authorization: Bearer <token>" on every request.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional, Tuple

from flask import current_app, jsonify, request
from flask_login import current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

TOKEN_SALT = "backoffice-auth-token"


def _forbidden(message: str = "Forbidden") -> Tuple[Any, int]:
    """Consistent 403 JSON body."""
    return jsonify({"error": message}), 403


def _unauthorized() -> Tuple[Any, int]:
    return jsonify({"error": "Authentication required"}), 401


# ---------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------
def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user) -> str:
    return _serializer().dumps({"uid": user.id})


def verify_token(token: str) -> Optional[int]:
    """User id carried by a valid, unexpired token; None otherwise."""
    max_age = current_app.config.get("AUTH_TOKEN_MAX_AGE", 7 * 24 * 3600)
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None
    uid = payload.get("uid") if isinstance(payload, dict) else None
    return uid if isinstance(uid, int) else None


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# ---------------------------------------------------------------------
# Role checks
# ---------------------------------------------------------------------
def is_admin() -> bool:
    """Return True if current user is authenticated and admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def is_worker() -> bool:
    return bool(current_user.is_authenticated and getattr(current_user, "is_worker", False))


def can_edit() -> bool:
    if not current_user.is_authenticated:
        return False
    can = getattr(current_user, "can_edit", None)
    return bool(callable(can) and can())


def customer_readonly_guard() -> Optional[Tuple[Any, int]]:
    """
    Global guard: Customers cannot mutate data.

    Allow-list for safe self-service mutating endpoints:
    - auth.logout
    - users.update_profile
    """
    if request.method not in MUTATING_METHODS:
        return None

    if not current_user.is_authenticated:
        return None

    if can_edit():
        return None

    endpoint = (request.endpoint or "").strip()
    allow_mutating_endpoints = {"auth.login", "auth.logout", "users.update_profile"}
    if endpoint in allow_mutating_endpoints:
        return None

    return _forbidden("Read-only access")


def api_login_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: any authenticated user (401 JSON otherwise)."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        return view_func(*args, **kwargs)

    return wrapper


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def staff_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: Admin or Worker."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        if not can_edit():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def project_visible_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator: the project in the URL must be visible to the current user.

    Staff: always allowed. Customers: only ids listed in their projectIds.
    Returns 404 rather than 403 so hidden project ids are not disclosed.
    """
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        project_id = kwargs.get("project_id")
        if project_id is not None and not current_user.can_see_project(project_id):
            return jsonify({"error": "Not found"}), 404
        return view_func(*args, **kwargs)

    return wrapper
