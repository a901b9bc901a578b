"""
Authentication Routes

Provides:
- POST /auth/login  -> {token, user}
- POST /auth/logout
- GET  /auth/me

Rules:
- Only active users may log in.
- Credentials validated via password hash.
- The bearer token is stateless (signed, 7 days by default); logout is client-side.
"""

import logging

from flask import Blueprint, current_app, jsonify
from flask_login import current_user

from ...models import User
from ...security import api_login_required, issue_token
from ...utils import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a user and issue a bearer token."""
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")

    user = User.query.filter_by(email=email).first()

    if not user or not user.check_password(password):
        logger.info("Failed login for %s", email or "<empty>")
        return jsonify({"error": "Invalid email or password"}), 401

    if not user.is_active:
        return jsonify({"error": "Account is inactive"}), 403

    return jsonify({"token": issue_token(user), "user": user.to_dict()})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@api_login_required
def logout():
    """Tokens are stateless: the client discards its token."""
    return jsonify({"ok": True})


# ============================================================
# CURRENT USER
# ============================================================

@auth_bp.route("/me")
@api_login_required
def me():
    return jsonify({"user": current_user.to_dict(), "appName": current_app.config.get("APP_NAME")})
