"""
backoffice/__init__.py

Flask application factory for the Consulting Back Office.

Requirements:
- Local store of JSON documents (customers, calls, proposals, projects, services,
  invoices, company settings, users) kept consistent by the engines:
  financials, billing, derivation, invoicing, sync.
- SQLite for dev, any SQLAlchemy URL in production (migrations via Flask-Migrate).
- UI is never trusted; server-side access control is enforced.

Background work (flask worker):
- snapshot reconciler: initial sync, then a push check every SYNC_INTERVAL_SECONDS
- derivation poll every DERIVATION_POLL_SECONDS (in-process writes already trigger
  derivation through the document_changed signal)
"""

from __future__ import annotations

import signal
import threading
from typing import Mapping, Optional

import click
from flask import Flask, jsonify

from . import derivation
from .errors import ConfirmationRequired, NotFound, PermissionDenied, ValidationError
from .extensions import db, login_manager, migrate
from .log import configure_logging
from .models import User
from .security import bearer_token, customer_readonly_guard, verify_token


def create_app(test_config: Optional[Mapping] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object("config.Config")
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login (session cookie)."""
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        return user if user is not None and user.is_active else None

    @login_manager.request_loader
    def load_user_from_request(request) -> User | None:
        """Resolve "Authorization: Bearer <token>"."""
        token = bearer_token()
        if not token:
            return None
        uid = verify_token(token)
        if uid is None:
            return None
        user = db.session.get(User, uid)
        return user if user is not None and user.is_active else None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: Customer read-only guard (server-side).
    # ----------------------------------------------------------------------
    @app.before_request
    def _customer_guard_hook():
        """
        Customer read-only enforcement (POST/PUT/PATCH/DELETE blocked).

        This is a safety net. Each route must still enforce its own permissions.
        """
        result = customer_readonly_guard()
        if result is not None:
            return result
        return None

    # ----------------------------------------------------------------------
    # Engine errors -> JSON
    # ----------------------------------------------------------------------
    @app.errorhandler(ValidationError)
    def _validation_error(exc: ValidationError):
        return jsonify({"errors": exc.errors}), 400

    @app.errorhandler(NotFound)
    def _not_found(exc: NotFound):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(PermissionDenied)
    def _permission_denied(exc: PermissionDenied):
        return jsonify({"error": str(exc)}), 403

    @app.errorhandler(ConfirmationRequired)
    def _confirmation_required(exc: ConfirmationRequired):
        return jsonify({"confirmationRequired": True, "nextStatus": exc.next_status}), 409

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.app_data import app_data_bp
    from .blueprints.proposals import proposals_bp
    from .blueprints.projects import projects_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(app_data_bp)
    app.register_blueprint(proposals_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(users_bp)

    # In-process writes of proposals/services re-run project derivation
    derivation.init_app(app)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create tables and default company settings (dev without migrations)."""
        from .seed import seed_company_settings

        db.create_all()
        seed_company_settings()
        click.echo("Database initialized.")

    @app.cli.command("seed-admin")
    @click.argument("email")
    @click.argument("password")
    def seed_admin_command(email: str, password: str):
        """Bootstrap the first Admin user."""
        from .seed import seed_admin

        user = seed_admin(email, password)
        if user is None:
            raise click.ClickException("Users already exist; refusing to seed an admin.")
        click.echo(f"Admin {user.email} created.")

    @app.cli.command("derive-projects")
    def derive_projects_command():
        """Run one project derivation pass."""
        from .store import LocalStore

        created = derivation.derive_projects(LocalStore())
        click.echo(f"{len(created)} project(s) derived.")

    @app.cli.command("sync-once")
    def sync_once_command():
        """Reconcile the local store with the remote snapshot once."""
        from .sync import reconciler_from_config

        reconciler = reconciler_from_config(app)
        if reconciler is None:
            raise click.ClickException("REMOTE_API_URL is not configured.")
        click.echo(f"Snapshot sync: {reconciler.initialize().value}")

    @app.cli.command("worker")
    def worker_command():
        """Run the snapshot reconciler and the derivation poll until interrupted."""
        from .scheduler import IntervalRunner
        from .store import LocalStore
        from .sync import reconciler_from_config

        shutdown = threading.Event()

        def _handle_signal(signum, frame):
            click.echo(f"Received {signal.Signals(signum).name}, shutting down...")
            shutdown.set()

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)

        runners = [
            IntervalRunner(
                app,
                "derivation-poll",
                app.config["DERIVATION_POLL_SECONDS"],
                lambda: derivation.derive_projects(LocalStore()),
            )
        ]

        reconciler = reconciler_from_config(app)
        if reconciler is None:
            click.echo("REMOTE_API_URL is not configured; snapshot sync disabled.")
        else:
            with app.app_context():
                click.echo(f"Initial snapshot sync: {reconciler.initialize().value}")
            runners.append(
                IntervalRunner(app, "snapshot-push", app.config["SYNC_INTERVAL_SECONDS"], reconciler.tick)
            )

        for runner in runners:
            runner.start()
        try:
            shutdown.wait()
        finally:
            if reconciler is not None:
                reconciler.stop()
            for runner in runners:
                runner.stop(timeout=5)

    return app
