"""
Application configuration.
This module defines the configuration settings for the Flask application: database connection, secret key,
remote snapshot endpoint and the two background intervals. It uses environment variables for sensitive
information and defaults for development. In production, make sure to set the appropriate environment
variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'backoffice.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # App name (returned by /auth/me and used in the invoice payload)
    APP_NAME = "Consulting Back Office"

    # Bearer tokens issued by /auth/login (seconds)
    AUTH_TOKEN_MAX_AGE = int(os.environ.get("AUTH_TOKEN_MAX_AGE", 7 * 24 * 3600))

    # Remote snapshot store (GET/PUT /app-data). Empty URL disables the reconciler.
    REMOTE_API_URL = os.environ.get("REMOTE_API_URL", "")
    REMOTE_API_TOKEN = os.environ.get("REMOTE_API_TOKEN", "")
    REMOTE_TIMEOUT_SECONDS = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", 10))

    # Timers
    SYNC_INTERVAL_SECONDS = float(os.environ.get("SYNC_INTERVAL_SECONDS", 15))
    DERIVATION_POLL_SECONDS = float(os.environ.get("DERIVATION_POLL_SECONDS", 5))

    # Invoices
    DEFAULT_VAT_OPTION = os.environ.get("DEFAULT_VAT_OPTION", "21")
    WEBMAIL_COMPOSE_URL = os.environ.get(
        "WEBMAIL_COMPOSE_URL",
        "https://mail.google.com/mail/?view=cm&fs=1",
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
