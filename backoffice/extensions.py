"""
Flask extension singletons, bound to the app in create_app().

- db: the local persisted store (stored_documents) plus users, app_data, audit_logs
- migrate: schema migrations (`flask db ...`)
- login_manager: resolves the bearer token of each request to a User

Kept apart from the factory so engines can import `db` without a circular import.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()

# JSON API: no login view to redirect to; unauthorized_handler answers 401.
login_manager = LoginManager()
