"""Shared fixtures: app on in-memory SQLite, store, role tokens, fixed clock, fake remote."""

from datetime import datetime, timezone

import pytest

from backoffice import create_app
from backoffice.entities import BillingItem, Project
from backoffice.extensions import db
from backoffice.models import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_WORKER, User
from backoffice.security import issue_token
from backoffice.store import LocalStore

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "REMOTE_API_URL": "",
    "LOG_LEVEL": "WARNING",
    # engine tests run derivation explicitly
    "DERIVE_ON_CHANGE": False,
}

FIXED_NOW = datetime(2025, 3, 14, 10, 30, 0, tzinfo=timezone.utc)

CUSTOMERS = [
    {"id": "c1", "name": "Acme", "company": "Acme S.L.", "taxId": "B123", "address": "Main St 1"},
    {"id": "c2", "name": "Beta", "company": "Beta GmbH"},
    {"id": "c3", "name": "Gamma"},
]

CALLS = [{"id": "call-1", "name": "Horizon Green", "year": "2025", "fundingBody": "EU"}]


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """An app context for tests that call engines directly."""
    with app.app_context():
        yield app


@pytest.fixture
def store(ctx):
    return LocalStore()


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def client(app):
    return app.test_client()


def make_project(store, *, project_id="proposal-p1", fee="1.000,00", billing=None, **fields):
    """Persist one project (plus customers) and return it."""
    store.save_collection("customers", CUSTOMERS)
    project = Project(
        id=project_id,
        title=fields.pop("title", "Alpha"),
        source="proposal",
        source_id=project_id.partition("-")[2],
        primary_clients=fields.pop("primary_clients", ["c1"]),
        secondary_clients=fields.pop("secondary_clients", ["c2"]),
        fee=fee,
        billing_schedule=list(billing or []),
        **fields,
    )
    projects = [p for p in store.projects() if p.id != project_id] + [project]
    store.save_projects(projects)
    return project


def milestone(billing_id, amount, *, status="Invoice_pending", due_date="2025-06-30", client_id="c1"):
    return BillingItem(
        id=billing_id,
        amount=amount,
        client_id=client_id,
        client_name="Acme" if client_id == "c1" else "Beta",
        due_date=due_date,
        invoice_status=status,
        description=f"Milestone {billing_id}",
    )


def _create_user(email, role, project_ids=None):
    user = User(email=email, name=email.split("@")[0], role=role, is_active=True)
    user.set_password("secret123")
    user.project_ids = project_ids or []
    db.session.add(user)
    return user


@pytest.fixture
def users(app):
    with app.app_context():
        created = {
            "admin": _create_user("admin@example.com", ROLE_ADMIN),
            "worker": _create_user("worker@example.com", ROLE_WORKER),
            "customer": _create_user("customer@example.com", ROLE_CUSTOMER, ["proposal-p1"]),
        }
        db.session.commit()
        ids = {role: user.id for role, user in created.items()}
    return ids


@pytest.fixture
def headers(app, users):
    """Authorization headers per role."""
    with app.app_context():
        out = {}
        for role, user_id in users.items():
            user = db.session.get(User, user_id)
            out[role] = {"Authorization": f"Bearer {issue_token(user)}"}
    return out


class FakeRemote:
    """In-memory stand-in for the remote snapshot store (same interface as the client)."""

    def __init__(self, data=None, updated_at=None):
        self.data = data
        self.updated_at = updated_at
        self.pushes = []
        self.fail_fetch = None
        self.fail_push = None

    def fetch(self):
        from backoffice.sync import RemoteSnapshot

        if self.fail_fetch is not None:
            raise self.fail_fetch
        return RemoteSnapshot(data=dict(self.data) if self.data is not None else None, updated_at=self.updated_at)

    def push(self, data):
        if self.fail_push is not None:
            raise self.fail_push
        self.pushes.append(dict(data))
        self.data = dict(data)
        self.updated_at = "2099-01-01T00:00:00.000Z"
        return self.updated_at


@pytest.fixture
def remote():
    return FakeRemote()
