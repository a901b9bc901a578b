"""
backoffice/seed.py

Bootstrap data.

Rules:
- seed_admin() creates the first Admin only while no user exists.
- seed_company_settings() writes default company settings only when the key is
  absent, so it never overwrites a synchronized value.
- Safe to run multiple times (idempotent).
"""

from __future__ import annotations

import logging

from .extensions import db
from .models import ROLE_ADMIN, User
from .store import COMPANY_SETTINGS, LocalStore

logger = logging.getLogger(__name__)

DEFAULT_COMPANY_SETTINGS = {
    "companyName": "",
    "taxId": "",
    "address": "",
    "email": "",
    "phone": "",
    "bankAccount": "",
}


def seed_admin(email: str, password: str, name: str | None = None) -> User | None:
    """Create the first Admin; returns None when users already exist."""
    if User.query.first() is not None:
        return None

    user = User(email=email.strip().lower(), name=name or email, role=ROLE_ADMIN, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    logger.info("Seeded admin user %s", user.email)
    return user


def seed_company_settings(store: LocalStore | None = None) -> bool:
    store = store or LocalStore()
    with store.transaction():
        if store.get_raw(COMPANY_SETTINGS) is not None:
            return False
        store.save_company_settings(DEFAULT_COMPANY_SETTINGS)
    logger.info("Seeded default company settings")
    return True
